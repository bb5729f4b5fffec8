"""Trace storage module."""

from .storage import IStorage, Storage

__all__ = ["IStorage", "Storage"]
