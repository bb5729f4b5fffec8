"""Tracker module."""

from .tracker import ITracker, NullTracker, Tracker

__all__ = ["ITracker", "NullTracker", "Tracker"]
