"""Typing presence module."""

from .tracker import ITypingIndicatorTracker, TypingChangeHandler, TypingIndicatorTracker

__all__ = ["ITypingIndicatorTracker", "TypingChangeHandler", "TypingIndicatorTracker"]
