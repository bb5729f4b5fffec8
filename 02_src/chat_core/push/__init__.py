"""Push channel module."""

from .hub import PushHub, Subscription

__all__ = ["PushHub", "Subscription"]
