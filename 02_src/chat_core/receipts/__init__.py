"""Read receipt module."""

from .dispatcher import IReceiptDispatcher, ReceiptDispatcher

__all__ = ["IReceiptDispatcher", "ReceiptDispatcher"]
