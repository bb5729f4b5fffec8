"""Message reconciliation module."""

from .reconciler import IMessageReconciler, MessageReconciler, ReconcileDiagnostic

__all__ = ["IMessageReconciler", "MessageReconciler", "ReconcileDiagnostic"]
