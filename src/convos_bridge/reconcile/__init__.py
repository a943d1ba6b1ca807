"""Missed-message reconciliation on session resume."""

from convos_bridge.reconcile.catchup import (
    CatchUpReconciler,
    CatchUpResult,
    build_summary,
)

__all__ = ["CatchUpReconciler", "CatchUpResult", "build_summary"]
