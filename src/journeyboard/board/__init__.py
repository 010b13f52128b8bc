"""Plan canonicalisation, diffing, and board reconciliation."""

from __future__ import annotations

from .canonical import PlanSubmission, canonicalize, plan_hash
from .dates import DueDateParse, parse_due_date, resolve_due_date
from .diff import ModifiedCard, PlanDiff, diff_cards
from .reconciler import BoardReconciler, BoardSettings, ReconcileResult

__all__ = [
    "BoardReconciler",
    "BoardSettings",
    "DueDateParse",
    "ModifiedCard",
    "PlanDiff",
    "PlanSubmission",
    "ReconcileResult",
    "canonicalize",
    "diff_cards",
    "parse_due_date",
    "plan_hash",
    "resolve_due_date",
]
