"""Coding accuracy evaluation: normalization and reconciliation."""

from coding_evaluation.normalizer import normalize_coding_result
from coding_evaluation.reconciliation import average_accuracy, reconcile

__all__ = ["average_accuracy", "normalize_coding_result", "reconcile"]
