"""Dispatch Engine Package."""

from .capacity import TWO_WHEELER_MAX_WEIGHT_KG, WeightCalculator, classify
from .eligibility import EligibilityFilter, EligibilityResult, EligibleOrder
from .clustering import ClusteringEngine
from .assignment import AssignmentKind, AssignmentOutcome, AssignmentPolicy

__all__ = [
    # Capacity
    "TWO_WHEELER_MAX_WEIGHT_KG",
    "WeightCalculator",
    "classify",
    # Eligibility
    "EligibilityFilter",
    "EligibilityResult",
    "EligibleOrder",
    # Clustering
    "ClusteringEngine",
    # Assignment
    "AssignmentKind",
    "AssignmentOutcome",
    "AssignmentPolicy",
]
