"""Grain allocation — policies, allocation engine, distribution aggregation.

This package is a pure computation layer. It never mutates the ledger;
it only produces Allocation and Distribution values for the ledger to
apply.
"""

from grainledger.allocation.distribution import (
    compute_distribution,
    create_distribution,
    distribution_timestamps,
)
from grainledger.allocation.engine import (
    compute_allocation,
    compute_allocation_special,
    validate_allocation_budget,
    validate_policy,
)

__all__ = [
    "compute_allocation",
    "compute_allocation_special",
    "compute_distribution",
    "create_distribution",
    "distribution_timestamps",
    "validate_allocation_budget",
    "validate_policy",
]
