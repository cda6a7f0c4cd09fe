"""Distribution aggregation — bundles allocations into one payout event.

A Distribution is what the ledger records: one or more allocations
computed at the same moment, with the Cred timestamp they were computed
against. It is immutable once constructed.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from grainledger.allocation.engine import compute_allocation, validate_allocation_budget
from grainledger.cred.view import CredGrainView
from grainledger.models.allocation import Allocation, AllocationPolicy, Distribution


def create_distribution(
    allocations: Sequence[Allocation],
    cred_timestamp: datetime,
) -> Distribution:
    """Wrap already-computed allocations with a fresh id.

    Raises ValueError on an empty allocation list or a naive timestamp,
    and BudgetConservationViolated if any allocation fails to conserve.
    """
    if not allocations:
        raise ValueError("A distribution needs at least one allocation")
    if cred_timestamp.tzinfo is None:
        raise ValueError("cred_timestamp must be timezone-aware")
    for allocation in allocations:
        validate_allocation_budget(allocation)
    return Distribution(
        id=str(uuid.uuid4()),
        allocations=tuple(allocations),
        cred_timestamp=cred_timestamp,
    )


def compute_distribution(
    policies: Sequence[AllocationPolicy],
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Distribution:
    """Compute one allocation per policy and bundle them at effective_timestamp."""
    allocations = [
        compute_allocation(policy, view, effective_timestamp) for policy in policies
    ]
    return create_distribution(allocations, effective_timestamp)


def distribution_timestamps(
    view: CredGrainView,
    last_distribution: Optional[datetime],
    now: datetime,
    max_simultaneous: int,
) -> List[datetime]:
    """Interval end timestamps still owed a distribution.

    An interval is owed one if it has ended by now and ended after the
    last applied distribution. Only the most recent max_simultaneous
    are returned, oldest first, so a long-idle ledger catches up in
    bounded steps.
    """
    if max_simultaneous < 1:
        raise ValueError(f"max_simultaneous must be >= 1, got {max_simultaneous}")
    pending = [
        interval.end
        for interval in view.intervals
        if interval.end <= now
        and (last_distribution is None or interval.end > last_distribution)
    ]
    return pending[-max_simultaneous:]
