"""Allocation engine — validates a policy, computes receipts, checks conservation.

compute_allocation(policy, view, effective_timestamp):
    1. validate_policy          → InvalidPolicy (before the view is touched)
    2. view precondition check  → ScoreSourceNotReady
    3. dispatch on policy_type  → receipts
    4. conservation check       → BudgetConservationViolated
    5. stamp a fresh uuid4 id

The engine is a pure computation layer: no ledger mutation, no I/O, no
shared state. Concurrent callers need no coordination. Applying the
result is the ledger's job.

Invariant: Σ receipts.amount == policy.budget, exactly.
A mismatch is a defect and is never tolerated.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Tuple

from grainledger.allocation.policies import (
    balanced_receipts,
    immediate_receipts,
    recent_receipts,
    special_receipts,
)
from grainledger.cred.view import CredGrainView
from grainledger.errors import (
    BudgetConservationViolated,
    InvalidPolicy,
    SpecialPolicyRequired,
)
from grainledger.models.allocation import (
    POLICY_CLASSES,
    Allocation,
    AllocationPolicy,
    BalancedPolicy,
    GrainReceipt,
    ImmediatePolicy,
    PolicyType,
    RecentPolicy,
    SpecialPolicy,
)
from grainledger.models.grain import Grain, grain_sum
from grainledger.models.identity import Identity


def _special_from_view(
    policy: SpecialPolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Tuple[GrainReceipt, ...]:
    # All participants, not just active ones: SPECIAL may target inactive accounts
    return special_receipts(policy, [p.identity for p in view.participants])


ReceiptFunction = Callable[[Any, CredGrainView, datetime], Tuple[GrainReceipt, ...]]

RECEIPT_FUNCTIONS: Dict[PolicyType, ReceiptFunction] = {
    PolicyType.IMMEDIATE: immediate_receipts,
    PolicyType.RECENT: recent_receipts,
    PolicyType.BALANCED: balanced_receipts,
    PolicyType.SPECIAL: _special_from_view,
}


def compute_allocation(
    policy: AllocationPolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Allocation:
    """Compute one policy's allocation against a Cred view.

    Args:
        policy: Any AllocationPolicy variant.
        view: The Cred/Grain score source.
        effective_timestamp: Only intervals ending at or before this
            moment are considered.

    Returns:
        A frozen Allocation with a fresh id.
    """
    validate_policy(policy)
    view.validate_for_grain_allocation(effective_timestamp)
    return validate_allocation_budget(
        Allocation(
            id=str(uuid.uuid4()),
            policy=policy,
            receipts=_receipts(policy, view, effective_timestamp),
        )
    )


def compute_allocation_special(
    policy: AllocationPolicy,
    identities: Iterable[Identity],
) -> Allocation:
    """Cred-independent path for SPECIAL policies. No view required."""
    validate_policy(policy)
    if policy.policy_type != PolicyType.SPECIAL:
        raise SpecialPolicyRequired(
            f"SpecialPolicyRequired. Got: {policy.policy_type.value}"
        )
    return validate_allocation_budget(
        Allocation(
            id=str(uuid.uuid4()),
            policy=policy,
            receipts=special_receipts(policy, identities),
        )
    )


def validate_allocation_budget(allocation: Allocation) -> Allocation:
    """Return the allocation if its receipts sum to its budget exactly."""
    distributed = grain_sum(r.amount for r in allocation.receipts)
    budget = allocation.policy.budget
    if distributed != budget:
        raise BudgetConservationViolated(
            f"Allocation {allocation.id} has budget of {budget} "
            f"but distributed {distributed}"
        )
    return allocation


def validate_policy(policy: Any) -> AllocationPolicy:
    """Check policy shape and budget. Raises InvalidPolicy."""
    if not isinstance(policy, POLICY_CLASSES):
        raise InvalidPolicy(f"Unknown allocation policy: {policy!r}")
    if not isinstance(policy.budget, Grain):
        raise InvalidPolicy(f"invalid budget: {policy.budget!r}")

    if isinstance(policy, ImmediatePolicy):
        _check_lookback(policy.num_intervals_lookback, minimum=1)
    elif isinstance(policy, BalancedPolicy):
        _check_lookback(policy.num_intervals_lookback, minimum=0)
    elif isinstance(policy, RecentPolicy):
        if not _is_finite_number(policy.decay_rate) or not (0 <= policy.decay_rate <= 1):
            raise InvalidPolicy(
                f"decay_rate must be a number in [0, 1], got {policy.decay_rate!r}"
            )
    elif isinstance(policy, SpecialPolicy):
        _check_special(policy)
    return policy


def _check_lookback(value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidPolicy(
            f"num_intervals_lookback must be an integer >= {minimum}, got {value!r}"
        )


def _check_special(policy: SpecialPolicy) -> None:
    if not isinstance(policy.memo, str):
        raise InvalidPolicy(f"SPECIAL memo must be a string, got {policy.memo!r}")
    if not isinstance(policy.recipients, (list, tuple)) or not all(
        isinstance(r, str) for r in policy.recipients
    ):
        raise InvalidPolicy("SPECIAL recipients must be a sequence of identity ids")
    if len(set(policy.recipients)) != len(policy.recipients):
        raise InvalidPolicy("SPECIAL recipients must not repeat")
    if policy.budget.units > 0 and not policy.recipients:
        raise InvalidPolicy("SPECIAL policy with a positive budget needs recipients")

    if policy.weights is None:
        return
    if not isinstance(policy.weights, (list, tuple)):
        raise InvalidPolicy("SPECIAL weights must be a sequence of numbers")
    if len(policy.weights) != len(policy.recipients):
        raise InvalidPolicy(
            f"SPECIAL policy has {len(policy.weights)} weights "
            f"for {len(policy.recipients)} recipients"
        )
    for weight in policy.weights:
        if not _is_finite_number(weight) or weight < 0:
            raise InvalidPolicy(f"SPECIAL weights must be non-negative, got {weight!r}")
    if policy.budget.units > 0 and not any(w > 0 for w in policy.weights):
        raise InvalidPolicy("SPECIAL weights must include a positive value")


def _is_finite_number(value: Any) -> bool:
    # Policy numbers are stored as JSON numbers, so only int and float
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _receipts(
    policy: AllocationPolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Tuple[GrainReceipt, ...]:
    handler = RECEIPT_FUNCTIONS.get(policy.policy_type)
    if handler is None:
        # A PolicyType was added without a receipt function
        raise TypeError(f"Unknown policy type: {policy.policy_type!r}")
    return handler(policy, view, effective_timestamp)
