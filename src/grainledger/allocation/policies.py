"""Allocation policies — one pure receipt function per policy type.

Each Cred-based function maps (policy, view, effective_timestamp) to an
ordered tuple of GrainReceipts. Only active participants are considered,
and only intervals that have completed by the effective timestamp
(interval.end <= effective_timestamp).

Weights:
    IMMEDIATE  w(i) = Σ cred(i, t) over the last num_intervals_lookback
                      completed intervals
    RECENT     w(i) = Σ cred(i, t) × decay_rate^(age of t), the latest
                      completed interval having age 0
    BALANCED   w(i) = max(0, cred(i)/C × (T + budget) − paid(i))
                      where C = Σ cred, T = Σ paid over active participants
                      in the lookback window, plus whatever was paid in the
                      interval containing the effective timestamp
    SPECIAL    w(i) = caller supplied (equal shares by default)

The budget is then split with split_budget (largest remainder, ties to
the smaller identity id). Zero-amount receipts are omitted; the budget
is still conserved over the receipts that remain.
"""

from __future__ import annotations

from datetime import datetime
from fractions import Fraction
from typing import Any, Hashable, Iterable, List, Sequence, Tuple

from grainledger.cred.view import CredGrainView
from grainledger.errors import NoEligibleRecipients, UnknownRecipient
from grainledger.models.allocation import (
    BalancedPolicy,
    GrainReceipt,
    ImmediatePolicy,
    RecentPolicy,
    SpecialPolicy,
)
from grainledger.models.grain import Grain, split_budget, to_fraction
from grainledger.models.identity import Identity


def immediate_receipts(
    policy: ImmediatePolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Tuple[GrainReceipt, ...]:
    """Split the budget by Cred earned in the latest completed interval(s)."""
    completed = view.completed_interval_count(effective_timestamp)
    window = range(max(0, completed - policy.num_intervals_lookback), completed)
    weighted = [
        (p.id, sum((to_fraction(p.cred_per_interval[t]) for t in window), Fraction(0)))
        for p in view.active_participants()
    ]
    return _receipts(policy.budget, weighted)


def recent_receipts(
    policy: RecentPolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Tuple[GrainReceipt, ...]:
    """Split the budget by exponentially decayed Cred history."""
    completed = view.completed_interval_count(effective_timestamp)
    decay = to_fraction(policy.decay_rate)

    weighted = []
    for participant in view.active_participants():
        # Horner form: oldest interval ends up multiplied by decay^(completed-1)
        weight = Fraction(0)
        for t in range(completed):
            weight = weight * decay + to_fraction(participant.cred_per_interval[t])
        weighted.append((participant.id, weight))
    return _receipts(policy.budget, weighted)


def balanced_receipts(
    policy: BalancedPolicy,
    view: CredGrainView,
    effective_timestamp: datetime,
) -> Tuple[GrainReceipt, ...]:
    """Split the budget to catch up participants paid below their Cred share."""
    if policy.budget.units == 0:
        return ()

    completed = view.completed_interval_count(effective_timestamp)
    lookback = policy.num_intervals_lookback
    start = 0 if lookback == 0 else max(0, completed - lookback)
    window = range(start, completed)
    # Grain already paid inside the still-open interval counts as paid
    paid_window = range(start, max(completed, view.interval_index_for(effective_timestamp) + 1))

    active = view.active_participants()
    creds = [
        sum((to_fraction(p.cred_per_interval[t]) for t in window), Fraction(0))
        for p in active
    ]
    paids = [
        sum(p.grain_earned_per_interval[t].units for t in paid_window) for p in active
    ]

    total_cred = sum(creds, Fraction(0))
    if total_cred == 0:
        raise NoEligibleRecipients(
            "BALANCED policy has no active participant with Cred in its window"
        )
    target_pool = sum(paids) + policy.budget.units

    weighted = [
        (p.id, max(Fraction(0), cred / total_cred * target_pool - paid))
        for p, cred, paid in zip(active, creds, paids)
    ]
    return _receipts(policy.budget, weighted)


def special_receipts(
    policy: SpecialPolicy,
    identities: Iterable[Identity],
) -> Tuple[GrainReceipt, ...]:
    """Pay the caller's split to the listed recipients, in listed order.

    Recipients may be inactive; the active flag only gates Cred policies.

    Raises UnknownRecipient if a recipient is not among identities.
    """
    known = {identity.id for identity in identities}
    for recipient in policy.recipients:
        if recipient not in known:
            raise UnknownRecipient(f"Unknown SPECIAL recipient: {recipient}")

    weights: Sequence[Any] = (
        policy.weights if policy.weights is not None else [1] * len(policy.recipients)
    )
    return _receipts(policy.budget, list(zip(policy.recipients, weights)))


def _receipts(
    budget: Grain,
    weighted: List[Tuple[Hashable, Any]],
) -> Tuple[GrainReceipt, ...]:
    if budget.units == 0:
        return ()
    shares = split_budget(budget, weighted)
    return tuple(
        GrainReceipt(id=identity_id, amount=amount)
        for (identity_id, _), amount in zip(weighted, shares)
        if amount.units > 0
    )
