"""Allocation models — policies, receipts, allocations and distributions.

AllocationPolicy is a closed set of variants tagged by PolicyType:
    IMMEDIATE  — Cred earned in the latest completed interval(s)
    RECENT     — exponentially decayed Cred history
    BALANCED   — lifetime catch-up towards each participant's fair share
    SPECIAL    — caller-chosen recipients, Cred-independent

Invariants enforced downstream (allocation.engine):
- budget >= 0 for every variant
- Σ receipts.amount == policy.budget, exactly

Receipts refer to identities by id only. Merging or renaming an identity
never requires rewriting a historical allocation.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Optional, Sequence, Tuple, Union

from grainledger.models.grain import Grain, grain_sum
from grainledger.models.identity import IdentityId

AllocationId = str
DistributionId = str


class PolicyType(str, enum.Enum):
    """Tag of an allocation policy variant."""
    IMMEDIATE = "IMMEDIATE"
    RECENT = "RECENT"
    BALANCED = "BALANCED"
    SPECIAL = "SPECIAL"


@dataclass(frozen=True)
class ImmediatePolicy:
    """Pay in proportion to Cred from the most recent completed interval(s)."""
    budget: Grain
    num_intervals_lookback: int = 1
    policy_type: ClassVar[PolicyType] = PolicyType.IMMEDIATE


@dataclass(frozen=True)
class RecentPolicy:
    """Pay in proportion to Cred decayed by decay_rate per interval of age.

    decay_rate = 1 weights all history equally; decay_rate = 0 only
    counts the latest completed interval.
    """
    budget: Grain
    decay_rate: float
    policy_type: ClassVar[PolicyType] = PolicyType.RECENT


@dataclass(frozen=True)
class BalancedPolicy:
    """Pay whoever is furthest below their lifetime share of Grain.

    num_intervals_lookback = 0 considers all history.
    """
    budget: Grain
    num_intervals_lookback: int = 0
    policy_type: ClassVar[PolicyType] = PolicyType.BALANCED


@dataclass(frozen=True)
class SpecialPolicy:
    """Pay an explicit split to named recipients, bypassing Cred.

    Equal shares when weights is None, otherwise one weight per
    recipient. Used for grants, refunds and other one-off payouts.
    """
    budget: Grain
    memo: str
    recipients: Tuple[IdentityId, ...]
    weights: Optional[Tuple[float, ...]] = None
    policy_type: ClassVar[PolicyType] = PolicyType.SPECIAL


AllocationPolicy = Union[ImmediatePolicy, RecentPolicy, BalancedPolicy, SpecialPolicy]

POLICY_CLASSES = (ImmediatePolicy, RecentPolicy, BalancedPolicy, SpecialPolicy)


@dataclass(frozen=True)
class GrainReceipt:
    """Grain paid to one identity by one allocation."""
    id: IdentityId
    amount: Grain


@dataclass(frozen=True)
class Allocation:
    """One policy's split of its budget into per-identity receipts."""
    id: AllocationId
    policy: AllocationPolicy
    receipts: Tuple[GrainReceipt, ...]

    @property
    def total(self) -> Grain:
        return grain_sum(r.amount for r in self.receipts)


@dataclass(frozen=True)
class Distribution:
    """One payout event: allocations computed together at cred_timestamp."""
    id: DistributionId
    allocations: Tuple[Allocation, ...]
    cred_timestamp: datetime

    def receipts(self) -> Sequence[GrainReceipt]:
        """All receipts across allocations, in allocation order."""
        return [r for a in self.allocations for r in a.receipts]
