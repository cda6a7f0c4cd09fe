"""Core data models for the Grain ledger."""

from grainledger.models.allocation import (
    Allocation,
    AllocationPolicy,
    BalancedPolicy,
    Distribution,
    GrainReceipt,
    ImmediatePolicy,
    PolicyType,
    RecentPolicy,
    SpecialPolicy,
)
from grainledger.models.grain import DECIMAL_PRECISION, ONE, ZERO, Grain
from grainledger.models.identity import Account, Identity, IdentitySubtype

__all__ = [
    "Account",
    "Allocation",
    "AllocationPolicy",
    "BalancedPolicy",
    "DECIMAL_PRECISION",
    "Distribution",
    "Grain",
    "GrainReceipt",
    "Identity",
    "IdentitySubtype",
    "ImmediatePolicy",
    "ONE",
    "PolicyType",
    "RecentPolicy",
    "SpecialPolicy",
    "ZERO",
]
