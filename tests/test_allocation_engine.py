"""Tests for the allocation engine — proves validation order and conservation."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from grainledger.allocation.engine import (
    RECEIPT_FUNCTIONS,
    compute_allocation,
    compute_allocation_special,
    validate_allocation_budget,
    validate_policy,
)
from grainledger.cred.view import CredGrainView, CredParticipant, Interval
from grainledger.errors import (
    BudgetConservationViolated,
    InvalidPolicy,
    ScoreSourceNotReady,
    SpecialPolicyRequired,
    UnknownRecipient,
)
from grainledger.models.allocation import (
    Allocation,
    BalancedPolicy,
    GrainReceipt,
    ImmediatePolicy,
    PolicyType,
    RecentPolicy,
    SpecialPolicy,
)
from grainledger.models.grain import ZERO, Grain
from grainledger.models.identity import Identity, IdentitySubtype


def _day(day: int) -> datetime:
    return datetime(2026, 1, day, tzinfo=timezone.utc)


def _participant(identity_id: str, cred, active: bool = True) -> CredParticipant:
    return CredParticipant(
        identity=Identity(id=identity_id, name=identity_id, subtype=IdentitySubtype.USER),
        active=active,
        cred_per_interval=tuple(cred),
        grain_earned_per_interval=tuple(ZERO for _ in cred),
    )


def _view() -> CredGrainView:
    return CredGrainView(
        [
            _participant("alice", [1, 3]),
            _participant("bob", [2, 1]),
            _participant("carol", [5, 5], active=False),
        ],
        [Interval(_day(1), _day(8)), Interval(_day(8), _day(15))],
    )


class _ExplodingView:
    """A view that fails the test if anything touches it."""

    def validate_for_grain_allocation(self, *args, **kwargs):
        raise AssertionError("view must not be consulted")

    def __getattr__(self, name):
        raise AssertionError(f"view must not be consulted: {name}")


class TestValidatePolicy:
    def test_bad_budget_rejected_before_view(self) -> None:
        with pytest.raises(InvalidPolicy, match="invalid budget: -1"):
            compute_allocation(ImmediatePolicy(budget=-1), _ExplodingView(), _day(15))

    def test_unknown_policy(self) -> None:
        with pytest.raises(InvalidPolicy, match="Unknown allocation policy"):
            validate_policy(object())

    def test_lookback_bounds(self) -> None:
        for bad in (0, -1, True, 1.5):
            with pytest.raises(InvalidPolicy, match="num_intervals_lookback"):
                validate_policy(ImmediatePolicy(Grain(1), num_intervals_lookback=bad))
        with pytest.raises(InvalidPolicy):
            validate_policy(BalancedPolicy(Grain(1), num_intervals_lookback=-1))
        assert validate_policy(BalancedPolicy(Grain(1), num_intervals_lookback=0))

    def test_decay_rate_bounds(self) -> None:
        for bad in (-0.1, 1.5, float("nan"), "0.5", None):
            with pytest.raises(InvalidPolicy, match="decay_rate"):
                validate_policy(RecentPolicy(Grain(1), decay_rate=bad))
        for good in (0, 0.5, 1):
            validate_policy(RecentPolicy(Grain(1), decay_rate=good))

    def test_decimal_policy_numbers_rejected(self) -> None:
        with pytest.raises(InvalidPolicy, match="decay_rate"):
            validate_policy(RecentPolicy(Grain(1), decay_rate=Decimal("0.5")))
        with pytest.raises(InvalidPolicy, match="weights"):
            validate_policy(
                SpecialPolicy(Grain(1), memo="", recipients=("a", "b"), weights=(Decimal("1"), 1))
            )

    def test_special_shape(self) -> None:
        bad_policies = [
            SpecialPolicy(Grain(1), memo=None, recipients=("a",)),
            SpecialPolicy(Grain(1), memo="", recipients="a"),
            SpecialPolicy(Grain(1), memo="", recipients=("a", "a")),
            SpecialPolicy(Grain(1), memo="", recipients=()),
            SpecialPolicy(Grain(1), memo="", recipients=("a", "b"), weights=(1,)),
            SpecialPolicy(Grain(1), memo="", recipients=("a",), weights=(-1,)),
            SpecialPolicy(Grain(1), memo="", recipients=("a", "b"), weights=(0, 0)),
        ]
        for policy in bad_policies:
            with pytest.raises(InvalidPolicy):
                validate_policy(policy)

    def test_special_zero_budget_may_be_empty(self) -> None:
        validate_policy(SpecialPolicy(ZERO, memo="", recipients=()))


class TestComputeAllocation:
    def test_immediate_allocation(self) -> None:
        allocation = compute_allocation(ImmediatePolicy(Grain(8)), _view(), _day(15))
        assert allocation.receipts == (
            GrainReceipt("alice", Grain(6)),
            GrainReceipt("bob", Grain(2)),
        )
        assert allocation.total == Grain(8)

    def test_deterministic_receipts_fresh_ids(self) -> None:
        policy = RecentPolicy(Grain(10 ** 18 + 7), decay_rate=0.3)
        first = compute_allocation(policy, _view(), _day(15))
        second = compute_allocation(policy, _view(), _day(15))
        assert first.receipts == second.receipts
        assert first.id != second.id

    def test_zero_budget(self) -> None:
        allocation = compute_allocation(ImmediatePolicy(ZERO), _view(), _day(15))
        assert allocation.receipts == ()
        assert allocation.total == ZERO

    def test_score_source_not_ready(self) -> None:
        with pytest.raises(ScoreSourceNotReady, match="no intervals"):
            compute_allocation(ImmediatePolicy(Grain(1)), CredGrainView([], []), _day(15))

    def test_no_completed_interval(self) -> None:
        with pytest.raises(ScoreSourceNotReady, match="No Cred interval"):
            compute_allocation(ImmediatePolicy(Grain(1)), _view(), _day(5))

    def test_special_may_pay_inactive(self) -> None:
        policy = SpecialPolicy(Grain(4), memo="bounty", recipients=("carol",))
        allocation = compute_allocation(policy, _view(), _day(15))
        assert allocation.receipts == (GrainReceipt("carol", Grain(4)),)

    def test_special_unknown_recipient(self) -> None:
        policy = SpecialPolicy(Grain(4), memo="", recipients=("mallory",))
        with pytest.raises(UnknownRecipient):
            compute_allocation(policy, _view(), _day(15))

    def test_every_policy_type_has_receipt_function(self) -> None:
        assert set(RECEIPT_FUNCTIONS) == set(PolicyType)

    def test_missing_receipt_function_is_type_error(self, monkeypatch) -> None:
        monkeypatch.delitem(RECEIPT_FUNCTIONS, PolicyType.RECENT)
        with pytest.raises(TypeError, match="Unknown policy type"):
            compute_allocation(RecentPolicy(Grain(1), decay_rate=0.5), _view(), _day(15))


class TestComputeAllocationSpecial:
    IDENTITIES = [
        Identity(id="alice", name="alice", subtype=IdentitySubtype.USER),
        Identity(id="bob", name="bob", subtype=IdentitySubtype.BOT),
    ]

    def test_special_without_view(self) -> None:
        policy = SpecialPolicy(Grain(10), memo="grant", recipients=("bob", "alice"))
        allocation = compute_allocation_special(policy, self.IDENTITIES)
        assert allocation.receipts == (
            GrainReceipt("bob", Grain(5)),
            GrainReceipt("alice", Grain(5)),
        )
        assert allocation.policy is policy

    def test_rejects_other_policy_types(self) -> None:
        with pytest.raises(SpecialPolicyRequired, match="Got: IMMEDIATE"):
            compute_allocation_special(ImmediatePolicy(Grain(1)), self.IDENTITIES)

    def test_still_validates_shape(self) -> None:
        with pytest.raises(InvalidPolicy):
            compute_allocation_special(BalancedPolicy(budget="10"), self.IDENTITIES)


class TestConservation:
    def test_short_allocation_rejected(self) -> None:
        allocation = Allocation(
            id="a1",
            policy=ImmediatePolicy(Grain(10)),
            receipts=(GrainReceipt("alice", Grain(9)),),
        )
        with pytest.raises(BudgetConservationViolated, match="budget of 10 but distributed 9"):
            validate_allocation_budget(allocation)

    def test_exact_allocation_passes(self) -> None:
        allocation = Allocation(
            id="a1",
            policy=ImmediatePolicy(Grain(10)),
            receipts=(GrainReceipt("alice", Grain(4)), GrainReceipt("bob", Grain(6))),
        )
        assert validate_allocation_budget(allocation) is allocation
