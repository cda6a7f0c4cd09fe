"""Tests for the Cred/Grain view — proves the allocation precondition and ledger join."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from fractions import Fraction

from grainledger.allocation.distribution import create_distribution
from grainledger.allocation.engine import compute_allocation, compute_allocation_special
from grainledger.cred.view import CredGrainView, CredParticipant, CredScores, Interval
from grainledger.errors import ScoreSourceNotReady, UnknownIdentity
from grainledger.ledger.ledger import Ledger
from grainledger.models.allocation import BalancedPolicy, SpecialPolicy
from grainledger.models.grain import ZERO, Grain
from grainledger.models.identity import Identity, IdentitySubtype


def _day(day: int) -> datetime:
    return datetime(2026, 1, day, tzinfo=timezone.utc)


INTERVALS = (Interval(_day(1), _day(8)), Interval(_day(8), _day(15)))


def _participant(identity_id: str, cred, grain=None) -> CredParticipant:
    return CredParticipant(
        identity=Identity(id=identity_id, name=identity_id, subtype=IdentitySubtype.USER),
        active=True,
        cred_per_interval=tuple(cred),
        grain_earned_per_interval=tuple(grain if grain is not None else [ZERO] * len(cred)),
    )


def _scores(scores: dict) -> CredScores:
    return CredScores(intervals=INTERVALS, scores=scores)


class TestCredScores:
    def test_from_dict(self) -> None:
        scores = CredScores.from_dict({
            "intervals": [
                {"start": "2026-01-01T00:00:00+00:00", "end": "2026-01-08T00:00:00+00:00"},
            ],
            "scores": {"abc": [1.5]},
        })
        assert scores.intervals == (Interval(_day(1), _day(8)),)
        assert scores.scores == {"abc": (1.5,)}

    def test_malformed(self) -> None:
        bad_inputs = [
            {},
            {"intervals": [], "scores": []},
            {"intervals": [{"start": "yesterday", "end": "today"}], "scores": {}},
            {"intervals": [{"start": "2026-01-01T00:00:00+00:00"}], "scores": {}},
        ]
        for data in bad_inputs:
            with pytest.raises(ScoreSourceNotReady, match="Malformed"):
                CredScores.from_dict(data)

    def test_naive_timestamps_rejected(self) -> None:
        data = {
            "intervals": [{"start": "2026-01-01T00:00:00", "end": "2026-01-08T00:00:00"}],
            "scores": {},
        }
        with pytest.raises(ScoreSourceNotReady, match="UTC offset"):
            CredScores.from_dict(data)


class TestValidateForGrainAllocation:
    def test_valid_view_passes(self) -> None:
        view = CredGrainView([_participant("a", [1, 2])], INTERVALS)
        view.validate_for_grain_allocation(_day(8))

    def test_no_intervals(self) -> None:
        with pytest.raises(ScoreSourceNotReady, match="no intervals"):
            CredGrainView([], []).validate_for_grain_allocation()

    def test_empty_interval(self) -> None:
        view = CredGrainView([], [Interval(_day(8), _day(8))])
        with pytest.raises(ScoreSourceNotReady, match="does not end after"):
            view.validate_for_grain_allocation()

    def test_overlapping_intervals(self) -> None:
        view = CredGrainView([], [Interval(_day(1), _day(8)), Interval(_day(7), _day(15))])
        with pytest.raises(ScoreSourceNotReady, match="overlaps"):
            view.validate_for_grain_allocation()

    def test_duplicate_participant(self) -> None:
        view = CredGrainView([_participant("a", [1, 1]), _participant("a", [1, 1])], INTERVALS)
        with pytest.raises(ScoreSourceNotReady, match="Duplicate participant"):
            view.validate_for_grain_allocation()

    def test_series_length_mismatch(self) -> None:
        view = CredGrainView([_participant("a", [1, 1, 1])], INTERVALS)
        with pytest.raises(ScoreSourceNotReady, match="3 Cred scores for 2 intervals"):
            view.validate_for_grain_allocation()
        view = CredGrainView([_participant("a", [1, 1], grain=[ZERO])], INTERVALS)
        with pytest.raises(ScoreSourceNotReady, match="Grain entries"):
            view.validate_for_grain_allocation()

    def test_invalid_cred(self) -> None:
        for bad in (-1, float("nan"), float("inf"), True, "x", None):
            view = CredGrainView([_participant("a", [1, bad])], INTERVALS)
            with pytest.raises(ScoreSourceNotReady, match="invalid Cred"):
                view.validate_for_grain_allocation()

    def test_numeric_strings_are_not_cred(self) -> None:
        for bad in ("1", "0.5", b"1"):
            view = CredGrainView([_participant("a", [1, bad])], INTERVALS)
            with pytest.raises(ScoreSourceNotReady, match="invalid Cred"):
                view.validate_for_grain_allocation()

    def test_exact_number_types_are_cred(self) -> None:
        view = CredGrainView([_participant("a", [Decimal("1.5"), Fraction(1, 3)])], INTERVALS)
        view.validate_for_grain_allocation(_day(8))

    def test_no_completed_interval(self) -> None:
        view = CredGrainView([_participant("a", [1, 1])], INTERVALS)
        with pytest.raises(ScoreSourceNotReady, match="No Cred interval"):
            view.validate_for_grain_allocation(_day(7))

    def test_naive_interval(self) -> None:
        naive = Interval(datetime(2026, 1, 1), datetime(2026, 1, 8))
        view = CredGrainView([_participant("a", [1])], [naive])
        with pytest.raises(ScoreSourceNotReady, match="UTC offset"):
            view.validate_for_grain_allocation()

    def test_naive_effective_timestamp(self) -> None:
        view = CredGrainView([_participant("a", [1, 1])], INTERVALS)
        with pytest.raises(ScoreSourceNotReady, match="UTC offset"):
            view.validate_for_grain_allocation(datetime(2026, 1, 20))


class TestIntervalLookup:
    VIEW = CredGrainView([], INTERVALS)

    def test_completed_interval_count(self) -> None:
        assert self.VIEW.completed_interval_count(_day(1)) == 0
        assert self.VIEW.completed_interval_count(_day(8)) == 1
        assert self.VIEW.completed_interval_count(_day(14)) == 1
        assert self.VIEW.completed_interval_count(_day(30)) == 2

    def test_interval_index_for(self) -> None:
        assert self.VIEW.interval_index_for(_day(2)) == 0
        assert self.VIEW.interval_index_for(_day(8)) == 0
        assert self.VIEW.interval_index_for(_day(9)) == 1
        assert self.VIEW.interval_index_for(_day(30)) == 1


class TestFromLedger:
    def test_participants_follow_ledger(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        bob = ledger.create_identity(IdentitySubtype.USER, "bob")
        ledger.activate(alice)

        view = CredGrainView.from_ledger(ledger, _scores({alice: [1, 2]}))

        assert [p.id for p in view.participants] == [alice, bob]
        assert [p.id for p in view.active_participants()] == [alice]
        assert view.participants[0].cred_per_interval == (1, 2)
        assert view.participants[1].cred_per_interval == (0.0, 0.0)
        view.validate_for_grain_allocation(_day(15))

    def test_unknown_score_id(self) -> None:
        ledger = Ledger()
        with pytest.raises(UnknownIdentity):
            CredGrainView.from_ledger(ledger, _scores({"nobody": [1, 1]}))

    def test_score_length_mismatch(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        with pytest.raises(ScoreSourceNotReady):
            CredGrainView.from_ledger(ledger, _scores({alice: [1]}))

    def test_string_scores_rejected_before_merging(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        alt = ledger.create_identity(IdentitySubtype.USER, "alice-alt")
        ledger.merge_identities(alice, alt)
        with pytest.raises(ScoreSourceNotReady, match="invalid Cred"):
            CredGrainView.from_ledger(ledger, _scores({alice: ["1", 1], alt: ["1", 1]}))

    def test_naive_intervals_rejected_with_history(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        policy = SpecialPolicy(Grain(5), memo="", recipients=(alice,))
        allocation = compute_allocation_special(policy, ledger.identities())
        ledger.distribute_grain(create_distribution([allocation], _day(8)))
        naive = CredScores(
            intervals=(Interval(datetime(2026, 1, 1), datetime(2026, 1, 8)),),
            scores={alice: [1]},
        )
        with pytest.raises(ScoreSourceNotReady, match="UTC offset"):
            CredGrainView.from_ledger(ledger, naive)

    def test_grain_earned_per_interval(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        for amount, day in ((3, 8), (5, 15)):
            policy = SpecialPolicy(Grain(amount), memo="", recipients=(alice,))
            allocation = compute_allocation_special(policy, ledger.identities())
            ledger.distribute_grain(create_distribution([allocation], _day(day)))

        view = CredGrainView.from_ledger(ledger, _scores({alice: [1, 1]}))
        assert view.participants[0].grain_earned_per_interval == (Grain(3), Grain(5))

    def test_merged_cred_counted_once(self) -> None:
        ledger = Ledger()
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        alt = ledger.create_identity(IdentitySubtype.USER, "alice-alt")
        bob = ledger.create_identity(IdentitySubtype.USER, "bob")
        for identity_id in (alice, alt, bob):
            ledger.activate(identity_id)
        policy = SpecialPolicy(Grain(4), memo="", recipients=(alt,))
        allocation = compute_allocation_special(policy, ledger.identities())
        ledger.distribute_grain(create_distribution([allocation], _day(8)))
        ledger.merge_identities(alice, alt)

        scores = _scores({alice: [1, 0], alt: [1, 0], bob: [2, 0]})
        view = CredGrainView.from_ledger(ledger, scores)

        assert [p.id for p in view.participants] == [alice, bob]
        assert view.participants[0].cred_per_interval == (2, 0)
        assert view.participants[0].grain_earned_per_interval == (Grain(4), ZERO)

        # Pool 14 split evenly by Cred: alice is owed 7 - 4, bob 7
        allocation = compute_allocation(BalancedPolicy(Grain(10)), view, _day(15))
        amounts = {r.id: r.amount for r in allocation.receipts}
        assert amounts == {alice: Grain(3), bob: Grain(7)}
