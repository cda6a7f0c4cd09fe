"""Cred/Grain view — the read-only score source for Grain allocation.

Cred is computed elsewhere. This module only consumes it: a sequence of
scoring intervals, and for each identity one Cred score per interval.
The view joins those scores with the ledger's account state (activity
and Grain already earned per interval) so that allocation policies can
be pure functions of (policy, view, effective timestamp).

Merge handling: scores reported under a merged-away identity id are
folded into the surviving base identity, so merged history is counted
exactly once.

Precondition (validate_for_grain_allocation):
- at least one interval, each with start < end, ascending, non-overlapping
- every participant has exactly one Cred value and one Grain value per interval
- every interval timestamp carries a UTC offset
- every Cred value is a finite non-negative number (int, float, Decimal, Fraction)
- at least one interval has completed by the effective timestamp
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from grainledger.errors import ScoreSourceNotReady
from grainledger.models.grain import ZERO, Grain, to_fraction
from grainledger.models.identity import Identity, IdentityId

if TYPE_CHECKING:
    from grainledger.ledger.ledger import Ledger


@dataclass(frozen=True)
class Interval:
    """A scoring interval. Cred earned in it is known once end has passed."""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class CredParticipant:
    """One identity's Cred and Grain history, aligned to the view's intervals."""
    identity: Identity
    active: bool
    cred_per_interval: Tuple[float, ...]
    grain_earned_per_interval: Tuple[Grain, ...]

    @property
    def id(self) -> IdentityId:
        return self.identity.id


@dataclass(frozen=True)
class CredScores:
    """Externally computed Cred: intervals plus a score series per identity id."""
    intervals: Tuple[Interval, ...]
    scores: Mapping[IdentityId, Tuple[float, ...]]

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> CredScores:
        """Decode the JSON form:

            {"intervals": [{"start": iso, "end": iso}, ...],
             "scores": {identity_id: [cred, ...], ...}}
        """
        try:
            intervals = tuple(
                Interval(
                    start=datetime.fromisoformat(i["start"]),
                    end=datetime.fromisoformat(i["end"]),
                )
                for i in data["intervals"]
            )
            scores = {
                str(identity_id): tuple(series)
                for identity_id, series in data["scores"].items()
            }
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ScoreSourceNotReady(f"Malformed Cred scores: {exc}") from exc
        _require_utc_offsets(intervals)
        return CredScores(intervals=intervals, scores=scores)


class CredGrainView:
    """Participants with their Cred and Grain histories over shared intervals.

    Usage:
        view = CredGrainView.from_ledger(ledger, cred_scores)
        view.validate_for_grain_allocation(effective_timestamp)
        for participant in view.active_participants():
            ...
    """

    def __init__(
        self,
        participants: Sequence[CredParticipant],
        intervals: Sequence[Interval],
    ) -> None:
        self._participants = tuple(participants)
        self._intervals = tuple(intervals)

    @property
    def participants(self) -> Tuple[CredParticipant, ...]:
        return self._participants

    @property
    def intervals(self) -> Tuple[Interval, ...]:
        return self._intervals

    def active_participants(self) -> List[CredParticipant]:
        return [p for p in self._participants if p.active]

    def completed_interval_count(self, effective_timestamp: datetime) -> int:
        """Number of leading intervals whose end is at or before the timestamp."""
        ends = [i.end for i in self._intervals]
        return bisect.bisect_right(ends, effective_timestamp)

    def interval_index_for(self, timestamp: datetime) -> int:
        """Index of the interval containing timestamp (start < ts <= end).

        Timestamps outside the covered range clamp to the first or last
        interval.
        """
        if not self._intervals:
            raise ScoreSourceNotReady("Cred view has no intervals")
        ends = [i.end for i in self._intervals]
        return min(bisect.bisect_left(ends, timestamp), len(ends) - 1)

    def validate_for_grain_allocation(
        self,
        effective_timestamp: Optional[datetime] = None,
    ) -> None:
        """Fail fast if the view cannot support a Grain allocation.

        Raises ScoreSourceNotReady describing the first problem found.
        """
        if not self._intervals:
            raise ScoreSourceNotReady("Cred view has no intervals")

        previous_end: Optional[datetime] = None
        _require_utc_offsets(self._intervals)
        for index, interval in enumerate(self._intervals):
            if interval.start >= interval.end:
                raise ScoreSourceNotReady(
                    f"Interval {index} does not end after it starts: "
                    f"{interval.start.isoformat()} >= {interval.end.isoformat()}"
                )
            if previous_end is not None and interval.start < previous_end:
                raise ScoreSourceNotReady(
                    f"Interval {index} overlaps or precedes interval {index - 1}"
                )
            previous_end = interval.end

        count = len(self._intervals)
        seen: set[str] = set()
        for participant in self._participants:
            if participant.id in seen:
                raise ScoreSourceNotReady(f"Duplicate participant: {participant.id}")
            seen.add(participant.id)
            if len(participant.cred_per_interval) != count:
                raise ScoreSourceNotReady(
                    f"Participant {participant.id} has "
                    f"{len(participant.cred_per_interval)} Cred scores for {count} intervals"
                )
            if len(participant.grain_earned_per_interval) != count:
                raise ScoreSourceNotReady(
                    f"Participant {participant.id} has "
                    f"{len(participant.grain_earned_per_interval)} Grain entries "
                    f"for {count} intervals"
                )
            for cred in participant.cred_per_interval:
                if not _is_valid_cred(cred):
                    raise ScoreSourceNotReady(
                        f"Participant {participant.id} has invalid Cred score {cred!r}"
                    )

        if effective_timestamp is not None:
            if effective_timestamp.tzinfo is None:
                raise ScoreSourceNotReady(
                    f"Effective timestamp {effective_timestamp.isoformat()} has no UTC offset"
                )
            if self.completed_interval_count(effective_timestamp) == 0:
                raise ScoreSourceNotReady(
                    f"No Cred interval has completed by {effective_timestamp.isoformat()}"
                )

    @classmethod
    def from_ledger(cls, ledger: Ledger, cred_scores: CredScores) -> CredGrainView:
        """Join externally computed Cred with the ledger's accounts.

        Every live account becomes a participant, in ledger order.
        Score series keyed by a merged-away id are added to the base
        identity's series. Grain earned per interval is rebuilt from the
        ledger's distribution history.

        Raises UnknownIdentity if a score series names an identity the
        ledger has never seen.
        """
        intervals = tuple(cred_scores.intervals)
        count = len(intervals)
        _require_utc_offsets(intervals)

        cred: Dict[IdentityId, List[float]] = {}
        for identity_id, series in cred_scores.scores.items():
            base_id = ledger.resolve_id(identity_id)
            if len(series) != count:
                raise ScoreSourceNotReady(
                    f"Cred series for {identity_id} has {len(series)} scores "
                    f"for {count} intervals"
                )
            for value in series:
                if not _is_valid_cred(value):
                    raise ScoreSourceNotReady(
                        f"Participant {identity_id} has invalid Cred score {value!r}"
                    )
            if base_id in cred:
                cred[base_id] = [a + b for a, b in zip(cred[base_id], series)]
            else:
                cred[base_id] = list(series)

        earned: Dict[IdentityId, List[Grain]] = {}
        partial = cls([], intervals)
        for distribution in ledger.distributions():
            if not count:
                break
            index = partial.interval_index_for(distribution.cred_timestamp)
            for receipt in distribution.receipts():
                base_id = ledger.resolve_id(receipt.id)
                row = earned.setdefault(base_id, [ZERO] * count)
                row[index] = row[index] + receipt.amount

        participants = [
            CredParticipant(
                identity=account.identity,
                active=account.active,
                cred_per_interval=tuple(cred.get(account.id, [0.0] * count)),
                grain_earned_per_interval=tuple(earned.get(account.id, [ZERO] * count)),
            )
            for account in ledger.accounts()
        ]
        return cls(participants, intervals)


def _is_valid_cred(value: Any) -> bool:
    # Same rule the policies apply when they weight Cred
    try:
        to_fraction(value)
    except ValueError:
        return False
    return True


def _require_utc_offsets(intervals: Sequence[Interval]) -> None:
    for index, interval in enumerate(intervals):
        if interval.start.tzinfo is None or interval.end.tzinfo is None:
            raise ScoreSourceNotReady(
                f"Interval {index} has a timestamp without a UTC offset"
            )
