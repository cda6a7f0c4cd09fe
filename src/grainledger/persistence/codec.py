"""Structural encoding of policies, allocations and distributions.

Records are plain JSON-compatible dicts. Object keys are order
independent; the receipts and allocations lists keep their order.
Grain is written as its base-unit integer string so no JSON number type
can lose precision. Timestamps are ISO-8601 with their UTC offset.

Decoding is fail-closed: a decoded allocation must still conserve its
budget, so a tampered record raises BudgetConservationViolated rather
than entering the ledger.

    {"id": "...", "cred_timestamp": "2026-01-04T00:00:00+00:00",
     "allocations": [
        {"id": "...",
         "policy": {"policy_type": "IMMEDIATE", "budget": "100",
                    "num_intervals_lookback": 1},
         "receipts": [{"id": "...", "amount": "100"}]}]}
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Mapping

from grainledger.allocation.engine import validate_allocation_budget, validate_policy
from grainledger.errors import InvalidGrainAmount, InvalidPolicy, MalformedRecord
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
from grainledger.models.grain import Grain


def policy_to_dict(policy: AllocationPolicy) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "policy_type": policy.policy_type.value,
        "budget": str(policy.budget),
    }
    if isinstance(policy, (ImmediatePolicy, BalancedPolicy)):
        data["num_intervals_lookback"] = policy.num_intervals_lookback
    elif isinstance(policy, RecentPolicy):
        data["decay_rate"] = policy.decay_rate
    elif isinstance(policy, SpecialPolicy):
        data["memo"] = policy.memo
        data["recipients"] = list(policy.recipients)
        data["weights"] = list(policy.weights) if policy.weights is not None else None
    return data


def policy_from_dict(
    data: Mapping[str, Any],
    parse_budget: Callable[[Any], Grain] = Grain.parse,
) -> AllocationPolicy:
    """Decode a policy dict. Raises InvalidPolicy on any shape problem.

    parse_budget defaults to the base-unit form; configuration files pass
    Grain.of to write budgets in whole Grain.
    """
    if not isinstance(data, Mapping):
        raise InvalidPolicy(f"Policy must be an object, got {data!r}")
    try:
        policy_type = PolicyType(data["policy_type"])
        budget = parse_budget(data["budget"])
    except KeyError as exc:
        raise InvalidPolicy(f"Policy is missing field {exc.args[0]!r}") from exc
    except InvalidGrainAmount as exc:
        raise InvalidPolicy(f"invalid budget: {exc}") from exc
    except ValueError as exc:
        raise InvalidPolicy(f"Unknown policy type: {data.get('policy_type')!r}") from exc

    if policy_type == PolicyType.IMMEDIATE:
        return ImmediatePolicy(
            budget=budget,
            num_intervals_lookback=data.get("num_intervals_lookback", 1),
        )
    if policy_type == PolicyType.RECENT:
        if "decay_rate" not in data:
            raise InvalidPolicy("RECENT policy is missing field 'decay_rate'")
        return RecentPolicy(budget=budget, decay_rate=data["decay_rate"])
    if policy_type == PolicyType.BALANCED:
        return BalancedPolicy(
            budget=budget,
            num_intervals_lookback=data.get("num_intervals_lookback", 0),
        )
    recipients = data.get("recipients")
    weights = data.get("weights")
    if not isinstance(recipients, list):
        raise InvalidPolicy("SPECIAL policy needs a 'recipients' list")
    if weights is not None and not isinstance(weights, list):
        raise InvalidPolicy("SPECIAL policy 'weights' must be a list")
    return SpecialPolicy(
        budget=budget,
        memo=data.get("memo", ""),
        recipients=tuple(recipients),
        weights=tuple(weights) if weights is not None else None,
    )


def allocation_to_dict(allocation: Allocation) -> Dict[str, Any]:
    return {
        "id": allocation.id,
        "policy": policy_to_dict(allocation.policy),
        "receipts": [
            {"id": r.id, "amount": str(r.amount)} for r in allocation.receipts
        ],
    }


def allocation_from_dict(data: Mapping[str, Any]) -> Allocation:
    _require_fields(data, ("id", "policy", "receipts"), "allocation")
    receipts = data["receipts"]
    if not isinstance(receipts, list):
        raise MalformedRecord("allocation 'receipts' must be a list")
    decoded = []
    for receipt in receipts:
        _require_fields(receipt, ("id", "amount"), "receipt")
        decoded.append(
            GrainReceipt(id=_uuid(receipt["id"]), amount=Grain.parse(receipt["amount"]))
        )
    return validate_allocation_budget(
        Allocation(
            id=_uuid(data["id"]),
            policy=validate_policy(policy_from_dict(data["policy"])),
            receipts=tuple(decoded),
        )
    )


def distribution_to_dict(distribution: Distribution) -> Dict[str, Any]:
    return {
        "id": distribution.id,
        "allocations": [allocation_to_dict(a) for a in distribution.allocations],
        "cred_timestamp": distribution.cred_timestamp.isoformat(),
    }


def distribution_from_dict(data: Mapping[str, Any]) -> Distribution:
    _require_fields(data, ("id", "allocations", "cred_timestamp"), "distribution")
    allocations = data["allocations"]
    if not isinstance(allocations, list):
        raise MalformedRecord("distribution 'allocations' must be a list")
    try:
        cred_timestamp = datetime.fromisoformat(data["cred_timestamp"])
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(
            f"Invalid cred_timestamp: {data['cred_timestamp']!r}"
        ) from exc
    return Distribution(
        id=_uuid(data["id"]),
        allocations=tuple(allocation_from_dict(a) for a in allocations),
        cred_timestamp=cred_timestamp,
    )


def _require_fields(data: Any, fields: tuple, label: str) -> None:
    if not isinstance(data, Mapping):
        raise MalformedRecord(f"{label} must be an object, got {data!r}")
    missing = [name for name in fields if name not in data]
    if missing:
        raise MalformedRecord(f"{label} is missing fields: {', '.join(missing)}")


def _uuid(value: Any) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as exc:
        raise MalformedRecord(f"Invalid UUID: {value!r}") from exc
