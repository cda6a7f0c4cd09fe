"""Ledger — the event-sourced system of record for identities and Grain.

Every mutation is validated, recorded as one EventRecord in the
append-only EventLog, then folded into the in-memory account state.
Constructing a Ledger over an existing log replays it, so the current
accounts are always exactly the fold of the log.

Mutations:
    create_identity    → IDENTITY_CREATED
    rename_identity    → IDENTITY_RENAMED
    add_alias          → ALIAS_ADDED
    activate           → IDENTITY_ACTIVATED
    deactivate         → IDENTITY_DEACTIVATED
    merge_identities   → IDENTITIES_MERGED
    distribute_grain   → DISTRIBUTION_APPLIED
    transfer_grain     → GRAIN_TRANSFERRED

Invariants enforced:
- Mutations are serialized (one at a time) by an internal lock.
- A distribution is applied whole or not at all; its id is never applied
  twice and its cred_timestamp must be strictly after the previous one.
- No balance ever goes negative.
- A merged-away id never becomes a standalone account again; lookups
  through resolve_id reach the surviving base identity.
"""

from __future__ import annotations

import re
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from grainledger.allocation.engine import validate_allocation_budget
from grainledger.errors import (
    AliasConflict,
    DistributionConflict,
    DuplicateIdentityName,
    InsufficientBalance,
    InvalidGrainAmount,
    InvalidMerge,
    UnknownIdentity,
)
from grainledger.models.allocation import Distribution
from grainledger.models.grain import ZERO, Grain
from grainledger.models.identity import (
    Account,
    Identity,
    IdentityId,
    IdentitySubtype,
    new_identity_id,
    validate_identity_name,
)
from grainledger.persistence.codec import distribution_from_dict, distribution_to_dict
from grainledger.persistence.event_log import EventKind, EventLog, EventRecord


class Ledger:
    """Identities, accounts and applied distributions, folded from an event log.

    Usage:
        ledger = Ledger()                       # in-memory
        ledger = Ledger.from_path(path)         # durable, replays the file
        alice = ledger.create_identity(IdentitySubtype.USER, "alice")
        ledger.activate(alice)
        ledger.distribute_grain(distribution)
    """

    def __init__(
        self,
        event_log: Optional[EventLog] = None,
        actor_id: str = "ledger",
    ) -> None:
        self._event_log = event_log if event_log is not None else EventLog()
        self._actor_id = actor_id
        self._lock = threading.Lock()

        self._accounts: Dict[IdentityId, Account] = {}
        self._names: Dict[str, IdentityId] = {}
        self._aliases: Dict[str, IdentityId] = {}
        self._merged_into: Dict[IdentityId, IdentityId] = {}
        self._distributions: List[Distribution] = []
        self._distribution_ids: set[str] = set()

        for event in self._event_log.events():
            self._apply(event)

    @classmethod
    def from_path(cls, storage_path: Path, actor_id: str = "ledger") -> Ledger:
        return cls(EventLog(storage_path=storage_path), actor_id=actor_id)

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------ #
    # Read model                                                          #
    # ------------------------------------------------------------------ #

    def accounts(self) -> List[Account]:
        """Snapshot of all live accounts, in creation order."""
        return list(self._accounts.values())

    def account(self, identity_id: IdentityId) -> Account:
        """Return the live account for an id.

        Raises UnknownIdentity for unknown ids and for ids that have been
        merged away (use resolve_id to follow a merge).
        """
        account = self._accounts.get(identity_id)
        if account is None:
            if identity_id in self._merged_into:
                raise UnknownIdentity(
                    f"Identity {identity_id} was merged into {self.resolve_id(identity_id)}"
                )
            raise UnknownIdentity(f"Unknown identity: {identity_id}")
        return account

    def account_by_name(self, name: str) -> Account:
        identity_id = self._names.get(name.lower())
        if identity_id is None:
            raise UnknownIdentity(f"No identity named {name!r}")
        return self._accounts[identity_id]

    def identities(self) -> List[Identity]:
        return [a.identity for a in self._accounts.values()]

    def search_accounts(self, text: str) -> List[Account]:
        """Accounts whose name contains the letters of text, in order.

        The letters need not be adjacent: "al" matches "alice" and
        "carl". Case-insensitive.
        """
        pattern = re.compile(".*".join(re.escape(c) for c in text.strip().lower()))
        return [
            a for a in self._accounts.values()
            if pattern.search(a.identity.name.lower())
        ]

    def resolve_id(self, identity_id: IdentityId) -> IdentityId:
        """Follow merges from identity_id to the live account that absorbed it."""
        seen = set()
        while identity_id in self._merged_into:
            if identity_id in seen:
                raise InvalidMerge(f"Merge cycle at {identity_id}")
            seen.add(identity_id)
            identity_id = self._merged_into[identity_id]
        if identity_id not in self._accounts:
            raise UnknownIdentity(f"Unknown identity: {identity_id}")
        return identity_id

    def distributions(self) -> List[Distribution]:
        return list(self._distributions)

    def last_distribution_timestamp(self) -> Optional[datetime]:
        if not self._distributions:
            return None
        return self._distributions[-1].cred_timestamp

    # ------------------------------------------------------------------ #
    # Mutations                                                           #
    # ------------------------------------------------------------------ #

    def create_identity(self, subtype: IdentitySubtype, name: str) -> IdentityId:
        """Create an identity and its (inactive) account. Returns the new id."""
        subtype = IdentitySubtype(subtype)
        with self._lock:
            validate_identity_name(name)
            self._check_name_free(name)
            identity_id = new_identity_id()
            self._record(EventKind.IDENTITY_CREATED, {
                "identity_id": identity_id,
                "name": name,
                "subtype": subtype.value,
            })
        return identity_id

    def rename_identity(self, identity_id: IdentityId, name: str) -> Ledger:
        with self._lock:
            self.account(identity_id)
            validate_identity_name(name)
            self._check_name_free(name, allow=identity_id)
            self._record(EventKind.IDENTITY_RENAMED, {
                "identity_id": identity_id,
                "name": name,
            })
        return self

    def add_alias(self, identity_id: IdentityId, alias: str) -> Ledger:
        """Attach an external identifier to an identity.

        Raises AliasConflict if any identity (this one included) already
        claims the alias.
        """
        with self._lock:
            self.account(identity_id)
            if not isinstance(alias, str) or not alias.strip():
                raise AliasConflict(f"Alias must be a non-empty string, got {alias!r}")
            owner = self._aliases.get(alias)
            if owner is not None:
                raise AliasConflict(f"Alias {alias!r} is already claimed by {owner}")
            self._record(EventKind.ALIAS_ADDED, {
                "identity_id": identity_id,
                "alias": alias,
            })
        return self

    def activate(self, identity_id: IdentityId) -> Ledger:
        return self._set_active(identity_id, True)

    def deactivate(self, identity_id: IdentityId) -> Ledger:
        return self._set_active(identity_id, False)

    def merge_identities(self, base: IdentityId, target: IdentityId) -> Ledger:
        """Fold target into base and retire target as a standalone account.

        base receives target's balance, paid total and aliases; target's id
        becomes an alias of base. base stays active if either was active.
        """
        with self._lock:
            if base == target:
                raise InvalidMerge(f"Cannot merge identity {base} with itself")
            for identity_id in (base, target):
                if identity_id in self._merged_into:
                    raise InvalidMerge(f"Identity {identity_id} has already been merged")
            self.account(base)
            self.account(target)
            self._record(EventKind.IDENTITIES_MERGED, {"base": base, "target": target})
        return self

    def distribute_grain(self, distribution: Distribution) -> Ledger:
        """Apply a distribution to the accounts, all or nothing.

        Raises:
            DistributionConflict: If the distribution was already applied
                or is not strictly later than the last one.
            BudgetConservationViolated: If any allocation fails to conserve.
            UnknownIdentity: If a receipt cannot be resolved to an account.
        """
        with self._lock:
            if distribution.id in self._distribution_ids:
                raise DistributionConflict(
                    f"Distribution {distribution.id} has already been applied"
                )
            last = self.last_distribution_timestamp()
            if last is not None and distribution.cred_timestamp <= last:
                raise DistributionConflict(
                    f"Distribution {distribution.id} at "
                    f"{distribution.cred_timestamp.isoformat()} is not after the "
                    f"last distribution at {last.isoformat()}"
                )
            for allocation in distribution.allocations:
                validate_allocation_budget(allocation)
            for receipt in distribution.receipts():
                self.resolve_id(receipt.id)
            record = distribution_to_dict(distribution)
            # The fold decodes the stored record, so it must decode now
            distribution_from_dict(record)
            self._record(EventKind.DISTRIBUTION_APPLIED, {"distribution": record})
        return self

    def transfer_grain(
        self,
        from_id: IdentityId,
        to_id: IdentityId,
        amount: Grain,
        memo: str = "",
    ) -> Ledger:
        """Move Grain between accounts. paid totals are unaffected."""
        with self._lock:
            sender = self.account(from_id)
            self.account(to_id)
            if not isinstance(amount, Grain) or amount == ZERO:
                raise InvalidGrainAmount(f"Transfer amount must be positive Grain, got {amount!r}")
            if from_id == to_id:
                raise InvalidGrainAmount("Cannot transfer Grain to the same account")
            if sender.balance < amount:
                raise InsufficientBalance(
                    f"Account {from_id} has {sender.balance} but tried to send {amount}"
                )
            self._record(EventKind.GRAIN_TRANSFERRED, {
                "from": from_id,
                "to": to_id,
                "amount": str(amount),
                "memo": memo,
            })
        return self

    # ------------------------------------------------------------------ #
    # Event recording and folding                                         #
    # ------------------------------------------------------------------ #

    def _set_active(self, identity_id: IdentityId, active: bool) -> Ledger:
        with self._lock:
            self.account(identity_id)
            kind = EventKind.IDENTITY_ACTIVATED if active else EventKind.IDENTITY_DEACTIVATED
            self._record(kind, {"identity_id": identity_id})
        return self

    def _check_name_free(self, name: str, allow: Optional[IdentityId] = None) -> None:
        owner = self._names.get(name.lower())
        if owner is not None and owner != allow:
            raise DuplicateIdentityName(f"Identity name {name!r} is already taken")

    def _record(self, kind: EventKind, payload: dict[str, Any]) -> None:
        event = EventRecord.create(
            event_id=str(uuid.uuid4()),
            event_kind=kind,
            actor_id=self._actor_id,
            payload=payload,
        )
        self._event_log.append(event)
        self._apply(event)

    def _apply(self, event: EventRecord) -> None:
        handler = self._FOLDS[event.event_kind]
        handler(self, event.payload)

    def _fold_identity_created(self, payload: dict[str, Any]) -> None:
        identity = Identity(
            id=payload["identity_id"],
            name=payload["name"],
            subtype=IdentitySubtype(payload["subtype"]),
        )
        self._accounts[identity.id] = Account(identity=identity)
        self._names[identity.name.lower()] = identity.id

    def _fold_identity_renamed(self, payload: dict[str, Any]) -> None:
        account = self._accounts[payload["identity_id"]]
        del self._names[account.identity.name.lower()]
        self._replace(account, identity=account.identity.renamed(payload["name"]))
        self._names[payload["name"].lower()] = account.id

    def _fold_alias_added(self, payload: dict[str, Any]) -> None:
        account = self._accounts[payload["identity_id"]]
        self._replace(account, identity=account.identity.with_aliases([payload["alias"]]))
        self._aliases[payload["alias"]] = account.id

    def _fold_identity_activated(self, payload: dict[str, Any]) -> None:
        self._replace(self._accounts[payload["identity_id"]], active=True)

    def _fold_identity_deactivated(self, payload: dict[str, Any]) -> None:
        self._replace(self._accounts[payload["identity_id"]], active=False)

    def _fold_identities_merged(self, payload: dict[str, Any]) -> None:
        base = self._accounts[payload["base"]]
        target = self._accounts.pop(payload["target"])
        del self._names[target.identity.name.lower()]

        absorbed = set(target.identity.aliases) | {target.id}
        for alias in absorbed:
            self._aliases[alias] = base.id
        self._merged_into[target.id] = base.id

        self._replace(
            base,
            identity=base.identity.with_aliases(absorbed),
            active=base.active or target.active,
            balance=base.balance + target.balance,
            paid=base.paid + target.paid,
        )

    def _fold_distribution_applied(self, payload: dict[str, Any]) -> None:
        distribution = distribution_from_dict(payload["distribution"])
        for receipt in distribution.receipts():
            account = self._accounts[self.resolve_id(receipt.id)]
            self._replace(
                account,
                balance=account.balance + receipt.amount,
                paid=account.paid + receipt.amount,
            )
        self._distributions.append(distribution)
        self._distribution_ids.add(distribution.id)

    def _fold_grain_transferred(self, payload: dict[str, Any]) -> None:
        amount = Grain.parse(payload["amount"])
        sender = self._accounts[payload["from"]]
        self._replace(sender, balance=sender.balance - amount)
        receiver = self._accounts[payload["to"]]
        self._replace(receiver, balance=receiver.balance + amount)

    def _replace(self, account: Account, **changes: Any) -> None:
        self._accounts[account.id] = Account(
            identity=changes.get("identity", account.identity),
            active=changes.get("active", account.active),
            balance=changes.get("balance", account.balance),
            paid=changes.get("paid", account.paid),
        )

    _FOLDS: Dict[EventKind, Callable[[Ledger, dict[str, Any]], None]] = {
        EventKind.IDENTITY_CREATED: _fold_identity_created,
        EventKind.IDENTITY_RENAMED: _fold_identity_renamed,
        EventKind.ALIAS_ADDED: _fold_alias_added,
        EventKind.IDENTITY_ACTIVATED: _fold_identity_activated,
        EventKind.IDENTITY_DEACTIVATED: _fold_identity_deactivated,
        EventKind.IDENTITIES_MERGED: _fold_identities_merged,
        EventKind.DISTRIBUTION_APPLIED: _fold_distribution_applied,
        EventKind.GRAIN_TRANSFERRED: _fold_grain_transferred,
    }
