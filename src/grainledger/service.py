"""Grain service — unified facade over the ledger and the allocation engine.

This is the primary interface for programmatic access. It orchestrates:
- Identity lifecycle (create, rename, alias, activate/deactivate, merge)
- Grain transfers between accounts
- Distribution computation (pure) and application (ledger mutation)

All operations produce typed results. Every state change goes through
the ledger, which records it in the append-only event log before the
accounts change. A failed operation leaves the ledger untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from grainledger import __version__
from grainledger.allocation.distribution import (
    compute_distribution,
    distribution_timestamps,
)
from grainledger.config.resolver import ConfigResolver
from grainledger.cred.view import CredGrainView, CredScores
from grainledger.errors import GrainLedgerError
from grainledger.ledger.ledger import Ledger
from grainledger.models.grain import Grain, grain_sum
from grainledger.models.identity import IdentityId, IdentitySubtype
from grainledger.persistence.codec import distribution_to_dict


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class GrainService:
    """Facade over one ledger and its configured allocation policies.

    Usage:
        resolver = ConfigResolver.from_config_dir(config_dir)
        service = GrainService(resolver, Ledger.from_path(data_dir / "ledger.jsonl"))

        result = service.create_identity("alice")
        service.set_active(result.data["identity_id"], True)

        # Pay out every interval that has ended since the last distribution
        result = service.apply_distributions(cred_scores)
    """

    def __init__(self, resolver: ConfigResolver, ledger: Optional[Ledger] = None) -> None:
        self._resolver = resolver
        self._ledger = ledger if ledger is not None else Ledger(actor_id=resolver.actor_id())

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    # ------------------------------------------------------------------
    # Identity lifecycle
    # ------------------------------------------------------------------

    def create_identity(
        self,
        name: str,
        subtype: IdentitySubtype = IdentitySubtype.USER,
    ) -> ServiceResult:
        """Create an identity. Its account starts inactive."""
        try:
            identity_id = self._ledger.create_identity(subtype, name)
        except GrainLedgerError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"identity_id": identity_id, "name": name})

    def rename_identity(self, identity_id: IdentityId, name: str) -> ServiceResult:
        return self._mutate(lambda: self._ledger.rename_identity(identity_id, name))

    def add_alias(self, identity_id: IdentityId, alias: str) -> ServiceResult:
        return self._mutate(lambda: self._ledger.add_alias(identity_id, alias))

    def set_active(self, identity_id: IdentityId, active: bool) -> ServiceResult:
        if active:
            return self._mutate(lambda: self._ledger.activate(identity_id))
        return self._mutate(lambda: self._ledger.deactivate(identity_id))

    def merge_identities(self, base: IdentityId, target: IdentityId) -> ServiceResult:
        result = self._mutate(lambda: self._ledger.merge_identities(base, target))
        if result.success:
            return ServiceResult(success=True, data={"base": base, "retired": target})
        return result

    def transfer_grain(
        self,
        from_id: IdentityId,
        to_id: IdentityId,
        amount: Grain,
        memo: str = "",
    ) -> ServiceResult:
        return self._mutate(
            lambda: self._ledger.transfer_grain(from_id, to_id, amount, memo)
        )

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def compute_distribution(
        self,
        cred_scores: CredScores,
        effective_timestamp: datetime,
    ) -> ServiceResult:
        """Compute (but do not apply) a distribution of the configured policies."""
        policies = self._resolver.allocation_policies()
        if not policies:
            return ServiceResult(success=False, errors=["No allocation policies configured"])
        try:
            view = CredGrainView.from_ledger(self._ledger, cred_scores)
            distribution = compute_distribution(policies, view, effective_timestamp)
        except GrainLedgerError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(
            success=True,
            data={"distribution": distribution_to_dict(distribution)},
        )

    def apply_distributions(
        self,
        cred_scores: CredScores,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Compute and apply a distribution for each interval still owed one.

        At most max_simultaneous_distributions are applied per call,
        oldest first. Each distribution is applied atomically; if one
        fails, those already applied stay applied and the rest are
        skipped.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        policies = self._resolver.allocation_policies()
        if not policies:
            return ServiceResult(success=False, errors=["No allocation policies configured"])
        if now.tzinfo is None:
            return ServiceResult(
                success=False, errors=[f"now must include a UTC offset, got {now.isoformat()}"],
            )

        applied: list[str] = []
        try:
            view = CredGrainView.from_ledger(self._ledger, cred_scores)
            view.validate_for_grain_allocation()
            timestamps = distribution_timestamps(
                view,
                self._ledger.last_distribution_timestamp(),
                now,
                self._resolver.max_simultaneous_distributions(),
            )
            for timestamp in timestamps:
                # Rebuild the view: BALANCED depends on Grain paid so far
                view = CredGrainView.from_ledger(self._ledger, cred_scores)
                distribution = compute_distribution(policies, view, timestamp)
                self._ledger.distribute_grain(distribution)
                applied.append(distribution.id)
        except GrainLedgerError as e:
            return ServiceResult(
                success=False,
                errors=[str(e)],
                data={"applied": applied},
            )
        return ServiceResult(
            success=True,
            data={"applied": applied, "count": len(applied)},
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return ledger-wide status summary."""
        accounts = self._ledger.accounts()
        last = self._ledger.last_distribution_timestamp()
        return {
            "version": __version__,
            "accounts": {
                "total": len(accounts),
                "active": sum(1 for a in accounts if a.active),
            },
            "grain": {
                "total_balance": str(grain_sum(a.balance for a in accounts)),
                "total_paid": str(grain_sum(a.paid for a in accounts)),
            },
            "distributions": {
                "count": len(self._ledger.distributions()),
                "last_cred_timestamp": last.isoformat() if last else None,
            },
            "events": self._ledger.event_log.count,
        }

    def _mutate(self, operation: Any) -> ServiceResult:
        try:
            operation()
        except GrainLedgerError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True)
