"""Ledger invariant checks — recomputes totals from history and compares.

Checked against a replayed ledger:
- every applied allocation conserves its budget
- distribution Cred timestamps strictly increase
- Σ account.paid == Σ receipts over all applied distributions
- Σ account.balance == Σ account.paid (transfers only move Grain)
- every receipt resolves to a live account
- live identity names are unique case-insensitively
"""

from __future__ import annotations

from pathlib import Path

from grainledger.config.resolver import ConfigResolver
from grainledger.errors import GrainLedgerError
from grainledger.ledger.ledger import Ledger
from grainledger.models.grain import grain_sum


def ledger_invariant_errors(ledger: Ledger) -> list[str]:
    """Return one message per violated invariant. Empty means healthy."""
    errors: list[str] = []
    accounts = ledger.accounts()
    distributions = ledger.distributions()

    previous = None
    for distribution in distributions:
        for allocation in distribution.allocations:
            if allocation.total != allocation.policy.budget:
                errors.append(
                    f"Allocation {allocation.id} distributed {allocation.total} "
                    f"of a {allocation.policy.budget} budget"
                )
        if previous is not None and distribution.cred_timestamp <= previous:
            errors.append(
                f"Distribution {distribution.id} is not after its predecessor"
            )
        previous = distribution.cred_timestamp
        for receipt in distribution.receipts():
            try:
                ledger.resolve_id(receipt.id)
            except GrainLedgerError as e:
                errors.append(f"Distribution {distribution.id}: {e}")

    distributed = grain_sum(r.amount for d in distributions for r in d.receipts())
    total_paid = grain_sum(a.paid for a in accounts)
    total_balance = grain_sum(a.balance for a in accounts)
    if total_paid != distributed:
        errors.append(f"Accounts were paid {total_paid} but distributions total {distributed}")
    if total_balance != total_paid:
        errors.append(f"Balances total {total_balance} but paid totals {total_paid}")

    names = [a.identity.name.lower() for a in accounts]
    if len(set(names)) != len(names):
        errors.append("Live identity names are not unique")

    return errors


def installation_errors(config_dir: Path, ledger_path: Path) -> list[str]:
    """Check the config dir and, if it exists, the ledger file at ledger_path.

    The event log verifies its own hashes on load, so a tampered file is
    reported here too.
    """
    errors: list[str] = []

    # --- Configuration invariants ---
    try:
        resolver = ConfigResolver.from_config_dir(config_dir)
        if not resolver.allocation_policies():
            errors.append("No allocation policies configured")
    except (OSError, ValueError) as e:
        errors.append(f"Config: {e}")

    # --- Ledger invariants ---
    if ledger_path.exists():
        try:
            errors.extend(ledger_invariant_errors(Ledger.from_path(ledger_path)))
        except ValueError as e:
            errors.append(f"Ledger: {e}")

    return errors
