"""Grain ledger CLI — command-line interface over the Grain service.

Usage:
    python -m grainledger.cli status
    python -m grainledger.cli check-invariants
    python -m grainledger.cli create-identity --name alice --subtype USER
    python -m grainledger.cli activate --id <identity-id>
    python -m grainledger.cli merge --base <identity-id> --target <identity-id>
    python -m grainledger.cli accounts --filter al
    python -m grainledger.cli distribute --cred cred_scores.json
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from grainledger.config.resolver import (
    ConfigResolver,
    config_dir_from_environment,
    data_dir_from_environment,
)
from grainledger.cred.view import CredScores
from grainledger.errors import GrainLedgerError
from grainledger.invariants import installation_errors
from grainledger.ledger.ledger import Ledger
from grainledger.models.identity import IdentitySubtype
from grainledger.service import GrainService, ServiceResult

LEDGER_FILENAME = "ledger.jsonl"


def _make_service(config_dir: Path, data_dir: Path) -> GrainService:
    """Create a GrainService over the durable ledger in data_dir."""
    resolver = ConfigResolver.from_config_dir(config_dir)
    ledger = Ledger.from_path(data_dir / LEDGER_FILENAME, actor_id=resolver.actor_id())
    return GrainService(resolver, ledger)


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_create_identity(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    result = service.create_identity(args.name, IdentitySubtype(args.subtype))
    return _report(result, f"Created identity: {result.data.get('identity_id')}")


def cmd_rename(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    return _report(service.rename_identity(args.id, args.name), f"Renamed {args.id} to {args.name}")


def cmd_activate(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    return _report(service.set_active(args.id, True), f"Activated {args.id}")


def cmd_deactivate(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    return _report(service.set_active(args.id, False), f"Deactivated {args.id}")


def cmd_merge(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    return _report(
        service.merge_identities(args.base, args.target),
        f"Merged {args.target} into {args.base}",
    )


def cmd_accounts(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data_dir)
    ledger = service.ledger
    accounts = ledger.search_accounts(args.filter) if args.filter else ledger.accounts()
    rows = [
        {
            "id": a.id,
            "name": a.identity.name,
            "subtype": a.identity.subtype.value,
            "active": a.active,
            "balance": a.balance.format(args.decimals),
            "paid": a.paid.format(args.decimals),
        }
        for a in accounts
    ]
    print(json.dumps(rows, indent=2))
    return 0


def cmd_distribute(args: argparse.Namespace) -> int:
    """Apply a distribution for every interval ended since the last one."""
    service = _make_service(args.config, args.data_dir)
    try:
        with args.cred.open("r", encoding="utf-8") as handle:
            cred_scores = CredScores.from_dict(json.load(handle))
        now = datetime.fromisoformat(args.now) if args.now else None
        if now is not None and now.tzinfo is None:
            raise ValueError(f"--now must include a UTC offset, got {args.now!r}")
    except (OSError, ValueError, GrainLedgerError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    result = service.apply_distributions(cred_scores, now=now)
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Recheck config and ledger conservation invariants."""
    errors = installation_errors(args.config, args.data_dir / LEDGER_FILENAME)
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grainledger",
        description="Grain ledger — Cred-based Grain distribution",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=config_dir_from_environment(),
        help="Path to config directory (default: $GRAINLEDGER_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=data_dir_from_environment(),
        help="Path to data directory (default: $GRAINLEDGER_DATA_DIR or data/)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show ledger status")
    sub.add_parser("check-invariants", help="Recheck config and ledger invariants")

    p_create = sub.add_parser("create-identity", help="Create an identity")
    p_create.add_argument("--name", required=True, help="Identity name")
    p_create.add_argument(
        "--subtype", default=IdentitySubtype.USER.value,
        choices=[s.value for s in IdentitySubtype],
        help="Identity subtype (default: USER)",
    )

    p_rename = sub.add_parser("rename", help="Rename an identity")
    p_rename.add_argument("--id", required=True, help="Identity ID")
    p_rename.add_argument("--name", required=True, help="New name")

    p_act = sub.add_parser("activate", help="Make an account eligible for distributions")
    p_act.add_argument("--id", required=True, help="Identity ID")

    p_deact = sub.add_parser("deactivate", help="Exclude an account from distributions")
    p_deact.add_argument("--id", required=True, help="Identity ID")

    p_merge = sub.add_parser("merge", help="Merge target identity into base")
    p_merge.add_argument("--base", required=True, help="Surviving identity ID")
    p_merge.add_argument("--target", required=True, help="Identity ID to retire")

    p_accounts = sub.add_parser("accounts", help="List accounts")
    p_accounts.add_argument("--filter", help="Fuzzy name filter")
    p_accounts.add_argument("--decimals", type=int, default=2, help="Grain decimals shown")

    p_dist = sub.add_parser("distribute", help="Apply pending distributions")
    p_dist.add_argument("--cred", type=Path, required=True, help="Cred scores JSON file")
    p_dist.add_argument("--now", help="ISO-8601 timestamp to treat as now")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "check-invariants": cmd_check_invariants,
        "create-identity": cmd_create_identity,
        "rename": cmd_rename,
        "activate": cmd_activate,
        "deactivate": cmd_deactivate,
        "merge": cmd_merge,
        "accounts": cmd_accounts,
        "distribute": cmd_distribute,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
