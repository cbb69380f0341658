from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from mailpilot.core.config import get_settings
from mailpilot.persistence.db import SessionLocal
from mailpilot.services.entitlements import get_effective_entitlements
from mailpilot.services.rollouts import KILL_SWITCH_KEYS, get_rollout_state, set_kill_switches


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def _build_parser() -> argparse.ArgumentParser:
    # Operator controls for the kill switch and a read-only view of tenant entitlements.
    parser = argparse.ArgumentParser(description="Inspect and control AI email gates.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("show", help="Print the effective kill switch state")

    kill = commands.add_parser("kill-switch", help="Activate or release a kill switch")
    kill.add_argument("--name", default=next(iter(KILL_SWITCH_KEYS)), choices=sorted(KILL_SWITCH_KEYS))
    kill.add_argument("--active", required=True, type=_parse_bool, help="true halts generation")

    entitlements = commands.add_parser("entitlements", help="Print a tenant's effective entitlements")
    entitlements.add_argument("--tenant", required=True, help="Tenant identifier")
    return parser


async def _run(args: argparse.Namespace) -> int:
    if args.command == "entitlements":
        async with SessionLocal() as session:
            entitlements = await get_effective_entitlements(session, args.tenant)
        report = {
            "tenant_id": args.tenant,
            "entitlements": {
                key: {"enabled": value.enabled, "config": value.config}
                for key, value in sorted(entitlements.items())
            },
        }
        print(json.dumps(report, indent=2))
        return 0

    if args.command == "kill-switch":
        await set_kill_switches({args.name: args.active})
    state = await get_rollout_state()
    print(json.dumps({"kill_switches": state.kill_switches}, indent=2))
    if args.command == "kill-switch" and state.kill_switches[args.name] != args.active:
        # The override lives in Redis; without it the settings default still applies.
        print("KILL_SWITCH_NOT_PERSISTED: Redis is unavailable", file=sys.stderr)
        return 2
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level.upper())
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        print(f"GATES_ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
