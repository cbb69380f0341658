from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from mailpilot.core.config import get_settings
from mailpilot.persistence.db import SessionLocal
from mailpilot.services.monitoring import check_failure_alert, get_generation_metrics, get_system_status
from mailpilot.services.rollouts import RolloutGateChecker


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Report AI email generation metrics and health.")
    parser.add_argument("--timeframe", default="24h", choices=["1h", "24h", "7d", "30d"])
    parser.add_argument("--tenant", default=None, help="Restrict metrics to one tenant")
    parser.add_argument("--feature", default=None, help="Restrict metrics to one capability feature")
    parser.add_argument("--status", action="store_true", help="Include the system status check")
    parser.add_argument("--alert-threshold", type=int, default=None, help="Fail when failures reach N")
    parser.add_argument("--alert-window-minutes", type=int, default=15)
    return parser


async def _run(args: argparse.Namespace) -> int:
    report: dict[str, object] = {}
    exit_code = 0
    async with SessionLocal() as session:
        report["metrics"] = await get_generation_metrics(
            session, timeframe=args.timeframe, tenant_id=args.tenant, feature=args.feature
        )
        if args.status:
            status = await get_system_status(session, RolloutGateChecker(SessionLocal))
            report["status"] = {"status": status.status, "details": status.details}
            if status.status == "unhealthy":
                exit_code = 3
        if args.alert_threshold is not None:
            alerting = await check_failure_alert(
                session, threshold=args.alert_threshold, window_minutes=args.alert_window_minutes
            )
            report["alert"] = alerting
            if alerting:
                exit_code = 2
    print(json.dumps(report, indent=2, default=str))
    return exit_code


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level.upper())
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        print(f"METRICS_ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
