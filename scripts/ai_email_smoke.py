from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import get_args

from mailpilot.core.config import get_settings
from mailpilot.core.errors import (
    ConstraintViolationError,
    GateError,
    GenerationTimeoutError,
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    SafetyViolationError,
    ValidationError,
)
from mailpilot.domain.schemas import GenerationOptions, SubjectContext, SubjectTone
from mailpilot.services.email_ai import EmailAIOrchestrator, build_pipeline_context


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate one email subject through the full gated pipeline."
    )
    parser.add_argument("--tenant", required=True, help="Tenant id")
    parser.add_argument("--user", default="smoke-test", help="User id recorded in the audit row")
    parser.add_argument("--purpose", required=True, help="What the email is for")
    parser.add_argument("--audience", required=True, help="Who receives the email")
    parser.add_argument(
        "--tone", choices=get_args(SubjectTone), default="professional", help="Subject tone"
    )
    parser.add_argument("--keyword", action="append", default=[], help="Keyword to weave in (repeatable)")
    parser.add_argument("--retries", type=int, default=None, help="Override the retry budget")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-call deadline")
    return parser


def _format_error(exc: Exception) -> tuple[int, str]:
    # Map pipeline failures to stable, actionable messages.
    if isinstance(exc, GateError):
        return 2, f"GATE_DENIED: {exc}"
    if isinstance(exc, ProviderConfigError):
        return 2, f"PROVIDER_CONFIG_MISSING: {exc}"
    if isinstance(exc, ProviderAuthError):
        return 3, f"PROVIDER_AUTH_ERROR: {exc}"
    if isinstance(exc, GenerationTimeoutError):
        return 4, f"GENERATION_TIMEOUT: {exc}"
    if isinstance(exc, ProviderError):
        return 4, f"PROVIDER_ERROR: {exc}"
    if isinstance(exc, ValidationError):
        return 5, f"SCHEMA_MISMATCH: {exc}"
    if isinstance(exc, (SafetyViolationError, ConstraintViolationError)):
        return 6, f"CONTENT_REJECTED: {exc}"
    return 1, f"UNKNOWN_ERROR: {exc}"


async def _run(args: argparse.Namespace) -> int:
    orchestrator = EmailAIOrchestrator(build_pipeline_context())
    result = await orchestrator.generate_email_subject(
        SubjectContext(
            purpose=args.purpose,
            audience=args.audience,
            tone=args.tone,
            keywords=args.keyword,
        ),
        GenerationOptions(
            tenant_id=args.tenant,
            user_id=args.user,
            retries=args.retries,
            timeout_ms=args.timeout_ms,
        ),
    )
    print(json.dumps(result.model_dump(), indent=2))
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level.upper())
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        code, message = _format_error(exc)
        print(message, file=sys.stderr)
        return code


if __name__ == "__main__":
    raise SystemExit(main())
