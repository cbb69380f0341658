from __future__ import annotations

from typing import Iterable

from mailpilot.core.errors import ConstraintViolationError


def validate_constraints(
    text: str,
    must_include: Iterable[str] | None = None,
    must_avoid: Iterable[str] | None = None,
    *,
    max_length: int | None = None,
    label: str = "Generated content",
) -> None:
    # Fail closed on the first violated term so callers can fix the exact constraint.
    lowered = (text or "").lower()
    for required in must_include or ():
        if required.lower() not in lowered:
            raise ConstraintViolationError(
                f'{label} missing required content: "{required}"',
                term=required,
                kind="must_include",
            )
    for avoided in must_avoid or ():
        if avoided.lower() in lowered:
            raise ConstraintViolationError(
                f'{label} contains prohibited content: "{avoided}"',
                term=avoided,
                kind="must_avoid",
            )
    if max_length is not None and len(text or "") > max_length:
        raise ConstraintViolationError(
            f"{label} exceeds maximum length of {max_length} characters",
            term=None,
            kind="max_length",
        )
