from __future__ import annotations

from mailpilot.domain.schemas import RecipientProfile


NAME_WEIGHT = 0.30
COMPANY_WEIGHT = 0.25
INDUSTRY_WEIGHT = 0.20
INTEREST_WEIGHT = 0.25


def score_personalization(text: str, profile: RecipientProfile) -> float:
    # Literal, case-sensitive presence checks; empty profile fields earn nothing.
    text = text or ""
    score = 0.0
    if profile.name and profile.name in text:
        score += NAME_WEIGHT
    if profile.company and profile.company in text:
        score += COMPANY_WEIGHT
    if profile.industry and profile.industry in text:
        score += INDUSTRY_WEIGHT
    if any(interest and interest in text for interest in profile.interests):
        score += INTEREST_WEIGHT
    return min(1.0, round(score, 6))


def parse_personalized_output(text: str, fallback_subject: str) -> tuple[str, str]:
    # Pull a "Subject:" line out of free text; everything else is the body.
    subject = fallback_subject
    body_lines: list[str] = []
    subject_found = False
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not subject_found and stripped.lower().startswith("subject:"):
            candidate = stripped[len("subject:"):].strip()
            if candidate:
                subject = candidate
            subject_found = True
            continue
        body_lines.append(line)

    body = "\n".join(body_lines).strip()
    if body.lower().startswith("body:"):
        body = body[len("body:"):].strip()
    return subject, body
