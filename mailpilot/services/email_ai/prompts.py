from __future__ import annotations

from mailpilot.domain.schemas import BodyContext, PersonalizationContext, SubjectContext, TemplateContext


def _join(lines: list[str | None]) -> str:
    return "\n".join(line for line in lines if line is not None)


def _or_na(values: list[str]) -> str:
    return ", ".join(values) if values else "N/A"


def _metric(value: float | None) -> str:
    return f"{value}%" if value is not None else "N/A"


def build_subject_prompt(context: SubjectContext, *, max_length: int) -> str:
    preview = None
    if context.existing_content:
        preview = f"Existing Content Preview: {context.existing_content[:200]}..."
    return _join(
        [
            "Generate an effective email subject line for the following context:",
            "",
            f"Purpose: {context.purpose}",
            f"Audience: {context.audience}",
            f"Tone: {context.tone}",
            f"Keywords: {_or_na(context.keywords)}",
            preview,
            "",
            "Requirements:",
            f"- Maximum {max_length} characters",
            "- Clear and compelling",
            "- Avoid spam trigger words",
            "- Professional and trustworthy",
            "- Action-oriented when appropriate",
            "",
            "Provide the main subject line plus 2-3 alternatives for A/B testing.",
        ]
    )


def build_body_prompt(context: BodyContext, *, max_length: int) -> str:
    constraints = context.constraints
    return _join(
        [
            "Generate a professional email body with the following specifications:",
            "",
            f"Subject: {context.subject}",
            f"Purpose: {context.purpose}",
            f"Audience: {context.audience}",
            f"Tone: {context.tone}",
            f"Key Points: {', '.join(context.key_points)}",
            f"Call to Action: {context.call_to_action}" if context.call_to_action else None,
            "",
            "Constraints:",
            f"- Maximum {max_length} characters",
            f"- Must include: {_or_na(constraints.must_include)}",
            f"- Must avoid: {_or_na(constraints.must_avoid)}",
            "- Include appropriate disclaimer" if constraints.include_disclaimer else None,
            "",
            "Requirements:",
            "- Clear, scannable structure",
            "- Appropriate greeting and closing",
            "- No spam trigger words",
            "- Trustworthy and authentic tone",
            "- Mobile-friendly formatting",
            "",
            "The email should be well-structured with proper paragraphs and spacing.",
        ]
    )


def build_template_prompt(context: TemplateContext) -> str:
    metrics = context.target_metrics
    text_preview = f"Template Text: {context.text[:500]}..." if context.text else None
    return _join(
        [
            "Analyze and optimize this email template for better performance:",
            "",
            f"Template HTML: {context.html[:2000]}...",
            text_preview,
            f"Purpose: {context.purpose}",
            f"Target Open Rate: {_metric(metrics.open_rate)}",
            f"Target Click Rate: {_metric(metrics.click_rate)}",
            f"Target Conversion Rate: {_metric(metrics.conversion_rate)}",
            "",
            "Please provide:",
            "1. Optimized template structure",
            "2. Key variables for personalization",
            "3. Specific recommendations for improvement",
            "4. Header, body, footer, and CTA optimizations",
            "",
            "Focus on mobile responsiveness, deliverability, engagement and accessibility.",
        ]
    )


def build_personalization_prompt(context: PersonalizationContext) -> str:
    recipient = context.recipient
    template = context.template
    return _join(
        [
            "Personalize this email template using the recipient data:",
            "",
            "Recipient:",
            f"- Name: {recipient.name or 'there'}",
            f"- Email: {recipient.email}",
            f"- Company: {recipient.company or 'your organization'}",
            f"- Industry: {recipient.industry or 'your industry'}",
            f"- Interests: {', '.join(recipient.interests) or 'your interests'}",
            f"- Previous Interactions: {', '.join(recipient.previous_interactions) or 'your previous engagement'}",
            "",
            "Template:",
            f"Subject: {template.subject}",
            f"Body: {template.body_template}",
            f"Purpose: {template.purpose}",
            "",
            "Reply with the personalized subject on the first line prefixed with 'Subject:', "
            "followed by the personalized body.",
            "Keep it professional and relevant to their industry and interests without being overly familiar.",
        ]
    )
