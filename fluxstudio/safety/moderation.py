"""Structured guidance for provider moderation reasons.

Purpose:
    Turn the provider's `Moderation Reasons` list into per-reason explanations
    and suggestions that adapters can render when a job ends in the
    `moderated` state.

Matching model:
    - Rule-based lookup keyed on the lower-cased, trimmed reason text.
    - Unknown reasons fall back to a generic explanation and suggestion.

Determinism:
    Deterministic for identical reason lists. No I/O.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ModerationGuidance:
    """Explanation and suggestion for one moderation reason."""

    reason: str
    description: str
    suggestion: str


GUIDANCE = {
    "derivative works filter": (
        "This filter prevents generating content that closely copies or is directly "
        "based on existing copyrighted material to respect intellectual property rights.",
        "Try creating original content instead of referencing specific characters, "
        "brands, or copyrighted works.",
    ),
    "nsfw filter": (
        "This filter blocks content that may be inappropriate or not safe for work.",
        "Please use appropriate language and avoid suggestive or explicit content.",
    ),
    "violence filter": (
        "This filter prevents generation of violent or harmful content.",
        "Consider using peaceful or non-violent alternatives in your prompt.",
    ),
    "hate speech filter": (
        "This filter blocks content that may contain hate speech or discriminatory language.",
        "Please use respectful language that doesn't target any groups or individuals.",
    ),
}

DEFAULT_GUIDANCE = (
    "This content was flagged by the moderation system to ensure safe and "
    "appropriate image generation.",
    "Please modify your prompt to use more appropriate language and content.",
)


def describe_reason(reason: str) -> ModerationGuidance:
    """Return guidance for a single reason, matched case-insensitively."""
    description, suggestion = GUIDANCE.get(str(reason).strip().lower(), DEFAULT_GUIDANCE)
    return ModerationGuidance(reason=reason, description=description, suggestion=suggestion)


def describe_reasons(reasons) -> list[ModerationGuidance]:
    return [describe_reason(reason) for reason in reasons]


def format_moderation_message(reasons) -> str:
    """Build the one-line error message carried by `ModerationError`."""
    reasons_text = ", ".join(str(reason) for reason in reasons)
    return (
        f"Request was moderated: {reasons_text}. Please try a different prompt that "
        "doesn't include copyrighted material or inappropriate content."
    )


def render_guidance(reasons) -> str:
    """Render a multi-line block for terminal output."""
    lines = [
        "Content Moderated",
        "Your request was reviewed by the provider's content moderation system "
        "and couldn't be processed.",
    ]
    for item in describe_reasons(reasons):
        lines.append("")
        lines.append(f"[{item.reason}]")
        lines.append(f"  Why: {item.description}")
        lines.append(f"  Try: {item.suggestion}")
    return "\n".join(lines)
