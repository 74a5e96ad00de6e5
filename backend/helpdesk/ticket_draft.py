from __future__ import annotations

from helpdesk.intent_keywords import contains_any
from helpdesk.types import SupportState, TicketDraft

DEFAULT_CATEGORY = "Technical Support"
TITLE_MAX_LENGTH = 120

CATEGORY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("camera", "webcam", "hardware"), "Hardware"),
    (("zoom", "software", "app"), "Software"),
    (("network", "internet", "connection"), "Network"),
    (("password", "login", "access"), "Security"),
)


def determine_priority(attempts: int) -> str:
    if attempts >= 3:
        return "high"
    if attempts == 2:
        return "medium"
    return "low"


def determine_category(issue: str) -> str:
    for keywords, category in CATEGORY_RULES:
        if contains_any(issue, keywords):
            return category
    return DEFAULT_CATEGORY


def _title(issue: str) -> str:
    text = " ".join((issue or "").split())
    title = f"Support needed: {text}"
    if len(title) > TITLE_MAX_LENGTH:
        title = title[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
    return title


def _description(state: SupportState) -> str:
    solutions = "\n".join(f"{idx}. {solution}" for idx, solution in enumerate(state.solutions, start=1)) or "None"
    lines = [
        f"Issue: {state.issue}",
        "",
        f"Attempts: {state.attempts}",
        "",
        "Solutions tried:",
        solutions,
        "",
        f"User feedback: {', '.join(state.user_feedback)}",
    ]
    info = state.system_info
    if info is not None:
        details = [
            f"{label}: {value}"
            for label, value in (
                ("OS", info.os),
                ("RAM", info.ram),
                ("Storage", info.storage),
                ("Device age", info.device_age),
                ("Device type", info.device_type),
                ("Reported", info.raw),
            )
            if value
        ]
        if details:
            lines.extend(["", "System information:", *details])
    return "\n".join(lines)


def build_ticket_draft(state: SupportState) -> TicketDraft:
    return TicketDraft(
        title=_title(state.issue),
        description=_description(state),
        priority=determine_priority(state.attempts),
        category=determine_category(state.issue),
    )
