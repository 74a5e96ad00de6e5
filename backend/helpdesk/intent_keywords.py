from __future__ import annotations

import re
from typing import Iterable


# "connection" alone also describes network problems, so only phrases that
# clearly ask about the ticketing integration are listed here.
CONNECTION_STATUS_KEYWORDS = (
    "jira",
    "atlassian",
    "am i connected",
    "are we connected",
    "is it connected",
    "connection status",
    "integration status",
)
GREETING_KEYWORDS = (
    "hi",
    "hello",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
    "how are you",
    "what's up",
    "whats up",
)
AFFIRM_KEYWORDS = ("yes", "yeah", "yep", "okay", "ok", "sure", "create", "please", "go ahead")
DECLINE_KEYWORDS = ("no", "nope", "not now", "later", "don't", "do not")
ESCALATION_KEYWORDS = (
    "can't solve",
    "cant solve",
    "not working",
    "still can't",
    "still cant",
    "tried these",
    "tried everything",
    "doesn't work",
    "doesnt work",
    "didn't work",
    "didnt work",
    "still broken",
    "nothing works",
    "escalate",
    "open a ticket",
    "create a ticket",
)

SHORT_MESSAGE_LENGTH = 10


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    lower = (text or "").lower()
    return any(keyword.lower() in lower for keyword in keywords)


def contains_word(text: str, keywords: Iterable[str]) -> bool:
    lower = (text or "").lower()
    return any(re.search(rf"(?<![\w'-]){re.escape(keyword.lower())}(?![\w'-])", lower) for keyword in keywords)


def is_connection_status_question(text: str) -> bool:
    return contains_any(text, CONNECTION_STATUS_KEYWORDS)


def is_small_talk(text: str) -> bool:
    stripped = (text or "").strip()
    if len(stripped) < SHORT_MESSAGE_LENGTH:
        return True
    return contains_word(stripped, GREETING_KEYWORDS)


def is_affirmative(text: str) -> bool:
    return contains_word(text, AFFIRM_KEYWORDS)


def is_decline(text: str) -> bool:
    return contains_word(text, DECLINE_KEYWORDS)


def is_escalation_request(text: str) -> bool:
    normalized = (text or "").replace("’", "'")
    return contains_any(normalized, ESCALATION_KEYWORDS)
