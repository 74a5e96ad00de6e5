"""Ordered intent rules for one chat turn.

Rules are evaluated top to bottom and the first match wins. The order is the
tie-break policy: an integration-status question beats small talk, small talk
beats information collection, and so on down to the troubleshooting default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from helpdesk.intent_keywords import (
    is_affirmative,
    is_connection_status_question,
    is_decline,
    is_escalation_request,
    is_small_talk,
)
from helpdesk.types import Intent, SupportStage, SupportState

ESCALATION_ATTEMPT_THRESHOLD = 3


@dataclass(frozen=True)
class IntentRule:
    name: str
    predicate: Callable[[SupportState, str], bool]
    intent: Intent | Callable[[SupportState], Intent]

    def resolve(self, state: SupportState) -> Intent:
        if isinstance(self.intent, Intent):
            return self.intent
        return self.intent(state)


def has_system_info(state: SupportState) -> bool:
    return state.system_info is not None


def _needs_system_info(state: SupportState, _message: str) -> bool:
    return not has_system_info(state) and state.attempts == 0


def _has_ticket_permission(state: SupportState, _message: str) -> bool:
    return state.ticket_permission is True


def _awaiting_permission(state: SupportState) -> bool:
    return state.current_stage == SupportStage.REQUESTING_PERMISSION


def _permission_declined(state: SupportState, message: str) -> bool:
    return _awaiting_permission(state) and is_decline(message)


def _permission_granted(state: SupportState, message: str) -> bool:
    return _awaiting_permission(state) and is_affirmative(message)


def _should_escalate(state: SupportState, message: str) -> bool:
    return is_escalation_request(message) or state.attempts >= ESCALATION_ATTEMPT_THRESHOLD


def _escalation_intent(state: SupportState) -> Intent:
    return Intent.REQUEST_PERMISSION if state.jira_connected else Intent.ESCALATE


def _first_analysis(state: SupportState, _message: str) -> bool:
    return state.attempts == 0 and has_system_info(state)


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule("connection_status", lambda _state, message: is_connection_status_question(message), Intent.CHECK_JIRA),
    IntentRule("small_talk", lambda _state, message: is_small_talk(message), Intent.GENERAL_CHAT),
    IntentRule("missing_system_info", _needs_system_info, Intent.COLLECT_INFO),
    IntentRule("ticket_permission_recorded", _has_ticket_permission, Intent.CREATE_TICKET),
    IntentRule("permission_granted", _permission_granted, Intent.CREATE_TICKET),
    IntentRule("permission_declined", _permission_declined, Intent.PROVIDE_SOLUTION),
    IntentRule("escalation", _should_escalate, _escalation_intent),
    IntentRule("first_analysis", _first_analysis, Intent.ANALYZE),
)


def classify_intent(state: SupportState, message: str | None = None) -> Intent:
    text = state.last_message if message is None else message
    for rule in INTENT_RULES:
        if rule.predicate(state, text):
            return rule.resolve(state)
    return Intent.PROVIDE_SOLUTION


def matching_rule(state: SupportState, message: str) -> str | None:
    for rule in INTENT_RULES:
        if rule.predicate(state, message):
            return rule.name
    return None
