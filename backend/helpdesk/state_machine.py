"""Resolution state machine for one support conversation.

Each inbound message is one turn: the message is recorded, an intent is chosen
by the ordered rules in ``helpdesk.classifier``, and the handler bound to that
intent in ``TRANSITIONS`` produces the next ``SupportState``. The input state is
never mutated; callers persist the returned state themselves.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace

from helpdesk.classifier import classify_intent
from helpdesk.connection_store import ConnectionStore
from helpdesk.errors import CompletionError, TicketingError
from helpdesk.intent_keywords import is_connection_status_question, is_decline, is_small_talk
from helpdesk.llm import TextCompleter
from helpdesk.prompts import (
    ANALYZE_PROMPT,
    CHECK_CONNECTION_PROMPT,
    COLLECT_INFO_PROMPT,
    ESCALATE_PROMPT,
    FALLBACK_APOLOGY,
    GENERAL_CHAT_PROMPT,
    REQUEST_PERMISSION_PROMPT,
    SOLUTION_PROMPT,
    TICKET_CREATED_PROMPT,
)
from helpdesk.system_info import capture_system_info, describe_system_info, extract_system_info
from helpdesk.ticket_draft import build_ticket_draft
from helpdesk.ticketing import TicketingGateway, ticketing_error_message
from helpdesk.types import Intent, SupportStage, SupportState, TicketRecord

logger = logging.getLogger(__name__)

SOLUTION_PROMPT_CLIP = 400
TICKET_FAILURE_MESSAGE = (
    "I wasn't able to create the support ticket, so nothing has been filed yet. "
    "Please contact support directly or try again later."
)


@dataclass(frozen=True)
class Transition:
    handler: str
    stage: SupportStage


TRANSITIONS: dict[Intent, Transition] = {
    Intent.CHECK_JIRA: Transition("_check_connection", SupportStage.CHECKING_JIRA),
    Intent.GENERAL_CHAT: Transition("_general_chat", SupportStage.GENERAL_CHAT),
    Intent.COLLECT_INFO: Transition("_collect_info", SupportStage.COLLECTING_INFO),
    Intent.CREATE_TICKET: Transition("_create_ticket", SupportStage.COMPLETED),
    Intent.REQUEST_PERMISSION: Transition("_request_permission", SupportStage.REQUESTING_PERMISSION),
    Intent.ESCALATE: Transition("_escalate", SupportStage.ESCALATING),
    Intent.ANALYZE: Transition("_analyze", SupportStage.ANALYZING),
    Intent.PROVIDE_SOLUTION: Transition("_provide_solution", SupportStage.TROUBLESHOOTING),
}


def _format_solutions(solutions: list[str]) -> str:
    if not solutions:
        return "None"
    lines = []
    for idx, solution in enumerate(solutions, start=1):
        text = " ".join(solution.split())
        if len(text) > SOLUTION_PROMPT_CLIP:
            text = text[: SOLUTION_PROMPT_CLIP - 3] + "..."
        lines.append(f"{idx}. {text}")
    return "\n".join(lines)


def _ticket_created_fallback(record: TicketRecord) -> str:
    reference = f" ({record.ticket_key})" if record.ticket_key else ""
    return (
        f"I've created a support ticket{reference} in {record.project or 'your project'}: "
        f"\"{record.title}\" with {record.priority} priority. The support team will follow up with you."
    )


class ResolutionStateMachine:
    def __init__(
        self,
        *,
        completion: TextCompleter,
        gateway: TicketingGateway,
        connections: ConnectionStore | None = None,
    ):
        self.completion = completion
        self.gateway = gateway
        self.connections = connections

    async def process_message(self, state: SupportState, message: str) -> SupportState:
        working = copy.deepcopy(state)
        working.turn_failed = False
        try:
            working.user_feedback.append(message)
            working.last_message = message
            self._capture_system_info(working, message)

            intent = classify_intent(working, message)
            transition = TRANSITIONS[intent]
            logger.info(
                "support_turn conversation_id=%s from_stage=%s intent=%s attempts=%s",
                working.conversation_id,
                state.current_stage,
                intent,
                working.attempts,
            )
            result = await getattr(self, transition.handler)(working)
            result.current_stage = transition.stage
            return result
        except Exception:
            logger.exception("support_turn failed conversation_id=%s", state.conversation_id)
            return self._fallback(state)

    @staticmethod
    def _fallback(state: SupportState) -> SupportState:
        return replace(
            copy.deepcopy(state),
            current_stage=SupportStage.COMPLETED,
            response=FALLBACK_APOLOGY,
            ticket_details=None,
            turn_failed=True,
        )

    @staticmethod
    def _capture_system_info(state: SupportState, message: str) -> None:
        if state.current_stage != SupportStage.COLLECTING_INFO or state.system_info is not None:
            return
        info = extract_system_info(message)
        if info is None and (is_small_talk(message) or is_connection_status_question(message)):
            return
        state.system_info = info or capture_system_info(message)

    async def _complete(self, prompt: str) -> str:
        return await self.completion.complete(prompt)

    async def _general_chat(self, state: SupportState) -> SupportState:
        state.response = await self._complete(GENERAL_CHAT_PROMPT.format(message=state.last_message))
        state.ticket_details = None
        return state

    async def _check_connection(self, state: SupportState) -> SupportState:
        project = None
        if self.connections is not None:
            connection = self.connections.get_connection(state.user_id)
            active = connection.active_project() if connection else None
            project = active.name if active else None
        prompt = CHECK_CONNECTION_PROMPT.format(
            message=state.last_message,
            connection_status="connected" if state.jira_connected else "not connected",
            project=project or "none",
        )
        state.response = await self._complete(prompt)
        state.ticket_details = None
        return state

    async def _collect_info(self, state: SupportState) -> SupportState:
        state.response = await self._complete(COLLECT_INFO_PROMPT.format(issue=state.issue))
        state.ticket_details = None
        return state

    async def _analyze(self, state: SupportState) -> SupportState:
        prompt = ANALYZE_PROMPT.format(issue=state.issue, system_info=describe_system_info(state.system_info))
        return self._record_solution(state, await self._complete(prompt))

    async def _provide_solution(self, state: SupportState) -> SupportState:
        if state.current_stage == SupportStage.REQUESTING_PERMISSION and is_decline(state.last_message):
            state.ticket_permission = False
        prompt = SOLUTION_PROMPT.format(
            issue=state.issue,
            system_info=describe_system_info(state.system_info),
            attempts=state.attempts,
            previous_solutions=_format_solutions(state.solutions),
            message=state.last_message,
        )
        return self._record_solution(state, await self._complete(prompt))

    @staticmethod
    def _record_solution(state: SupportState, text: str) -> SupportState:
        state.attempts += 1
        state.solutions.append(text)
        state.response = text
        state.ticket_details = None
        return state

    async def _escalate(self, state: SupportState) -> SupportState:
        prompt = ESCALATE_PROMPT.format(
            issue=state.issue,
            attempts=state.attempts,
            solutions=_format_solutions(state.solutions),
        )
        state.response = await self._complete(prompt)
        state.ticket_details = build_ticket_draft(state)
        return state

    async def _request_permission(self, state: SupportState) -> SupportState:
        prompt = REQUEST_PERMISSION_PROMPT.format(
            issue=state.issue,
            attempts=state.attempts,
            solutions=_format_solutions(state.solutions),
        )
        state.response = await self._complete(prompt)
        state.ticket_details = build_ticket_draft(state)
        return state

    async def _create_ticket(self, state: SupportState) -> SupportState:
        draft = build_ticket_draft(state)
        state.ticket_permission = None
        try:
            record = await self.gateway.create_ticket(
                state.user_id,
                draft,
                conversation_id=state.conversation_id,
            )
        except TicketingError as exc:
            logger.warning(
                "support_ticket failed conversation_id=%s code=%s status=%s",
                state.conversation_id,
                exc.code,
                exc.status_code,
            )
            state.response = ticketing_error_message(exc)
            state.ticket_details = None
            return state
        except Exception:
            logger.exception("support_ticket failed conversation_id=%s", state.conversation_id)
            state.response = TICKET_FAILURE_MESSAGE
            state.ticket_details = None
            return state

        state.ticket_details = draft
        prompt = TICKET_CREATED_PROMPT.format(
            title=draft.title,
            priority=draft.priority,
            category=draft.category,
            project=record.project or "-",
            reference=record.ticket_key or record.id,
        )
        try:
            state.response = await self._complete(prompt)
        except CompletionError as exc:
            # The ticket exists; only the wording failed.
            logger.warning("support_ticket confirmation_llm_failed conversation_id=%s error=%s", state.conversation_id, exc)
            state.response = _ticket_created_fallback(record)
        return state


def _validate_transitions() -> None:
    missing = [intent for intent in Intent if intent not in TRANSITIONS]
    if missing:
        raise RuntimeError(f"intents without a transition: {', '.join(missing)}")
    for intent, transition in TRANSITIONS.items():
        if not callable(getattr(ResolutionStateMachine, transition.handler, None)):
            raise RuntimeError(f"transition for {intent} names unknown handler {transition.handler}")


_validate_transitions()
