from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Callable

from helpdesk.errors import ConcurrentUpdateError
from helpdesk.state_machine import ResolutionStateMachine
from helpdesk.transcript_store import TranscriptStore
from helpdesk.types import SupportStage, SupportState

logger = logging.getLogger(__name__)

CONNECT_JIRA_TOOL = "connect_jira"


def tool_request(state: SupportState) -> str | None:
    if state.current_stage == SupportStage.ESCALATING:
        return CONNECT_JIRA_TOOL
    if state.current_stage == SupportStage.CHECKING_JIRA and not state.jira_connected:
        return CONNECT_JIRA_TOOL
    return None


def build_chat_response(state: SupportState) -> dict[str, Any]:
    tool = tool_request(state)
    payload: dict[str, Any] = {
        "response": state.response or "",
        "supportStage": str(state.current_stage),
        "requiresTool": tool is not None,
        "toolType": tool,
    }
    if state.ticket_details is not None:
        payload["ticketDetails"] = asdict(state.ticket_details)
    return payload


class SessionOrchestrator:
    """Loads, advances and saves one conversation per chat request."""

    def __init__(
        self,
        *,
        machine: ResolutionStateMachine,
        transcripts: TranscriptStore,
        is_connected: Callable[[str], bool],
    ):
        self.machine = machine
        self.transcripts = transcripts
        self.is_connected = is_connected

    def _load_or_create(self, user_id: str, conversation_id: str, message: str) -> SupportState:
        state = self.transcripts.load_state(user_id, conversation_id)
        if state is not None:
            return state
        logger.info("support_session new conversation_id=%s user_id=%s", conversation_id, user_id)
        return SupportState(
            user_id=user_id,
            conversation_id=conversation_id,
            issue=message,
            current_stage=SupportStage.ANALYZING,
        )

    def _save_ticket_outcome(self, result: SupportState, expected_version: int) -> SupportState:
        """Saves a turn that filed a ticket without surfacing a version conflict.

        On conflict the outcome is written over the newer state once; a second
        conflict returns the result unsaved.
        """
        try:
            return self.transcripts.save_state(result, expected_version)
        except ConcurrentUpdateError as exc:
            logger.warning(
                "support_session ticket_saved_after_conflict conversation_id=%s error=%s",
                result.conversation_id,
                exc,
            )
        latest = self.transcripts.load_state(result.user_id, result.conversation_id)
        latest_version = latest.version if latest is not None else 0
        try:
            return self.transcripts.save_state(result, latest_version)
        except ConcurrentUpdateError as exc:
            logger.error(
                "support_session ticket_outcome_unsaved conversation_id=%s error=%s",
                result.conversation_id,
                exc,
            )
            return result

    async def handle_message(
        self,
        *,
        user_id: str,
        conversation_id: str,
        message: str,
        ticket_permission: bool | None = None,
    ) -> dict[str, Any]:
        state = self._load_or_create(user_id, conversation_id, message)
        expected_version = state.version
        if ticket_permission is True:
            state.ticket_permission = True
        state.jira_connected = self.is_connected(user_id)

        self.transcripts.append_message(user_id, conversation_id, {"role": "user", "content": message})
        result = await self.machine.process_message(state, message)

        if result.turn_failed:
            logger.warning("support_session turn_failed conversation_id=%s state not saved", conversation_id)
        elif result.current_stage == SupportStage.COMPLETED and result.ticket_details is not None:
            result = self._save_ticket_outcome(result, expected_version)
        else:
            # Raises ConcurrentUpdateError when another request saved first.
            result = self.transcripts.save_state(result, expected_version)

        self.transcripts.append_message(
            user_id,
            conversation_id,
            {"role": "assistant", "content": result.response or ""},
        )
        return build_chat_response(result)
