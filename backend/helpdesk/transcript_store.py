from __future__ import annotations

import copy
import logging
import threading
from dataclasses import asdict, replace
from typing import Any, Protocol

from helpdesk.errors import ConcurrentUpdateError
from helpdesk.types import SupportStage, SupportState, SystemInfo, TicketDraft, utcnow

logger = logging.getLogger(__name__)


class TranscriptStore(Protocol):
    def load_state(self, user_id: str, conversation_id: str) -> SupportState | None: ...

    def save_state(self, state: SupportState, expected_version: int) -> SupportState: ...

    def append_message(self, user_id: str, conversation_id: str, message: dict[str, Any]) -> None: ...

    def list_messages(self, user_id: str, conversation_id: str) -> list[dict[str, Any]]: ...


def support_state_to_dict(state: SupportState) -> dict[str, Any]:
    return {
        "userId": state.user_id,
        "conversationId": state.conversation_id,
        "issue": state.issue,
        "attempts": state.attempts,
        "solutions": list(state.solutions),
        "userFeedback": list(state.user_feedback),
        "currentStage": str(state.current_stage),
        "lastMessage": state.last_message,
        "systemInfo": asdict(state.system_info) if state.system_info else None,
        "ticketPermission": state.ticket_permission,
        "ticketDetails": asdict(state.ticket_details) if state.ticket_details else None,
        "jiraConnected": state.jira_connected,
        "response": state.response,
    }


def support_state_from_dict(payload: dict[str, Any], version: int = 0) -> SupportState:
    try:
        stage = SupportStage(str(payload.get("currentStage") or SupportStage.ANALYZING))
    except ValueError:
        stage = SupportStage.ANALYZING
    info_payload = payload.get("systemInfo")
    ticket_payload = payload.get("ticketDetails")
    ticket_details = None
    if isinstance(ticket_payload, dict) and ticket_payload.get("title"):
        ticket_details = TicketDraft(
            title=str(ticket_payload.get("title") or ""),
            description=str(ticket_payload.get("description") or ""),
            priority=str(ticket_payload.get("priority") or "low"),
            category=str(ticket_payload.get("category") or ""),
        )
    permission = payload.get("ticketPermission")
    return SupportState(
        user_id=str(payload.get("userId") or ""),
        conversation_id=str(payload.get("conversationId") or ""),
        issue=str(payload.get("issue") or ""),
        attempts=int(payload.get("attempts") or 0),
        solutions=[str(item) for item in (payload.get("solutions") or [])],
        user_feedback=[str(item) for item in (payload.get("userFeedback") or [])],
        current_stage=stage,
        last_message=str(payload.get("lastMessage") or ""),
        system_info=SystemInfo(**{key: info_payload.get(key) for key in asdict(SystemInfo())})
        if isinstance(info_payload, dict)
        else None,
        ticket_permission=permission if isinstance(permission, bool) else None,
        ticket_details=ticket_details,
        jira_connected=bool(payload.get("jiraConnected")),
        response=payload.get("response"),
        version=version,
    )


class InMemoryTranscriptStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[tuple[str, str], SupportState] = {}
        self._messages: dict[tuple[str, str], list[dict[str, Any]]] = {}

    def load_state(self, user_id: str, conversation_id: str) -> SupportState | None:
        with self._lock:
            item = self._states.get((user_id, conversation_id))
            return copy.deepcopy(item) if item else None

    def save_state(self, state: SupportState, expected_version: int) -> SupportState:
        key = (state.user_id, state.conversation_id)
        with self._lock:
            current = self._states.get(key)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise ConcurrentUpdateError(
                    f"support state changed conversation_id={state.conversation_id} "
                    f"expected={expected_version} actual={current_version}"
                )
            saved = replace(copy.deepcopy(state), version=expected_version + 1, turn_failed=False)
            self._states[key] = saved
            return copy.deepcopy(saved)

    def append_message(self, user_id: str, conversation_id: str, message: dict[str, Any]) -> None:
        entry = {**message, "createdAt": utcnow().isoformat()}
        with self._lock:
            self._messages.setdefault((user_id, conversation_id), []).append(entry)

    def list_messages(self, user_id: str, conversation_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(item) for item in self._messages.get((user_id, conversation_id), [])]


class SupabaseTranscriptStore:
    def __init__(self, client, *, states_table: str = "support_states", messages_table: str = "conversation_messages"):
        self._client = client
        self._states_table = states_table
        self._messages_table = messages_table

    def load_state(self, user_id: str, conversation_id: str) -> SupportState | None:
        result = (
            self._client.table(self._states_table)
            .select("state_json,version")
            .eq("user_id", user_id)
            .eq("conversation_id", conversation_id)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        if not rows:
            return None
        payload = rows[0].get("state_json")
        if not isinstance(payload, dict):
            logger.warning("support_state invalid payload conversation_id=%s", conversation_id)
            return None
        return support_state_from_dict(payload, version=int(rows[0].get("version") or 0))

    def save_state(self, state: SupportState, expected_version: int) -> SupportState:
        new_version = expected_version + 1
        row = {
            "user_id": state.user_id,
            "conversation_id": state.conversation_id,
            "state_json": support_state_to_dict(state),
            "current_stage": str(state.current_stage),
            "version": new_version,
            "updated_at": utcnow().isoformat(),
        }
        table = self._client.table(self._states_table)
        if expected_version == 0:
            try:
                table.insert(row).execute()
            except Exception as exc:
                if "23505" in str(exc) or "duplicate" in str(exc).lower():
                    raise ConcurrentUpdateError(
                        f"support state already exists conversation_id={state.conversation_id}"
                    ) from exc
                raise
        else:
            result = (
                table.update(row)
                .eq("user_id", state.user_id)
                .eq("conversation_id", state.conversation_id)
                .eq("version", expected_version)
                .execute()
            )
            if not (result.data or []):
                raise ConcurrentUpdateError(
                    f"support state changed conversation_id={state.conversation_id} expected={expected_version}"
                )
        return replace(state, version=new_version, turn_failed=False)

    def append_message(self, user_id: str, conversation_id: str, message: dict[str, Any]) -> None:
        self._client.table(self._messages_table).insert(
            {
                "user_id": user_id,
                "conversation_id": conversation_id,
                "role": message.get("role"),
                "content": message.get("content"),
                "created_at": utcnow().isoformat(),
            }
        ).execute()

    def list_messages(self, user_id: str, conversation_id: str) -> list[dict[str, Any]]:
        result = (
            self._client.table(self._messages_table)
            .select("role,content,created_at")
            .eq("user_id", user_id)
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .execute()
        )
        return [
            {"role": row.get("role"), "content": row.get("content"), "createdAt": row.get("created_at")}
            for row in (result.data or [])
        ]
