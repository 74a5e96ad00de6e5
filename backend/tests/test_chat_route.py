import asyncio

from fastapi import HTTPException
from starlette.requests import Request

from app.routes.chat import ChatRequest, chat
from helpdesk.errors import ConcurrentUpdateError


def _request() -> Request:
    scope = {"type": "http", "method": "POST", "path": "/api/chat", "headers": [], "query_string": b""}
    return Request(scope)


async def _fake_user(_request: Request) -> str:
    return "user-1"


class _Orchestrator:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def handle_message(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"response": "hi", "supportStage": "general_chat", "requiresTool": False, "toolType": None}


def test_chat_passes_message_and_permission(monkeypatch):
    orchestrator = _Orchestrator()
    monkeypatch.setattr("app.routes.chat.get_authenticated_user_id", _fake_user)
    monkeypatch.setattr("app.routes.chat.get_session_orchestrator", lambda: orchestrator)

    out = asyncio.run(chat(ChatRequest(conversationId=" conv-1 ", message="hello", ticketPermission=True), _request()))

    assert out["supportStage"] == "general_chat"
    assert orchestrator.calls == [
        {"user_id": "user-1", "conversation_id": "conv-1", "message": "hello", "ticket_permission": True}
    ]


def test_chat_rejects_missing_fields_without_side_effects(monkeypatch):
    orchestrator = _Orchestrator()
    monkeypatch.setattr("app.routes.chat.get_authenticated_user_id", _fake_user)
    monkeypatch.setattr("app.routes.chat.get_session_orchestrator", lambda: orchestrator)

    for body in (ChatRequest(message="hello"), ChatRequest(conversationId="conv-1", message="   ")):
        try:
            asyncio.run(chat(body, _request()))
        except HTTPException as exc:
            assert exc.status_code == 400
            assert exc.detail["code"] == "INVALID_REQUEST"
        else:
            assert False, "expected HTTPException"
    assert orchestrator.calls == []


def test_chat_conflict_maps_to_409(monkeypatch):
    monkeypatch.setattr("app.routes.chat.get_authenticated_user_id", _fake_user)
    monkeypatch.setattr(
        "app.routes.chat.get_session_orchestrator",
        lambda: _Orchestrator(error=ConcurrentUpdateError("support state changed")),
    )

    try:
        asyncio.run(chat(ChatRequest(conversationId="conv-1", message="hello there"), _request()))
    except HTTPException as exc:
        assert exc.status_code == 409
        assert exc.detail["code"] == "CONVERSATION_CONFLICT"
    else:
        assert False, "expected HTTPException"


def test_chat_requires_token():
    try:
        asyncio.run(chat(ChatRequest(conversationId="conv-1", message="hello"), _request()))
    except HTTPException as exc:
        assert exc.status_code == 401
        assert exc.detail["code"] == "AUTH_REQUIRED"
    else:
        assert False, "expected HTTPException"
