import asyncio

from helpdesk.errors import CompletionError, TicketingError, TicketingErrorCode
from helpdesk.prompts import FALLBACK_APOLOGY
from helpdesk.state_machine import TRANSITIONS, ResolutionStateMachine
from helpdesk.types import Intent, SupportStage, SupportState, SystemInfo, TicketRecord


class _Completion:
    def __init__(self, reply: str = "Try restarting the device.", fail_on: str | None = None):
        self.reply = reply
        self.fail_on = fail_on
        self.prompts: list[str] = []

    async def complete(self, prompt: str, **_kwargs) -> str:
        self.prompts.append(prompt)
        if self.fail_on is not None and self.fail_on in prompt:
            raise CompletionError("openai:http_500")
        return self.reply


class _Gateway:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def create_ticket(self, user_id, draft, *, conversation_id=None):
        self.calls.append((user_id, draft, conversation_id))
        if self.error is not None:
            raise self.error
        return TicketRecord(
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            category=draft.category,
            project="Acme Support",
            project_id="cloud-1",
            ticket_key="SUP-7",
        )


def _state(**overrides) -> SupportState:
    values = {"user_id": "user-1", "conversation_id": "conv-1", "issue": "My camera doesn't work"}
    values.update(overrides)
    return SupportState(**values)


def _machine(completion=None, gateway=None) -> ResolutionStateMachine:
    return ResolutionStateMachine(completion=completion or _Completion(), gateway=gateway or _Gateway())


def test_every_intent_has_a_transition():
    assert set(TRANSITIONS) == set(Intent)


def test_first_message_without_system_info_collects_info():
    completion = _Completion("Could you share your OS, RAM, storage, device age and type?")
    state = _state()

    result = asyncio.run(_machine(completion).process_message(state, "My camera doesn't work"))

    assert result.current_stage == SupportStage.COLLECTING_INFO
    assert result.attempts == 0
    assert result.ticket_details is None
    for field in ("Operating System", "RAM", "Storage", "Device Age", "Device Type"):
        assert field in completion.prompts[0]
    assert state.user_feedback == []
    assert result.user_feedback == ["My camera doesn't work"]
    assert result.last_message == "My camera doesn't work"


def test_system_info_reply_is_captured_and_analyzed():
    completion = _Completion("Looks like a driver issue. First, update the webcam driver.")
    state = _state(current_stage=SupportStage.COLLECTING_INFO, user_feedback=["My camera doesn't work"])

    result = asyncio.run(_machine(completion).process_message(state, "Windows 11, 16GB RAM, 512GB SSD, 2 years old laptop"))

    assert result.system_info.os == "Windows 11"
    assert result.current_stage == SupportStage.ANALYZING
    assert result.attempts == 1
    assert result.solutions == ["Looks like a driver issue. First, update the webcam driver."]
    assert "Windows 11" in completion.prompts[0]


def test_unstructured_reply_still_moves_conversation_on():
    state = _state(current_stage=SupportStage.COLLECTING_INFO)
    result = asyncio.run(_machine().process_message(state, "it is the company issued one"))
    assert result.system_info.raw == "it is the company issued one"
    assert result.current_stage == SupportStage.ANALYZING


def test_attempt_threshold_with_connection_requests_permission():
    state = _state(attempts=3, jira_connected=True, system_info=SystemInfo(os="Windows 11"), solutions=["a", "b", "c"])

    result = asyncio.run(_machine().process_message(state, "still doesn't work"))

    assert result.current_stage == SupportStage.REQUESTING_PERMISSION
    assert result.ticket_details.priority == "high"
    assert result.ticket_details.category == "Hardware"
    assert result.attempts == 3


def test_attempt_threshold_without_connection_escalates_with_draft():
    state = _state(attempts=3, system_info=SystemInfo(os="Windows 11"))

    result = asyncio.run(_machine().process_message(state, "what else can I possibly try"))

    assert result.current_stage == SupportStage.ESCALATING
    assert result.ticket_details is not None


def test_consent_creates_ticket_exactly_once():
    gateway = _Gateway()
    completion = _Completion("Your ticket SUP-7 has been created.")
    state = _state(
        attempts=3,
        jira_connected=True,
        system_info=SystemInfo(os="Windows 11"),
        current_stage=SupportStage.REQUESTING_PERMISSION,
    )

    result = asyncio.run(_machine(completion, gateway).process_message(state, "yes please"))

    assert result.current_stage == SupportStage.COMPLETED
    assert len(gateway.calls) == 1
    user_id, draft, conversation_id = gateway.calls[0]
    assert (user_id, conversation_id) == ("user-1", "conv-1")
    assert result.ticket_details == draft
    assert result.ticket_permission is None
    assert "SUP-7" in completion.prompts[-1]
    assert result.response == "Your ticket SUP-7 has been created."


def test_ticket_failure_completes_without_claiming_success():
    gateway = _Gateway(error=TicketingError(TicketingErrorCode.TOKEN_REFRESH_FAILED))
    state = _state(attempts=3, system_info=SystemInfo(os="Windows 11"), ticket_permission=True)

    result = asyncio.run(_machine(gateway=gateway).process_message(state, "please create the ticket now"))

    assert result.current_stage == SupportStage.COMPLETED
    assert result.ticket_details is None
    assert "reconnect" in result.response.lower()
    assert "has been created" not in result.response.lower()
    assert result.ticket_permission is None


def test_confirmation_failure_after_ticket_uses_template():
    completion = _Completion(fail_on="successfully created")
    state = _state(attempts=3, system_info=SystemInfo(os="Windows 11"), ticket_permission=True)

    result = asyncio.run(_machine(completion).process_message(state, "please create the ticket now"))

    assert result.current_stage == SupportStage.COMPLETED
    assert result.turn_failed is False
    assert "SUP-7" in result.response
    assert result.ticket_details is not None


def test_decline_returns_to_troubleshooting():
    state = _state(
        attempts=2,
        jira_connected=True,
        system_info=SystemInfo(os="Windows 11"),
        current_stage=SupportStage.REQUESTING_PERMISSION,
    )

    result = asyncio.run(_machine().process_message(state, "no, not now thanks"))

    assert result.current_stage == SupportStage.TROUBLESHOOTING
    assert result.ticket_permission is False
    assert result.attempts == 3


def test_connection_question_reports_state():
    completion = _Completion("You are connected.")
    state = _state(attempts=1, jira_connected=True)

    result = asyncio.run(_machine(completion).process_message(state, "is jira connected?"))

    assert result.current_stage == SupportStage.CHECKING_JIRA
    assert "Current Jira connection status: connected" in completion.prompts[0]


def test_model_failure_falls_back_without_counting_attempt():
    completion = _Completion(fail_on="troubleshooting steps")
    state = _state(attempts=1, system_info=SystemInfo(os="Windows 11"), solutions=["Restart"])

    result = asyncio.run(_machine(completion).process_message(state, "the picture is still black"))

    assert result.current_stage == SupportStage.COMPLETED
    assert result.response == FALLBACK_APOLOGY
    assert result.turn_failed is True
    assert result.attempts == 1
    assert result.solutions == ["Restart"]
    assert result.ticket_details is None
