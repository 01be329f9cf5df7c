import pytest

from src.server.session.errors import (
    AlreadyStreaming,
    DuplicateToolId,
    InvalidInput,
    InvalidSessionId,
    InvalidTransition,
    NoOpenMessage,
    UnknownToolId,
)
from src.server.session.models import MessageRole, ToolStatus
from src.server.session.state import SessionRegistry, SessionStateStore, create_session


def test_create_session_starts_empty():
    store = create_session("session-1")
    snapshot = store.snapshot()

    assert snapshot.session_id == "session-1"
    assert snapshot.messages == ()
    assert snapshot.tool_executions == ()
    assert snapshot.is_streaming is False


@pytest.mark.parametrize("session_id", ["", "   "])
def test_create_session_rejects_empty_id(session_id):
    with pytest.raises(InvalidSessionId):
        create_session(session_id)


def test_invalid_session_id_is_invalid_input():
    assert issubclass(InvalidSessionId, InvalidInput)


def test_append_user_message():
    store = create_session("s")
    message = store.append_user_message("hello")

    assert message.role is MessageRole.USER
    assert message.content == "hello"
    assert message.finalized is True
    assert store.snapshot().messages == (message,)


@pytest.mark.parametrize("content", ["", "  \n\t "])
def test_append_user_message_rejects_blank(content):
    store = create_session("s")
    with pytest.raises(InvalidInput):
        store.append_user_message(content)
    assert store.snapshot().messages == ()


def test_assistant_message_lifecycle():
    store = create_session("s")
    opened = store.begin_assistant_message()
    assert store.is_streaming is True
    assert opened.finalized is False

    store.append_assistant_delta("Hel")
    store.append_assistant_delta("")
    store.append_assistant_delta("lo")
    closed = store.finalize_assistant_message()

    assert closed.content == "Hello"
    assert closed.finalized is True
    assert closed.incomplete is False
    assert store.is_streaming is False
    assert store.open_message_id is None


def test_only_one_open_assistant_message():
    store = create_session("s")
    store.begin_assistant_message()

    with pytest.raises(AlreadyStreaming):
        store.begin_assistant_message()

    assistants = [m for m in store.snapshot().messages if m.role is MessageRole.ASSISTANT]
    assert len(assistants) == 1


def test_user_message_rejected_while_streaming():
    store = create_session("s")
    store.begin_assistant_message()

    with pytest.raises(AlreadyStreaming):
        store.append_user_message("interrupting")


def test_delta_without_open_message_fails():
    store = create_session("s")
    with pytest.raises(NoOpenMessage):
        store.append_assistant_delta("x")
    with pytest.raises(NoOpenMessage):
        store.append_reasoning_delta("x")


def test_finalize_twice_fails():
    store = create_session("s")
    store.begin_assistant_message()
    store.finalize_assistant_message()

    with pytest.raises(NoOpenMessage):
        store.finalize_assistant_message()


def test_delta_after_finalize_fails_and_content_is_frozen():
    store = create_session("s")
    store.begin_assistant_message()
    store.append_assistant_delta("done")
    store.finalize_assistant_message()

    with pytest.raises(NoOpenMessage):
        store.append_assistant_delta(" more")
    assert store.snapshot().messages[-1].content == "done"


def test_reasoning_delta_accumulates_separately():
    store = create_session("s")
    store.begin_assistant_message()
    store.append_reasoning_delta("thinking ")
    store.append_reasoning_delta("hard")
    store.append_assistant_delta("answer")

    message = store.snapshot().messages[-1]
    assert message.reasoning_content == "thinking hard"
    assert message.content == "answer"


def test_record_tool_start_and_complete():
    store = create_session("s")
    started = store.record_tool_start("t1", "search", {"q": "bedrock"})
    assert started.status is ToolStatus.PENDING
    assert started.end_time is None

    store.update_tool_status("t1", ToolStatus.RUNNING)
    finished = store.update_tool_status("t1", ToolStatus.COMPLETED, {"hits": 3})

    assert finished.status is ToolStatus.COMPLETED
    assert finished.output == {"hits": 3}
    assert finished.end_time is not None
    assert finished.end_time >= finished.start_time


def test_tool_can_start_running():
    store = create_session("s")
    started = store.record_tool_start("t1", "search", status=ToolStatus.RUNNING)
    assert started.status is ToolStatus.RUNNING


def test_tool_cannot_start_terminal():
    store = create_session("s")
    with pytest.raises(InvalidTransition):
        store.record_tool_start("t1", "search", status=ToolStatus.COMPLETED)
    assert store.snapshot().tool_executions == ()


def test_duplicate_tool_id_leaves_first_untouched():
    store = create_session("s")
    first = store.record_tool_start("t1", "search", {"q": "a"})

    with pytest.raises(DuplicateToolId):
        store.record_tool_start("t1", "fetch", {"url": "b"})

    executions = store.snapshot().tool_executions
    assert len(executions) == 1
    assert executions[0] == first


def test_update_unknown_tool_fails():
    store = create_session("s")
    with pytest.raises(UnknownToolId):
        store.update_tool_status("missing", ToolStatus.RUNNING)


@pytest.mark.parametrize(
    "path, rejected",
    [
        ([ToolStatus.COMPLETED], ToolStatus.RUNNING),
        ([ToolStatus.FAILED], ToolStatus.COMPLETED),
        ([ToolStatus.RUNNING], ToolStatus.PENDING),
        ([ToolStatus.RUNNING], ToolStatus.RUNNING),
        ([], ToolStatus.PENDING),
    ],
)
def test_tool_status_never_regresses(path, rejected):
    store = create_session("s")
    store.record_tool_start("t1", "search")
    for status in path:
        store.update_tool_status("t1", status)
    before = store.snapshot().tool("t1")

    with pytest.raises(InvalidTransition):
        store.update_tool_status("t1", rejected)
    assert store.snapshot().tool("t1") == before


def test_pending_tool_may_fail_directly():
    store = create_session("s")
    store.record_tool_start("t1", "search")
    failed = store.update_tool_status("t1", ToolStatus.FAILED, {"error": "timeout"})
    assert failed.status is ToolStatus.FAILED
    assert failed.end_time is not None


def test_tool_attached_to_open_message():
    store = create_session("s")
    message = store.begin_assistant_message()
    execution = store.record_tool_start("t1", "search")
    assert execution.message_id == message.id


def test_snapshot_is_isolated_from_later_mutation():
    store = create_session("s")
    payload = {"q": ["a"]}
    store.begin_assistant_message()
    store.append_assistant_delta("par")
    store.record_tool_start("t1", "search", payload)
    snapshot = store.snapshot()

    payload["q"].append("b")
    store.append_assistant_delta("tial")
    store.update_tool_status("t1", ToolStatus.RUNNING)

    assert snapshot.messages[-1].content == "par"
    assert snapshot.tool("t1").status is ToolStatus.PENDING
    assert snapshot.tool("t1").input == {"q": ["a"]}
    assert snapshot.is_streaming is True


def test_snapshot_is_frozen():
    store = create_session("s")
    store.append_user_message("hi")
    snapshot = store.snapshot()
    with pytest.raises(Exception):
        snapshot.is_streaming = True
    with pytest.raises(Exception):
        snapshot.messages[0].content = "changed"


def test_messages_and_tools_share_creation_order():
    store = create_session("s")
    user = store.append_user_message("q")
    assistant = store.begin_assistant_message()
    tool = store.record_tool_start("t1", "search")
    assert user.seq < assistant.seq < tool.seq


def test_from_snapshot_closes_open_messages_and_continues_seq():
    store = create_session("s")
    store.append_user_message("q")
    store.begin_assistant_message()
    store.append_assistant_delta("half")
    store.record_tool_start("t1", "search")
    snapshot = store.snapshot()

    restored = SessionStateStore.from_snapshot(snapshot)
    restored_snapshot = restored.snapshot()

    assert restored.is_streaming is False
    assert restored_snapshot.messages[-1].content == "half"
    assert restored_snapshot.messages[-1].incomplete is True
    assert restored_snapshot.tool("t1").status is ToolStatus.PENDING
    follow_up = restored.append_user_message("again")
    assert follow_up.seq > snapshot.tool("t1").seq


def test_registry_keeps_sessions_independent():
    registry = SessionRegistry()
    first = registry.get_or_create("a")
    second = registry.get_or_create("b")

    first.begin_assistant_message()

    assert registry.get_or_create("a") is first
    assert second.is_streaming is False
    assert sorted(registry.session_ids()) == ["a", "b"]

    registry.discard("a")
    assert registry.get("a") is None
    assert "a" not in registry


def test_registry_restore_prefers_live_session():
    registry = SessionRegistry()
    live = registry.get_or_create("a")
    live.append_user_message("live")

    other = create_session("a")
    assert registry.restore(other.snapshot()) is live


def test_registry_release_only_drops_idle_tracked_sessions():
    registry = SessionRegistry()
    busy = registry.get_or_create("busy")
    busy.begin_assistant_message()
    idle = registry.get_or_create("idle")

    assert registry.release(busy) is False
    assert registry.release(create_session("idle")) is False
    assert "idle" in registry

    assert registry.release(idle) is True
    assert registry.get("idle") is None
    assert registry.session_ids() == ["busy"]


def test_unknown_tool_status_is_invalid_input():
    store = create_session("s")
    with pytest.raises(InvalidInput):
        store.record_tool_start("t1", "search", status="exploded")
    assert store.snapshot().tool_executions == ()

    store.record_tool_start("t1", "search")
    with pytest.raises(InvalidInput):
        store.update_tool_status("t1", "exploded")
    assert store.snapshot().tool("t1").status is ToolStatus.PENDING


def test_tool_status_accepts_wire_strings():
    store = create_session("s")
    store.record_tool_start("t1", "search", status="running")
    assert store.update_tool_status("t1", "completed").status is ToolStatus.COMPLETED
