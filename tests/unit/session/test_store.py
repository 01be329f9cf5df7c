import pytest

from src.server.session.events import TextDelta, ToolStarted, ToolUpdated, TurnCompleted, TurnStarted
from src.server.session.ingest import StreamingIngestController
from src.server.session.models import MessageRole, ToolStatus
from src.server.session.state import SessionStateStore, create_session
from src.server.session.store import SQLiteSessionStore


async def _open_store(tmp_path):
    db = SQLiteSessionStore(str(tmp_path / "session_store.db"))
    await db.init()
    return db


def _finished_turn(session_id="s1", prompt="你好", reply="你好，请问有什么可以帮你？"):
    state = create_session(session_id)
    state.append_user_message(prompt)
    StreamingIngestController(state).apply_all(
        [
            TurnStarted(),
            TextDelta(text=reply),
            ToolStarted(id="t1", tool_name="search", input={"q": prompt}),
            ToolUpdated(id="t1", status=ToolStatus.COMPLETED, output={"hits": ["a"]}),
            TurnCompleted(),
        ]
    )
    return state


def test_db_path_gets_db_suffix(tmp_path):
    db = SQLiteSessionStore(str(tmp_path / "history"))
    assert db.db_path.endswith("history.db")


@pytest.mark.asyncio
async def test_save_and_load_snapshot(tmp_path):
    store = await _open_store(tmp_path)
    state = _finished_turn()
    await store.save_snapshot(state.snapshot(), user_id="u1")

    loaded = await store.load_snapshot("s1")

    assert loaded is not None
    assert [m.role for m in loaded.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert loaded.messages[1].content == "你好，请问有什么可以帮你？"
    assert loaded.is_streaming is False
    execution = loaded.tool("t1")
    assert execution.status is ToolStatus.COMPLETED
    assert execution.input == {"q": "你好"}
    assert execution.output == {"hits": ["a"]}
    assert execution.message_id == loaded.messages[1].id
    assert execution.start_time.tzinfo is not None


@pytest.mark.asyncio
async def test_session_summary_fields(tmp_path):
    store = await _open_store(tmp_path)
    await store.save_snapshot(_finished_turn().snapshot(), user_id="u1")

    session = await store.get_session("s1")

    assert session.user_id == "u1"
    assert session.title == "你好，请问有什么可以帮你？"
    assert session.message_count == 2
    assert session.last_message_preview.startswith("你好")
    assert session.created_at <= session.updated_at


@pytest.mark.asyncio
async def test_incomplete_message_round_trips(tmp_path):
    store = await _open_store(tmp_path)
    state = create_session("s2")
    state.append_user_message("long question")
    controller = StreamingIngestController(state)
    controller.apply_all([TurnStarted(), TextDelta(text="partial")])
    controller.cancel()

    await store.save_snapshot(state.snapshot())
    history = await store.get_message_history("s2")

    assert history[-1].content == "partial"
    assert history[-1].incomplete is True
    assert history[-1].finalized is True


@pytest.mark.asyncio
async def test_resaving_appends_new_turn_and_keeps_title(tmp_path):
    store = await _open_store(tmp_path)
    state = _finished_turn()
    await store.save_snapshot(state.snapshot())

    state.append_user_message("follow up")
    StreamingIngestController(state).apply_all(
        [TurnStarted(), TextDelta(text="second answer"), TurnCompleted()]
    )
    await store.save_snapshot(state.snapshot())

    session = await store.get_session("s1")
    history = await store.get_message_history("s1")
    assert session.message_count == 4
    assert session.title == "你好，请问有什么可以帮你？"
    assert session.last_message_preview == "second answer"
    assert [m.content for m in history][-2:] == ["follow up", "second answer"]


@pytest.mark.asyncio
async def test_restored_session_continues_sequence(tmp_path):
    store = await _open_store(tmp_path)
    await store.save_snapshot(_finished_turn().snapshot())
    restored = SessionStateStore.from_snapshot(await store.load_snapshot("s1"))

    follow_up = restored.append_user_message("again")

    assert follow_up.seq > max(m.seq for m in restored.snapshot().messages[:-1])


@pytest.mark.asyncio
async def test_list_sessions_filters_by_user(tmp_path):
    store = await _open_store(tmp_path)
    await store.save_snapshot(_finished_turn("a").snapshot(), user_id="u1")
    await store.save_snapshot(_finished_turn("b").snapshot(), user_id="u2")

    assert {s.id for s in await store.list_sessions()} == {"a", "b"}
    assert [s.id for s in await store.list_sessions(user_id="u2")] == ["b"]


@pytest.mark.asyncio
async def test_rename_and_delete_session(tmp_path):
    store = await _open_store(tmp_path)
    await store.save_snapshot(_finished_turn().snapshot())

    renamed = await store.rename_session("s1", "新的会话名称")
    assert renamed.title == "新的会话名称"

    await store.save_snapshot(_finished_turn().snapshot())
    assert (await store.get_session("s1")).title == "新的会话名称"

    await store.delete_session("s1")
    assert await store.get_session("s1") is None
    assert await store.load_snapshot("s1") is None
    assert await store.get_message_history("s1") == []


@pytest.mark.asyncio
async def test_unknown_session(tmp_path):
    store = await _open_store(tmp_path)
    assert await store.get_session("missing") is None
    assert await store.load_snapshot("missing") is None
    with pytest.raises(ValueError):
        await store.rename_session("missing", "title")
