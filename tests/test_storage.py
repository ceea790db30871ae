"""
Tests for history and session-metadata storage.
Each durable test uses a fresh SQLite file under tmp_path.
"""

import pytest
from unittest.mock import patch

from chatwire.errors import StorageError
from chatwire.models import Message, Role
from chatwire.storage import (
    InMemoryHistoryStore,
    InMemorySessionRegistry,
    SQLiteHistoryStore,
    SQLiteSessionRegistry,
    SQLiteStore,
    channel_key,
    generate_session_name,
    history_key,
    metadata_key,
    open_storage,
    validate_session_name,
)


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    s = SQLiteStore(str(tmp_path / "test.db"))
    yield s
    s.close()


@pytest.fixture(params=["memory", "sqlite"])
def history(request, store):
    if request.param == "memory":
        return InMemoryHistoryStore()
    return SQLiteHistoryStore(store)


@pytest.fixture(params=["memory", "sqlite"])
def registry(request, store):
    if request.param == "memory":
        return InMemorySessionRegistry()
    return SQLiteSessionRegistry(store)


def user(text):
    return Message(role=Role.USER, content=text)


def assistant(text):
    return Message(role=Role.ASSISTANT, content=text)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def test_keys_derived_from_session_name():
    """History, metadata and channel keys share the session name."""
    assert history_key("demo") == "session:demo:messages"
    assert metadata_key("demo") == "session:demo:metadata"
    assert channel_key("demo") == "chatwire:stream:demo"
    assert channel_key("demo", prefix="obs") == "obs:demo"


@pytest.mark.parametrize("name", ["", "has space", "a:b", "../etc", "-leading", "x" * 129])
def test_invalid_session_names_rejected(name):
    """Names that cannot safely key storage raise ValueError."""
    with pytest.raises(ValueError):
        validate_session_name(name)


def test_generated_session_name_is_valid():
    """Generated names look like session-<hex> and validate."""
    name = generate_session_name()
    assert name.startswith("session-")
    assert validate_session_name(name) == name
    assert generate_session_name() != name


# ---------------------------------------------------------------------------
# HistoryStore
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_history_append_and_read(history):
    """Appends are read back in order with their positions."""
    assert await history.append("s1", user("hi")) == 0
    assert await history.append("s1", assistant("hello!")) == 1
    assert await history.append("s1", user("how are you?")) == 2

    messages = await history.read_all("s1")
    assert [m.content for m in messages] == ["hi", "hello!", "how are you?"]
    assert messages[1].role is Role.ASSISTANT


@pytest.mark.asyncio
async def test_history_unknown_session_is_empty(history):
    """Reading a session never written yields an empty list."""
    assert await history.read_all("nobody") == []


@pytest.mark.asyncio
async def test_history_sessions_are_separate(history):
    """Messages in different sessions stay separate."""
    await history.append("s1", user("one"))
    await history.append("s2", user("two"))
    assert len(await history.read_all("s1")) == 1
    assert (await history.read_all("s2"))[0].content == "two"


@pytest.mark.asyncio
async def test_history_clear(history):
    """clear removes every entry; later appends start from zero."""
    await history.append("s1", user("a"))
    await history.append("s1", user("b"))
    await history.clear("s1")
    assert await history.read_all("s1") == []
    assert await history.append("s1", user("c")) == 0


@pytest.mark.asyncio
async def test_history_empty_content_kept(history):
    """An empty assistant reply is stored as a zero-length message."""
    await history.append("s1", assistant(""))
    assert await history.read_all("s1") == [assistant("")]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["memory", "sqlite"])
async def test_history_ttl_expiry(kind, store):
    """Once the TTL passes without appends, the log reads as empty."""
    h = InMemoryHistoryStore(ttl=60) if kind == "memory" else SQLiteHistoryStore(store, ttl=60)
    with patch("chatwire.storage.history.now_ms", return_value=1_000_000):
        await h.append("s1", user("a"))
    with patch("chatwire.storage.history.now_ms", return_value=1_050_000):
        await h.append("s1", user("b"))  # refreshes expiry to 1_110_000
    with patch("chatwire.storage.history.now_ms", return_value=1_100_000):
        assert len(await h.read_all("s1")) == 2
    with patch("chatwire.storage.history.now_ms", return_value=1_120_000):
        assert await h.read_all("s1") == []


@pytest.mark.asyncio
async def test_sqlite_history_survives_reopen(tmp_path):
    """Durable history is still there after the store is reopened."""
    path = str(tmp_path / "durable.db")
    with SQLiteStore(path) as s:
        await SQLiteHistoryStore(s).append("s1", user("persist me"))
    with SQLiteStore(path) as s:
        assert (await SQLiteHistoryStore(s).read_all("s1"))[0].content == "persist me"


# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_registry_upsert_creates_and_counts(registry):
    """First upsert creates the record; each upsert bumps the count."""
    first = await registry.upsert("s1", title="Hello")
    assert first.message_count == 1
    assert first.title == "Hello"
    second = await registry.upsert("s1")
    assert second.message_count == 2
    assert second.created_at == first.created_at
    assert second.title == "Hello"


@pytest.mark.asyncio
async def test_registry_get_unknown(registry):
    """get returns None for an unknown session."""
    assert await registry.get("missing") is None


@pytest.mark.asyncio
async def test_registry_list_most_recent_first(registry):
    """list is ordered by last_message, most recent first."""
    await registry.upsert("A", last_message=100)
    await registry.upsert("B", last_message=300)
    await registry.upsert("C", last_message=200)
    assert [s.name for s in await registry.list()] == ["B", "C", "A"]


@pytest.mark.asyncio
async def test_registry_reset(registry):
    """reset zeroes the count but keeps created_at and title."""
    created = await registry.upsert("s1", title="t")
    await registry.upsert("s1")
    reset = await registry.reset("s1")
    assert reset.message_count == 0
    assert reset.created_at == created.created_at
    assert reset.title == "t"


@pytest.mark.asyncio
async def test_registry_reset_unknown_creates_record(registry):
    """Resetting an unknown session creates a zero-count record."""
    record = await registry.reset("fresh")
    assert record.message_count == 0
    assert (await registry.get("fresh")).name == "fresh"


@pytest.mark.asyncio
async def test_registry_delete(registry):
    """delete removes the record and reports whether it existed."""
    await registry.upsert("s1")
    assert await registry.delete("s1") is True
    assert await registry.get("s1") is None
    assert await registry.delete("s1") is False


@pytest.mark.asyncio
async def test_registry_to_dict_camel_case(registry):
    """Metadata serializes with the discovery field names."""
    record = await registry.upsert("s1", last_message=42, title="Hi")
    data = record.to_dict()
    assert data["name"] == "s1"
    assert data["lastMessage"] == 42
    assert data["messageCount"] == 1
    assert data["title"] == "Hi"
    assert "createdAt" in data


# ---------------------------------------------------------------------------
# SessionStorage
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_open_storage_durable(tmp_path):
    """A usable path gives durable storage and no warning."""
    storage, warning = open_storage(str(tmp_path / "c.db"))
    assert warning is None
    assert storage.durable
    storage.close()
    assert storage.store.closed


def test_open_storage_memory_without_path():
    """No path means in-memory storage, silently."""
    storage, warning = open_storage(None)
    assert warning is None
    assert not storage.durable


def test_open_storage_falls_back_to_memory(tmp_path):
    """An unusable database falls back to memory with a warning."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    storage, warning = open_storage(str(blocker / "c.db"))
    assert not storage.durable
    assert "in-memory" in warning


@pytest.mark.asyncio
@pytest.mark.parametrize("durable", [False, True])
async def test_storage_reset_clears_history_and_metadata(durable, tmp_path):
    """reset empties the log and zeroes the count together."""
    storage, _ = open_storage(str(tmp_path / "r.db") if durable else None)
    await storage.history.append("s1", user("a"))
    await storage.registry.upsert("s1")
    await storage.reset("s1")
    assert await storage.history.read_all("s1") == []
    assert (await storage.registry.get("s1")).message_count == 0
    storage.close()


@pytest.mark.asyncio
async def test_storage_reset_rolls_back_on_failure(tmp_path):
    """If the metadata reset fails, the history delete is rolled back."""
    storage, _ = open_storage(str(tmp_path / "r.db"))
    await storage.history.append("s1", user("keep me"))
    with patch.object(SQLiteSessionRegistry, "reset_in", side_effect=StorageError("boom")):
        with pytest.raises(StorageError):
            await storage.reset("s1")
    assert [m.content for m in await storage.history.read_all("s1")] == ["keep me"]
    storage.close()


@pytest.mark.asyncio
async def test_closed_store_raises_storage_error(store):
    """Operations on a closed store raise StorageError."""
    h = SQLiteHistoryStore(store)
    store.close()
    with pytest.raises(StorageError):
        await h.read_all("s1")


def test_message_from_dict():
    """Messages load from their stored dict form."""
    assert Message.from_dict({"role": "assistant", "content": "hi"}) == assistant("hi")
    assert Message.from_dict({"role": "user"}) == user("")
    with pytest.raises(ValueError):
        Message.from_dict({"role": "robot", "content": "x"})


@pytest.mark.asyncio
async def test_sqlite_history_roles_round_trip(store):
    """Roles read back from SQLite as Role members."""
    h = SQLiteHistoryStore(store)
    await h.append("s1", Message(role=Role.SYSTEM, content="be brief"))
    await h.append("s1", assistant("ok"))
    assert [m.role for m in await h.read_all("s1")] == [Role.SYSTEM, Role.ASSISTANT]
