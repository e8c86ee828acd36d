"""Unit tests for relaybot.conversation.store.InMemoryConversationStore."""

from __future__ import annotations

from relaybot.conversation.store import ConversationStore, InMemoryConversationStore


def test_unknown_conversation_is_empty() -> None:
    assert InMemoryConversationStore().get("nope") == []


def test_save_and_get_round_trip_returns_copy() -> None:
    store = InMemoryConversationStore()
    history = [{"role": "user", "content": "hi"}]
    store.save("s1", history)

    loaded = store.get("s1")
    loaded.append({"role": "assistant", "content": "mutated"})

    assert store.get("s1") == [{"role": "user", "content": "hi"}]
    assert len(store) == 1


def test_clear_and_clear_all() -> None:
    store = InMemoryConversationStore()
    store.save("s1", [])
    store.save("s2", [])

    store.clear("s1")
    store.clear("missing")
    assert len(store) == 1

    store.clear_all()
    assert len(store) == 0


def test_satisfies_protocol() -> None:
    assert isinstance(InMemoryConversationStore(), ConversationStore)
