"""Tests for conversation history."""

from boltloop.conversation import Conversation


def test_add_and_replace():
    conversation = Conversation()
    conversation.add("user", "hi")
    index = conversation.add("assistant", "", checkpoint_ref="cp")

    first = conversation.messages[index]
    conversation.replace(index, "hello")

    assert first.content == ""
    assert conversation.messages[index].content == "hello"
    assert conversation.messages[index].checkpoint_ref == "cp"


def test_last_user_message():
    conversation = Conversation()
    assert conversation.last_user_message() is None

    conversation.add("user", "one")
    conversation.add("assistant", "reply")
    conversation.add("user", "two")
    conversation.add("system", "TOOL RESULTS:")

    assert conversation.last_user_index() == 2
    assert conversation.last_user_message().content == "two"


def test_truncate_and_to_llm():
    conversation = Conversation()
    for role, content in [("user", "a"), ("assistant", "b"), ("system", "c")]:
        conversation.add(role, content)

    conversation.truncate(2)

    assert len(conversation) == 2
    assert conversation.to_llm() == [
        {"role": "user", "content": "a"},
        {"role": "assistant", "content": "b"},
    ]

    conversation.clear()
    assert len(conversation) == 0
