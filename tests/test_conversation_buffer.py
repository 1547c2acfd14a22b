from aether.conversation_buffer import ConversationBuffer


def test_buffer_caps_at_max():
    buf = ConversationBuffer(max_turns=3)
    buf.add("user", "one")
    buf.add("assistant", "two")
    buf.add("user", "three")
    buf.add("assistant", "four")
    contents = [m["content"] for m in buf.as_messages()]
    assert contents == ["two", "three", "four"]


def test_buffer_clears_on_new_instance():
    buf = ConversationBuffer(max_turns=2)
    buf.add("user", "hello")
    assert len(buf.as_messages()) == 1
    assert ConversationBuffer(max_turns=2).as_messages() == []


def test_messages_are_chat_api_shaped():
    buf = ConversationBuffer(max_turns=4)
    buf.add("user", "hi")
    buf.add("assistant", "hello")
    assert buf.as_messages() == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


def test_empty_content_is_skipped():
    buf = ConversationBuffer()
    buf.add("assistant", "")
    assert buf.as_messages() == []


def test_clear():
    buf = ConversationBuffer()
    buf.add("user", "remember this")
    buf.clear(reason="session reset")
    assert buf.as_messages() == []
