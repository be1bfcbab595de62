"""Stand-ins for the Anthropic client used by the brain tests."""

from types import SimpleNamespace


def claude_message(text, stop_reason="end_turn", message_id="msg_test_01", blocks=None):
    content = blocks if blocks is not None else [SimpleNamespace(type="text", text=text)]
    return SimpleNamespace(id=message_id, content=content, stop_reason=stop_reason)


class FakeStream:
    def __init__(self, chunks):
        self.text_stream = iter(chunks)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class FakeMessages:
    def __init__(self, responses, stream_chunks):
        self.responses = list(responses)
        self.stream_chunks = list(stream_chunks)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        return FakeStream(self.stream_chunks)


class FakeClaude:
    """Returns queued responses from ``messages.create`` in order."""

    def __init__(self, *responses, stream_chunks=()):
        self.messages = FakeMessages(responses, stream_chunks)
