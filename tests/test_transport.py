import asyncio
import json

import httpx
import pytest

from chatbridge.models.chat.enums import MessageRole, StreamTextMode, TransportMode
from chatbridge.models.chat.models import ContentPart
from chatbridge.models.errors.models import (
    BackendStreamError,
    HttpStatusError,
    MalformedResponseError,
    RequestTimeoutError,
)
from chatbridge.services.transport import HttpTransport
from tests.helpers import ENDPOINT_URL, sse_record, streaming_response


TEXT = (ContentPart.of_text("track my order"),)


@pytest.fixture
async def make_transport(make_settings):
    clients: list[httpx.AsyncClient] = []

    def _make(handler, **overrides) -> HttpTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return HttpTransport(make_settings(**overrides), client)

    yield _make

    for client in clients:
        await client.aclose()


async def test_standard_request_shape_and_reply(make_transport) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"output": "Sure, what's your order number?", "sessionId": "srv-9"})

    transport = make_transport(handler, auth_headers={"Authorization": "Bearer token"})

    reply = await transport.run(TEXT, "local-1", {"page": "/orders"}, lambda text: None)

    assert reply.text == "Sure, what's your order number?"
    assert reply.session_id == "srv-9"

    request = requests[0]
    body = json.loads(request.content)
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT_URL
    assert request.headers["Authorization"] == "Bearer token"
    assert body["chatInput"] == "track my order"
    assert body["sessionId"] == "local-1"
    assert body["action"] == "sendMessage"
    assert body["context"]["page"] == "/orders"
    assert "timestamp" in body["context"]
    assert "files" not in body


async def test_configured_key_names_are_used(make_transport) -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"output": "ok"})

    transport = make_transport(handler, chat_input_key="question", session_key="conversation")

    await transport.run(TEXT, "abc", {}, lambda text: None)

    assert bodies[0]["question"] == "track my order"
    assert bodies[0]["conversation"] == "abc"
    assert "chatInput" not in bodies[0]


async def test_attachments_and_history_are_sent(make_transport) -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"output": "ok"})

    transport = make_transport(handler, include_message_history=True)
    content = (
        ContentPart.of_text("what is this?"),
        ContentPart.of_file("https://files.example.test/photo.jpg", "photo.jpg", "image/jpeg"),
    )

    await transport.run(content, "abc", {}, lambda text: None, history=(("user", "hi"), ("assistant", "hello")))

    assert bodies[0]["files"] == [{
        "type": "image",
        "url": "https://files.example.test/photo.jpg",
        "filename": "photo.jpg",
        "mime_type": "image/jpeg",
    }]
    assert bodies[0]["messageHistory"] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


async def test_missing_output_is_empty_text(make_transport) -> None:
    transport = make_transport(lambda request: httpx.Response(200, json={}))

    reply = await transport.run(TEXT, "abc", {}, lambda text: None)

    assert reply.text == ""
    assert reply.session_id is None


@pytest.mark.parametrize("body", ["<html>oops</html>", "[1, 2]", '{"output": 42}'])
async def test_unexpected_standard_bodies_are_malformed(make_transport, body) -> None:
    transport = make_transport(lambda request: httpx.Response(200, text=body))

    with pytest.raises(MalformedResponseError):
        await transport.run(TEXT, "abc", {}, lambda text: None)


async def test_non_success_status_is_raised_with_details(make_transport) -> None:
    transport = make_transport(
        lambda request: httpx.Response(429, text="slow down", headers={"Retry-After": "3"})
    )

    with pytest.raises(HttpStatusError) as exc_info:
        await transport.run(TEXT, "abc", {}, lambda text: None)

    assert exc_info.value.status_code == 429
    assert exc_info.value.body == "slow down"
    assert exc_info.value.retry_after == "3"


async def test_streaming_reports_cumulative_partials(make_transport) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return streaming_response(
            sse_record({"output": "Hi"}),
            sse_record({"output": "Hi there"}),
            sse_record("[DONE]"),
        )

    transport = make_transport(handler, mode=TransportMode.STREAMING)
    partials: list[str] = []

    reply = await transport.run(TEXT, "abc", {}, partials.append)

    assert partials == ["Hi", "Hi there"]
    assert reply.text == "Hi there"
    assert requests[0].headers["Accept"] == "text/event-stream"


async def test_streaming_handles_records_split_across_chunks(make_transport) -> None:
    transport = make_transport(
        lambda request: streaming_response(
            'data: {"outp',
            'ut": "Hel',
            'lo"}\n',
            "\ndata: [DO",
            "NE]\n\n",
        ),
        mode=TransportMode.STREAMING,
    )
    partials: list[str] = []

    reply = await transport.run(TEXT, "abc", {}, partials.append)

    assert partials == ["Hello"]
    assert reply.text == "Hello"


async def test_streaming_delta_mode_concatenates(make_transport) -> None:
    transport = make_transport(
        lambda request: streaming_response(
            sse_record({"output": "Hel"}),
            sse_record({"output": "lo"}),
            sse_record("[DONE]"),
        ),
        mode=TransportMode.STREAMING,
        stream_text_mode=StreamTextMode.DELTA,
    )
    partials: list[str] = []

    reply = await transport.run(TEXT, "abc", {}, partials.append)

    assert partials == ["Hel", "Hello"]
    assert reply.text == "Hello"


async def test_streaming_picks_up_a_server_session_id(make_transport) -> None:
    transport = make_transport(
        lambda request: streaming_response(
            sse_record({"sessionId": "srv-5"}, event="begin"),
            sse_record({"output": "Hi"}),
            sse_record("[DONE]"),
        ),
        mode=TransportMode.STREAMING,
    )

    reply = await transport.run(TEXT, "abc", {}, lambda text: None)

    assert reply.session_id == "srv-5"


async def test_stream_without_end_marker_is_malformed(make_transport) -> None:
    transport = make_transport(
        lambda request: streaming_response(sse_record({"output": "Hi"})),
        mode=TransportMode.STREAMING,
    )

    with pytest.raises(MalformedResponseError):
        await transport.run(TEXT, "abc", {}, lambda text: None)


async def test_error_record_in_stream_is_raised(make_transport) -> None:
    transport = make_transport(
        lambda request: streaming_response(
            sse_record({"output": "Hi"}),
            sse_record("model overloaded", event="error"),
        ),
        mode=TransportMode.STREAMING,
    )

    with pytest.raises(BackendStreamError):
        await transport.run(TEXT, "abc", {}, lambda text: None)


async def test_streaming_non_success_status(make_transport) -> None:
    transport = make_transport(
        lambda request: httpx.Response(502, text="bad gateway"),
        mode=TransportMode.STREAMING,
    )

    with pytest.raises(HttpStatusError) as exc_info:
        await transport.run(TEXT, "abc", {}, lambda text: None)

    assert exc_info.value.status_code == 502
    assert exc_info.value.body == "bad gateway"


async def test_deadline_expiry_raises_a_timeout(make_transport) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={"output": "too late"})

    transport = make_transport(slow, request_timeout_seconds=0.05)

    with pytest.raises(RequestTimeoutError):
        await transport.run(TEXT, "abc", {}, lambda text: None)


async def test_load_history_keeps_user_and_assistant_turns(make_transport) -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [
            {"role": "user", "content": "hi"},
            {"role": "system", "content": "hidden"},
            {"role": "assistant", "content": "hello"},
            {"role": "assistant", "content": None},
        ]})

    transport = make_transport(handler)

    history = await transport.load_history("abc", {})

    assert history == [(MessageRole.USER, "hi"), (MessageRole.ASSISTANT, "hello")]
    assert bodies[0]["action"] == "loadPreviousSession"
    assert bodies[0]["sessionId"] == "abc"


async def test_load_history_failure_is_empty(make_transport) -> None:
    transport = make_transport(lambda request: httpx.Response(500, text="nope"))

    assert await transport.load_history("abc", {}) == []
