"""Tests for the streaming chat transport."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Optional

import httpx
import pytest

from report_chat.chat.errors import ChatTransportError
from report_chat.chat.transport import (
    CancellationSignal,
    ChatStreamClient,
    StreamStatus,
    chat_url,
    error_message_for_status,
)
from report_chat.schemas.chat import AttachmentMetadata, ChatMessage, ReportSummary

ENDPOINT = "https://api.test.com"
MESSAGES = [ChatMessage(role="user", content="It crashes on save")]


def frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def sse_handler(
    chunks: Iterable[bytes],
    *,
    requests: Optional[list[httpx.Request]] = None,
    hang: bool = False,
) -> Callable[[httpx.Request], httpx.Response]:
    """Return a MockTransport handler streaming ``chunks`` as the body."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)

        async def body():
            for chunk in chunks:
                yield chunk
            if hang:
                await asyncio.Event().wait()

        return httpx.Response(
            200, content=body(), headers={"Content-Type": "text/event-stream"}
        )

    return handler


class Recorder:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.summaries: list[Any] = []
        self.errors: list[str] = []
        self.done = 0

    def _on_done(self) -> None:
        self.done += 1

    def callbacks(self) -> dict[str, Any]:
        return {
            "on_text": self.texts.append,
            "on_summary": self.summaries.append,
            "on_done": self._on_done,
            "on_error": self.errors.append,
        }


async def run_stream(handler, recorder: Recorder, **kwargs: Any):
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = ChatStreamClient(http)
        return await client.stream_chat(
            kwargs.pop("endpoint", ENDPOINT),
            kwargs.pop("messages", MESSAGES),
            kwargs.pop("diagnostic_context", None),
            kwargs.pop("auth_headers", {}),
            **recorder.callbacks(),
            **kwargs,
        )


def test_chat_url_strips_trailing_slashes():
    assert chat_url("https://api.test.com") == "https://api.test.com/chat"
    assert chat_url("https://api.test.com/v1//") == "https://api.test.com/v1/chat"


@pytest.mark.parametrize(
    ("status", "message"),
    [
        (404, "Chat endpoint not found"),
        (401, "Authentication error"),
        (403, "Authentication error"),
        (500, "Server error"),
        (503, "Server error"),
        (418, "Request failed (418)"),
    ],
)
def test_error_message_for_status(status: int, message: str):
    assert error_message_for_status(status) == message


class TestStreamChatRequest:
    @pytest.mark.asyncio
    async def test_posts_body_and_headers(self):
        requests: list[httpx.Request] = []
        recorder = Recorder()

        result = await run_stream(
            sse_handler([frame({"type": "done"})], requests=requests),
            recorder,
            endpoint=f"{ENDPOINT}/",
            diagnostic_context={"os": "macOS", "version": "2.1.0"},
            auth_headers={"X-Project-Key": "key-123"},
            locale="de-DE",
            attachment_meta=[
                AttachmentMetadata(name="log.txt", size=12, type="text/plain")
            ],
        )

        assert result.is_ok
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.test.com/chat"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["accept"] == "text/event-stream"
        assert request.headers["x-project-key"] == "key-123"
        assert json.loads(request.content) == {
            "messages": [{"role": "user", "content": "It crashes on save"}],
            "diagnostic_context": {"os": "macOS", "version": "2.1.0"},
            "attachment_meta": [
                {"name": "log.txt", "size": 12, "type": "text/plain"}
            ],
            "locale": "de-DE",
        }

    @pytest.mark.asyncio
    async def test_optional_fields_are_omitted(self):
        requests: list[httpx.Request] = []

        await run_stream(
            sse_handler([frame({"type": "done"})], requests=requests), Recorder()
        )

        body = json.loads(requests[0].content)
        assert body == {
            "messages": [{"role": "user", "content": "It crashes on save"}],
            "diagnostic_context": None,
        }


class TestStreamChatEvents:
    @pytest.mark.asyncio
    async def test_text_chunks_then_done(self):
        recorder = Recorder()
        result = await run_stream(
            sse_handler(
                [
                    frame({"type": "text", "content": "Hel"}),
                    frame({"type": "text", "content": "lo"}),
                    frame({"type": "done"}),
                ]
            ),
            recorder,
        )

        assert result.status is StreamStatus.OK
        assert recorder.texts == ["Hel", "lo"]
        assert recorder.done == 1
        assert recorder.errors == []

    @pytest.mark.asyncio
    async def test_frame_split_across_reads(self):
        recorder = Recorder()
        await run_stream(
            sse_handler(
                [
                    b'data: {"type":"te',
                    b'xt","content":"hi"}\n',
                    b"\n",
                    frame({"type": "done"}),
                ]
            ),
            recorder,
        )

        assert recorder.texts == ["hi"]
        assert recorder.done == 1

    @pytest.mark.asyncio
    async def test_stream_end_without_done_completes(self):
        recorder = Recorder()
        result = await run_stream(
            sse_handler(
                [frame({"type": "text", "content": "partial"}), b'data: {"type"']
            ),
            recorder,
        )

        assert result.is_ok
        assert recorder.texts == ["partial"]
        assert recorder.done == 1

    @pytest.mark.asyncio
    async def test_error_frame_is_terminal(self):
        recorder = Recorder()
        result = await run_stream(
            sse_handler(
                [
                    frame({"type": "error", "content": "model overloaded"}),
                    frame({"type": "text", "content": "late"}),
                    frame({"type": "done"}),
                ]
            ),
            recorder,
        )

        assert result.is_ok
        assert recorder.errors == ["model overloaded"]
        assert recorder.texts == []
        assert recorder.done == 0

    @pytest.mark.asyncio
    async def test_error_frame_without_content(self):
        recorder = Recorder()
        await run_stream(sse_handler([frame({"type": "error"})]), recorder)
        assert recorder.errors == [""]

    @pytest.mark.asyncio
    async def test_nothing_is_read_after_done(self):
        recorder = Recorder()
        await run_stream(
            sse_handler(
                [frame({"type": "done"}) + frame({"type": "text", "content": "late"})]
            ),
            recorder,
        )

        assert recorder.texts == []
        assert recorder.done == 1

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self):
        recorder = Recorder()
        await run_stream(
            sse_handler(
                [
                    b"data: {not json}\n\n",
                    frame({"type": "text", "content": "ok"}),
                    frame({"type": "done"}),
                ]
            ),
            recorder,
        )

        assert recorder.texts == ["ok"]
        assert recorder.done == 1

    @pytest.mark.asyncio
    async def test_empty_text_and_empty_summary_are_not_reported(self):
        recorder = Recorder()
        await run_stream(
            sse_handler(
                [
                    frame({"type": "text", "content": ""}),
                    frame({"type": "summary"}),
                    frame({"type": "done"}),
                ]
            ),
            recorder,
        )

        assert recorder.texts == []
        assert recorder.summaries == []

    @pytest.mark.asyncio
    async def test_summary_is_parsed_into_report(self):
        recorder = Recorder()
        data = {
            "category": "bug",
            "title": "Crash on save",
            "steps_to_reproduce": ["Open a file", "Press save"],
            "component": "editor",
        }
        await run_stream(
            sse_handler([frame({"type": "summary", "data": data}), frame({"type": "done"})]),
            recorder,
        )

        summary = recorder.summaries[0]
        assert isinstance(summary, ReportSummary)
        assert summary.title == "Crash on save"
        assert summary.steps_to_reproduce == ["Open a file", "Press save"]
        assert summary.model_extra == {"component": "editor"}

    @pytest.mark.asyncio
    async def test_unrecognized_summary_is_passed_through(self):
        recorder = Recorder()
        await run_stream(
            sse_handler(
                [frame({"type": "summary", "data": {"verdict": "unclear"}})]
            ),
            recorder,
        )

        assert recorder.summaries == [{"verdict": "unclear"}]


class TestStreamChatFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "message"),
        [
            (404, "Chat endpoint not found"),
            (401, "Authentication error"),
            (502, "Server error"),
            (422, "Request failed (422)"),
        ],
    )
    async def test_http_error_status(self, status: int, message: str):
        recorder = Recorder()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="<html>nope</html>")

        result = await run_stream(handler, recorder)

        assert result.is_failed
        assert isinstance(result.error, ChatTransportError)
        assert result.error.status == status
        assert result.error.message == message
        assert recorder.done == 0
        assert recorder.errors == []

    @pytest.mark.asyncio
    async def test_http_error_prefers_server_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"message": "Project key revoked"})

        result = await run_stream(handler, Recorder())

        assert result.error.status == 403
        assert result.error.message == "Project key revoked"

    @pytest.mark.asyncio
    async def test_network_error_reports_status_zero(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder()
        result = await run_stream(handler, recorder)

        assert result.is_failed
        assert result.error.status == 0
        assert result.error.message == "connection refused"
        assert recorder.done == 0


class TestStreamChatCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_request(self):
        requests: list[httpx.Request] = []
        signal = CancellationSignal()
        signal.cancel()

        result = await run_stream(
            sse_handler([frame({"type": "done"})], requests=requests),
            Recorder(),
            signal=signal,
        )

        assert result.is_cancelled
        assert requests == []

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_data(self):
        recorder = Recorder()
        signal = CancellationSignal()
        handler = sse_handler(
            [frame({"type": "text", "content": "Hel"})], hang=True
        )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ChatStreamClient(http)
            task = asyncio.create_task(
                client.stream_chat(
                    ENDPOINT, MESSAGES, None, {}, signal=signal, **recorder.callbacks()
                )
            )
            signal.bind(task)
            for _ in range(200):
                if recorder.texts:
                    break
                await asyncio.sleep(0)

            signal.cancel()
            result = await task

        assert result.is_cancelled
        assert recorder.texts == ["Hel"]
        assert recorder.done == 0
        assert recorder.errors == []

    @pytest.mark.asyncio
    async def test_cancel_from_callback_stops_dispatch(self):
        signal = CancellationSignal()
        recorder = Recorder()
        callbacks = recorder.callbacks()

        def on_text(chunk: str) -> None:
            recorder.texts.append(chunk)
            signal.cancel()

        callbacks["on_text"] = on_text
        handler = sse_handler(
            [
                frame({"type": "text", "content": "one"})
                + frame({"type": "text", "content": "two"})
                + frame({"type": "done"})
            ]
        )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            result = await ChatStreamClient(http).stream_chat(
                ENDPOINT, MESSAGES, None, {}, signal=signal, **callbacks
            )

        assert result.is_cancelled
        assert recorder.texts == ["one"]
        assert recorder.done == 0

    @pytest.mark.asyncio
    async def test_foreign_cancellation_propagates(self):
        handler = sse_handler([], hang=True)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            task = asyncio.create_task(
                ChatStreamClient(http).stream_chat(
                    ENDPOINT, MESSAGES, None, {}, **Recorder().callbacks()
                )
            )
            for _ in range(20):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task


class TestProbe:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "expected"), [(200, True), (405, True), (500, True), (404, False)]
    )
    async def test_probe_status(self, status: int, expected: bool):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(status)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            available = await ChatStreamClient(http).probe(
                f"{ENDPOINT}/", {"Authorization": "Bearer t"}
            )

        assert available is expected
        assert str(requests[0].url) == "https://api.test.com/chat"
        assert requests[0].headers["authorization"] == "Bearer t"
        assert json.loads(requests[0].content) == {
            "messages": [],
            "diagnostic_context": None,
        }

    @pytest.mark.asyncio
    async def test_probe_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            assert await ChatStreamClient(http).probe(ENDPOINT) is False


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        client = ChatStreamClient()
        http = await client._get_http_client()
        await client.aclose()
        assert http.is_closed

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        async with httpx.AsyncClient() as http:
            client = ChatStreamClient(http)
            await client.aclose()
            assert not http.is_closed
