import asyncio
import pathlib
import sys
from typing import Any, Optional

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from report_chat.chat.transport import CancellationSignal, StreamResult  # noqa: E402


class FakeStreamClient:
    """Stand-in for ChatStreamClient that replays scripted turns.

    Each scripted turn is a list of ``(kind, value)`` steps: ``text``,
    ``summary``, ``error``, ``done``, ``fail`` (value is the error), ``hang``
    (block until cancelled) and ``yield`` (let the loop run once). A turn that
    runs out of steps completes as if the server closed the stream.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.turns: list[list[tuple[str, Any]]] = []
        self.closed = False

    def script(self, *steps: tuple[str, Any]) -> None:
        self.turns.append(list(steps))

    async def stream_chat(
        self,
        endpoint: str,
        messages,
        diagnostic_context: Any,
        auth_headers,
        *,
        on_text,
        on_summary,
        on_done,
        on_error=None,
        signal: Optional[CancellationSignal] = None,
        locale: Optional[str] = None,
        attachment_meta=None,
    ) -> StreamResult:
        self.calls.append(
            {
                "endpoint": endpoint,
                "messages": list(messages),
                "diagnostic_context": diagnostic_context,
                "auth_headers": dict(auth_headers),
                "locale": locale,
                "attachment_meta": attachment_meta,
            }
        )
        steps = self.turns.pop(0) if self.turns else [("done", None)]
        try:
            for kind, value in steps:
                if signal is not None and signal.cancelled:
                    return StreamResult.cancelled()
                if kind == "text":
                    on_text(value)
                elif kind == "summary":
                    on_summary(value)
                elif kind == "error":
                    on_error(value)
                    return StreamResult.completed()
                elif kind == "done":
                    on_done()
                    return StreamResult.completed()
                elif kind == "fail":
                    return StreamResult.failed(value)
                elif kind == "hang":
                    await asyncio.Event().wait()
                elif kind == "yield":
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            if signal is not None and signal.cancelled:
                return StreamResult.cancelled()
            raise
        if signal is not None and signal.cancelled:
            return StreamResult.cancelled()
        on_done()
        return StreamResult.completed()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeStreamClient:
    return FakeStreamClient()
