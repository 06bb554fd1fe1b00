"""Conversation state for a report chat.

``ChatSession`` owns the message history and drives ``ChatStreamClient`` one
turn at a time. Public intents (``start``, ``send_message``, ``retry``,
``abort``, ``reset``, ``destroy``) are synchronous: they update state
immediately and schedule the turn on the running event loop. A new intent
always preempts the turn in flight; turns are never queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from ..auth import AuthConfig, resolve_auth_headers
from ..schemas.chat import AttachmentMetadata, ChatMessage
from .errors import ChatAuthError, ChatServerError
from .transport import (
    CancellationSignal,
    ChatStreamClient,
    StreamResult,
    SummaryPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 20
SUMMARY_NUDGE = "Please generate the summary now."

AuthResolver = Callable[[Optional[AuthConfig]], Awaitable[dict[str, str]]]


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DESTROYED = "destroyed"


class AttachmentProvider(Protocol):
    """Anything that can list pending attachments exposing name, size and type."""

    def get_all(self) -> Iterable[Any]:
        ...


@dataclass(eq=False)
class _Turn:
    signal: CancellationSignal
    messages: list[ChatMessage]
    buffer: list[str] = field(default_factory=list)
    task: Optional[asyncio.Task[StreamResult]] = None


class ChatSession:
    """Multi-turn conversation that ends in a structured report summary."""

    def __init__(
        self,
        endpoint: str,
        *,
        auth: Optional[AuthConfig] = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        locale: Optional[str] = None,
        attachments: Optional[AttachmentProvider] = None,
        client: Optional[ChatStreamClient] = None,
        auth_resolver: AuthResolver = resolve_auth_headers,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")

        self._endpoint = str(endpoint)
        self._auth = auth
        self._max_messages = max_messages
        self._locale = locale
        self._attachments = attachments
        self._owns_client = client is None
        self._client = client if client is not None else ChatStreamClient()
        self._auth_resolver = auth_resolver

        self._messages: list[ChatMessage] = []
        self._pending_context: Any = None
        self._is_first_request = True
        self._state = SessionState.IDLE
        self._turn: Optional[_Turn] = None
        # Finished turns may still be unwinding; keep them referenced.
        self._tasks: set[asyncio.Task[StreamResult]] = set()

        self._text_callback: Optional[Callable[[str], None]] = None
        self._summary_callback: Optional[Callable[[SummaryPayload], None]] = None
        self._done_callback: Optional[Callable[[], None]] = None
        self._error_callback: Optional[Callable[[Exception], None]] = None

    # ------------------------------------------------------------------
    # Callback registration (single slot; a new registration replaces the old)
    # ------------------------------------------------------------------

    def on_text_chunk(self, callback: Optional[Callable[[str], None]]) -> None:
        self._text_callback = callback

    def on_summary(self, callback: Optional[Callable[[SummaryPayload], None]]) -> None:
        self._summary_callback = callback

    def on_done(self, callback: Optional[Callable[[], None]]) -> None:
        self._done_callback = callback

    def on_error(self, callback: Optional[Callable[[Exception], None]]) -> None:
        self._error_callback = callback

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def start(self, snapshot: Any) -> None:
        """Begin a new conversation carrying ``snapshot`` on its first request."""

        if self._destroyed:
            return
        loop = asyncio.get_running_loop()
        self._cancel_turn()
        self._messages = []
        self._pending_context = snapshot
        self._is_first_request = True
        self._begin_turn(loop)

    def send_message(self, content: str) -> None:
        """Append a user turn and stream the reply, preempting any turn in flight."""

        if self._destroyed:
            return
        loop = asyncio.get_running_loop()
        self._cancel_turn()
        self._messages.append(ChatMessage(role="user", content=content))
        if len(self._messages) >= self._max_messages:
            self._messages.append(ChatMessage(role="user", content=SUMMARY_NUDGE))
        self._begin_turn(loop)

    def retry(self) -> None:
        """Replay the last user turn, dropping it and everything after it first."""

        if self._destroyed or self._state is SessionState.STREAMING:
            return

        index = self._last_user_index()
        if index is None:
            return
        # A summary nudge is never what the user typed; replay the turn that
        # triggered it and let send_message add the nudge again if needed.
        if (
            self._messages[index].content == SUMMARY_NUDGE
            and index > 0
            and self._messages[index - 1].role == "user"
        ):
            index -= 1

        content = self._messages[index].content
        del self._messages[index:]
        logger.debug("Retrying last user turn (%d messages kept)", len(self._messages))
        self.send_message(content)

    def abort(self) -> None:
        """Cancel the turn in flight; history is left untouched."""

        if self._destroyed:
            return
        self._cancel_turn()

    def reset(self) -> None:
        """Abort and forget the conversation, including the one-shot context."""

        if self._destroyed:
            return
        self._clear()

    def destroy(self) -> None:
        """Reset and permanently disable the session."""

        if self._destroyed:
            return
        self._clear()
        self._state = SessionState.DESTROYED
        self._text_callback = None
        self._summary_callback = None
        self._done_callback = None
        self._error_callback = None

    async def wait(self) -> Optional[StreamResult]:
        """Wait for the turn in flight, if any, and return its outcome."""

        turn = self._turn
        if turn is None or turn.task is None:
            return None
        task = turn.task
        await asyncio.wait({task})
        if task.cancelled():
            return StreamResult.cancelled()
        return task.result()

    async def aclose(self) -> None:
        """Destroy the session, let cancelled turns unwind and close the client."""

        self.destroy()
        if self._tasks:
            await asyncio.wait(set(self._tasks))
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def get_last_user_message(self) -> Optional[str]:
        index = self._last_user_index()
        return None if index is None else self._messages[index].content

    def is_streaming(self) -> bool:
        return self._state is SessionState.STREAMING

    def get_state(self) -> SessionState:
        return self._state

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    @property
    def _destroyed(self) -> bool:
        return self._state is SessionState.DESTROYED

    def _last_user_index(self) -> Optional[int]:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].role == "user":
                return index
        return None

    def _begin_turn(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._turn is not None:
            raise RuntimeError("A turn is already in flight")

        turn = _Turn(signal=CancellationSignal(), messages=list(self._messages))
        self._turn = turn
        self._state = SessionState.STREAMING

        task = loop.create_task(self._run_turn(turn))
        turn.task = task
        turn.signal.bind(task)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _finish_turn(self, turn: _Turn) -> None:
        turn.buffer.clear()
        if self._turn is turn:
            self._turn = None
        if self._state is SessionState.STREAMING:
            self._state = SessionState.IDLE

    def _cancel_turn(self) -> None:
        turn = self._turn
        if turn is not None:
            logger.debug("Cancelling chat turn in flight")
            turn.signal.cancel()
            self._finish_turn(turn)

    def _clear(self) -> None:
        self._cancel_turn()
        self._messages = []
        self._pending_context = None
        self._is_first_request = False

    def _is_current(self, turn: _Turn) -> bool:
        return self._turn is turn and self._state is SessionState.STREAMING

    def _take_context(self) -> Any:
        context = self._pending_context if self._is_first_request else None
        self._is_first_request = False
        return context

    def _attachment_meta(self) -> Optional[list[AttachmentMetadata]]:
        if self._attachments is None:
            return None
        meta = [
            AttachmentMetadata(name=item.name, size=item.size, type=item.type)
            for item in self._attachments.get_all()
        ]
        return meta or None

    async def _run_turn(self, turn: _Turn) -> StreamResult:
        try:
            return await self._execute_turn(turn)
        except asyncio.CancelledError:
            if not turn.signal.cancelled:
                raise
            return StreamResult.cancelled()
        except Exception as exc:
            logger.exception("Chat turn failed unexpectedly")
            if self._is_current(turn):
                self._finish_turn(turn)
                self._emit_error(exc)
            return StreamResult.failed(exc)

    async def _execute_turn(self, turn: _Turn) -> StreamResult:
        logger.debug("Starting chat turn with %d messages", len(turn.messages))
        try:
            auth_headers = await self._auth_resolver(self._auth)
        except Exception as exc:
            logger.warning("Failed to resolve chat auth headers: %s", exc)
            error = ChatAuthError("Authentication error")
            if self._is_current(turn):
                self._finish_turn(turn)
                self._emit_error(error)
            return StreamResult.failed(error)

        if not self._is_current(turn):
            return StreamResult.cancelled()

        attachment_meta = self._attachment_meta()
        # Taken last so a failure while building the request keeps the snapshot.
        context = self._take_context()
        result = await self._client.stream_chat(
            self._endpoint,
            turn.messages,
            context,
            auth_headers,
            on_text=lambda chunk: self._handle_text(turn, chunk),
            on_summary=lambda summary: self._handle_summary(turn, summary),
            on_done=lambda: self._handle_done(turn),
            on_error=lambda message: self._handle_server_error(turn, message),
            signal=turn.signal,
            locale=self._locale,
            attachment_meta=attachment_meta,
        )

        if self._is_current(turn):
            self._finish_turn(turn)
            if result.is_failed and result.error is not None:
                self._emit_error(result.error)
        logger.debug("Chat turn finished: %s", result.status.value)
        return result

    def _handle_text(self, turn: _Turn, chunk: str) -> None:
        if not self._is_current(turn):
            return
        turn.buffer.append(chunk)
        self._emit(self._text_callback, chunk)

    def _handle_summary(self, turn: _Turn, summary: SummaryPayload) -> None:
        if not self._is_current(turn):
            return
        self._emit(self._summary_callback, summary)

    def _handle_done(self, turn: _Turn) -> None:
        if not self._is_current(turn):
            return
        content = "".join(turn.buffer)
        if content:
            self._messages.append(ChatMessage(role="assistant", content=content))
        self._finish_turn(turn)
        self._emit(self._done_callback)

    def _handle_server_error(self, turn: _Turn, message: str) -> None:
        if not self._is_current(turn):
            return
        self._finish_turn(turn)
        self._emit_error(ChatServerError(message))

    def _emit_error(self, error: Exception) -> None:
        self._emit(self._error_callback, error)

    def _emit(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None or self._destroyed:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Chat session callback %r raised", callback)


__all__ = [
    "AttachmentProvider",
    "ChatSession",
    "DEFAULT_MAX_MESSAGES",
    "SUMMARY_NUDGE",
    "SessionState",
]
