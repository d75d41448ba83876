"""Event dispatcher: per-command listeners, catch-all channels and reply correlation."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from irclink.errors import IRCError, ReplyTimeout
from irclink.protocol.message import Message

Key = int | str
Listener = Callable[..., Any]
ErrorSink = Callable[[IRCError], None]

# Lowercase channel names that are not protocol commands
RESERVED_KEYS = frozenset({"message", "error", "data", "connect", "ready", "reconnect", "disconnect"})


def normalize_key(key: Key) -> Key:
    """Numeric strings become ints, command names are uppercased."""
    if isinstance(key, int):
        return key
    if key in RESERVED_KEYS:
        return key
    if key.isdigit():
        return int(key)
    return key.upper()


def log_error(error: IRCError) -> None:
    """Default error sink."""
    logger.error("{}", error)


class ReplyHandle:
    """Awaitable result of a reply expectation; resolves exactly once."""

    def __init__(self, keys: frozenset[Key], future: asyncio.Future[Message]) -> None:
        self.keys = keys
        self._future = future
        future.add_done_callback(_consume_exception)

    def __await__(self):
        return self._future.__await__()

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self) -> Message:
        return self._future.result()

    def cancel(self) -> bool:
        return self._future.cancel()

    def add_done_callback(self, fn: Callable[[ReplyHandle], Any]) -> None:
        self._future.add_done_callback(lambda _: fn(self))

    def _resolve(self, message: Message) -> None:
        if not self._future.done():
            self._future.set_result(message)

    def _fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)


def _consume_exception(future: asyncio.Future) -> None:
    # Mark the exception retrieved; awaiting callers still see it.
    if not future.cancelled():
        future.exception()


@dataclass
class _Expectation:
    handle: ReplyHandle
    handler: Listener | None = None
    match: Callable[[Message], bool] | None = None
    timer: asyncio.TimerHandle | None = None

    @property
    def keys(self) -> frozenset[Key]:
        return self.handle.keys


class EventDispatcher:
    """Routes parsed messages and lifecycle events to listeners.

    Listener errors are logged and reported to the error sink; they never
    propagate out of ``emit`` or ``dispatch``. A listener that returns an
    awaitable has it scheduled as a task on the running loop.
    """

    def __init__(self, error_sink: ErrorSink | None = None) -> None:
        self._listeners: defaultdict[Key, list[Listener]] = defaultdict(list)
        self._expectation: _Expectation | None = None
        self._error_sink: ErrorSink = error_sink or log_error
        self._tasks: set[asyncio.Task] = set()

    # ---------- registration ----------------------------------------------

    def on(self, key: Key, listener: Listener) -> Listener:
        """Register listener under key; returns listener."""
        self._listeners[normalize_key(key)].append(listener)
        return listener

    def once(self, key: Key, listener: Listener) -> Listener:
        """Register listener to run for the next event on key only."""
        key = normalize_key(key)

        def wrapper(*args: Any) -> Any:
            if not self._remove(key, wrapper):
                return None
            return listener(*args)

        wrapper.__wrapped__ = listener  # type: ignore[attr-defined]
        self._listeners[key].append(wrapper)
        return listener

    def off(self, key: Key, listener: Listener) -> bool:
        """Remove listener (or a once-wrapper around it). Returns True if found."""
        key = normalize_key(key)
        for registered in self._listeners.get(key, []):
            if registered is listener or getattr(registered, "__wrapped__", None) is listener:
                return self._remove(key, registered)
        return False

    def listeners(self, key: Key) -> list[Listener]:
        return list(self._listeners.get(normalize_key(key), []))

    def _remove(self, key: Key, registered: Listener) -> bool:
        bucket = self._listeners.get(key)
        if not bucket or registered not in bucket:
            return False
        bucket.remove(registered)
        if not bucket:
            del self._listeners[key]
        return True

    # ---------- delivery --------------------------------------------------

    def emit(self, key: Key, *args: Any) -> int:
        """Call every listener for key with args; returns how many ran."""
        listeners = list(self._listeners.get(normalize_key(key), []))
        for listener in listeners:
            self._call(listener, key, args)
        return len(listeners)

    def dispatch(self, message: Message) -> None:
        """Deliver a parsed message.

        An outstanding reply expectation matching the command takes the
        message alone. Otherwise listeners run for the command key, then
        ``message``, then ``error`` for 400-599 numerics.
        """
        expectation = self._expectation
        if expectation is not None and self._claims(expectation, message):
            self._clear(expectation)
            expectation.handle._resolve(message)
            if expectation.handler is not None:
                self._call(expectation.handler, message.command, (message, *message.params))
            return

        self.emit(message.command, message, *message.params)
        self.emit("message", message)
        if message.is_error:
            self.emit("error", message, *message.params)

    def _claims(self, expectation: _Expectation, message: Message) -> bool:
        if message.command not in expectation.keys:
            return False
        if expectation.match is None:
            return True
        try:
            return bool(expectation.match(message))
        except Exception as exc:
            logger.exception("Reply matcher for {} failed: {}", message.command, exc)
            self.report(IRCError(f"Reply matcher failed: {exc}", code="listener_failed", original_error=exc))
            return False

    def _call(self, listener: Listener, key: Key, args: tuple[Any, ...]) -> None:
        result = None
        try:
            result = listener(*args)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result, loop=asyncio.get_running_loop())
                self._tasks.add(task)
                task.add_done_callback(lambda t, k=key: self._task_done(t, k))
        except Exception as exc:
            if inspect.iscoroutine(result):
                result.close()
            logger.exception("Listener {!r} for {} failed: {}", listener, key, exc)
            self.report(
                IRCError(f"Listener for {key} failed: {exc}", code="listener_failed", original_error=exc)
            )

    def _task_done(self, task: asyncio.Task, key: Key) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Async listener for {} failed: {}", key, exc)
            self.report(IRCError(f"Listener for {key} failed: {exc}", code="listener_failed", original_error=exc))

    def report(self, error: IRCError) -> None:
        """Send error to the error sink; sink failures are only logged."""
        try:
            self._error_sink(error)
        except Exception as exc:
            logger.exception("Error sink failed: {}", exc)

    # ---------- reply correlation -----------------------------------------

    def expect(
        self,
        keys: Key | Iterable[Key],
        handler: Listener | None = None,
        timeout: float | None = None,
        match: Callable[[Message], bool] | None = None,
    ) -> ReplyHandle:
        """Install the single reply expectation, replacing any previous one.

        ``match`` narrows which messages carrying an expected command are
        claimed; the others go through normal dispatch.
        """
        if isinstance(keys, (int, str)):
            keys = (keys,)
        normalized = frozenset(normalize_key(k) for k in keys)
        if not normalized:
            raise ValueError("expect() needs at least one key")

        loop = asyncio.get_running_loop()
        previous = self._expectation
        if previous is not None:
            logger.debug("Reply expectation for {} replaced", sorted(map(str, previous.keys)))
            self._clear(previous)
            previous.handle.cancel()

        expectation = _Expectation(ReplyHandle(normalized, loop.create_future()), handler, match)
        if timeout is not None and timeout > 0:
            expectation.timer = loop.call_later(timeout, self._expire, expectation, timeout)
        self._expectation = expectation
        return expectation.handle

    @property
    def expecting(self) -> frozenset[Key] | None:
        """Keys of the outstanding expectation, if any."""
        return self._expectation.keys if self._expectation else None

    def cancel_expectation(self) -> None:
        expectation = self._expectation
        if expectation is not None:
            self._clear(expectation)
            expectation.handle.cancel()

    def _clear(self, expectation: _Expectation) -> None:
        if expectation.timer is not None:
            expectation.timer.cancel()
            expectation.timer = None
        if self._expectation is expectation:
            self._expectation = None

    def _expire(self, expectation: _Expectation, timeout: float) -> None:
        expectation.timer = None
        if self._expectation is not expectation:
            return
        self._expectation = None
        error = ReplyTimeout(sorted(expectation.keys, key=str), timeout)
        expectation.handle._fail(error)
        self.report(error)
