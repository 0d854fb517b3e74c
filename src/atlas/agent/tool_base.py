"""
Tool base interface.

Defines what the Executor needs from a tool:
- Outcome: standardized result with a typed failure reason
- CancellationToken: idempotent cancellation signal shared with tools
- ProgressReporter: fire-and-forget progress delivery for long tasks
- Tool / FunctionTool: the callable tool contract
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)


class FailureReason(str, Enum):
    """Typed reasons an Outcome can carry."""
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_ERROR = "tool_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONFIRMATION_REQUIRED = "confirmation_required"
    INVALID_PARAMETERS = "invalid_parameters"
    NOT_REVERSIBLE = "not_reversible"
    NOTHING_TO_UNDO = "nothing_to_undo"


ReverseProcedure = Callable[[], Union["Outcome", None, Awaitable[Optional["Outcome"]]]]


@dataclass
class Outcome:
    """
    Result of running a tool (or an undo).

    Attributes:
        success: Whether the tool completed
        message: User-facing text (failures are shown verbatim)
        mutated_state: The tool changed something outside the process
        reverse_procedure: Callable that undoes the change, if possible
        failure_reason: Set when success is False
        description: Past-tense description for the undo history
        target: The object acted on (path, app name, ...)
        data: Tool-specific payload
        duration_ms: Filled in by the Executor
    """
    success: bool
    message: str = ""
    mutated_state: bool = False
    reverse_procedure: Optional[ReverseProcedure] = None
    failure_reason: Optional[FailureReason] = None
    description: Optional[str] = None
    target: Optional[str] = None
    data: Any = None
    duration_ms: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.failure_reason == FailureReason.CANCELLED

    @classmethod
    def ok(
        cls,
        message: str = "Done.",
        *,
        mutated_state: bool = False,
        reverse_procedure: Optional[ReverseProcedure] = None,
        **kwargs: Any,
    ) -> "Outcome":
        """Create successful result."""
        return cls(
            success=True,
            message=message,
            mutated_state=mutated_state,
            reverse_procedure=reverse_procedure,
            **kwargs,
        )

    @classmethod
    def fail(
        cls,
        message: str,
        reason: FailureReason = FailureReason.TOOL_ERROR,
        **kwargs: Any,
    ) -> "Outcome":
        """Create failure result."""
        return cls(success=False, message=message, failure_reason=reason, **kwargs)

    @classmethod
    def for_cancellation(cls, message: str = "Cancelled.") -> "Outcome":
        return cls.fail(message, FailureReason.CANCELLED)


class CancellationRequested(Exception):
    """Raised by tools (via ``raise_if_cancelled``) to abandon work."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(reason)


class CancellationToken:
    """Thread-safe, idempotent cancellation signal.

    Cancelling twice, or after the work finished, is a no-op. A child token
    is cancelled whenever its parent is, but not the other way round.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._callbacks: list[Callable[[str], None]] = []
        self._parent = parent
        if parent is not None:
            parent.add_callback(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel; returns False if already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.warning("[Cancellation] callback failed", exc_info=True)
        return True

    def add_callback(self, callback: Callable[[str], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback(self._reason or "cancelled")

    def remove_callback(self, callback: Callable[[str], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._parent is not None:
            self._parent.remove_callback(self.cancel)
            self._parent = None

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested(self._reason or "cancelled")

    async def wait(self) -> str:
        """Suspend until cancelled; returns the reason."""
        if self._event.is_set():
            return self._reason or "cancelled"
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[str] = loop.create_future()

        def _resolve(reason: str) -> None:
            if not fut.done():
                fut.set_result(reason)

        def _wake(reason: str) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, reason)

        self.add_callback(_wake)
        try:
            return await fut
        finally:
            self.remove_callback(_wake)


@dataclass(frozen=True)
class ProgressEvent:
    tool: str
    phase: str
    percent: Optional[float] = None
    items: Optional[int] = None
    message: Optional[str] = None


ProgressListener = Callable[[ProgressEvent], Any]


class ProgressReporter:
    """Delivers progress events without blocking the reporting tool.

    Listeners run later on the event loop (``call_soon_threadsafe``), so
    a tool reporting from a worker thread or a tight loop never waits on
    the UI. Listener errors are logged and dropped.
    """

    def __init__(
        self,
        tool: str,
        listeners: Iterable[ProgressListener] = (),
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.tool = tool
        self._listeners = [fn for fn in listeners if fn is not None]
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return bool(self._listeners)

    def report(
        self,
        phase: str,
        percent: Optional[float] = None,
        items: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        if not self._listeners:
            return
        if percent is not None:
            percent = max(0.0, min(100.0, float(percent)))
        event = ProgressEvent(tool=self.tool, phase=phase, percent=percent, items=items, message=message)
        for listener in self._listeners:
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._deliver, listener, event)
            else:
                self._deliver(listener, event)

    def _deliver(self, listener: ProgressListener, event: ProgressEvent) -> None:
        try:
            result = listener(event)
        except Exception:
            logger.warning("[Progress] listener failed for %s", event.tool, exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("[Progress] async listener failed: %s", task.exception())


NULL_PROGRESS = ProgressReporter("none")


class Tool(ABC):
    """
    Abstract base class for tools.

    Subclasses set ``name`` and implement ``execute``. Long-running tools
    should poll ``cancel`` between steps and return
    ``Outcome.for_cancellation()`` instead of leaving partial changes.

    Example:
        class ScanTool(Tool):
            name = "security.scan"

            async def execute(self, parameters, cancel, progress):
                for i, path in enumerate(paths):
                    cancel.raise_if_cancelled()
                    progress.report("scanning", percent=100 * i / len(paths), items=i)
                    ...
                return Outcome.ok("No threats found.")
    """

    name: str = ""
    description: str = ""
    required_params: tuple[str, ...] = ()
    timeout: Optional[float] = None

    @abstractmethod
    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        ...

    def validate(self, parameters: Mapping[str, Any]) -> Optional[str]:
        """Return an error message if required parameters are missing."""
        missing = [p for p in self.required_params if parameters.get(p) in (None, "")]
        if missing:
            return f"{self.name} is missing: {', '.join(missing)}"
        return None


class FunctionTool(Tool):
    """Adapts a plain function into a Tool.

    Sync functions run in a worker thread. With ``pass_signals`` the
    function also receives ``cancel`` and ``progress`` keyword arguments;
    such a function is expected to notice ``cancel`` and return, so when
    the call is cancelled the thread gets ``cancel_grace`` seconds to
    finish and its Outcome (possibly a partial, undoable change) is kept.
    Returning a str or None is shorthand for a successful Outcome.
    """

    def __init__(
        self,
        name: str,
        function: Callable[..., Any],
        *,
        description: str = "",
        required: tuple[str, ...] = (),
        timeout: Optional[float] = None,
        pass_signals: bool = False,
        cancel_grace: float = 5.0,
    ):
        self.name = name
        self.function = function
        self.description = description or (function.__doc__ or "").strip().split("\n")[0]
        self.required_params = tuple(required)
        self.timeout = timeout
        self.pass_signals = pass_signals
        self.cancel_grace = cancel_grace

    async def execute(
        self,
        parameters: Mapping[str, Any],
        cancel: CancellationToken,
        progress: ProgressReporter = NULL_PROGRESS,
    ) -> Outcome:
        kwargs = dict(parameters)
        if self.pass_signals:
            kwargs["cancel"] = cancel
            kwargs["progress"] = progress
        if inspect.iscoroutinefunction(self.function):
            result = await self.function(**kwargs)
        elif not self.pass_signals:
            result = await asyncio.to_thread(self.function, **kwargs)
        else:
            result = await self._run_cooperative(kwargs)
        return as_outcome(result)

    async def _run_cooperative(self, kwargs: dict[str, Any]) -> Any:
        worker = asyncio.ensure_future(asyncio.to_thread(self.function, **kwargs))
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            # The token has fired; give the thread time to stop and report.
            done, _ = await asyncio.wait({worker}, timeout=self.cancel_grace)
            if not done:
                logger.warning("[Tool] %s still running %.0fs after cancel", self.name, self.cancel_grace)
                raise
            logger.info("[Tool] %s stopped after cancel", self.name)
            return worker.result()


def as_outcome(result: Any) -> Outcome:
    if isinstance(result, Outcome):
        return result
    if result is None:
        return Outcome.ok()
    if isinstance(result, str):
        return Outcome.ok(result)
    return Outcome.ok("Done.", data=result)
