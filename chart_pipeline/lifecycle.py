"""
Chart Task Lifecycle - Async loading state machine.

============================================================
PURPOSE
============================================================
Wraps one async loading function (usually an aggregation run) and publishes
its state to the rendering layer.

STATE MACHINE:

    INITIAL ──► PENDING ──► COMPLETE
                 │  ▲ ▲         │
                 │  │ └─────────┤  (dependencies changed)
                 ▼  │           │
                ERROR ──────────┘

    PENDING ──► PENDING  (a newer run supersedes an in-flight one)

INVARIANTS:
- Only the most recently started run may publish an outcome
- Superseded runs are not aborted; their outcome is dropped
- No automatic retry, no built-in timeout
- All transitions are logged

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from chart_pipeline.exceptions import InvalidTransitionError
from chart_pipeline.models import TaskState, TaskStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.INITIAL: {TaskStatus.PENDING},
    TaskStatus.PENDING: {
        TaskStatus.PENDING,
        TaskStatus.COMPLETE,
        TaskStatus.ERROR,
    },
    TaskStatus.COMPLETE: {TaskStatus.PENDING},
    TaskStatus.ERROR: {TaskStatus.PENDING},
}


@dataclass
class TaskTransitionEvent:
    """Event representing a lifecycle transition."""

    from_status: TaskStatus
    to_status: TaskStatus
    generation: int
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: str = ""


def dependencies_changed(
    previous: Optional[Sequence[Any]],
    current: Sequence[Any],
) -> bool:
    """
    Compare two dependency tuples element-wise by value.

    A missing previous tuple always counts as a change.
    """
    if previous is None:
        return True
    if len(previous) != len(current):
        return True
    return any(old != new for old, new in zip(previous, current))


# ============================================================
# TASK
# ============================================================

class ChartTask:
    """
    Reactive wrapper around an async task function.

    Usage:
        task = ChartTask(
            task_fn=lambda client, start, end: load(client, start, end),
            args_fn=lambda: (panel.client, panel.start_date, panel.end_date),
        )
        task.request_update()        # runs: first time
        task.request_update()        # no-op: dependencies unchanged
        await task.wait()

        task.render(
            initial=lambda: "Preparing...",
            pending=lambda: "Loading...",
            complete=lambda table: draw(table),
            error=lambda exc: f"Failed: {exc}",
        )
    """

    def __init__(
        self,
        task_fn: Callable[..., Awaitable[Any]],
        args_fn: Optional[Callable[[], Tuple[Any, ...]]] = None,
        keep_previous_value: bool = False,
        name: str = "chart-task",
    ) -> None:
        self._task_fn = task_fn
        self._args_fn = args_fn
        self._keep_previous_value = keep_previous_value
        self._name = name

        self._status = TaskStatus.INITIAL
        self._value: Any = None
        self._error: Optional[BaseException] = None

        self._generation = 0
        self._last_args: Optional[Tuple[Any, ...]] = None
        self._current: Optional[asyncio.Task] = None

        self._history: List[TaskTransitionEvent] = []
        self._max_history = 100
        self._listeners: List[Callable[[TaskTransitionEvent, TaskState], None]] = []

    # --------------------------------------------------------
    # PUBLISHED STATE
    # --------------------------------------------------------

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def value(self) -> Any:
        return self._value

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> TaskState:
        return TaskState(
            status=self._status,
            value=self._value,
            error=self._error,
            generation=self._generation,
        )

    def get_history(self, limit: int = 10) -> List[TaskTransitionEvent]:
        """Get recent transitions."""
        return self._history[-limit:]

    def on_state_change(
        self,
        callback: Callable[[TaskTransitionEvent, TaskState], None],
    ) -> None:
        """Register a listener called after every transition."""
        self._listeners.append(callback)

    # --------------------------------------------------------
    # RUNNING
    # --------------------------------------------------------

    def request_update(
        self,
        args: Optional[Sequence[Any]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a run if the dependencies changed since the last run.

        Args:
            args: Dependency tuple; evaluated from args_fn when omitted

        Returns:
            The asyncio.Task of the new run, or None if nothing changed
        """
        current = self._resolve_args(args)
        if not dependencies_changed(self._last_args, current):
            return None
        return self._start(current, reason="dependencies changed")

    def run(self, args: Optional[Sequence[Any]] = None) -> asyncio.Task:
        """Start a run unconditionally."""
        return self._start(self._resolve_args(args), reason="explicit run")

    async def wait(self) -> Any:
        """
        Wait until the latest run settles.

        Returns:
            The published value

        Raises:
            The published error, if the latest run failed
        """
        while self._current is not None and not self._current.done():
            await asyncio.wait({self._current})
        if self._status == TaskStatus.ERROR:
            raise self._error
        return self._value

    def render(
        self,
        initial: Optional[Callable[[], Any]] = None,
        pending: Optional[Callable[[], Any]] = None,
        complete: Optional[Callable[[Any], Any]] = None,
        error: Optional[Callable[[BaseException], Any]] = None,
    ) -> Any:
        """Dispatch to the callback registered for the current status."""
        if self._status == TaskStatus.INITIAL:
            return initial() if initial else None
        if self._status == TaskStatus.PENDING:
            return pending() if pending else None
        if self._status == TaskStatus.COMPLETE:
            return complete(self._value) if complete else None
        return error(self._error) if error else None

    def _resolve_args(self, args: Optional[Sequence[Any]]) -> Tuple[Any, ...]:
        if args is not None:
            return tuple(args)
        if self._args_fn is not None:
            return tuple(self._args_fn())
        return ()

    def _start(self, args: Tuple[Any, ...], reason: str) -> asyncio.Task:
        self._generation += 1
        generation = self._generation
        self._last_args = args

        if not self._keep_previous_value:
            self._value = None
        self._error = None
        self._transition(TaskStatus.PENDING, reason)

        self._current = asyncio.ensure_future(self._perform(generation, args))
        return self._current

    async def _perform(self, generation: int, args: Tuple[Any, ...]) -> None:
        try:
            result = await self._task_fn(*args)
        except Exception as e:
            if generation != self._generation:
                logger.info(
                    f"[{self._name}] Dropping error of superseded run "
                    f"{generation} (latest {self._generation}): {e}"
                )
                return
            self._value = None
            self._error = e
            self._transition(TaskStatus.ERROR, f"run {generation} failed: {e}")
            return

        if generation != self._generation:
            logger.info(
                f"[{self._name}] Dropping result of superseded run "
                f"{generation} (latest {self._generation})"
            )
            return
        self._value = result
        self._transition(TaskStatus.COMPLETE, f"run {generation} complete")

    # --------------------------------------------------------
    # TRANSITIONS
    # --------------------------------------------------------

    def _transition(self, to_status: TaskStatus, reason: str) -> None:
        from_status = self._status
        if to_status not in VALID_TRANSITIONS[from_status]:
            raise InvalidTransitionError(from_status, to_status)

        self._status = to_status
        event = TaskTransitionEvent(
            from_status=from_status,
            to_status=to_status,
            generation=self._generation,
            reason=reason,
        )
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        log = logger.warning if to_status == TaskStatus.ERROR else logger.debug
        log(
            f"[{self._name}] {from_status.value} -> {to_status.value} "
            f"(generation {self._generation}): {reason}"
        )

        state = self.state
        for callback in self._listeners:
            try:
                callback(event, state)
            except Exception as e:
                logger.error(f"[{self._name}] State listener failed: {e}")

    def __repr__(self) -> str:
        return f"<ChartTask(name={self._name}, status={self._status.value}, generation={self._generation})>"
