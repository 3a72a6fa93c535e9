"""Debounced, retrying auto-save of in-progress assessment answers.

The company, financial and sector answer maps are edited independently but
persisted through one save call per debounce window, carrying only the
sections that changed. This coalescing is what prevents overlapping partial
writes from dropping each other's changes.

Guarantees:
    - at most one save is in flight per coordinator; edits made while a
      save runs are queued in the dirty set and saved afterwards,
    - transient failures are retried after base * 2**attempt seconds up to
      ``max_retries`` times, then the coordinator stays FAILED until the
      next edit,
    - engine errors (conflicts, wrong status, validation) are never retried,
    - ``has_unsaved_changes`` is true while anything could still be lost.

Time is abstracted behind a Scheduler so the coordinator can be driven by a
manual clock in tests.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

import structlog

from ipo_readiness.core.answers import AnswerState, apply_answer, clear_answer
from ipo_readiness.core.domain import Actor, AnswerRecord, AnswerSection, Assessment
from ipo_readiness.errors import AssessmentError
from ipo_readiness.settings import Settings

logger = structlog.get_logger(__name__)

AnswerPayload = dict[AnswerSection, dict[str, AnswerRecord]]
SaveFunction = Callable[[AnswerPayload], Awaitable[object]]


class SaveStatus(str, Enum):
    """Externally visible state of the auto-save."""

    IDLE = "IDLE"
    SCHEDULED = "SCHEDULED"
    SAVING = "SAVING"
    RETRY_WAIT = "RETRY_WAIT"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock and one-shot timer source."""

    def now(self) -> float:
        """Current time in seconds on the scheduler's clock."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class AutoSaveCoordinator:
    """Coalesces answer edits into single, serialised save calls.

    Args:
        save: Coroutine function persisting a payload of dirty sections.
        scheduler: Timer source; defaults to the asyncio event loop.
        initial: Answers already persisted when editing starts.
        debounce_seconds: Quiet period after the last edit before saving.
        retry_base_delay_seconds: Base of the exponential retry backoff.
        max_retries: Retries after the first failed attempt.
        on_status_change: Optional callback invoked with every new status.
    """

    def __init__(
        self,
        save: SaveFunction,
        scheduler: Scheduler | None = None,
        initial: AnswerState | None = None,
        debounce_seconds: float = 1.5,
        retry_base_delay_seconds: float = 1.0,
        max_retries: int = 2,
        on_status_change: Callable[[SaveStatus], None] | None = None,
    ) -> None:
        self._save = save
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._state = initial or AnswerState()
        self._debounce_seconds = debounce_seconds
        self._retry_base_delay = retry_base_delay_seconds
        self._max_retries = max_retries
        self._on_status_change = on_status_change

        self._dirty: set[AnswerSection] = set()
        self._timer: TimerHandle | None = None
        self._task: asyncio.Future[None] | None = None
        self._in_flight = False
        self._flush_requested = False
        self._status = SaveStatus.IDLE
        self._retry_attempt = 0
        self._last_error: Exception | None = None
        self._last_saved_at: float | None = None

    @classmethod
    def for_assessment(
        cls,
        store: "AnswerStore",
        actor: Actor,
        assessment: Assessment,
        settings: Settings,
        scheduler: Scheduler | None = None,
    ) -> "AutoSaveCoordinator":
        """Build a coordinator that saves through the lifecycle service.

        Args:
            store: Object exposing ``save_answers`` (the lifecycle service).
            actor: The assessor editing the answers.
            assessment: The assessment as loaded by the client.
            settings: Source of debounce and retry configuration.
            scheduler: Optional timer source.
        """
        return cls(
            save=LifecycleAnswerWriter(store, actor, assessment.id, assessment.version),
            scheduler=scheduler,
            initial=AnswerState.from_assessment(assessment),
            debounce_seconds=settings.autosave_debounce_seconds,
            retry_base_delay_seconds=settings.autosave_retry_base_delay_seconds,
            max_retries=settings.autosave_max_retries,
        )

    # -- observable state ---------------------------------------------------

    @property
    def state(self) -> AnswerState:
        return self._state

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def dirty_sections(self) -> frozenset[AnswerSection]:
        return frozenset(self._dirty)

    @property
    def retry_attempt(self) -> int:
        return self._retry_attempt

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def last_saved_at(self) -> float | None:
        return self._last_saved_at

    @property
    def has_unsaved_changes(self) -> bool:
        """True while a save is pending, running, retrying or has failed."""
        return (
            bool(self._dirty)
            or self._in_flight
            or self._timer is not None
            or self._status is SaveStatus.FAILED
        )

    # -- edits ----------------------------------------------------------------

    def set_answer(self, section: AnswerSection, question_id: str, record: AnswerRecord) -> None:
        """Record an answer and (re)start the debounce window."""
        self._edit(section, apply_answer(self._state, section, question_id, record))

    def remove_answer(self, section: AnswerSection, question_id: str) -> None:
        """Drop an answer and (re)start the debounce window."""
        self._edit(section, clear_answer(self._state, section, question_id))

    def _edit(self, section: AnswerSection, new_state: AnswerState) -> None:
        self._state = new_state
        self._dirty.add(section)
        # A fresh edit supersedes any pending retry or earlier failure.
        self._retry_attempt = 0
        self._last_error = None
        self._start_timer(self._debounce_seconds)
        if not self._in_flight:
            self._set_status(SaveStatus.SCHEDULED)

    # -- lifecycle ------------------------------------------------------------

    async def flush(self) -> bool:
        """Save all dirty sections now, without waiting for the debounce.

        Returns:
            True if nothing is left unsaved afterwards.
        """
        self._cancel_timer()
        await self.wait_idle()
        self._cancel_timer()
        if self._dirty:
            self._task = asyncio.ensure_future(self._drain())
            await self._task
        return not self._dirty and self._status is not SaveStatus.FAILED

    async def wait_idle(self) -> None:
        """Wait until no save task is running."""
        while self._task is not None and not self._task.done():
            await self._task

    def close(self) -> None:
        """Cancel pending debounce and retry timers."""
        self._cancel_timer()

    def sync_version(self, assessment: Assessment) -> None:
        """Adopt the record version returned by the host's own write.

        Call with the assessment returned by any other write this client
        makes (wizard steps, preset answers), or re-read after a question
        edit, so the next auto-save does not mistake that write for a
        concurrent modification. Older versions are ignored.
        """
        if isinstance(self._save, LifecycleAnswerWriter):
            self._save.sync(assessment)

    # -- internals ------------------------------------------------------------

    def _set_status(self, status: SaveStatus) -> None:
        if status is self._status:
            return
        self._status = status
        if self._on_status_change is not None:
            self._on_status_change(status)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_timer(self, delay: float) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._in_flight:
            self._flush_requested = True
            return
        self._task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        while True:
            self._flush_requested = False
            if not await self._save_dirty():
                return
            if not (self._dirty and self._flush_requested):
                break

        if self._timer is not None:
            self._set_status(SaveStatus.SCHEDULED)
        else:
            self._set_status(SaveStatus.IDLE)

    async def _save_dirty(self) -> bool:
        sections = frozenset(self._dirty)
        if not sections:
            return True

        payload: AnswerPayload = {section: self._state.section(section) for section in sections}
        self._dirty.clear()
        self._in_flight = True
        self._set_status(SaveStatus.SAVING)
        try:
            await self._save(payload)
        except AssessmentError as exc:
            self._dirty |= sections
            self._fail(exc)
            return False
        except Exception as exc:
            self._dirty |= sections
            if self._retry_attempt < self._max_retries:
                delay = self._retry_base_delay * 2**self._retry_attempt
                self._retry_attempt += 1
                self._last_error = exc
                logger.warning(
                    "Auto-save failed, retrying",
                    attempt=self._retry_attempt,
                    max_retries=self._max_retries,
                    delay_seconds=delay,
                    error=str(exc),
                )
                self._start_timer(delay)
                self._set_status(SaveStatus.RETRY_WAIT)
                return False
            self._fail(exc)
            return False
        finally:
            self._in_flight = False

        self._retry_attempt = 0
        self._last_error = None
        self._last_saved_at = self._scheduler.now()
        logger.debug(
            "Auto-save completed",
            sections=sorted(section.value for section in sections),
        )
        return True

    def _fail(self, exc: Exception) -> None:
        self._cancel_timer()
        self._retry_attempt = 0
        self._last_error = exc
        self._flush_requested = False
        self._set_status(SaveStatus.FAILED)
        logger.error(
            "Auto-save failed",
            error=str(exc),
            error_type=type(exc).__name__,
            unsaved_sections=sorted(section.value for section in self._dirty),
        )


# ---------------------------------------------------------------------------
# Binding to the lifecycle service
# ---------------------------------------------------------------------------


class AnswerStore(Protocol):
    async def save_answers(
        self,
        actor: Actor,
        assessment_id: str,
        sections: AnswerPayload,
        expected_version: int | None = None,
    ) -> Assessment: ...


class LifecycleAnswerWriter:
    """Save function that carries the record version between saves.

    Passing the version the client last saw means a write from another tab
    or user in between surfaces as ConcurrentModificationError instead of
    being silently overwritten.
    """

    def __init__(self, store: AnswerStore, actor: Actor, assessment_id: str, version: int) -> None:
        self._store = store
        self._actor = actor
        self._assessment_id = assessment_id
        self.version = version

    async def __call__(self, payload: AnswerPayload) -> Assessment:
        assessment = await self._store.save_answers(
            self._actor,
            self._assessment_id,
            payload,
            expected_version=self.version,
        )
        self.version = assessment.version
        return assessment

    def sync(self, assessment: Assessment) -> None:
        if assessment.id == self._assessment_id and assessment.version > self.version:
            self.version = assessment.version
