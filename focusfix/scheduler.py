from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from .ai import ThemeClassifier
from .config import TrackerSettings
from .errors import CaptureUnavailable, ConfigurationError
from .models import CapturedFrame, CaptureSample, ClassificationEvent
from .similarity import SimilarityGate
from .taxonomy import require_taxonomy

logger = logging.getLogger(__name__)

EventCallback = Callable[[ClassificationEvent], None]
StatusCallback = Callable[[str], None]

MIN_TICK_GAP_SECONDS = 0.05


class CaptureSource(Protocol):
    def capture(self) -> CapturedFrame: ...


class TrackingScheduler:
    """Run the capture and analysis cadences on the asyncio event loop.

    The capture cadence feeds a single-slot mailbox through the similarity
    gate; the analysis cadence drains it. Blocking collaborators run in
    worker threads so neither cadence stalls the other. Every tick reports
    one status line and never raises.
    """

    def __init__(
        self,
        capture_service: CaptureSource,
        classifier: ThemeClassifier,
        gate: SimilarityGate,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ):
        self._capture_service = capture_service
        self._classifier = classifier
        self._gate = gate
        self._on_event = on_event
        self._on_status = on_status
        self._settings: TrackerSettings | None = None
        self._capture_task: asyncio.Task | None = None
        self._analysis_task: asyncio.Task | None = None
        self._generation = 0
        self._current: CaptureSample | None = None
        self._analysis_in_flight = False
        self._status = "ready"
        self.captured_count = 0
        self.skipped_count = 0
        self.analysis_count = 0

    @property
    def is_running(self) -> bool:
        return self._capture_task is not None and not self._capture_task.done()

    @property
    def status(self) -> str:
        return self._status

    @property
    def settings(self) -> TrackerSettings | None:
        return self._settings

    @property
    def current_sample(self) -> CaptureSample | None:
        return self._current

    async def start(self, settings: TrackerSettings) -> None:
        try:
            settings.validate()
            require_taxonomy(self._classifier.themes)
        except ConfigurationError as exc:
            self._set_status(f"cannot start: {exc}")
            raise

        if self.is_running:
            if settings == self._settings:
                return
            await self.stop()

        self._settings = settings
        self._gate.threshold = settings.similarity_threshold
        self._generation += 1
        generation = self._generation
        self._capture_task = asyncio.create_task(
            self._run_cadence(settings.capture_interval_seconds, self._capture_tick, generation),
            name="focusfix-capture",
        )
        self._analysis_task = asyncio.create_task(
            self._run_cadence(settings.analysis_interval_seconds, self._analysis_tick, generation),
            name="focusfix-analysis",
        )
        logger.info(
            "Tracking started (capture every %ss, analysis every %ss)",
            settings.capture_interval_seconds,
            settings.analysis_interval_seconds,
        )
        self._set_status("tracking started")

    async def stop(self) -> None:
        # Bumping the generation makes any in-flight result stale.
        self._generation += 1
        tasks = [task for task in (self._capture_task, self._analysis_task) if task is not None]
        self._capture_task = None
        self._analysis_task = None
        self._current = None
        self._gate.reset()
        if not tasks:
            return

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._settings = None
        logger.info("Tracking stopped")
        self._set_status("tracking stopped")

    async def apply_settings(self, settings: TrackerSettings) -> None:
        if not settings.tracking_enabled:
            await self.stop()
            return
        if self.is_running and settings == self._settings:
            return
        await self.start(settings)

    async def capture_now(self) -> None:
        await self._capture_tick(self._generation)

    async def analyze_now(self) -> None:
        await self._analysis_tick(self._generation)

    async def _run_cadence(
        self,
        interval: float,
        tick: Callable[[int], Awaitable[None]],
        generation: int,
    ) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time() + interval
        while generation == self._generation:
            delay = next_due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            await tick(generation)
            next_due = max(next_due + interval, loop.time() + MIN_TICK_GAP_SECONDS)

    async def _capture_tick(self, generation: int) -> None:
        try:
            frame = await asyncio.to_thread(self._capture_service.capture)
        except CaptureUnavailable as exc:
            self._set_status(f"capture failed: {exc}")
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected capture error")
            self._set_status(f"capture failed: {exc}")
            return

        if generation != self._generation:
            return

        # Gate and mailbox are updated together with no await in between.
        sample = CaptureSample(data=frame.data, captured_at=frame.captured_at)
        decision = self._gate.check(sample)
        self.captured_count += 1
        if not decision.admitted:
            self.skipped_count += 1
            self._set_status(f"skipped: similarity {decision.score:.1f}%")
            return

        self._current = sample
        self._set_status(f"captured ({len(frame.data) / 1024:.1f} KB)")

    async def _analysis_tick(self, generation: int) -> None:
        if self._analysis_in_flight:
            self._set_status("analysis busy: previous request still running")
            return
        sample = self._current
        if sample is None:
            self._set_status("idle: no new sample")
            return

        self._current = None
        # The worker thread outlives a cancelled tick, so the flag follows the
        # thread's future rather than this await.
        self._analysis_in_flight = True
        request = asyncio.ensure_future(asyncio.to_thread(self._classifier.classify, sample.data))
        request.add_done_callback(self._analysis_finished)
        try:
            event = await asyncio.shield(request)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected classification error")
            self._set_status(f"analysis failed: {exc}")
            return

        if generation != self._generation:
            logger.debug("Discarding classification finished after tracking stopped")
            return

        try:
            self._on_event(event)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Could not record classification event")
            self._set_status(f"storing analysis failed: {exc}")
            return

        self.analysis_count += 1
        if event.degraded:
            error = self._classifier.last_error
            reason = error.reason if error is not None else "service error"
            self._set_status(f"analysis failed: {reason}")
        else:
            self._set_status(f"analysed: {event.theme.path} ({event.confidence:.0f}%)")

    def _analysis_finished(self, request: asyncio.Future) -> None:
        self._analysis_in_flight = False
        if not request.cancelled() and request.exception() is not None:
            logger.debug("Classification worker failed: %s", request.exception())

    def _set_status(self, message: str) -> None:
        self._status = message
        logger.debug("Status: %s", message)
        callback = self._on_status
        if callback is not None:
            try:
                callback(message)
            except Exception:  # noqa: BLE001
                logger.exception("Status callback failed")
