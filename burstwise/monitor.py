"""Runtime wiring of watcher, grouper and session controller."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from burstwise.adapters.base import ImageWatcher, ImagingBackend
from burstwise.config import Settings, get_settings
from burstwise.errors import ExternalCallFailed
from burstwise.grouping.grouper import Grouper, now_ms
from burstwise.models import (
    DetectedImage,
    GroupListDelta,
    ImageGroup,
    ImageStat,
    MergeOptions,
    MergeResult,
    SessionSnapshot,
)
from burstwise.session import SessionController

logger = logging.getLogger(__name__)

DeltaListener = Callable[[GroupListDelta], None]


class BurstMonitor:
    """Feed watcher detections into the grouper and expose session actions.

    Detections may arrive on a watcher thread. They are stamped on receipt
    and queued onto the event loop, where a single consumer task applies them
    to the grouper. Nothing else writes to the group list.
    """

    def __init__(
        self,
        watcher: ImageWatcher,
        backend: ImagingBackend,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._watcher = watcher
        self._configured_output = (
            Path(settings.output_directory) if settings.output_directory else None
        )
        self.grouper = Grouper(
            window_ms=settings.group_window_ms,
            max_images=settings.max_group_images,
        )
        self.controller = SessionController(
            backend,
            self.grouper,
            min_merge_images=settings.min_merge_images,
            default_output_directory=self._configured_output,
        )
        self._listeners: list[DeltaListener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue[DetectedImage]] = None
        self._consumer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @property
    def groups(self) -> tuple[ImageGroup, ...]:
        return self.grouper.groups

    def add_listener(self, listener: DeltaListener) -> None:
        """Register a callback for every change to the group list."""
        self._listeners.append(listener)

    def ingest(self, event: DetectedImage) -> Optional[GroupListDelta]:
        """Apply a detection and notify listeners of the change."""
        delta = self.grouper.ingest(event)
        if delta is None:
            return None
        for listener in self._listeners:
            try:
                listener(delta)
            except Exception:
                logger.exception("Group listener failed")
        return delta

    # ------------------------------------------------------------------
    # Watcher passthrough
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._watcher.is_watching

    def set_watch_folder(self, folder: str | Path) -> None:
        """Set the watch folder. Merges default to it unless configured otherwise."""
        self._watcher.set_watch_folder(folder)
        if self._configured_output is None:
            self.controller.default_output_directory = Path(folder)

    async def start_watching(self) -> None:
        """Start the watcher and the consumer task on the running loop.

        A failed start leaves a running watcher and its consumer untouched.
        """
        if self._consumer is not None:
            raise ExternalCallFailed("Already watching")

        queue: asyncio.Queue[DetectedImage] = asyncio.Queue()
        self._loop = asyncio.get_running_loop()
        self._queue = queue
        self._consumer = asyncio.create_task(self._consume(queue))
        try:
            self._watcher.start(self._on_detected)
        except Exception:
            await self._stop_consumer()
            self._queue = None
            raise

    async def stop_watching(self) -> None:
        """Stop the watcher, then apply detections that were already queued."""
        self._watcher.stop()
        # Let hand-offs scheduled by the watcher thread reach the queue
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()
        await self._stop_consumer()

    def _on_detected(self, path: str) -> None:
        # Runs on the watcher thread
        event = DetectedImage(path=path, detected_at=now_ms())
        if self._loop is None or self._queue is None:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def _consume(self, queue: asyncio.Queue[DetectedImage]) -> None:
        while True:
            event = await queue.get()
            try:
                self.ingest(event)
            finally:
                queue.task_done()

    async def _stop_consumer(self) -> None:
        consumer = self._consumer
        self._consumer = None
        if consumer is None:
            return
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Session passthrough
    # ------------------------------------------------------------------

    def select_group(self, group_id: Optional[str]) -> None:
        self.controller.select_group(group_id)

    async def analyze(self) -> Optional[list[ImageStat]]:
        return await self.controller.analyze()

    async def merge(self, options: Optional[MergeOptions] = None) -> Optional[MergeResult]:
        return await self.controller.merge(options)

    def session(self) -> SessionSnapshot:
        return self.controller.snapshot()
