"""Session state for selecting, analysing and merging burst groups."""

import logging
from pathlib import Path
from typing import Awaitable, Optional, TypeVar

from burstwise.adapters.base import ImagingBackend
from burstwise.errors import (
    BurstwiseError,
    ExternalCallFailed,
    InsufficientImages,
    MergeInProgress,
    NoSelection,
)
from burstwise.grouping.exposure import exposure_delta
from burstwise.grouping.grouper import Grouper
from burstwise.models import (
    MIN_MERGE_IMAGES,
    ImageGroup,
    ImageStat,
    MergeOptions,
    MergeResult,
    SessionSnapshot,
    SessionState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_E = TypeVar("_E", bound=BurstwiseError)


class SessionController:
    """Track the selected group and route analyze/merge calls for it.

    Selecting a group always clears previous results. Every analyze or merge
    call remembers the selection it was issued under; if the selection has
    changed by the time the call completes, its outcome is discarded.

    At most one merge runs at a time. Analysis calls are not serialized:
    overlapping calls apply in completion order.
    """

    def __init__(
        self,
        backend: ImagingBackend,
        groups: Grouper,
        min_merge_images: int = MIN_MERGE_IMAGES,
        default_output_directory: Optional[Path] = None,
    ):
        """Initialize the controller.

        Args:
            backend: Analysis and merge collaborator
            groups: Source of current group snapshots (read only)
            min_merge_images: Smallest group that may be merged
            default_output_directory: Used when a merge does not name an
                output directory
        """
        self._backend = backend
        self._groups = groups
        self.min_merge_images = min_merge_images
        self.default_output_directory = default_output_directory

        self._selected_group_id: Optional[str] = None
        self._stats: tuple[ImageStat, ...] = ()
        self._merge_result: Optional[MergeResult] = None
        self._merge_in_flight = False
        self._last_error: Optional[str] = None
        self._phase = SessionState.IDLE
        # Bumped on every selection; outbound calls compare against it
        self._epoch = 0

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._merge_in_flight:
            return SessionState.MERGING
        return self._phase

    @property
    def selected_group_id(self) -> Optional[str]:
        return self._selected_group_id

    @property
    def selected_group(self) -> Optional[ImageGroup]:
        """Current snapshot of the selected group."""
        if self._selected_group_id is None:
            return None
        return self._groups.get_group(self._selected_group_id)

    @property
    def stats(self) -> tuple[ImageStat, ...]:
        return self._stats

    @property
    def merge_result(self) -> Optional[MergeResult]:
        return self._merge_result

    @property
    def merge_in_flight(self) -> bool:
        return self._merge_in_flight

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def snapshot(self) -> SessionSnapshot:
        """Return a read-only view of the session."""
        return SessionSnapshot(
            state=self.state,
            selected_group_id=self._selected_group_id,
            stats=self._stats,
            merge_result=self._merge_result,
            merge_in_flight=self._merge_in_flight,
            last_error=self._last_error,
            exposure_delta=exposure_delta(self._stats),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def select_group(self, group_id: Optional[str]) -> None:
        """Select a group, or clear the selection with None.

        Valid from any state. Results of the previous selection are cleared
        and any call still in flight for it will be discarded on completion.
        """
        self._epoch += 1
        self._selected_group_id = group_id
        self._stats = ()
        self._merge_result = None
        self._merge_in_flight = False
        self._last_error = None
        self._phase = SessionState.SELECTED if group_id is not None else SessionState.IDLE
        logger.info("Selected group %s", group_id)

    async def analyze(self) -> Optional[list[ImageStat]]:
        """Analyze the selected group.

        Returns:
            The stats, or None if the selection changed before completion

        Raises:
            NoSelection: No group is selected
            ExternalCallFailed: The analysis collaborator failed
        """
        group = self._require_group()
        epoch = self._epoch

        try:
            stats = await self._call(self._backend.analyze_images(group.paths))
        except ExternalCallFailed as e:
            if self._is_stale(epoch):
                logger.debug("Discarding analysis failure for group %s: %s", group.id, e)
                return None
            logger.warning("Analysis failed for group %s: %s", group.id, e)
            raise self._fail(e)

        if self._is_stale(epoch):
            logger.debug("Discarding stale analysis for group %s", group.id)
            return None

        self._stats = tuple(stats)
        self._last_error = None
        # A merge result for this selection stays the headline state
        if self._merge_result is None:
            self._phase = SessionState.ANALYZED
        logger.info("Analyzed %d images in group %s", len(stats), group.id)
        return list(stats)

    async def merge(self, options: Optional[MergeOptions] = None) -> Optional[MergeResult]:
        """Merge the selected group.

        Args:
            options: Output directory and EXR flag

        Returns:
            The merge result, or None if the selection changed before completion

        Raises:
            NoSelection: No group is selected
            InsufficientImages: The group has too few images
            MergeInProgress: A merge is already running
            ExternalCallFailed: The merge collaborator failed
        """
        options = options or MergeOptions()
        group = self._require_group()

        if group.size < self.min_merge_images:
            raise self._fail(
                InsufficientImages(f"At least {self.min_merge_images} images are required to merge")
            )
        if self._merge_in_flight:
            raise self._fail(MergeInProgress())

        epoch = self._epoch
        self._merge_in_flight = True
        self._merge_result = None
        self._last_error = None
        output_directory = options.output_directory or self.default_output_directory
        logger.info("Merging %d images from group %s", group.size, group.id)

        try:
            result = await self._call(
                self._backend.merge_images(group.paths, output_directory, options.include_exr)
            )
        except ExternalCallFailed as e:
            if self._is_stale(epoch):
                logger.debug("Discarding merge failure for group %s: %s", group.id, e)
                return None
            self._merge_in_flight = False
            self._phase = SessionState.MERGE_FAILED
            logger.warning("Merge failed for group %s: %s", group.id, e)
            raise self._fail(e)

        if self._is_stale(epoch):
            logger.debug("Discarding stale merge result for group %s", group.id)
            return None

        self._merge_in_flight = False
        self._merge_result = result
        self._phase = SessionState.MERGED
        logger.info("Merged group %s into %s", group.id, result.output_png_path)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_group(self) -> ImageGroup:
        group = self.selected_group
        if group is None:
            raise self._fail(NoSelection())
        return group

    def _is_stale(self, epoch: int) -> bool:
        return epoch != self._epoch

    def _fail(self, error: _E) -> _E:
        """Record an error as the user-visible message and return it."""
        self._last_error = error.message
        return error

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a collaborator call, reporting any error as ExternalCallFailed."""
        try:
            return await awaitable
        except ExternalCallFailed:
            raise
        except Exception as e:
            raise ExternalCallFailed(str(e)) from e
