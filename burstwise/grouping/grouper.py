"""Clustering of detection events into burst groups."""

import logging
import time
from typing import Iterable, Optional

from burstwise.models import (
    GROUP_WINDOW_MS,
    MAX_GROUP_IMAGES,
    DetectedImage,
    GroupListDelta,
    ImageGroup,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def path_exists(groups: Iterable[ImageGroup], path: str) -> bool:
    """Check whether a path already belongs to any group."""
    return any(group.contains(path) for group in groups)


def can_join(
    group: ImageGroup,
    event: DetectedImage,
    window_ms: int = GROUP_WINDOW_MS,
    max_images: int = MAX_GROUP_IMAGES,
) -> bool:
    """Check whether an event may be appended to the open group.

    The window is measured from the group's most recent image, so a burst may
    span longer than ``window_ms`` as long as every gap stays within it.
    """
    if group.size >= max_images:
        return False
    return event.detected_at - group.last_image.detected_at <= window_ms


def apply_event(
    groups: tuple[ImageGroup, ...],
    event: DetectedImage,
    window_ms: int = GROUP_WINDOW_MS,
    max_images: int = MAX_GROUP_IMAGES,
) -> tuple[tuple[ImageGroup, ...], Optional[GroupListDelta]]:
    """Apply one detection event to a group list.

    Only the last group is open for new images. Events for a path that is
    already grouped are ignored.

    Args:
        groups: Current group list, oldest first
        event: The detected image
        window_ms: Maximum gap to the open group's last image
        max_images: Capacity of a group

    Returns:
        Tuple of (new group list, delta). The delta is None and the list is
        returned unchanged when the event is a duplicate.
    """
    if path_exists(groups, event.path):
        return groups, None

    if groups and can_join(groups[-1], event, window_ms, max_images):
        updated = groups[-1].with_image(event)
        new_groups = groups[:-1] + (updated,)
        return new_groups, GroupListDelta(kind="appended", group=updated, groups=new_groups)

    created = ImageGroup.start(event)
    new_groups = groups + (created,)
    return new_groups, GroupListDelta(kind="created", group=created, groups=new_groups)


class Grouper:
    """Owns the burst group list and applies detection events in arrival order.

    The Grouper is the only writer of the list. Readers get immutable
    snapshots through ``groups``.
    """

    def __init__(
        self,
        window_ms: int = GROUP_WINDOW_MS,
        max_images: int = MAX_GROUP_IMAGES,
    ):
        self.window_ms = window_ms
        self.max_images = max_images
        self._groups: tuple[ImageGroup, ...] = ()

    @property
    def groups(self) -> tuple[ImageGroup, ...]:
        """Snapshot of all groups, oldest first."""
        return self._groups

    @property
    def latest_group(self) -> Optional[ImageGroup]:
        """The open group, if any."""
        return self._groups[-1] if self._groups else None

    def get_group(self, group_id: str) -> Optional[ImageGroup]:
        """Get the current snapshot of a group by ID."""
        for group in self._groups:
            if group.id == group_id:
                return group
        return None

    def ingest(self, event: DetectedImage) -> Optional[GroupListDelta]:
        """Apply a detection event.

        Returns:
            The resulting delta, or None for a duplicate path
        """
        self._groups, delta = apply_event(self._groups, event, self.window_ms, self.max_images)

        if delta is None:
            logger.debug("Ignoring duplicate detection: %s", event.path)
        elif delta.kind == "created":
            logger.debug("Started group %s with %s", delta.group.id, event.path)
        else:
            logger.debug(
                "Added %s to group %s (%d images)", event.path, delta.group.id, delta.group.size
            )
        return delta

    def ingest_path(self, path: str, detected_at: int | None = None) -> Optional[GroupListDelta]:
        """Apply a detection for a path, stamping receipt time if none is given."""
        if detected_at is None:
            detected_at = now_ms()
        return self.ingest(DetectedImage(path=path, detected_at=detected_at))


def load_grouper(
    timed_paths: Iterable[tuple[str, int]],
    window_ms: int = GROUP_WINDOW_MS,
    max_images: int = MAX_GROUP_IMAGES,
) -> Grouper:
    """Build a grouper from already-existing files and their timestamps.

    Args:
        timed_paths: (path, timestamp in ms) pairs in any order
        window_ms: Maximum gap between consecutive images
        max_images: Capacity of a group

    Returns:
        Grouper holding the resulting groups
    """
    grouper = Grouper(window_ms=window_ms, max_images=max_images)
    for path, detected_at in sorted(timed_paths, key=lambda item: (item[1], item[0])):
        grouper.ingest_path(path, detected_at)
    return grouper
