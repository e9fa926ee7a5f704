"""Data models for Burstwise."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


GROUP_WINDOW_MS = 2 * 60 * 1000
MAX_GROUP_IMAGES = 5
MIN_MERGE_IMAGES = 2


def generate_group_id() -> str:
    """Generate a unique group ID."""
    return f"grp_{str(uuid.uuid4())[:8]}"


# ============================================================================
# Grouping Models
# ============================================================================


class DetectedImage(BaseModel):
    """A newly observed image file."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="File path, unique per file")
    detected_at: int = Field(description="Detection time in milliseconds")


class ImageGroup(BaseModel):
    """A burst of images taken in quick succession.

    Groups are immutable snapshots. Appending an image produces a new snapshot
    with the same ID, so readers holding an older snapshot never see it change.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_group_id)
    created_at: int = Field(description="Detection time of the first image")
    images: tuple[DetectedImage, ...] = Field(description="Images in arrival order")

    @model_validator(mode="after")
    def _check_images(self) -> "ImageGroup":
        if not self.images:
            raise ValueError("A group must contain at least one image")
        if self.created_at != self.images[0].detected_at:
            raise ValueError("created_at must match the first image's detected_at")
        return self

    @classmethod
    def start(cls, image: DetectedImage) -> "ImageGroup":
        """Create a new group holding a single image."""
        return cls(created_at=image.detected_at, images=(image,))

    @property
    def paths(self) -> list[str]:
        """Image paths in stored order."""
        return [image.path for image in self.images]

    @property
    def last_image(self) -> DetectedImage:
        """The most recently appended image."""
        return self.images[-1]

    @property
    def size(self) -> int:
        return len(self.images)

    def contains(self, path: str) -> bool:
        return any(image.path == path for image in self.images)

    def with_image(self, image: DetectedImage) -> "ImageGroup":
        """Return a new snapshot of this group with an image appended."""
        return self.model_copy(update={"images": self.images + (image,)})


class GroupListDelta(BaseModel):
    """Change to the group list caused by a single detection event."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["created", "appended"] = Field(description="What happened to the group")
    group: ImageGroup = Field(description="The new or updated group")
    groups: tuple[ImageGroup, ...] = Field(description="Full group list after the change")


# ============================================================================
# Collaborator Payloads (camelCase on the wire)
# ============================================================================


class WireModel(BaseModel):
    """Base for payloads exchanged with the imaging collaborator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageStat(WireModel):
    """Average luminance of one analysed image."""

    path: str
    average_luma: float = Field(ge=0.0, le=1.0, description="Average luma (0-1)")


class MergeRequest(WireModel):
    """Request sent to the merge collaborator."""

    paths: list[str]
    output_dir: Optional[str] = None
    output_exr: bool = False


class MergeResult(WireModel):
    """Output of a completed merge."""

    output_png_path: str = Field(description="16-bit PNG output")
    output_exr_path: Optional[str] = Field(default=None, description="Optional EXR output")
    width: int
    height: int
    merged_at: datetime


class MergeOptions(BaseModel):
    """User-selected merge options."""

    output_directory: Optional[Path] = Field(default=None, description="Where to write outputs")
    include_exr: bool = Field(default=True, description="Also write a floating-point EXR")


# ============================================================================
# Session Models
# ============================================================================


class SessionState(str, Enum):
    """States of the selection/analysis/merge session."""

    IDLE = "idle"
    SELECTED = "selected"
    ANALYZED = "analyzed"
    MERGING = "merging"
    MERGED = "merged"
    MERGE_FAILED = "merge_failed"


class SessionSnapshot(BaseModel):
    """Read-only view of a session for the presentation layer."""

    model_config = ConfigDict(frozen=True)

    state: SessionState
    selected_group_id: Optional[str] = None
    stats: tuple[ImageStat, ...] = ()
    merge_result: Optional[MergeResult] = None
    merge_in_flight: bool = False
    last_error: Optional[str] = None
    exposure_delta: Optional[float] = None
