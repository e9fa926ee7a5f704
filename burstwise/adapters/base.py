"""Base interfaces for the watcher and imaging collaborators."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from burstwise.models import ImageStat, MergeResult

# Called with the path of each newly detected image file
DetectionCallback = Callable[[str], None]


class ImageWatcher(ABC):
    """Abstract base class for filesystem watchers.

    A watcher reports new image files in a folder. Control calls raise
    ExternalCallFailed when the underlying watcher rejects them.
    """

    @property
    @abstractmethod
    def is_watching(self) -> bool:
        """Return True while the watcher is running."""
        pass

    @abstractmethod
    def set_watch_folder(self, folder: str | Path) -> None:
        """Set the folder to watch.

        Args:
            folder: Existing directory to watch
        """
        pass

    @abstractmethod
    def start(self, on_detected: DetectionCallback) -> None:
        """Start watching the configured folder.

        Args:
            on_detected: Called with the path of each detected image. May be
                called from a watcher thread.
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop watching."""
        pass


class ImagingBackend(ABC):
    """Abstract base class for the analysis and merge collaborator."""

    @abstractmethod
    async def analyze_images(self, paths: list[str]) -> list[ImageStat]:
        """Compute the average luma of each image.

        Args:
            paths: Image paths, in group order

        Returns:
            One ImageStat per path, in the same order
        """
        pass

    @abstractmethod
    async def merge_images(
        self,
        paths: list[str],
        output_directory: Path | None,
        include_exr: bool,
    ) -> MergeResult:
        """Merge images into an HDR result.

        Args:
            paths: Image paths, in group order
            output_directory: Where to write outputs. None lets the backend
                choose (the folder of the first image).
            include_exr: Also write a floating-point EXR

        Returns:
            Description of the written outputs
        """
        pass
