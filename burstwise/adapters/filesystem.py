"""Filesystem watcher backed by watchdog."""

import logging
from pathlib import Path
from typing import Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from burstwise.adapters.base import DetectionCallback, ImageWatcher
from burstwise.config import get_settings
from burstwise.errors import ExternalCallFailed

logger = logging.getLogger(__name__)


def is_image_file(path: str | Path, extensions: Iterable[str]) -> bool:
    """Check whether a path has one of the given image extensions."""
    suffix = Path(path).suffix.lower().lstrip(".")
    if not suffix:
        return False
    return suffix in {ext.lower().lstrip(".") for ext in extensions}


class ImageEventHandler(FileSystemEventHandler):
    """Forward created, modified and renamed image files to a callback."""

    def __init__(self, on_detected: DetectionCallback, extensions: Iterable[str]):
        super().__init__()
        self._on_detected = on_detected
        self._extensions = list(extensions)

    def process(self, event: FileSystemEvent, path: Optional[str] = None) -> None:
        if event.is_directory:
            return
        path = path or str(event.src_path)
        if not is_image_file(path, self._extensions):
            return
        self._on_detected(path)

    def on_created(self, event: FileSystemEvent) -> None:
        self.process(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self.process(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Files written under a temporary name and renamed into place
        self.process(event, str(event.dest_path))


class WatchdogImageWatcher(ImageWatcher):
    """Watch a folder recursively for new image files."""

    def __init__(self, extensions: Optional[list[str]] = None):
        """Initialize the watcher.

        Args:
            extensions: Image extensions to report. If not provided, uses settings.
        """
        settings = get_settings()
        self._extensions = extensions or settings.image_extensions
        self._folder: Optional[Path] = None
        self._observer: Optional[Observer] = None

    @property
    def is_watching(self) -> bool:
        """Return True while the observer is running."""
        return self._observer is not None

    @property
    def folder(self) -> Optional[Path]:
        return self._folder

    def set_watch_folder(self, folder: str | Path) -> None:
        """Set the folder to watch."""
        path = Path(folder)
        if not path.is_dir():
            raise ExternalCallFailed(f"Folder does not exist: {path}")
        self._folder = path

    def start(self, on_detected: DetectionCallback) -> None:
        """Start a recursive observer on the configured folder."""
        if self._folder is None:
            raise ExternalCallFailed("Watch folder is not set")
        if self._observer is not None:
            raise ExternalCallFailed("Already watching")

        handler = ImageEventHandler(on_detected, self._extensions)
        observer = Observer()
        try:
            observer.schedule(handler, str(self._folder), recursive=True)
            observer.start()
        except OSError as e:
            raise ExternalCallFailed(str(e)) from e

        self._observer = observer
        logger.info("Watching %s", self._folder)

    def stop(self) -> None:
        """Stop the observer if it is running."""
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        observer.stop()
        observer.join()
        logger.info("Stopped watching %s", self._folder)
