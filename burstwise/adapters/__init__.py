"""Adapters for the filesystem watcher and imaging collaborators."""

from burstwise.adapters.base import ImageWatcher, ImagingBackend
from burstwise.adapters.command import CommandImagingBackend
from burstwise.adapters.filesystem import WatchdogImageWatcher

__all__ = ["ImageWatcher", "ImagingBackend", "CommandImagingBackend", "WatchdogImageWatcher"]
