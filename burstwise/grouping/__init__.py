"""Grouping layer for clustering detection events into bursts."""

from burstwise.grouping.exposure import exposure_delta
from burstwise.grouping.grouper import Grouper, apply_event, load_grouper

__all__ = [
    "Grouper",
    "apply_event",
    "load_grouper",
    "exposure_delta",
]
