"""Exposure summaries over analysed images."""

from typing import Optional, Sequence

from burstwise.models import ImageStat


def exposure_delta(stats: Sequence[ImageStat]) -> Optional[float]:
    """Spread between the brightest and darkest image of a group.

    A wide spread suggests a usable exposure bracket. Returns None when no
    images have been analysed.
    """
    if not stats:
        return None
    values = [stat.average_luma for stat in stats]
    return max(values) - min(values)
