"""Burstwise - group continuous-shooting bursts for HDR merging."""

__version__ = "0.1.0"
