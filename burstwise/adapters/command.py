"""Imaging backend that delegates to external commands."""

import asyncio
import json
import logging
import shlex
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from burstwise.adapters.base import ImagingBackend
from burstwise.config import get_settings
from burstwise.errors import ExternalCallFailed
from burstwise.models import ImageStat, MergeRequest, MergeResult

logger = logging.getLogger(__name__)

_stats_adapter = TypeAdapter(list[ImageStat])


class CommandImagingBackend(ImagingBackend):
    """Run analysis and merge through configured commands.

    Each command receives a camelCase JSON request on stdin and must print a
    camelCase JSON response on stdout. A non-zero exit status is a failure and
    stderr is reported as the error message.

    Analysis request: ``{"paths": [...]}``, response: ``[{"path", "averageLuma"}]``.
    Merge request: ``{"paths", "outputDir", "outputExr"}``, response:
    ``{"outputPngPath", "outputExrPath", "width", "height", "mergedAt"}``.
    """

    def __init__(
        self,
        analyze_command: str | None = None,
        merge_command: str | None = None,
    ):
        """Initialize the backend.

        Args:
            analyze_command: Analysis command line. If not provided, uses settings.
            merge_command: Merge command line. If not provided, uses settings.
        """
        settings = get_settings()
        self._analyze_command = analyze_command or settings.analyze_command
        self._merge_command = merge_command or settings.merge_command

    async def analyze_images(self, paths: list[str]) -> list[ImageStat]:
        """Compute average luma for each image."""
        if not paths:
            raise ExternalCallFailed("No images to analyze")

        command = self._require_command(self._analyze_command, "analyze_command")
        output = await self._run(command, {"paths": paths})

        try:
            stats = _stats_adapter.validate_json(output)
        except ValidationError as e:
            raise ExternalCallFailed(f"Invalid analysis response: {e}") from e

        if len(stats) != len(paths):
            raise ExternalCallFailed(
                f"Analysis returned {len(stats)} results for {len(paths)} images"
            )
        return stats

    async def merge_images(
        self,
        paths: list[str],
        output_directory: Path | None,
        include_exr: bool,
    ) -> MergeResult:
        """Merge images and return the written outputs."""
        command = self._require_command(self._merge_command, "merge_command")
        request = MergeRequest(
            paths=paths,
            output_dir=str(output_directory) if output_directory else None,
            output_exr=include_exr,
        )
        output = await self._run(command, request.model_dump(by_alias=True))

        try:
            return MergeResult.model_validate_json(output)
        except ValidationError as e:
            raise ExternalCallFailed(f"Invalid merge response: {e}") from e

    def _require_command(self, command: str | None, key: str) -> list[str]:
        """Split a configured command line, failing if it is missing."""
        if not command:
            raise ValueError(
                f"Imaging command required. Set via BURSTWISE_{key.upper()} "
                f"or run: burstwise config set {key} <command>"
            )
        return shlex.split(command)

    async def _run(self, command: list[str], payload: dict[str, Any]) -> bytes:
        """Run a command with a JSON payload and return its stdout."""
        logger.debug("Running %s", " ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalCallFailed(str(e)) from e

        stdout, stderr = await process.communicate(json.dumps(payload).encode())

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise ExternalCallFailed(message or f"{command[0]} exited with {process.returncode}")
        return stdout
