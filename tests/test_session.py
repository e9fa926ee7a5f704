"""Tests for the session controller."""

import asyncio
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from burstwise.adapters.base import ImagingBackend
from burstwise.errors import ExternalCallFailed, InsufficientImages, MergeInProgress, NoSelection
from burstwise.grouping import Grouper
from burstwise.models import ImageStat, MergeOptions, MergeResult, SessionState
from burstwise.session import SessionController


def create_grouper() -> Grouper:
    """Helper to create a grouper with a 3-image burst and a single image."""
    grouper = Grouper()
    for path, detected_at in [
        ("burst/a.png", 0),
        ("burst/b.png", 10_000),
        ("burst/c.png", 20_000),
        ("single/d.png", 1_000_000),
    ]:
        grouper.ingest_path(path, detected_at)
    return grouper


def create_backend() -> MagicMock:
    """Helper to create a backend mock with successful async calls."""
    backend = MagicMock(spec=ImagingBackend)
    backend.analyze_images = AsyncMock(side_effect=lambda paths: [
        ImageStat(path=path, average_luma=0.1 * (i + 1)) for i, path in enumerate(paths)
    ])
    backend.merge_images = AsyncMock(return_value=create_result())
    return backend


def create_result(name: str = "hdr_merge.png") -> MergeResult:
    """Helper to create a merge result."""
    return MergeResult(
        output_png_path=f"/out/{name}",
        output_exr_path=None,
        width=640,
        height=480,
        merged_at=datetime(2024, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def grouper():
    return create_grouper()


@pytest.fixture
def backend():
    return create_backend()


@pytest.fixture
def controller(backend, grouper):
    return SessionController(backend, grouper)


def burst_id(grouper: Grouper) -> str:
    return grouper.groups[0].id


def single_id(grouper: Grouper) -> str:
    return grouper.groups[1].id


class TestSelectGroup:
    """Tests for selection."""

    def test_initial_state(self, controller):
        """Test a new controller is idle with no results."""
        snapshot = controller.snapshot()
        assert snapshot.state == SessionState.IDLE
        assert snapshot.selected_group_id is None
        assert snapshot.stats == ()
        assert snapshot.merge_result is None
        assert snapshot.merge_in_flight is False

    def test_select(self, controller, grouper):
        """Test selecting a group moves to selected."""
        controller.select_group(burst_id(grouper))
        assert controller.state == SessionState.SELECTED
        assert controller.selected_group == grouper.groups[0]

    def test_select_resets_results(self, controller, grouper):
        """Test selecting clears stats and merge result from any state."""
        controller.select_group(burst_id(grouper))
        asyncio.run(controller.analyze())
        asyncio.run(controller.merge())
        assert controller.state == SessionState.MERGED
        assert controller.stats

        controller.select_group(burst_id(grouper))

        assert controller.state == SessionState.SELECTED
        assert controller.stats == ()
        assert controller.merge_result is None
        assert controller.merge_in_flight is False
        assert controller.last_error is None

    def test_select_none(self, controller, grouper):
        """Test clearing the selection returns to idle."""
        controller.select_group(burst_id(grouper))
        controller.select_group(None)
        assert controller.state == SessionState.IDLE


class TestAnalyze:
    """Tests for analysis."""

    def test_no_selection(self, controller, backend):
        """Test analyze without a selection fails."""
        with pytest.raises(NoSelection):
            asyncio.run(controller.analyze())
        backend.analyze_images.assert_not_called()
        assert controller.last_error == NoSelection.default_message

    def test_unknown_group(self, controller):
        """Test analyze with an ID that matches no group fails."""
        controller.select_group("grp_missing")
        with pytest.raises(NoSelection):
            asyncio.run(controller.analyze())

    def test_analyze_success(self, controller, backend, grouper):
        """Test stats are stored in group order."""
        controller.select_group(burst_id(grouper))
        stats = asyncio.run(controller.analyze())

        backend.analyze_images.assert_awaited_once_with(
            ["burst/a.png", "burst/b.png", "burst/c.png"]
        )
        assert [s.path for s in stats] == ["burst/a.png", "burst/b.png", "burst/c.png"]
        assert controller.state == SessionState.ANALYZED
        snapshot = controller.snapshot()
        assert len(snapshot.stats) == 3
        assert abs(snapshot.exposure_delta - 0.2) < 1e-9

    def test_analyze_failure_keeps_state(self, controller, backend, grouper):
        """Test a failed analysis surfaces the message and keeps old stats."""
        controller.select_group(burst_id(grouper))
        asyncio.run(controller.analyze())
        previous = controller.stats

        backend.analyze_images.side_effect = ExternalCallFailed("decode error: a.png")
        with pytest.raises(ExternalCallFailed) as exc:
            asyncio.run(controller.analyze())

        assert exc.value.message == "decode error: a.png"
        assert controller.stats == previous
        assert controller.state == SessionState.ANALYZED
        assert controller.last_error == "decode error: a.png"

    def test_unexpected_error_is_wrapped(self, controller, backend, grouper):
        """Test any collaborator exception is reported as ExternalCallFailed."""
        controller.select_group(burst_id(grouper))
        backend.analyze_images.side_effect = RuntimeError("backend crashed")

        with pytest.raises(ExternalCallFailed) as exc:
            asyncio.run(controller.analyze())
        assert "backend crashed" in exc.value.message
        assert controller.stats == ()

    def test_stale_result_discarded(self, controller, backend, grouper):
        """Test a result for a previous selection is dropped."""

        async def scenario():
            release = asyncio.Event()

            async def slow_analyze(paths):
                await release.wait()
                return [ImageStat(path=p, average_luma=0.5) for p in paths]

            backend.analyze_images.side_effect = slow_analyze
            controller.select_group(burst_id(grouper))
            task = asyncio.create_task(controller.analyze())
            await asyncio.sleep(0)

            controller.select_group(single_id(grouper))
            release.set()
            return await task

        result = asyncio.run(scenario())

        assert result is None
        assert controller.selected_group_id == single_id(grouper)
        assert controller.stats == ()
        assert controller.state == SessionState.SELECTED

    def test_stale_failure_discarded(self, controller, backend, grouper):
        """Test a failure for a previous selection is not surfaced."""

        async def scenario():
            release = asyncio.Event()

            async def failing_analyze(paths):
                await release.wait()
                raise ExternalCallFailed("late failure")

            backend.analyze_images.side_effect = failing_analyze
            controller.select_group(burst_id(grouper))
            task = asyncio.create_task(controller.analyze())
            await asyncio.sleep(0)

            controller.select_group(single_id(grouper))
            release.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert controller.last_error is None

    def test_last_completion_wins(self, controller, backend, grouper):
        """Test overlapping analyses apply in completion order."""

        async def scenario():
            gates = [asyncio.Event(), asyncio.Event()]
            lumas = iter([0.25, 0.75])

            async def gated_analyze(paths):
                luma = next(lumas)
                await gates[0 if luma == 0.25 else 1].wait()
                return [ImageStat(path=p, average_luma=luma) for p in paths]

            backend.analyze_images.side_effect = gated_analyze
            controller.select_group(burst_id(grouper))
            first = asyncio.create_task(controller.analyze())
            await asyncio.sleep(0)
            second = asyncio.create_task(controller.analyze())
            await asyncio.sleep(0)

            # Second call finishes before the first
            gates[1].set()
            await second
            gates[0].set()
            await first

        asyncio.run(scenario())

        assert {s.average_luma for s in controller.stats} == {0.25}


class TestMerge:
    """Tests for merging."""

    def test_no_selection(self, controller, backend):
        """Test merge without a selection fails."""
        with pytest.raises(NoSelection):
            asyncio.run(controller.merge())
        backend.merge_images.assert_not_called()

    def test_insufficient_images(self, controller, backend, grouper):
        """Test merging a single-image group fails."""
        controller.select_group(single_id(grouper))

        with pytest.raises(InsufficientImages):
            asyncio.run(controller.merge())

        backend.merge_images.assert_not_called()
        assert controller.merge_result is None
        assert controller.merge_in_flight is False
        assert controller.last_error is not None

    def test_merge_success(self, controller, backend, grouper):
        """Test a successful merge stores the result."""
        controller.select_group(burst_id(grouper))
        options = MergeOptions(output_directory=Path("/out"), include_exr=False)

        result = asyncio.run(controller.merge(options))

        backend.merge_images.assert_awaited_once_with(
            ["burst/a.png", "burst/b.png", "burst/c.png"], Path("/out"), False
        )
        assert result == create_result()
        assert controller.merge_result == result
        assert controller.merge_in_flight is False
        assert controller.state == SessionState.MERGED

    def test_analyze_after_merge_stays_merged(self, controller, backend, grouper):
        """Test analysis after a merge keeps the merged state and result."""
        controller.select_group(burst_id(grouper))
        asyncio.run(controller.merge())

        stats = asyncio.run(controller.analyze())

        assert len(stats) == 3
        assert controller.merge_result == create_result()
        assert controller.state == SessionState.MERGED
        assert controller.snapshot().exposure_delta is not None

    def test_default_output_directory(self, backend, grouper):
        """Test the controller default is used when options name no folder."""
        controller = SessionController(
            backend, grouper, default_output_directory=Path("/watched")
        )
        controller.select_group(burst_id(grouper))

        asyncio.run(controller.merge(MergeOptions(include_exr=True)))

        backend.merge_images.assert_awaited_once_with(
            ["burst/a.png", "burst/b.png", "burst/c.png"], Path("/watched"), True
        )

    def test_no_output_directory(self, controller, backend, grouper):
        """Test None is passed when no folder is known."""
        controller.select_group(burst_id(grouper))
        asyncio.run(controller.merge())

        args = backend.merge_images.await_args.args
        assert args[1] is None
        assert args[2] is True

    def test_merge_failure(self, controller, backend, grouper):
        """Test a failed merge moves to merge_failed without a result."""
        controller.select_group(burst_id(grouper))
        backend.merge_images.side_effect = ExternalCallFailed("image sizes differ")

        with pytest.raises(ExternalCallFailed) as exc:
            asyncio.run(controller.merge())

        assert exc.value.message == "image sizes differ"
        assert controller.state == SessionState.MERGE_FAILED
        assert controller.merge_in_flight is False
        assert controller.merge_result is None
        assert controller.last_error == "image sizes differ"

    def test_single_flight(self, controller, backend, grouper):
        """Test a second merge while one is pending fails immediately."""

        async def scenario():
            release = asyncio.Event()

            async def slow_merge(paths, output_directory, include_exr):
                await release.wait()
                return create_result()

            backend.merge_images.side_effect = slow_merge
            controller.select_group(burst_id(grouper))
            task = asyncio.create_task(controller.merge())
            await asyncio.sleep(0)

            assert controller.state == SessionState.MERGING
            assert controller.merge_in_flight is True

            with pytest.raises(MergeInProgress):
                await controller.merge()
            assert controller.merge_result is None
            assert controller.merge_in_flight is True

            release.set()
            return await task

        result = asyncio.run(scenario())

        assert result == create_result()
        assert backend.merge_images.await_count == 1
        assert controller.state == SessionState.MERGED

    def test_stale_merge_discarded(self, controller, backend, grouper):
        """Test a merge for a previous selection does not touch the new one."""
        grouper.ingest_path("single/e.png", 1_010_000)

        async def scenario():
            releases = [asyncio.Event(), asyncio.Event()]
            names = iter(["old.png", "new.png"])

            async def gated_merge(paths, output_directory, include_exr):
                name = next(names)
                await releases[0 if name == "old.png" else 1].wait()
                return create_result(name)

            backend.merge_images.side_effect = gated_merge
            controller.select_group(burst_id(grouper))
            old = asyncio.create_task(controller.merge())
            await asyncio.sleep(0)

            # Selecting resets the in-flight flag, so a new merge may start
            controller.select_group(single_id(grouper))
            assert controller.merge_in_flight is False
            new = asyncio.create_task(controller.merge())
            await asyncio.sleep(0)

            releases[0].set()
            old_result = await old
            assert controller.merge_in_flight is True
            assert controller.merge_result is None

            releases[1].set()
            return old_result, await new

        old_result, new_result = asyncio.run(scenario())

        assert old_result is None
        assert new_result.output_png_path == "/out/new.png"
        assert controller.merge_result == new_result
        assert controller.state == SessionState.MERGED

    def test_reselecting_same_group_discards(self, controller, backend, grouper):
        """Test re-selecting the same group also fences older calls."""

        async def scenario():
            release = asyncio.Event()

            async def slow_merge(paths, output_directory, include_exr):
                await release.wait()
                return create_result()

            backend.merge_images.side_effect = slow_merge
            controller.select_group(burst_id(grouper))
            task = asyncio.create_task(controller.merge())
            await asyncio.sleep(0)

            controller.select_group(burst_id(grouper))
            release.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert controller.merge_result is None
        assert controller.state == SessionState.SELECTED

    def test_merge_sees_grown_group(self, controller, backend, grouper):
        """Test merge uses the current snapshot of the selected group."""
        grouper.ingest_path("single/e.png", 1_010_000)
        controller.select_group(single_id(grouper))

        asyncio.run(controller.merge())

        args = backend.merge_images.await_args.args
        assert args[0] == ["single/d.png", "single/e.png"]
