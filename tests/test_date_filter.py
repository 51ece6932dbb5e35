"""
Tests for the batched, cancellable "released on or after" filter.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from plugin_browser.errors import InvalidRepositoryError
from plugin_browser.models import CommunityPlugin
from plugin_browser.services import CancellationToken, DateFilterPipeline
from fakes import RecordingSleep

CUTOFF = datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc)


def make_plugin(plugin_id):
    return CommunityPlugin(
        id=plugin_id,
        name=plugin_id.upper(),
        author="Author",
        description="Description",
        repo=f"author/{plugin_id}",
    )


@pytest.fixture
def plugins():
    return [make_plugin(f"p{i}") for i in range(1, 6)]


class DateTable:
    """Release-date resolver backed by a dict; values may be exceptions."""

    def __init__(self, dates):
        self.dates = dates
        self.resolved = []

    async def __call__(self, plugin):
        self.resolved.append(plugin.id)
        await asyncio.sleep(0)
        value = self.dates.get(plugin.id)
        if isinstance(value, BaseException):
            raise value
        return value


class TestFiltering:

    def test_compares_utc_calendar_dates(self):
        entries = [make_plugin(i) for i in ("same-day", "day-before", "offset", "later")]
        table = DateTable({
            "same-day": datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc),
            "day-before": datetime(2024, 2, 29, 23, 59, tzinfo=timezone.utc),
            # 2024-02-29 23:00 in UTC
            "offset": datetime(2024, 3, 1, 1, 0, tzinfo=timezone(timedelta(hours=2))),
            "later": datetime(2024, 6, 1, tzinfo=timezone.utc),
        })
        pipeline = DateFilterPipeline(table, batch_size=10, sleep=RecordingSleep())

        result = asyncio.run(pipeline.run(entries, CUTOFF))

        assert [p.id for p in result] == ["same-day", "later"]

    def test_unresolved_and_failing_entries_are_excluded(self, plugins):
        table = DateTable({
            "p1": datetime(2024, 4, 1, tzinfo=timezone.utc),
            "p2": None,
            "p3": InvalidRepositoryError("bad repo"),
            "p4": RuntimeError("boom"),
            "p5": datetime(2024, 5, 1, tzinfo=timezone.utc),
        })
        pipeline = DateFilterPipeline(table, batch_size=2, sleep=RecordingSleep())

        result = asyncio.run(pipeline.run(plugins, CUTOFF))

        assert [p.id for p in result] == ["p1", "p5"]

    def test_no_cutoff_returns_input(self, plugins):
        table = DateTable({})
        pipeline = DateFilterPipeline(table, sleep=RecordingSleep())
        assert asyncio.run(pipeline.run(plugins, None)) == plugins
        assert table.resolved == []

    def test_empty_input(self):
        pipeline = DateFilterPipeline(DateTable({}), sleep=RecordingSleep())
        assert asyncio.run(pipeline.run([], CUTOFF)) == []

    def test_batches_are_separated_by_delay(self, plugins):
        """5 entries in batches of 2: 3 batches, 2 pauses, none after the last"""
        sleeper = RecordingSleep()
        pipeline = DateFilterPipeline(DateTable({}), batch_size=2, inter_batch_delay=0.1, sleep=sleeper)

        asyncio.run(pipeline.run(plugins, CUTOFF))

        assert sleeper.delays == pytest.approx([0.1, 0.1])

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            DateFilterPipeline(DateTable({}), batch_size=0)


class TestCancellation:

    def test_newer_run_supersedes_older(self, plugins):
        """Only the newest run delivers; the older one's partial results are dropped"""
        delivered = []
        dates = {p.id: datetime(2024, 4, 1, tzinfo=timezone.utc) for p in plugins}

        async def scenario():
            opened = asyncio.Event()

            async def resolve(plugin):
                await opened.wait()
                return dates[plugin.id]

            pipeline = DateFilterPipeline(
                resolve, batch_size=2, inter_batch_delay=0, on_results=delivered.append, sleep=RecordingSleep()
            )
            run_a = asyncio.create_task(pipeline.run(plugins, CUTOFF))
            for _ in range(3):
                await asyncio.sleep(0)
            run_b = asyncio.create_task(pipeline.run(plugins[:2], CUTOFF))
            for _ in range(3):
                await asyncio.sleep(0)
            opened.set()
            return await run_a, await run_b

        result_a, result_b = asyncio.run(scenario())

        assert result_a is None
        assert [p.id for p in result_b] == ["p1", "p2"]
        assert delivered == [result_b]

    def test_cancel_skips_remaining_batches(self, plugins):
        delivered = []
        resolved = []
        holder = {}

        async def resolve(plugin):
            resolved.append(plugin.id)
            # View closed while the first batch is in flight
            holder["pipeline"].cancel()
            return datetime(2024, 4, 1, tzinfo=timezone.utc)

        pipeline = DateFilterPipeline(resolve, batch_size=2, on_results=delivered.append, sleep=RecordingSleep())
        holder["pipeline"] = pipeline

        assert asyncio.run(pipeline.run(plugins, CUTOFF)) is None
        assert resolved == ["p1", "p2"]
        assert delivered == []
        assert pipeline.current_run is None

    def test_token(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.cancel()
        assert token.cancelled is True
