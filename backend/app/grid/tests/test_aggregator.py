"""
Unit tests for the streaming aggregator.
"""

import asyncio
import logging
import math

import pytest

from ..aggregator import (
    GridAccumulator,
    GridMode,
    ProgressMeter,
    aggregate_stream,
    as_coordinate,
)
from ..errors import SourceUnavailableError
from ..source import BBox, GridRecord, RecordQuery
from .fakes import ListSource, points


def stream_of(records, **kwargs):
    source = ListSource(records, **kwargs)
    return source, source.stream(RecordQuery())


SCENARIO = [
    GridRecord(-10.1, -50.2, "Panthera onca"),
    GridRecord(-10.05, -50.15, "panthera onca"),
    GridRecord(-10.2, -50.1, "  PANTHERA   ONCA "),
    GridRecord(10.0, 10.0, "Ara macao"),
    GridRecord(10.05, 10.05, "Ara macao "),
]


class TestAsCoordinate:
    """Tests for coordinate extraction."""

    @pytest.mark.parametrize("value,expected", [
        (1, 1.0),
        (-45.5, -45.5),
        (0.0, 0.0),
    ])
    def test_numbers(self, value, expected):
        assert as_coordinate(value) == expected

    @pytest.mark.parametrize("value", [
        None, "12.5", True, math.nan, math.inf, -math.inf, [1.0], {},
    ])
    def test_rejected(self, value):
        assert as_coordinate(value) is None


class TestGridAccumulator:
    """Tests for per-run accumulation."""

    def test_count_mode(self):
        acc = GridAccumulator(1.0)
        acc.add(0.5, 0.5)
        acc.add(0.6, 0.6)
        acc.add(5.5, 5.5)
        results = acc.results()
        assert len(acc) == 2
        assert [r.metric for r in results] == [2, 1]

    def test_richness_dedup(self):
        acc = GridAccumulator(1.0, GridMode.RICHNESS)
        assert acc.add(0.5, 0.5, "Ara macao")
        assert acc.add(0.5, 0.5, "ARA  MACAO")
        assert acc.add(0.5, 0.5, "Ara ararauna")
        assert acc.results()[0].metric == 2

    def test_richness_skips_blank_identity(self):
        acc = GridAccumulator(1.0, GridMode.RICHNESS)
        assert not acc.add(0.5, 0.5, None)
        assert not acc.add(0.5, 0.5, "   ")
        assert len(acc) == 0
        assert acc.results() == []

    def test_results_carry_bounds(self):
        acc = GridAccumulator(0.25)
        acc.add(10.0, 10.0)
        result = acc.results()[0]
        assert result.key == (400, 760)
        assert result.bounds.south <= 10.0 < result.bounds.north
        assert result.to_dict() == {
            "key": "400:760",
            "metric": 1,
            "bounds": [[10.0, 10.0], [10.25, 10.25]],
        }

    def test_results_sorted_descending(self):
        acc = GridAccumulator(1.0)
        for lat, n in [(0.5, 3), (10.5, 7), (20.5, 1), (30.5, 5)]:
            for _ in range(n):
                acc.add(lat, 0.5)
        metrics = [r.metric for r in acc.results()]
        assert metrics == sorted(metrics, reverse=True)
        assert metrics == [7, 5, 3, 1]


class TestAggregateStream:
    """Tests for aggregate_stream."""

    @pytest.mark.asyncio
    async def test_scenario_richness(self):
        """Two cells, each holding one species after normalization."""
        _, records = stream_of(SCENARIO)
        snapshot = await aggregate_stream(
            records, cell_size=0.25, scan_cap=1000, mode=GridMode.RICHNESS
        )
        assert snapshot.scanned == 5
        assert snapshot.capped is False
        assert snapshot.mode is GridMode.RICHNESS
        assert len(snapshot.cells) == 2
        assert sorted(c.metric for c in snapshot.cells) == [1, 1]
        assert {c.key for c in snapshot.cells} == {(319, 519), (400, 760)}

    @pytest.mark.asyncio
    async def test_scenario_count(self):
        _, records = stream_of(SCENARIO)
        snapshot = await aggregate_stream(records, cell_size=0.25, scan_cap=1000)
        assert [c.metric for c in snapshot.cells] == [3, 2]
        assert snapshot.cells[0].key == (319, 519)
        assert snapshot.cell_count == 2

    @pytest.mark.asyncio
    async def test_richness_cardinality(self):
        """N records with k distinct identities give metric k, not N."""
        base = ["Ara macao", "Panthera onca", "Puma concolor", "Tapirus terrestris",
                "Harpia harpyja", "Bradypus variegatus", "Caiman crocodilus"]
        records = []
        for i in range(60):
            name = base[i % len(base)]
            variant = [name, name.upper(), f"  {name.lower()} ", name.replace(" ", "   ")][i % 4]
            records.append(GridRecord(1.5, 1.5, variant))

        # Plain strings as "hashes" make the distinct count exact.
        _, stream = stream_of(records)
        exact = await aggregate_stream(
            stream, cell_size=1.0, scan_cap=1000, mode=GridMode.RICHNESS, hasher=lambda s: s
        )
        _, stream = stream_of(records)
        hashed = await aggregate_stream(
            stream, cell_size=1.0, scan_cap=1000, mode=GridMode.RICHNESS
        )

        assert exact.cells[0].metric == len(base)
        assert hashed.cells[0].metric == len(base)
        assert exact.scanned == hashed.scanned == 60

    @pytest.mark.asyncio
    async def test_scan_cap_stops_consuming(self):
        """cap=3 over 10 records: the 4th record is pulled, then the scan stops."""
        source, records = stream_of(points(*[(i, i) for i in range(10)]))
        snapshot = await aggregate_stream(records, cell_size=1.0, scan_cap=3)
        assert snapshot.scanned == 4
        assert snapshot.capped is True
        assert source.pulled == 4
        assert sum(c.metric for c in snapshot.cells) == 3
        assert source.closed

    @pytest.mark.asyncio
    async def test_stream_exactly_at_cap_is_capped(self):
        _, records = stream_of(points((0, 0), (1, 1), (2, 2)))
        snapshot = await aggregate_stream(records, cell_size=1.0, scan_cap=3)
        assert snapshot.scanned == 3
        assert snapshot.capped is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cap", [1, 2, 5, 9, 10, 11, 50])
    async def test_cap_monotonicity(self, cap):
        _, records = stream_of(points(*[(i, i) for i in range(10)]))
        snapshot = await aggregate_stream(records, cell_size=1.0, scan_cap=cap)
        assert snapshot.scanned <= cap + 1
        assert snapshot.capped == (snapshot.scanned >= cap)

    @pytest.mark.asyncio
    async def test_invalid_coordinates_are_counted_but_skipped(self):
        records = [
            GridRecord(None, 1.0),
            GridRecord(1.0, None),
            GridRecord("12.5", 1.0),
            GridRecord(math.nan, 1.0),
            GridRecord(1.0, math.inf),
            GridRecord(0.5, 0.5),
        ]
        _, stream = stream_of(records)
        snapshot = await aggregate_stream(stream, cell_size=1.0, scan_cap=100)
        assert snapshot.scanned == 6
        assert len(snapshot.cells) == 1
        assert snapshot.cells[0].metric == 1

    @pytest.mark.asyncio
    async def test_richness_blank_identity_counted_as_scanned(self):
        records = [GridRecord(0.5, 0.5, None), GridRecord(0.5, 0.5, ""), GridRecord(0.5, 0.5, "Ara macao")]
        _, stream = stream_of(records)
        snapshot = await aggregate_stream(
            stream, cell_size=1.0, scan_cap=100, mode=GridMode.RICHNESS
        )
        assert snapshot.scanned == 3
        assert snapshot.cells[0].metric == 1

    @pytest.mark.asyncio
    async def test_bbox_filters_in_process(self):
        _, stream = stream_of(points((0.5, 0.5), (5.0, 5.0), (50.0, 50.0), (-1.0, 0.5)))
        snapshot = await aggregate_stream(
            stream, cell_size=1.0, scan_cap=100, bbox=BBox(0.0, 0.0, 5.0, 5.0)
        )
        assert snapshot.scanned == 4
        # inclusive on every edge
        assert sum(c.metric for c in snapshot.cells) == 2

    @pytest.mark.asyncio
    async def test_out_of_range_point_occupies_a_cell(self):
        _, stream = stream_of(points((95.0, 200.0)))
        snapshot = await aggregate_stream(stream, cell_size=1.0, scan_cap=100)
        assert snapshot.cells[0].key == (185, 380)

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        _, stream = stream_of([])
        snapshot = await aggregate_stream(stream, cell_size=1.0, scan_cap=100)
        assert snapshot.scanned == 0
        assert snapshot.cells == ()
        assert snapshot.capped is False

    @pytest.mark.asyncio
    async def test_source_unavailable_aborts(self):
        _, stream = stream_of(points((0, 0)), unavailable=True)
        with pytest.raises(SourceUnavailableError):
            await aggregate_stream(stream, cell_size=1.0, scan_cap=100)

    @pytest.mark.asyncio
    async def test_connection_lost_mid_stream_aborts(self):
        source, stream = stream_of(points(*[(i, i) for i in range(10)]), fail_after=4)
        with pytest.raises(SourceUnavailableError):
            await aggregate_stream(stream, cell_size=1.0, scan_cap=100)
        assert source.pulled == 4
        assert source.closed

    @pytest.mark.asyncio
    async def test_cancellation_closes_stream(self):
        gate = asyncio.Event()
        source, stream = stream_of(points((0, 0)), gate=gate)
        task = asyncio.create_task(aggregate_stream(stream, cell_size=1.0, scan_cap=100))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert source.closed
        assert source.pulled == 0

    @pytest.mark.asyncio
    async def test_completion_is_logged(self, caplog):
        _, stream = stream_of(points((0, 0)))
        with caplog.at_level(logging.INFO):
            await aggregate_stream(stream, cell_size=1.0, scan_cap=100, label="unit")
        assert any("[unit] done scanned=1" in r.message for r in caplog.records)


class TestProgressMeter:
    """Tests for rate-limited progress logging."""

    def test_only_checks_clock_every_n(self):
        now = [0.0]
        meter = ProgressMeter("t", every=10, interval=1.0, clock=lambda: now[0])
        now[0] = 5.0
        assert not meter.tick(9, 1)
        assert meter.tick(10, 1)

    def test_time_based_limit(self):
        now = [0.0]
        meter = ProgressMeter("t", every=1, interval=3.0, clock=lambda: now[0])
        now[0] = 1.0
        assert not meter.tick(1, 1)
        now[0] = 3.5
        assert meter.tick(2, 1)
        now[0] = 4.0
        assert not meter.tick(3, 1)
        now[0] = 6.6
        assert meter.tick(4, 1)

    def test_elapsed(self):
        now = [10.0]
        meter = ProgressMeter("t", clock=lambda: now[0])
        now[0] = 12.5
        assert meter.elapsed == pytest.approx(2.5)
