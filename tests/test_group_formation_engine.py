"""
Unit tests for the group formation engine.

Tests cover:
- Reference scenarios (grouped, isolated, too few plots, too large area)
- Every ungrouped reason end to end
- Output invariants on a larger randomised layout
- Determinism and parallel execution
- Invalid input and cancellation
"""
from datetime import timedelta
from itertools import combinations
from threading import Event
import math
import random
from uuid import UUID

import pytest
from shapely.geometry import Polygon

from app.domain.models import GroupFormationResult, UngroupedReason
from app.services.domain.group_formation_engine import (
    GroupFormationCancelled,
    GroupFormationEngine,
)

from conftest import BASE_DATE, VARIETY_A, VARIETY_B, make_plot_record


@pytest.fixture
def engine() -> GroupFormationEngine:
    return GroupFormationEngine(max_workers=1)


def reasons_by_plot(result: GroupFormationResult) -> dict[int, UngroupedReason]:
    return {u.plot_id.int: u.reason for u in result.ungrouped_plots}


# ============================================================
# Reference Scenario Tests
# ============================================================

class TestReferenceScenarios:
    """Small layouts with a known outcome."""

    def test_compact_plots_form_one_group(self, engine, make_plot, make_parameters):
        """Three close plots planted the same day form one group."""
        plots = [
            make_plot(1, 0, 0, area=0.5),
            make_plot(2, 40, 0, area=0.5),
            make_plot(3, 20, 30, area=0.5),
        ]
        params = make_parameters(
            min_group_area=1.0, max_group_area=5.0,
            min_plots_per_group=2, max_plots_per_group=10,
            proximity_threshold=100.0,
        )

        result = engine.form_groups(plots, params)

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.group_number == 1
        assert group.plot_count == 3
        assert group.total_area == pytest.approx(1.5)
        assert sorted(p.int for p in group.plot_ids) == [1, 2, 3]
        assert result.ungrouped_plots == []
        for plot in plots:
            assert group.group_boundary.contains(plot.boundary)

    def test_distant_plot_is_isolated(self, engine, compact_cluster, make_plot, make_parameters):
        """A plot 10km away is isolated and points at the nearest group."""
        plots = compact_cluster + [make_plot(4, 10_000, 0)]
        params = make_parameters(proximity_threshold=1000.0)

        result = engine.form_groups(plots, params)

        assert len(result.groups) == 1
        [isolated] = result.ungrouped_plots
        assert isolated.plot_id.int == 4
        assert isolated.reason is UngroupedReason.ISOLATED_LOCATION
        assert isolated.nearest_group_number == 1
        # Group centroid sits on the middle plot at x=50
        assert isolated.distance_to_nearest_group == pytest.approx(9950.0)

    def test_isolated_plot_without_same_variety_group(self, engine, compact_cluster, make_plot, make_parameters):
        """Nearest group is only looked up within the plot's variety."""
        plots = compact_cluster + [make_plot(4, 10_000, 0, variety=VARIETY_B)]

        result = engine.form_groups(plots, make_parameters(proximity_threshold=1000.0))

        [isolated] = result.ungrouped_plots
        assert isolated.reason is UngroupedReason.ISOLATED_LOCATION
        assert isolated.nearest_group_number is None
        assert isolated.distance_to_nearest_group is None

    def test_pair_below_min_plots(self, engine, make_plot, make_parameters):
        """Two coherent plots with a minimum of three are too few."""
        plots = [make_plot(1, 0, 0), make_plot(2, 50, 0)]

        result = engine.form_groups(plots, make_parameters(min_plots_per_group=3))

        assert result.groups == []
        assert reasons_by_plot(result) == {
            1: UngroupedReason.TOO_FEW_PLOTS,
            2: UngroupedReason.TOO_FEW_PLOTS,
        }

    def test_ring_without_core_plot_never_groups(self, engine, make_plot, make_parameters):
        """
        Corners of a 90m square each reach only two others, so none can seed
        a cluster of four even though the four are connected.
        """
        plots = [make_plot(1, 0, 0), make_plot(2, 90, 0), make_plot(3, 0, 90), make_plot(4, 90, 90)]

        result = engine.form_groups(plots, make_parameters(min_plots_per_group=4))

        assert result.groups == []
        assert reasons_by_plot(result) == {i: UngroupedReason.TOO_FEW_PLOTS for i in range(1, 5)}

    def test_ring_with_center_plot_groups(self, engine, make_plot, make_parameters):
        """A center plot makes every corner a core plot, so the five group."""
        plots = [
            make_plot(1, 0, 0),
            make_plot(2, 90, 0),
            make_plot(3, 0, 90),
            make_plot(4, 90, 90),
            make_plot(5, 45, 45),
        ]

        result = engine.form_groups(plots, make_parameters(min_plots_per_group=4))

        assert [g.plot_count for g in result.groups] == [5]
        assert result.ungrouped_plots == []

    def test_candidate_above_max_area(self, engine, make_plot, make_parameters):
        """Every member of an oversized candidate is reported as too large."""
        plots = [make_plot(i, i * 50.0, 0, area=20.0) for i in range(1, 4)]

        result = engine.form_groups(plots, make_parameters(max_group_area=50.0))

        assert result.groups == []
        assert set(reasons_by_plot(result).values()) == {UngroupedReason.TOO_LARGE_AREA}
        assert len(result.ungrouped_plots) == 3


# ============================================================
# Ungrouped Reason Tests
# ============================================================

class TestUngroupedReasons:
    """End-to-end coverage of each ungrouped reason."""

    def test_too_small_area(self, engine, make_plot, make_parameters):
        plots = [make_plot(i, i * 50.0, 0, area=0.5) for i in range(1, 4)]

        result = engine.form_groups(plots, make_parameters(min_group_area=5.0))

        assert set(reasons_by_plot(result).values()) == {UngroupedReason.TOO_SMALL_AREA}

    def test_too_many_plots(self, engine, make_plot, make_parameters):
        """A tight 4x3 grid exceeds a ten plot maximum."""
        plots = [
            make_plot(row * 4 + col + 1, col * 20.0, row * 20.0, area=1.0, side=10.0)
            for row in range(3)
            for col in range(4)
        ]

        result = engine.form_groups(plots, make_parameters(max_plots_per_group=10))

        assert result.groups == []
        assert len(result.ungrouped_plots) == 12
        assert set(reasons_by_plot(result).values()) == {UngroupedReason.TOO_MANY_PLOTS}

    def test_too_spread_out(self, engine, make_plot, make_parameters):
        """A chain of reachable plots longer than twice the threshold is rejected."""
        plots = [make_plot(i, i * 90.0, 0) for i in range(1, 7)]

        result = engine.form_groups(plots, make_parameters(min_plots_per_group=2))

        assert result.groups == []
        assert set(reasons_by_plot(result).values()) == {UngroupedReason.TOO_SPREAD_OUT}

    def test_planting_date_too_far(self, engine, compact_cluster, make_plot, make_parameters):
        """A neighbor planted ten days later stays out of the group."""
        late = make_plot(4, 50, 50, planting_date=BASE_DATE + timedelta(days=10))

        result = engine.form_groups(compact_cluster + [late], make_parameters())

        assert len(result.groups) == 1
        assert sorted(p.int for p in result.groups[0].plot_ids) == [1, 2, 3]
        [ungrouped] = result.ungrouped_plots
        assert ungrouped.reason is UngroupedReason.PLANTING_DATE_TOO_FAR
        assert ungrouped.nearest_group_number == 1

    def test_invalid_geometry(self, engine, compact_cluster, make_parameters):
        """Self-intersecting and empty boundaries are reported, the rest still group."""
        template = compact_cluster[0]
        bowtie = template.model_copy(update={
            "plot_id": UUID(int=8),
            "boundary": Polygon([(0, 0), (10, 10), (10, 0), (0, 10)]),
        })
        empty = template.model_copy(update={
            "plot_id": UUID(int=9),
            "boundary": Polygon(),
            "centroid": None,
        })

        result = engine.form_groups(compact_cluster + [bowtie, empty], make_parameters())

        assert len(result.groups) == 1
        assert reasons_by_plot(result) == {
            8: UngroupedReason.INVALID_GEOMETRY,
            9: UngroupedReason.INVALID_GEOMETRY,
        }

    def test_varieties_never_mix(self, engine, make_plot, make_parameters):
        """Interleaved plots of two varieties form two separate groups."""
        plots = [
            make_plot(1, 0, 0, variety=VARIETY_B),
            make_plot(2, 30, 0, variety=VARIETY_A),
            make_plot(3, 60, 0, variety=VARIETY_B),
            make_plot(4, 90, 0, variety=VARIETY_A),
            make_plot(5, 120, 0, variety=VARIETY_B),
            make_plot(6, 150, 0, variety=VARIETY_A),
        ]

        result = engine.form_groups(plots, make_parameters())

        assert [g.rice_variety_id for g in result.groups] == [VARIETY_A, VARIETY_B]
        assert [sorted(p.int for p in g.plot_ids) for g in result.groups] == [[2, 4, 6], [1, 3, 5]]


# ============================================================
# Invariant Tests
# ============================================================

def random_layout(seed: int = 42, count: int = 80) -> list:
    """Plots scattered over a 1.5km square, two varieties, ten planting days."""
    rng = random.Random(seed)
    plots = []
    for index in range(1, count + 1):
        plots.append(make_plot_record(
            index,
            rng.uniform(0, 1500),
            rng.uniform(0, 1500),
            planting_date=BASE_DATE + timedelta(days=rng.randint(0, 9), hours=rng.randint(0, 23)),
            area=round(rng.uniform(0.3, 3.0), 2),
            variety=rng.choice([VARIETY_A, VARIETY_B]),
            side=15.0,
        ))
    return plots


class TestInvariants:
    """Properties every result must satisfy."""

    @pytest.fixture
    def layout(self):
        return random_layout()

    @pytest.fixture
    def params(self, make_parameters):
        return make_parameters(
            proximity_threshold=150.0,
            planting_date_tolerance_days=3,
            min_group_area=2.0,
            max_group_area=15.0,
            min_plots_per_group=2,
            max_plots_per_group=8,
        )

    @pytest.fixture
    def result(self, engine, layout, params):
        return engine.form_groups(layout, params)

    def test_layout_produces_groups(self, result):
        """Sanity check that the layout exercises grouping at all."""
        assert result.groups
        assert result.ungrouped_plots

    def test_every_plot_reported_once(self, layout, result):
        grouped = [pid for g in result.groups for pid in g.plot_ids]
        ungrouped = [u.plot_id for u in result.ungrouped_plots]

        assert len(grouped) == len(set(grouped))
        assert not set(grouped) & set(ungrouped)
        assert sorted(grouped + ungrouped) == sorted(p.plot_id for p in layout)

    def test_group_numbers_contiguous(self, result):
        assert [g.group_number for g in result.groups] == list(range(1, len(result.groups) + 1))

    def test_group_aggregates(self, layout, params, result):
        by_id = {p.plot_id: p for p in layout}
        tolerance = timedelta(days=params.planting_date_tolerance_days)

        for group in result.groups:
            members = [by_id[pid] for pid in group.plot_ids]
            dates = [m.planting_date for m in members]

            assert group.plot_count == len(members)
            assert group.total_area == pytest.approx(sum(m.area for m in members))
            assert params.min_group_area <= group.total_area <= params.max_group_area
            assert params.min_plots_per_group <= group.plot_count <= params.max_plots_per_group
            assert {m.rice_variety_id for m in members} == {group.rice_variety_id}
            assert dates == sorted(dates)
            assert group.planting_window_start == dates[0]
            assert group.planting_window_end == dates[-1]
            assert group.planting_window_end - group.planting_window_start < tolerance
            assert group.planting_window_start <= group.median_planting_date <= group.planting_window_end
            assert group.cultivation_ids == [m.cultivation_id for m in members]

    def test_groups_are_coherent(self, layout, params, result):
        """No two members are more than twice the threshold apart."""
        by_id = {p.plot_id: p for p in layout}
        for group in result.groups:
            centroids = [by_id[pid].centroid for pid in group.plot_ids]
            for a, b in combinations(centroids, 2):
                assert a.distance(b) <= params.proximity_threshold * 2 + 1e-9

    def test_boundaries_cover_members(self, layout, result):
        by_id = {p.plot_id: p for p in layout}
        for group in result.groups:
            for pid in group.plot_ids:
                assert group.group_boundary.contains(by_id[pid].boundary)

    def test_nearest_group_is_same_variety(self, result):
        varieties = {g.group_number: g.rice_variety_id for g in result.groups}
        for plot in result.ungrouped_plots:
            if plot.nearest_group_number is not None:
                assert varieties[plot.nearest_group_number] == plot.rice_variety_id
                assert plot.distance_to_nearest_group >= 0

    def test_ungrouped_ordered_by_plot_id(self, result):
        ids = [u.plot_id for u in result.ungrouped_plots]
        assert ids == sorted(ids)

    @pytest.mark.parametrize("min_plots", [3, 4, 5])
    def test_grouped_plots_are_density_reachable(self, engine, make_parameters, min_plots):
        """
        Every grouped plot is a core plot (min_plots same-variety plots in
        range, itself included) or lies in range of one.
        """
        layout = random_layout(seed=7, count=200)
        params = make_parameters(
            proximity_threshold=120.0,
            planting_date_tolerance_days=10,
            max_group_area=500.0,
            min_plots_per_group=min_plots,
            max_plots_per_group=200,
        )

        result = engine.form_groups(layout, params)

        def in_range(a, b):
            return a.centroid.distance(b.centroid) <= params.proximity_threshold

        core = {
            plot.plot_id for plot in layout
            if sum(
                1 for other in layout
                if other.rice_variety_id == plot.rice_variety_id and in_range(plot, other)
            ) >= min_plots
        }
        by_id = {p.plot_id: p for p in layout}
        for group in result.groups:
            for pid in group.plot_ids:
                assert pid in core or any(in_range(by_id[pid], by_id[c]) for c in core
                                          if by_id[c].rice_variety_id == group.rice_variety_id)


# ============================================================
# Determinism Tests
# ============================================================

def summarize(result: GroupFormationResult):
    return (
        [(g.group_number, g.rice_variety_id, g.plot_ids, g.total_area) for g in result.groups],
        [(u.plot_id, u.reason, u.nearest_group_number) for u in result.ungrouped_plots],
    )


class TestDeterminism:
    """Identical input always yields identical output."""

    def test_repeated_runs_identical(self, engine, make_parameters):
        layout = random_layout(seed=7)
        params = make_parameters(proximity_threshold=150.0, min_plots_per_group=2)

        assert summarize(engine.form_groups(layout, params)) == summarize(engine.form_groups(layout, params))

    def test_input_order_irrelevant(self, engine, make_parameters):
        layout = random_layout(seed=7)
        shuffled = list(layout)
        random.Random(3).shuffle(shuffled)
        params = make_parameters(proximity_threshold=150.0, min_plots_per_group=2)

        assert summarize(engine.form_groups(layout, params)) == summarize(engine.form_groups(shuffled, params))

    def test_parallel_matches_serial(self, make_parameters):
        layout = random_layout(seed=11)
        params = make_parameters(proximity_threshold=150.0, min_plots_per_group=2)

        serial = GroupFormationEngine(max_workers=1).form_groups(layout, params)
        parallel = GroupFormationEngine(max_workers=4).form_groups(layout, params)

        assert summarize(serial) == summarize(parallel)


# ============================================================
# Input Validation and Cancellation Tests
# ============================================================

class TestEngineEdgeCases:
    """Tests for empty input, bad input and cancellation."""

    def test_empty_snapshot(self, engine, make_parameters):
        result = engine.form_groups([], make_parameters(), crs="EPSG:32648")

        assert result.groups == []
        assert result.ungrouped_plots == []
        assert result.crs == "EPSG:32648"

    def test_duplicate_plot_ids_rejected(self, engine, make_plot, make_parameters):
        plots = [make_plot(1, 0, 0), make_plot(1, 50, 0)]

        with pytest.raises(ValueError, match="Duplicate plot ids"):
            engine.form_groups(plots, make_parameters())

    def test_cancelled_before_start(self, engine, compact_cluster, make_parameters):
        cancel_event = Event()
        cancel_event.set()

        with pytest.raises(GroupFormationCancelled):
            engine.form_groups(compact_cluster, make_parameters(), cancel_event=cancel_event)

    def test_unset_event_runs_to_completion(self, engine, compact_cluster, make_parameters):
        result = engine.form_groups(compact_cluster, make_parameters(), cancel_event=Event())
        assert len(result.groups) == 1

    def test_single_plot(self, engine, make_plot, make_parameters):
        result = engine.form_groups([make_plot(1, 0, 0)], make_parameters())

        assert result.groups == []
        assert reasons_by_plot(result) == {1: UngroupedReason.ISOLATED_LOCATION}
        assert math.isclose(result.ungrouped_plots[0].centroid.x, 0.0, abs_tol=1e-9)
