"""
Domain service: aggregates plots into candidate groups and applies the
area and plot-count bounds.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Optional, Sequence
from uuid import UUID
import logging

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from app.domain.models import GroupingParameters, PlotRecord

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """Plots sharing a (variety, spatial cluster, date bucket) key."""
    rice_variety_id: UUID
    spatial_cluster_id: int
    date_bucket: int
    member_indices: list[int]
    plot_ids: list[UUID]
    cultivation_ids: list[UUID]
    plot_count: int
    total_area: float
    planting_window_start: datetime
    planting_window_end: datetime
    median_planting_date: datetime
    combined_boundary: BaseGeometry
    sub_threshold: bool = False
    accepted: bool = False
    group_boundary: Optional[BaseGeometry] = None
    group_centroid: Optional[Point] = None

    @property
    def sort_key(self) -> tuple[UUID, int, int]:
        return (self.rice_variety_id, self.spatial_cluster_id, self.date_bucket)


def median_planting_date(sorted_dates: Sequence[datetime]) -> datetime:
    """
    Element at 0-based position count // 2 of the ascending dates.

    For even counts this is the upper of the two middle dates, not their
    average.
    """
    return sorted_dates[len(sorted_dates) // 2]


def is_acceptable(candidate: Candidate, parameters: GroupingParameters) -> bool:
    """Whether a candidate satisfies every area and plot-count bound."""
    return (
        parameters.min_group_area <= candidate.total_area <= parameters.max_group_area
        and parameters.min_plots_per_group <= candidate.plot_count <= parameters.max_plots_per_group
    )


def build_candidate(
    rice_variety_id: UUID,
    spatial_cluster_id: int,
    bucket: int,
    plots: Sequence[PlotRecord],
    member_indices: Sequence[int],
) -> Candidate:
    """Compute the aggregates of one candidate group."""
    ordered = sorted(
        member_indices,
        key=lambda i: (plots[i].planting_date, plots[i].plot_id),
    )
    members = [plots[i] for i in ordered]
    dates = [plot.planting_date for plot in members]

    return Candidate(
        rice_variety_id=rice_variety_id,
        spatial_cluster_id=spatial_cluster_id,
        date_bucket=bucket,
        member_indices=ordered,
        plot_ids=[plot.plot_id for plot in members],
        cultivation_ids=[plot.cultivation_id for plot in members],
        plot_count=len(members),
        total_area=sum(plot.area for plot in members),
        planting_window_start=dates[0],
        planting_window_end=dates[-1],
        median_planting_date=median_planting_date(dates),
        combined_boundary=unary_union([plot.boundary for plot in members]),
    )


def aggregate_candidates(
    rice_variety_id: UUID,
    plots: Sequence[PlotRecord],
    cluster_ids: Sequence[Optional[int]],
    buckets: Sequence[Optional[int]],
    parameters: GroupingParameters,
    sub_threshold: Collection[int] = frozenset(),
) -> list[Candidate]:
    """
    Build and judge every candidate group of one variety.

    Args:
        rice_variety_id: Variety shared by all plots
        plots: Plots of the variety
        cluster_ids: Spatial cluster id per plot
        buckets: Date bucket per plot (None when excluded upstream)
        parameters: Grouping thresholds
        sub_threshold: Cluster ids that DBSCAN did not seed; their
            candidates are never accepted, whatever their totals

    Returns:
        Candidates ordered by (spatial cluster, date bucket), each flagged
        accepted or not
    """
    keyed: dict[tuple[int, int], list[int]] = {}
    for index, (cluster_id, bucket) in enumerate(zip(cluster_ids, buckets)):
        if cluster_id is None or bucket is None:
            continue
        keyed.setdefault((cluster_id, bucket), []).append(index)

    candidates = []
    for (cluster_id, bucket), members in sorted(keyed.items()):
        candidate = build_candidate(rice_variety_id, cluster_id, bucket, plots, members)
        candidate.sub_threshold = cluster_id in sub_threshold
        candidate.accepted = not candidate.sub_threshold and is_acceptable(candidate, parameters)
        candidates.append(candidate)

    accepted = sum(1 for c in candidates if c.accepted)
    logger.debug(f"Variety {rice_variety_id}: {accepted}/{len(candidates)} candidates accepted")
    return candidates
