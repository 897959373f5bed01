"""
Domain service: explains every plot left out of the proposed groups.

Each ungrouped plot gets exactly one reason from an ordered chain of checks
(first match wins) and is pointed at the nearest accepted group of its rice
variety.
"""
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence
from uuid import UUID
import logging

from scipy.spatial import KDTree

from app.domain.models import (
    GroupingParameters,
    PlotRecord,
    ProposedGroup,
    UngroupedPlotInfo,
    UngroupedReason,
)
from app.services.domain.candidate_aggregator import Candidate
from app.utils.spatial_helpers import build_kdtree, nearest_point

logger = logging.getLogger(__name__)


@dataclass
class PlotTrace:
    """What each pipeline stage decided about one plot."""
    plot: PlotRecord
    invalid_geometry: bool = False
    spatial_cluster_id: Optional[int] = None
    cluster_size: int = 0
    sub_threshold_cluster: bool = False
    cluster_rejected: bool = False
    date_bucket: Optional[int] = None
    candidate: Optional[Candidate] = None

    @property
    def is_grouped(self) -> bool:
        return self.candidate is not None and self.candidate.accepted


ReasonCheck = Callable[[PlotTrace, GroupingParameters], bool]

# Order matters: the first matching check decides the reason.
REASON_CHECKS: list[tuple[UngroupedReason, ReasonCheck]] = [
    (UngroupedReason.INVALID_GEOMETRY,
     lambda t, p: t.invalid_geometry),
    (UngroupedReason.ISOLATED_LOCATION,
     lambda t, p: t.spatial_cluster_id is None),
    # Noise joined to nearby noise never had enough neighbors to seed a cluster
    (UngroupedReason.TOO_FEW_PLOTS,
     lambda t, p: t.sub_threshold_cluster),
    (UngroupedReason.TOO_SPREAD_OUT,
     lambda t, p: t.cluster_rejected),
    (UngroupedReason.PLANTING_DATE_TOO_FAR,
     lambda t, p: (
         t.candidate is not None
         and t.cluster_size >= p.min_plots_per_group
         and t.candidate.plot_count < p.min_plots_per_group
     )),
    (UngroupedReason.NO_VALID_GROUP,
     lambda t, p: t.candidate is None),
    (UngroupedReason.TOO_MANY_PLOTS,
     lambda t, p: t.candidate.plot_count > p.max_plots_per_group),
    (UngroupedReason.TOO_FEW_PLOTS,
     lambda t, p: t.candidate.plot_count < p.min_plots_per_group),
    (UngroupedReason.TOO_SMALL_AREA,
     lambda t, p: t.candidate.total_area < p.min_group_area),
    (UngroupedReason.TOO_LARGE_AREA,
     lambda t, p: t.candidate.total_area > p.max_group_area),
]


def classify_reason(trace: PlotTrace, parameters: GroupingParameters) -> UngroupedReason:
    """Walk the reason chain for one plot."""
    for reason, check in REASON_CHECKS:
        if check(trace, parameters):
            return reason
    return UngroupedReason.OTHER_REASON


class NearestGroupFinder:
    """KD-Tree index of group centroids, one tree per rice variety."""

    def __init__(self, groups: Sequence[ProposedGroup]):
        by_variety: dict[UUID, list[ProposedGroup]] = {}
        for group in groups:
            by_variety.setdefault(group.rice_variety_id, []).append(group)

        self._groups = by_variety
        self._trees: dict[UUID, KDTree] = {
            variety_id: build_kdtree(
                [(g.group_centroid.x, g.group_centroid.y) for g in variety_groups]
            )
            for variety_id, variety_groups in by_variety.items()
        }

    def find(self, plot: PlotRecord) -> tuple[Optional[int], Optional[float]]:
        """
        Nearest accepted group of the plot's variety.

        Returns:
            (group_number, distance), or (None, None) when the variety has no
            group or the plot has no usable centroid
        """
        tree = self._trees.get(plot.rice_variety_id)
        if tree is None or plot.centroid is None or plot.centroid.is_empty:
            return None, None

        distance, index = nearest_point((plot.centroid.x, plot.centroid.y), tree)
        return self._groups[plot.rice_variety_id][index].group_number, distance


def classify_ungrouped(
    traces: Iterable[PlotTrace],
    groups: Sequence[ProposedGroup],
    parameters: GroupingParameters,
) -> list[UngroupedPlotInfo]:
    """
    Build the ungrouped plot report.

    Args:
        traces: Stage outcomes for the plots not in any accepted group
        groups: Numbered accepted groups
        parameters: Grouping thresholds

    Returns:
        UngroupedPlotInfo per plot, ordered by plot id
    """
    finder = NearestGroupFinder(groups)
    ungrouped = []

    for trace in sorted(traces, key=lambda t: t.plot.plot_id):
        plot = trace.plot
        reason = classify_reason(trace, parameters)
        if reason is UngroupedReason.OTHER_REASON:
            logger.warning(f"Plot {plot.plot_id} matched no ungrouped reason")

        nearest_number, distance = finder.find(plot)
        ungrouped.append(UngroupedPlotInfo(
            plot_id=plot.plot_id,
            cultivation_id=plot.cultivation_id,
            rice_variety_id=plot.rice_variety_id,
            planting_date=plot.planting_date,
            centroid=plot.centroid,
            area=plot.area,
            reason=reason,
            nearest_group_number=nearest_number,
            distance_to_nearest_group=distance,
        ))

    return ungrouped
