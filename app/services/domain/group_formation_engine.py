"""
Domain service: production group formation.

Partitions farmer plots into spatially-coherent, temporally-aligned groups:
- DBSCAN clustering per rice variety
- Cluster diameter (coherence) check
- Fixed-window planting date bucketing
- Area and plot-count bounds per candidate
- Buffered group boundaries
- Reason and nearest group for every plot left out

Varieties are independent and are processed in parallel; groups are numbered
only after all varieties are merged so numbering is reproducible.
"""
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event
from typing import Optional, Sequence
from uuid import UUID
import logging

from app.config import settings
from app.domain.models import (
    GroupFormationResult,
    GroupingParameters,
    PlotRecord,
)
from app.services.domain.boundary_builder import build_group_geometry, number_groups
from app.services.domain.candidate_aggregator import Candidate, aggregate_candidates
from app.services.domain.coherence_filter import check_coherence
from app.services.domain.spatial_clusterer import cluster_members, cluster_plots
from app.services.domain.temporal_bucketer import assign_date_buckets
from app.services.domain.ungrouped_classifier import PlotTrace, classify_ungrouped

logger = logging.getLogger(__name__)


class GroupFormationCancelled(Exception):
    """Raised when a run is cancelled between pipeline stages."""
    pass


def _raise_if_cancelled(cancel_event: Optional[Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise GroupFormationCancelled("Group formation cancelled")


@dataclass
class VarietyOutcome:
    """Candidates and per-plot traces for one rice variety."""
    rice_variety_id: UUID
    candidates: list[Candidate]
    traces: list[PlotTrace]

    @property
    def accepted(self) -> list[Candidate]:
        return [c for c in self.candidates if c.accepted]


class GroupFormationEngine:
    """
    Stateless engine turning a plot snapshot into proposed groups.

    One instance can serve concurrent callers; every call works on its own
    inputs and returns a fresh result.
    """

    def __init__(self, max_workers: Optional[int] = None):
        """
        Initialize the engine.

        Args:
            max_workers: Threads used to process varieties in parallel
                (defaults to settings.grouping_max_workers)
        """
        self.max_workers = max(1, max_workers or settings.grouping_max_workers)

    def form_groups(
        self,
        plots: Sequence[PlotRecord],
        parameters: GroupingParameters,
        cancel_event: Optional[Event] = None,
        crs: Optional[str] = None,
    ) -> GroupFormationResult:
        """
        Form production groups from a plot snapshot.

        Args:
            plots: Eligible plots, each with a boundary in a metric CRS
            parameters: Grouping thresholds
            cancel_event: Optional event; when set the run stops with
                GroupFormationCancelled at the next stage boundary
            crs: Identifier of the CRS the plot geometries use

        Returns:
            GroupFormationResult with groups ordered by group_number and
            ungrouped plots ordered by plot id

        Raises:
            ValueError: If a plot id appears more than once
            GroupFormationCancelled: If cancel_event is set during the run
        """
        _raise_if_cancelled(cancel_event)

        duplicates = [pid for pid, n in Counter(p.plot_id for p in plots).items() if n > 1]
        if duplicates:
            raise ValueError(f"Duplicate plot ids in snapshot: {sorted(duplicates)[:5]}")

        logger.info(f"Starting group formation for {len(plots)} plots")

        invalid_traces = [
            PlotTrace(plot=plot, invalid_geometry=True)
            for plot in plots if not plot.has_valid_geometry
        ]
        if invalid_traces:
            logger.warning(f"{len(invalid_traces)} plots have unusable geometry")

        by_variety: dict[UUID, list[PlotRecord]] = {}
        for plot in plots:
            if plot.has_valid_geometry:
                by_variety.setdefault(plot.rice_variety_id, []).append(plot)

        partitions = [
            (variety_id, sorted(by_variety[variety_id], key=lambda p: p.plot_id))
            for variety_id in sorted(by_variety)
        ]

        outcomes = self._run_partitions(partitions, parameters, cancel_event)
        _raise_if_cancelled(cancel_event)

        accepted = [c for outcome in outcomes for c in outcome.accepted]
        groups = number_groups(accepted)

        leftovers = invalid_traces + [
            trace for outcome in outcomes for trace in outcome.traces if not trace.is_grouped
        ]
        ungrouped = classify_ungrouped(leftovers, groups, parameters)

        logger.info(
            f"Group formation complete: {len(groups)} groups, "
            f"{sum(g.plot_count for g in groups)} plots grouped, {len(ungrouped)} ungrouped"
        )
        if ungrouped:
            breakdown = Counter(u.reason.value for u in ungrouped)
            logger.info(
                "Ungrouped breakdown: "
                + ", ".join(f"{reason}: {count}" for reason, count in sorted(breakdown.items()))
            )

        return GroupFormationResult(groups=groups, ungrouped_plots=ungrouped, crs=crs)

    def _run_partitions(
        self,
        partitions: list[tuple[UUID, list[PlotRecord]]],
        parameters: GroupingParameters,
        cancel_event: Optional[Event],
    ) -> list[VarietyOutcome]:
        if len(partitions) <= 1 or self.max_workers == 1:
            return [
                self._process_variety(variety_id, variety_plots, parameters, cancel_event)
                for variety_id, variety_plots in partitions
            ]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(
                    self._process_variety, variety_id, variety_plots, parameters, cancel_event
                )
                for variety_id, variety_plots in partitions
            ]
            return [future.result() for future in futures]

    def _process_variety(
        self,
        rice_variety_id: UUID,
        plots: list[PlotRecord],
        parameters: GroupingParameters,
        cancel_event: Optional[Event],
    ) -> VarietyOutcome:
        """
        Run clustering through geometry building for one variety.

        Args:
            rice_variety_id: Variety of every plot in the partition
            plots: The variety's plots, sorted by plot id
            parameters: Grouping thresholds
            cancel_event: Cooperative cancellation flag

        Returns:
            VarietyOutcome with judged candidates and a trace per plot
        """
        _raise_if_cancelled(cancel_event)
        clusters = cluster_plots(
            plots, parameters.proximity_threshold, parameters.min_plots_per_group
        )
        cluster_ids = clusters.ids

        _raise_if_cancelled(cancel_event)
        coherence = check_coherence(plots, cluster_ids, parameters.proximity_threshold)

        _raise_if_cancelled(cancel_event)
        buckets = assign_date_buckets(
            plots, cluster_ids, coherence, parameters.planting_date_tolerance_days
        )

        _raise_if_cancelled(cancel_event)
        candidates = aggregate_candidates(
            rice_variety_id, plots, cluster_ids, buckets, parameters,
            sub_threshold=clusters.sub_threshold,
        )

        _raise_if_cancelled(cancel_event)
        for candidate in candidates:
            if candidate.accepted:
                build_group_geometry(candidate, parameters.border_buffer)

        sizes = {cid: len(members) for cid, members in cluster_members(cluster_ids).items()}
        traces = [
            PlotTrace(
                plot=plot,
                spatial_cluster_id=cluster_id,
                cluster_size=sizes.get(cluster_id, 0) if cluster_id is not None else 0,
                sub_threshold_cluster=clusters.is_sub_threshold(cluster_id),
                cluster_rejected=coherence.is_rejected(cluster_id),
                date_bucket=bucket,
            )
            for plot, cluster_id, bucket in zip(plots, cluster_ids, buckets)
        ]
        for candidate in candidates:
            for index in candidate.member_indices:
                traces[index].candidate = candidate

        logger.debug(
            f"Variety {rice_variety_id}: {len(plots)} plots, "
            f"{len(coherence.diameters)} spatial clusters ({len(coherence.rejected)} rejected, "
            f"{len(clusters.sub_threshold)} sub-threshold), "
            f"{len(candidates)} candidates"
        )
        return VarietyOutcome(rice_variety_id=rice_variety_id, candidates=candidates, traces=traces)
