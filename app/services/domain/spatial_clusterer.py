"""
Domain service: density-based spatial clustering of plot centroids.

Runs DBSCAN independently for the plots of one rice variety. Plots that
DBSCAN leaves as noise but that still reach another noise plot are joined
into sub-threshold clusters, so the classifier can tell a small coherent
patch (too few plots) from a genuinely isolated plot.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence
import logging

import numpy as np
from sklearn.cluster import DBSCAN

from app.domain.models import PlotRecord
from app.utils.spatial_helpers import radius_components

logger = logging.getLogger(__name__)


@dataclass
class SpatialClusters:
    """Cluster id per plot, plus the ids that DBSCAN itself never seeded."""
    ids: list[Optional[int]]
    sub_threshold: set[int] = field(default_factory=set)

    def is_sub_threshold(self, cluster_id: Optional[int]) -> bool:
        return cluster_id is not None and cluster_id in self.sub_threshold


def centroid_coordinates(plots: Sequence[PlotRecord]) -> list[tuple[float, float]]:
    """Centroid (x, y) tuples in plot order."""
    return [(plot.centroid.x, plot.centroid.y) for plot in plots]


def cluster_plots(
    plots: Sequence[PlotRecord],
    proximity_threshold: float,
    min_points: int,
) -> SpatialClusters:
    """
    Assign a spatial cluster id to each plot of a single rice variety.

    Args:
        plots: Plots of one variety, in a deterministic order
        proximity_threshold: DBSCAN eps, in CRS units
        min_points: DBSCAN min_samples (the point itself included)

    Returns:
        SpatialClusters with one id per plot (scoped to this variety, None
        for a plot with no reachable neighbor) and the sub-threshold ids,
        which can never form a group
    """
    if not plots:
        return SpatialClusters(ids=[])

    coords = centroid_coordinates(plots)
    labels = DBSCAN(eps=proximity_threshold, min_samples=min_points).fit_predict(
        np.array(coords)
    )

    cluster_ids: list[Optional[int]] = [int(label) if label >= 0 else None for label in labels]
    next_id = int(labels.max()) + 1 if (labels >= 0).any() else 0

    sub_threshold: set[int] = set()
    noise = [i for i, cluster_id in enumerate(cluster_ids) if cluster_id is None]
    if len(noise) >= 2:
        components = radius_components([coords[i] for i in noise], proximity_threshold)
        sizes = np.bincount(components)
        remap: dict[int, int] = {}
        for index, component in zip(noise, components):
            if sizes[component] < 2:
                continue
            if component not in remap:
                remap[component] = next_id
                sub_threshold.add(next_id)
                next_id += 1
            cluster_ids[index] = remap[component]

        if remap:
            logger.debug(f"Joined noise plots into {len(remap)} sub-threshold clusters")

    isolated = sum(1 for cluster_id in cluster_ids if cluster_id is None)
    logger.debug(f"Clustered {len(plots)} plots into {next_id} spatial clusters, {isolated} isolated")
    return SpatialClusters(ids=cluster_ids, sub_threshold=sub_threshold)


def cluster_members(cluster_ids: Sequence[Optional[int]]) -> dict[int, list[int]]:
    """Map each cluster id to the indices of its member plots."""
    members: dict[int, list[int]] = {}
    for index, cluster_id in enumerate(cluster_ids):
        if cluster_id is not None:
            members.setdefault(cluster_id, []).append(index)
    return members
