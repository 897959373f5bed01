"""
Domain service: rejects spatial clusters that are too spread out.

DBSCAN happily chains barely-reachable plots into one long cluster. A cluster
whose diameter exceeds twice the proximity threshold is rejected as a whole.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence
import logging

from app.domain.models import PlotRecord
from app.services.domain.spatial_clusterer import centroid_coordinates, cluster_members
from app.utils.spatial_helpers import point_set_diameter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoherenceReport:
    """Diameters of the spatial clusters of one variety and which were rejected."""
    diameters: dict[int, float] = field(default_factory=dict)
    rejected: frozenset[int] = frozenset()

    def is_rejected(self, cluster_id: Optional[int]) -> bool:
        return cluster_id is not None and cluster_id in self.rejected


def check_coherence(
    plots: Sequence[PlotRecord],
    cluster_ids: Sequence[Optional[int]],
    proximity_threshold: float,
) -> CoherenceReport:
    """
    Measure every spatial cluster and reject the incoherent ones.

    Args:
        plots: Plots of one variety
        cluster_ids: Spatial cluster id per plot (None for isolated plots)
        proximity_threshold: Reachability distance; the cap is twice this

    Returns:
        CoherenceReport with the exact diameter of each cluster
    """
    coords = centroid_coordinates(plots)
    max_diameter = proximity_threshold * 2

    diameters: dict[int, float] = {}
    rejected: set[int] = set()

    for cluster_id, members in cluster_members(cluster_ids).items():
        diameter = point_set_diameter([coords[i] for i in members])
        diameters[cluster_id] = diameter
        if diameter > max_diameter:
            rejected.add(cluster_id)
            logger.info(
                f"Cluster {cluster_id} incoherent: {len(members)} plots, "
                f"diameter {diameter:.1f} > {max_diameter:.1f}"
            )

    return CoherenceReport(diameters=diameters, rejected=frozenset(rejected))
