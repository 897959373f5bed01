"""
Domain service: fixed-window bucketing of planting dates.
"""
from datetime import datetime, timezone
from typing import Optional, Sequence

from app.domain.models import PlotRecord
from app.services.domain.coherence_filter import CoherenceReport

SECONDS_PER_DAY = 86400


def epoch_seconds(moment: datetime) -> float:
    """Seconds since the Unix epoch; naive datetimes are read as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def date_bucket(planting_date: datetime, tolerance_days: int) -> int:
    """
    Index of the fixed-width window containing a planting date.

    Two dates one day apart land in different buckets when they straddle a
    window edge.
    """
    return int(epoch_seconds(planting_date) // (SECONDS_PER_DAY * tolerance_days))


def assign_date_buckets(
    plots: Sequence[PlotRecord],
    cluster_ids: Sequence[Optional[int]],
    coherence: CoherenceReport,
    tolerance_days: int,
) -> list[Optional[int]]:
    """
    Bucket the plots of surviving spatial clusters.

    Returns:
        Date bucket per plot, None for isolated plots and members of
        rejected clusters
    """
    buckets: list[Optional[int]] = []
    for plot, cluster_id in zip(plots, cluster_ids):
        if cluster_id is None or coherence.is_rejected(cluster_id):
            buckets.append(None)
        else:
            buckets.append(date_bucket(plot.planting_date, tolerance_days))
    return buckets
