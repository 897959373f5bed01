"""
Domain service: group geometry and group numbering.
"""
from typing import Iterable

from app.domain.models import ProposedGroup
from app.services.domain.candidate_aggregator import Candidate


def build_group_geometry(candidate: Candidate, border_buffer: float) -> Candidate:
    """
    Buffer the unioned member boundaries and locate the group centroid.

    The centroid is taken from the union before buffering.
    """
    union = candidate.combined_boundary
    candidate.group_boundary = union.buffer(border_buffer)
    candidate.group_centroid = union.centroid
    return candidate


def number_groups(candidates: Iterable[Candidate]) -> list[ProposedGroup]:
    """
    Turn accepted candidates into numbered groups.

    Numbers follow the (variety, spatial cluster, date bucket) order, so they
    do not depend on the order candidates were produced in.
    """
    ordered = sorted(candidates, key=lambda c: c.sort_key)
    return [
        ProposedGroup(
            group_number=number,
            rice_variety_id=candidate.rice_variety_id,
            plot_count=candidate.plot_count,
            total_area=candidate.total_area,
            planting_window_start=candidate.planting_window_start,
            planting_window_end=candidate.planting_window_end,
            median_planting_date=candidate.median_planting_date,
            plot_ids=list(candidate.plot_ids),
            cultivation_ids=list(candidate.cultivation_ids),
            group_boundary=candidate.group_boundary,
            group_centroid=candidate.group_centroid,
        )
        for number, candidate in enumerate(ordered, start=1)
    ]
