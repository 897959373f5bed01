"""
Operator-facing explanations and suggestions for ungrouped plots.
"""
from typing import Optional

from app.domain.models import GroupingParameters, UngroupedReason

# Manual assignment is only suggested for groups closer than this (meters)
MANUAL_ASSIGNMENT_MAX_DISTANCE = 5000.0


def describe_reason(reason: UngroupedReason, parameters: GroupingParameters) -> str:
    """Human-readable explanation of an ungrouped reason."""
    descriptions = {
        UngroupedReason.INVALID_GEOMETRY:
            "Plot boundary is missing, malformed or self-intersecting",
        UngroupedReason.ISOLATED_LOCATION:
            f"No nearby plots within {parameters.proximity_threshold:g}m proximity threshold",
        UngroupedReason.TOO_SPREAD_OUT:
            f"Spatial cluster spans more than {parameters.proximity_threshold * 2:g}m "
            f"(fails spatial coherence check)",
        UngroupedReason.PLANTING_DATE_TOO_FAR:
            f"Planting date is more than the {parameters.planting_date_tolerance_days}-day "
            f"window away from nearby plots",
        UngroupedReason.NO_VALID_GROUP:
            "Plot does not belong to any candidate group",
        UngroupedReason.TOO_MANY_PLOTS:
            f"Would exceed maximum of {parameters.max_plots_per_group} plots per group",
        UngroupedReason.TOO_FEW_PLOTS:
            f"Cluster has fewer than {parameters.min_plots_per_group} plots (minimum required)",
        UngroupedReason.TOO_SMALL_AREA:
            f"Total cluster area is below {parameters.min_group_area:g} hectares",
        UngroupedReason.TOO_LARGE_AREA:
            f"Would exceed maximum area of {parameters.max_group_area:g} hectares",
    }
    return descriptions.get(reason, "Does not meet one or more grouping constraints")


def suggest_actions(
    reason: UngroupedReason,
    nearest_group_number: Optional[int] = None,
    distance_to_nearest_group: Optional[float] = None,
) -> list[str]:
    """
    Suggested follow-ups for an ungrouped plot.

    Args:
        reason: Why the plot was left out
        nearest_group_number: Closest accepted group of the same variety
        distance_to_nearest_group: Distance to that group in meters

    Returns:
        Ordered list of suggestions
    """
    suggestions = []

    if (
        nearest_group_number is not None
        and distance_to_nearest_group is not None
        and distance_to_nearest_group < MANUAL_ASSIGNMENT_MAX_DISTANCE
    ):
        suggestions.append(
            f"Consider manually assigning to Group {nearest_group_number} "
            f"({distance_to_nearest_group / 1000:.2f}km away)"
        )

    if reason is UngroupedReason.INVALID_GEOMETRY:
        suggestions.append("Redraw the plot boundary as a simple polygon")
    elif reason is UngroupedReason.ISOLATED_LOCATION:
        suggestions.append("Increase proximity threshold if appropriate for this region")
        suggestions.append("Create an exception group for isolated plots")
    elif reason is UngroupedReason.TOO_SPREAD_OUT:
        suggestions.append("This plot would create a chain group - manually review spatial arrangement")
        suggestions.append("Consider splitting the cluster into multiple smaller groups")
    elif reason is UngroupedReason.PLANTING_DATE_TOO_FAR:
        suggestions.append("Increase planting date tolerance")
        suggestions.append("Align the planting schedule with neighboring plots")
    elif reason is UngroupedReason.TOO_FEW_PLOTS:
        suggestions.append("Reduce minimum plots per group parameter")
        suggestions.append("Create exception group with supervisor approval")
    elif reason is UngroupedReason.TOO_SMALL_AREA:
        suggestions.append("Reduce minimum group area parameter")
        suggestions.append("Merge with nearby group manually")
    elif reason in (UngroupedReason.TOO_LARGE_AREA, UngroupedReason.TOO_MANY_PLOTS):
        suggestions.append("Reduce proximity threshold or date tolerance to split the cluster")
        suggestions.append("Adjust maximum area/plot count parameters if needed")
    else:
        suggestions.append("Review grouping parameters")
        suggestions.append("Contact administrator for manual assignment")

    return suggestions
