"""
API request and response models using Pydantic.
"""
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from pyproj import Transformer
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from app.domain.models import GroupFormationResult, GroupingParameters, UngroupedReason
from app.services.domain.reason_advice import describe_reason, suggest_actions
from app.utils.geo_projection import get_transformers, project_geometry, project_to_latlon


class GroupPreviewRequest(BaseModel):
    """Request body for the group preview endpoint."""
    cluster_id: Optional[UUID] = Field(
        default=None,
        description="Only consider plots of farmers in this cluster"
    )
    season_id: Optional[UUID] = Field(
        default=None,
        description="Only consider cultivations of this season"
    )
    parameters: GroupingParameters = Field(
        default_factory=GroupingParameters,
        description="Grouping thresholds; omitted fields use the service defaults"
    )


class ProposedGroupResponse(BaseModel):
    """A proposed production group."""
    group_number: int
    rice_variety_id: UUID
    plot_count: int
    total_area: float = Field(description="Total area in hectares")
    planting_window_start: datetime
    planting_window_end: datetime
    median_planting_date: datetime
    plot_ids: List[UUID]
    cultivation_ids: List[UUID]
    centroid_lat: Optional[float] = None
    centroid_lng: Optional[float] = None
    group_boundary: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Buffered group boundary as GeoJSON (WGS84)"
    )


class UngroupedPlotResponse(BaseModel):
    """A plot that could not be grouped."""
    plot_id: UUID
    cultivation_id: UUID
    rice_variety_id: UUID
    planting_date: datetime
    area: float
    centroid_lat: Optional[float] = None
    centroid_lng: Optional[float] = None
    reason: UngroupedReason
    reason_description: str
    nearest_group_number: Optional[int] = None
    distance_to_nearest_group: Optional[float] = Field(
        default=None,
        description="Distance to the nearest group centroid in meters"
    )
    suggestions: List[str] = Field(default_factory=list)


class PreviewSummary(BaseModel):
    """Totals for a group preview."""
    total_eligible_plots: int
    plots_grouped: int
    ungrouped_plots: int
    groups_formed: int
    estimated_total_area: float
    ungrouped_by_reason: Dict[str, int] = Field(default_factory=dict)


class GroupPreviewResponse(BaseModel):
    """Response model for the group preview endpoint."""
    cluster_id: Optional[UUID] = None
    season_id: Optional[UUID] = None
    parameters: GroupingParameters
    summary: PreviewSummary
    groups: List[ProposedGroupResponse]
    ungrouped_plots: List[UngroupedPlotResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "cluster_id": "6f1c2a1e-3b7d-4c1e-9a43-1a2b3c4d5e6f",
                "season_id": None,
                "parameters": {
                    "proximity_threshold": 100.0,
                    "planting_date_tolerance_days": 2,
                    "min_group_area": 5.0,
                    "max_group_area": 50.0,
                    "min_plots_per_group": 3,
                    "max_plots_per_group": 10,
                    "border_buffer": 10.0,
                },
                "summary": {
                    "total_eligible_plots": 4,
                    "plots_grouped": 3,
                    "ungrouped_plots": 1,
                    "groups_formed": 1,
                    "estimated_total_area": 6.2,
                    "ungrouped_by_reason": {"IsolatedLocation": 1},
                },
                "groups": [],
                "ungrouped_plots": [],
            }
        }


def _to_wgs84(geometry: Optional[BaseGeometry], reverse: Optional[Transformer]) -> Optional[Dict[str, Any]]:
    if geometry is None or reverse is None or geometry.is_empty:
        return None
    return mapping(project_geometry(geometry, reverse))


def _latlon(geometry: Optional[BaseGeometry], reverse: Optional[Transformer]) -> tuple[Optional[float], Optional[float]]:
    if geometry is None or reverse is None or geometry.is_empty:
        return None, None
    [(lat, lon)] = project_to_latlon([(geometry.x, geometry.y)], reverse)
    return lat, lon


def build_preview_response(
    result: GroupFormationResult,
    parameters: GroupingParameters,
    cluster_id: Optional[UUID] = None,
    season_id: Optional[UUID] = None,
) -> GroupPreviewResponse:
    """
    Present an engine result with WGS84 geometries and operator advice.

    Args:
        result: Engine output, geometries in result.crs
        parameters: Thresholds the result was produced with
        cluster_id: Cluster filter of the request
        season_id: Season filter of the request

    Returns:
        GroupPreviewResponse
    """
    reverse = get_transformers(result.crs)[1] if result.crs else None

    groups = []
    for group in result.groups:
        lat, lon = _latlon(group.group_centroid, reverse)
        groups.append(ProposedGroupResponse(
            group_number=group.group_number,
            rice_variety_id=group.rice_variety_id,
            plot_count=group.plot_count,
            total_area=group.total_area,
            planting_window_start=group.planting_window_start,
            planting_window_end=group.planting_window_end,
            median_planting_date=group.median_planting_date,
            plot_ids=group.plot_ids,
            cultivation_ids=group.cultivation_ids,
            centroid_lat=lat,
            centroid_lng=lon,
            group_boundary=_to_wgs84(group.group_boundary, reverse),
        ))

    ungrouped = []
    for plot in result.ungrouped_plots:
        lat, lon = _latlon(plot.centroid, reverse)
        ungrouped.append(UngroupedPlotResponse(
            plot_id=plot.plot_id,
            cultivation_id=plot.cultivation_id,
            rice_variety_id=plot.rice_variety_id,
            planting_date=plot.planting_date,
            area=plot.area,
            centroid_lat=lat,
            centroid_lng=lon,
            reason=plot.reason,
            reason_description=describe_reason(plot.reason, parameters),
            nearest_group_number=plot.nearest_group_number,
            distance_to_nearest_group=plot.distance_to_nearest_group,
            suggestions=suggest_actions(
                plot.reason, plot.nearest_group_number, plot.distance_to_nearest_group
            ),
        ))

    plots_grouped = sum(g.plot_count for g in result.groups)
    summary = PreviewSummary(
        total_eligible_plots=plots_grouped + len(result.ungrouped_plots),
        plots_grouped=plots_grouped,
        ungrouped_plots=len(result.ungrouped_plots),
        groups_formed=len(result.groups),
        estimated_total_area=sum(g.total_area for g in result.groups),
        ungrouped_by_reason=dict(Counter(p.reason.value for p in result.ungrouped_plots)),
    )

    return GroupPreviewResponse(
        cluster_id=cluster_id,
        season_id=season_id,
        parameters=parameters,
        summary=summary,
        groups=groups,
        ungrouped_plots=ungrouped,
    )
