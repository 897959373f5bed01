"""
API router for production group endpoints.
"""
import logging

from fastapi import APIRouter, HTTPException

from app.api.dependencies import GroupFormationServiceDep
from app.api.v1.models.responses import (
    GroupPreviewRequest,
    GroupPreviewResponse,
    build_preview_response,
)
from app.infrastructure.external_api_client import ExternalAPIError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/groups",
    tags=["groups"],
)


@router.post(
    "/preview",
    response_model=GroupPreviewResponse,
    summary="Preview production groups",
    description="""
    Propose production groups for the plots of a cluster and season.

    This endpoint:
    1. Loads plots with a boundary and a matching cultivation
    2. Clusters plot centroids per rice variety (DBSCAN)
    3. Rejects clusters wider than twice the proximity threshold
    4. Splits clusters into planting date windows
    5. Applies group area and plot count bounds
    6. Explains why every remaining plot could not be grouped

    Nothing is persisted; callers decide which proposed groups to create.
    """,
    responses={
        200: {"description": "Groups proposed (possibly none)"},
        404: {"description": "Cluster or season not found in the farm management API"},
        422: {"description": "Invalid grouping parameters"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Farm management API failure"},
    }
)
async def preview_groups(
    request: GroupPreviewRequest,
    group_service: GroupFormationServiceDep,
) -> GroupPreviewResponse:
    """
    Preview production groups.

    Args:
        request: Filters and grouping parameters
        group_service: Group formation service (injected dependency)

    Returns:
        GroupPreviewResponse with proposed and ungrouped plots

    Raises:
        HTTPException: If the farm data cannot be loaded
    """
    try:
        # Delegate to service layer (no business logic here)
        result = await group_service.form_groups(
            parameters=request.parameters,
            cluster_id=request.cluster_id,
            season_id=request.season_id,
        )
    except ExternalAPIError as e:
        if e.status_code == 404:
            raise HTTPException(
                status_code=404,
                detail=f"Cluster '{request.cluster_id}' or season '{request.season_id}' not found"
            )
        raise HTTPException(
            status_code=502,
            detail=f"Failed to fetch farm data: {e.message}"
        )

    response = build_preview_response(
        result,
        request.parameters,
        cluster_id=request.cluster_id,
        season_id=request.season_id,
    )
    logger.info(
        f"Preview for cluster={request.cluster_id}, season={request.season_id}: "
        f"{response.summary.groups_formed} groups, {response.summary.plots_grouped} plots grouped, "
        f"{response.summary.ungrouped_plots} ungrouped"
    )
    return response
