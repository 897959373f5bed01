"""
Dependency injection for FastAPI.
"""
from typing import Annotated
from fastapi import Depends

from app.infrastructure.external_api_client import (
    ExternalAPIClient,
    get_api_client,
)
from app.infrastructure.plot_snapshot_loader import PlotSnapshotLoader
from app.services.domain.group_formation_engine import GroupFormationEngine
from app.services.application.group_formation_service import GroupFormationService


def get_group_formation_engine() -> GroupFormationEngine:
    """
    Dependency factory for GroupFormationEngine.

    Returns:
        GroupFormationEngine instance
    """
    return GroupFormationEngine()


def get_plot_snapshot_loader(
    api_client: Annotated[ExternalAPIClient, Depends(get_api_client)],
) -> PlotSnapshotLoader:
    """
    Dependency factory for PlotSnapshotLoader.

    Args:
        api_client: Farm management API client (injected)

    Returns:
        PlotSnapshotLoader instance
    """
    return PlotSnapshotLoader(api_client)


def get_group_formation_service(
    loader: Annotated[PlotSnapshotLoader, Depends(get_plot_snapshot_loader)],
    engine: Annotated[GroupFormationEngine, Depends(get_group_formation_engine)],
) -> GroupFormationService:
    """
    Dependency factory for GroupFormationService.

    Args:
        loader: Plot snapshot loader (injected)
        engine: Group formation engine (injected)

    Returns:
        GroupFormationService instance
    """
    return GroupFormationService(loader=loader, engine=engine)


# Type aliases for cleaner route signatures
GroupFormationServiceDep = Annotated[GroupFormationService, Depends(get_group_formation_service)]
