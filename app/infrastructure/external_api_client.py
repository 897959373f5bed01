"""
Infrastructure layer: Farm management API client.
"""
from datetime import datetime
from typing import Generic, List, Dict, Any, Optional, TypeVar, Union
from uuid import UUID
import logging

from pydantic import BaseModel, Field
import httpx
from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.config import settings
from app.infrastructure.api_constants import APIConstants, FarmAPIEndpoints

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


# Pydantic models for API responses
class PlotData(BaseModel):
    """Plot row from the farm management API."""
    id: UUID
    farmer_id: UUID
    area: float = Field(description="Plot area in hectares")
    boundary: Optional[Union[Dict[str, Any], str]] = Field(
        default=None,
        description="Boundary as GeoJSON geometry or WKT, WGS84 lon/lat"
    )


class CultivationData(BaseModel):
    """Cultivation of a plot in a season."""
    id: UUID
    plot_id: UUID
    planting_date: datetime
    rice_variety_id: UUID
    season_id: Optional[UUID] = None


class FarmerData(BaseModel):
    """Farmer with cluster membership."""
    id: UUID
    cluster_id: Optional[UUID] = None


class Page(BaseModel, Generic[RowT]):
    """One page of a paginated collection; `next` is an absolute URL or null."""
    count: int
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[RowT]


class ExternalAPIError(Exception):
    """Raised when the farm management API cannot be reached or rejects a call."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ExternalAPIClient:
    """
    Client for the read-only farm management queries.

    Failed calls surface as ExternalAPIError. Retrying 5xx and transport
    errors is opt-in through max_retry_attempts.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        max_retry_attempts: Optional[int] = None,
        retry_min_wait: Optional[int] = None,
        retry_max_wait: Optional[int] = None,
    ):
        """Initialize the API client with configuration."""
        self.base_url = base_url or settings.external_api_base_url
        self.api_key = api_key if api_key is not None else settings.external_api_key
        self.max_retry_attempts = max(1, max_retry_attempts or settings.max_retry_attempts)
        self.retry_min_wait = settings.retry_min_wait if retry_min_wait is None else retry_min_wait
        self.retry_max_wait = settings.retry_max_wait if retry_max_wait is None else retry_max_wait
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "accept": APIConstants.CONTENT_TYPE_JSON,
            },
            timeout=settings.external_api_timeout,
        )

    async def __aenter__(self) -> "ExternalAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request, retrying server and transport errors when configured.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path or absolute URL
            **kwargs: Additional arguments for the request

        Returns:
            Response data as dictionary

        Raises:
            ExternalAPIError: If the request fails after all attempts
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retry_attempts),
            wait=wait_exponential(
                multiplier=settings.retry_backoff_multiplier,
                min=self.retry_min_wait,
                max=self.retry_max_wait,
            ),
            retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.request(method, endpoint, **kwargs)
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        # Don't retry on client errors (4xx)
                        if e.response.status_code < 500:
                            raise ExternalAPIError(
                                f"API request failed: {e.response.status_code} - {e.response.text}",
                                status_code=e.response.status_code,
                            )
                        raise
                    return response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalAPIError(
                f"API request failed: {e.response.status_code} - {e.response.text}",
                status_code=502,
            )
        except httpx.TimeoutException as e:
            raise ExternalAPIError(f"API request timed out: {str(e)}", status_code=504)
        except httpx.RequestError as e:
            raise ExternalAPIError(f"API request error: {str(e)}", status_code=502)

    async def _get_all_pages(
        self,
        endpoint: str,
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """
        Fetch every page of a paginated collection by following `next` links.

        Returns:
            Raw page payloads in order
        """
        pages = [await self._make_request("GET", endpoint, params=params)]
        while pages[-1].get("next"):
            if len(pages) >= APIConstants.MAX_PAGES:
                raise ExternalAPIError(f"Pagination limit exceeded for {endpoint}")
            pages.append(await self._make_request("GET", pages[-1]["next"]))

        logger.debug(f"Fetched {len(pages)} page(s) from {endpoint}")
        return pages

    @staticmethod
    def _filters(**filters: Optional[UUID]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page_size": APIConstants.DEFAULT_PAGE_SIZE}
        params.update({key: str(value) for key, value in filters.items() if value is not None})
        return params

    async def get_plots(self, cluster_id: Optional[UUID] = None) -> List[PlotData]:
        """
        Fetch plots, optionally limited to the farmers of one cluster.

        Args:
            cluster_id: Optional farmer cluster to filter by

        Returns:
            List of PlotData instances

        Raises:
            ExternalAPIError: If the request fails
        """
        pages = await self._get_all_pages(
            FarmAPIEndpoints.PLOTS, self._filters(cluster_id=cluster_id)
        )
        return [plot for page in pages for plot in Page[PlotData](**page).results]

    async def get_cultivations(self, season_id: Optional[UUID] = None) -> List[CultivationData]:
        """
        Fetch plot cultivations, optionally limited to one season.

        Args:
            season_id: Optional season to filter by

        Returns:
            List of CultivationData instances

        Raises:
            ExternalAPIError: If the request fails
        """
        pages = await self._get_all_pages(
            FarmAPIEndpoints.CULTIVATIONS, self._filters(season_id=season_id)
        )
        return [row for page in pages for row in Page[CultivationData](**page).results]

    async def get_farmers(self, cluster_id: Optional[UUID] = None) -> List[FarmerData]:
        """
        Fetch farmers with their cluster membership.

        Args:
            cluster_id: Optional cluster to filter by

        Returns:
            List of FarmerData instances

        Raises:
            ExternalAPIError: If the request fails
        """
        pages = await self._get_all_pages(
            FarmAPIEndpoints.FARMERS, self._filters(cluster_id=cluster_id)
        )
        return [farmer for page in pages for farmer in Page[FarmerData](**page).results]

    @staticmethod
    def parse_boundary(boundary: Union[Dict[str, Any], str]) -> Optional[BaseGeometry]:
        """
        Parse a boundary from GeoJSON or WKT.

        Args:
            boundary: GeoJSON geometry mapping or WKT string (lon/lat)

        Returns:
            Shapely geometry, or None if the boundary cannot be parsed
        """
        try:
            if isinstance(boundary, str):
                return wkt.loads(boundary)
            return shape(boundary)
        except (ShapelyError, ValueError, TypeError, KeyError, AttributeError, IndexError) as e:
            logger.warning(f"Unparseable plot boundary: {e}")
            return None


# Singleton instance
_api_client: Optional[ExternalAPIClient] = None


def get_api_client() -> ExternalAPIClient:
    """
    Get or create the singleton API client instance.

    Returns:
        ExternalAPIClient instance
    """
    global _api_client
    if _api_client is None:
        _api_client = ExternalAPIClient()
    return _api_client
