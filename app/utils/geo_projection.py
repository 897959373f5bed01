"""
Reprojection between WGS84 and the metric UTM grid.

Grouping works in meters, so plot boundaries are moved into the UTM zone of
the farm before any distance or area is computed, and moved back for output.
"""
from functools import lru_cache
from typing import Tuple, List
from pyproj import Transformer
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform

WGS84 = "EPSG:4326"
UTM_ZONE_WIDTH_DEG = 6
UTM_ZONE_COUNT = 60


def get_utm_zone(longitude: float) -> int:
    """Zone number 1-60 containing the longitude; +180 belongs to zone 60."""
    zone = int((longitude + 180) // UTM_ZONE_WIDTH_DEG) + 1
    return min(zone, UTM_ZONE_COUNT)


def get_utm_crs(longitude: float, latitude: float) -> str:
    """EPSG identifier of the WGS84 / UTM zone covering a lon/lat point."""
    prefix = 326 if latitude >= 0 else 327
    return f"EPSG:{prefix}{get_utm_zone(longitude):02d}"


@lru_cache(maxsize=16)
def get_transformers(target_crs: str) -> Tuple[Transformer, Transformer]:
    """
    Transformers to and from a projected CRS.

    Both use (x, y) = (lon, lat) axis order. Built once per CRS.

    Returns:
        (wgs84_to_target, target_to_wgs84)
    """
    return (
        Transformer.from_crs(WGS84, target_crs, always_xy=True),
        Transformer.from_crs(target_crs, WGS84, always_xy=True),
    )


def project_geometry(geometry: BaseGeometry, transformer: Transformer) -> BaseGeometry:
    """Reproject every vertex of a geometry; empty geometries come back as-is."""
    if geometry.is_empty:
        return geometry
    return transform(transformer.transform, geometry)


def project_to_latlon(
    coordinates: List[Tuple[float, float]],
    transformer: Transformer
) -> List[Tuple[float, float]]:
    """Convert projected (x, y) pairs into (lat, lon) pairs with a reverse transformer."""
    lons, lats = transformer.transform(
        [x for x, _ in coordinates],
        [y for _, y in coordinates],
    )
    return list(zip(lats, lons))
