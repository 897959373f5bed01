"""
Spatial analysis helper functions.

Provides utilities for:
- KD-Tree spatial indexing
- Radius connectivity between points
- Point set diameter
- Nearest-neighbor lookups
"""
import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import KDTree
from scipy.spatial.distance import pdist
from shapely.geometry import MultiPoint
import logging

logger = logging.getLogger(__name__)


def build_kdtree(coordinates: list[tuple[float, float]]) -> KDTree:
    """
    Build a KD-Tree for efficient spatial queries.

    Args:
        coordinates: List of (x, y) coordinate tuples

    Returns:
        KDTree instance
    """
    points = np.array(coordinates, dtype=float).reshape(-1, 2)
    return KDTree(points)


def radius_components(
    coordinates: list[tuple[float, float]],
    radius: float
) -> np.ndarray:
    """
    Label the connected components of the graph linking points within radius.

    Args:
        coordinates: List of (x, y) coordinate tuples
        radius: Maximum distance for two points to be linked

    Returns:
        Array of component labels, numbered in order of first appearance
    """
    n = len(coordinates)
    if n == 0:
        return np.zeros(0, dtype=int)

    kdtree = build_kdtree(coordinates)
    pairs = kdtree.query_pairs(r=radius, output_type='ndarray')

    pairs = pairs.reshape(-1, 2)
    graph = coo_matrix(
        (np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])),
        shape=(n, n),
    )
    _, labels = connected_components(graph, directed=False)

    # Renumber so labels follow input order regardless of scipy internals
    remap: dict[int, int] = {}
    ordered = np.empty(n, dtype=int)
    for i, label in enumerate(labels):
        ordered[i] = remap.setdefault(int(label), len(remap))
    return ordered


def point_set_diameter(coordinates: list[tuple[float, float]]) -> float:
    """
    Exact diameter (maximum pairwise distance) of a point set.

    The farthest pair of a point set always lies on its convex hull, so
    distances are only evaluated between hull vertices.

    Args:
        coordinates: List of (x, y) coordinate tuples

    Returns:
        Diameter in coordinate units (0.0 for fewer than two points)
    """
    if len(coordinates) < 2:
        return 0.0

    hull = MultiPoint(coordinates).convex_hull
    if hull.geom_type == "Point":
        return 0.0
    if hull.geom_type == "Polygon":
        vertices = np.array(hull.exterior.coords)
    else:
        vertices = np.array(hull.coords)

    return float(pdist(vertices).max())


def nearest_point(
    point: tuple[float, float],
    kdtree: KDTree
) -> tuple[float, int]:
    """
    Find the nearest indexed point.

    Args:
        point: (x, y) coordinate tuple
        kdtree: KDTree of candidate points

    Returns:
        Tuple of (distance, index into the KD-Tree data)
    """
    distance, index = kdtree.query(point)
    return float(distance), int(index)
