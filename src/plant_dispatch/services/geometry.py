"""Plan-coordinate helper functions."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from shapely.geometry import MultiPoint, Point, Polygon


def pairwise_distances(coordinates: Sequence[tuple[float, float]]) -> np.ndarray:
    """Return the symmetric ``n x n`` matrix of Euclidean distances between coordinates."""

    points = np.asarray(coordinates, dtype=float).reshape(-1, 2)
    delta = points[:, None, :] - points[None, :, :]
    return np.hypot(delta[..., 0], delta[..., 1])


def vertices_centroid(vertices: Sequence[tuple[float, float]]) -> tuple[float, float] | None:
    """Reduce a resource outline to a single point.

    Three or more vertices are treated as a polygon, fewer as a point cloud.
    Returns None for an empty outline.
    """

    if not vertices:
        return None
    if len(vertices) == 1:
        x, y = vertices[0]
        return (float(x), float(y))
    if len(vertices) >= 3:
        polygon = Polygon(vertices)
        if polygon.is_valid and polygon.area > 0:
            centroid = polygon.centroid
            return (centroid.x, centroid.y)
    centroid = MultiPoint([Point(x, y) for x, y in vertices]).centroid
    return (centroid.x, centroid.y)
