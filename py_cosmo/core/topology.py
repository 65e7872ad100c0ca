"""
World topology: map extents, wrap-around and distance calculations.

Tiles live in a longitude/latitude style coordinate space (x grows east, y
grows north). Both world shapes wrap west to east, so every horizontal
offset is measured the short way around. Spheres additionally converge
at the poles, which is handled by great-circle formulas here and by pole
stitching in the tile graph.
"""

import math
from enum import Enum
from typing import NamedTuple, Tuple

import numpy as np


class WorldShape(str, Enum):
    """Methods used to calculate geographic relationships between tiles."""

    # West and east edges meet, north and south edges do not converge
    CYLINDER = "cylinder"
    # West and east edges meet and meridians converge at the poles
    SPHERE = "sphere"


class Extent(NamedTuple):
    """Bounding region of a map, in degrees."""

    west: float = -180.0
    south: float = -90.0
    width: float = 360.0
    height: float = 180.0

    @property
    def east(self) -> float:
        return self.west + self.width

    @property
    def north(self) -> float:
        return self.south + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, x: float, y: float) -> bool:
        return self.west <= x <= self.east and self.south <= y <= self.north

    def wrap_x(self, x: float) -> float:
        """Bring a horizontal coordinate back inside the extent."""
        return self.west + (x - self.west) % self.width


def wrapped_dx(x1: float, x2: float, width: float) -> float:
    """Signed horizontal offset from x1 to x2, taking the shorter way around."""
    dx = x2 - x1
    half = width / 2.0
    if dx > half:
        dx -= width
    elif dx < -half:
        dx += width
    return dx


def great_circle_degrees(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Central angle between two lon/lat points, in degrees (haversine)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # rounding can push a a hair over 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return math.degrees(2 * math.asin(math.sqrt(a)))


def distance(
    p1: Tuple[float, float],
    p2: Tuple[float, float],
    shape: WorldShape,
    extent: Extent,
) -> float:
    """
    Distance between two points.

    Cylinders use planar distance with the horizontal offset wrapped;
    spheres use the great-circle angle. Both are expressed in degrees so
    spacing thresholds work the same way for either shape.
    """
    x1, y1 = float(p1[0]), float(p1[1])
    x2, y2 = float(p2[0]), float(p2[1])
    if shape == WorldShape.SPHERE:
        return great_circle_degrees(x1, y1, x2, y2)
    return math.hypot(wrapped_dx(x1, x2, extent.width), y2 - y1)


def bearing(
    p1: Tuple[float, float],
    p2: Tuple[float, float],
    shape: WorldShape,
    extent: Extent,
) -> float:
    """Direction from p1 to p2 in degrees clockwise from north, in [0, 360)."""
    x1, y1 = float(p1[0]), float(p1[1])
    x2, y2 = float(p2[0]), float(p2[1])
    if shape == WorldShape.SPHERE:
        phi1 = math.radians(y1)
        phi2 = math.radians(y2)
        d_lambda = math.radians(wrapped_dx(x1, x2, 360.0))
        east = math.sin(d_lambda) * math.cos(phi2)
        north = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    else:
        east = wrapped_dx(x1, x2, extent.width)
        north = y2 - y1
    return math.degrees(math.atan2(east, north)) % 360.0


def pairwise_distances(
    points: np.ndarray, origin: Tuple[float, float], shape: WorldShape, extent: Extent
) -> np.ndarray:
    """Vectorised distance from one origin to many points."""
    xs = points[:, 0].astype(np.float64)
    ys = points[:, 1].astype(np.float64)
    ox, oy = float(origin[0]), float(origin[1])
    if shape == WorldShape.SPHERE:
        phi1 = np.radians(oy)
        phi2 = np.radians(ys)
        a = (
            np.sin((phi2 - phi1) / 2) ** 2
            + np.cos(phi1) * np.cos(phi2) * np.sin(np.radians(xs - ox) / 2) ** 2
        )
        return np.degrees(2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0))))

    dx = np.abs(xs - ox) % extent.width
    dx = np.minimum(dx, extent.width - dx)
    return np.hypot(dx, ys - oy)
