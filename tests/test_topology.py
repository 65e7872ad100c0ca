"""Tests for world topology helpers."""

import numpy as np
import pytest

from py_cosmo.core.topology import (
    Extent,
    WorldShape,
    bearing,
    distance,
    great_circle_degrees,
    pairwise_distances,
    wrapped_dx,
)


class TestExtent:
    """Test extent properties."""

    def test_default_is_whole_globe(self):
        """Test the default extent covers the whole globe."""
        extent = Extent()
        assert (extent.west, extent.east) == (-180.0, 180.0)
        assert (extent.south, extent.north) == (-90.0, 90.0)
        assert extent.area == 360.0 * 180.0

    def test_wrap_x(self):
        """Test horizontal coordinates are brought back inside."""
        extent = Extent()
        assert extent.wrap_x(190.0) == pytest.approx(-170.0)
        assert extent.wrap_x(-190.0) == pytest.approx(170.0)
        assert extent.wrap_x(10.0) == pytest.approx(10.0)


class TestDistance:
    """Test distances under both world shapes."""

    def test_wrapped_dx_takes_short_way(self):
        """Test offsets across the seam go the short way around."""
        assert wrapped_dx(170.0, -170.0, 360.0) == pytest.approx(20.0)
        assert wrapped_dx(-170.0, 170.0, 360.0) == pytest.approx(-20.0)
        assert wrapped_dx(0.0, 10.0, 360.0) == pytest.approx(10.0)

    def test_cylinder_distance_across_seam(self):
        """Test cylinder distance wraps west to east."""
        extent = Extent()
        d = distance((179.0, 0.0), (-179.0, 0.0), WorldShape.CYLINDER, extent)
        assert d == pytest.approx(2.0)

    def test_sphere_distance_across_pole(self):
        """Test two points on opposite meridians near a pole are close."""
        extent = Extent()
        d = distance((0.0, 89.0), (180.0, 89.0), WorldShape.SPHERE, extent)
        assert d == pytest.approx(2.0, abs=1e-6)

    def test_great_circle_antipodes(self):
        """Test antipodal points are 180 degrees apart."""
        assert great_circle_degrees(0.0, 0.0, 180.0, 0.0) == pytest.approx(180.0)

    def test_pairwise_matches_scalar(self):
        """Test vectorised distances agree with the scalar function."""
        extent = Extent()
        points = np.array([[170.0, 10.0], [-175.0, -20.0], [0.0, 45.0]])
        for shape in WorldShape:
            vector = pairwise_distances(points, (-170.0, 5.0), shape, extent)
            scalar = [distance(p, (-170.0, 5.0), shape, extent) for p in points]
            np.testing.assert_allclose(vector, scalar)


class TestBearing:
    """Test bearings are clockwise from north."""

    @pytest.mark.parametrize("shape", list(WorldShape))
    def test_cardinal_directions(self, shape):
        """Test the four cardinal directions."""
        extent = Extent()
        origin = (0.0, 0.0)
        assert bearing(origin, (0.0, 10.0), shape, extent) == pytest.approx(0.0)
        assert bearing(origin, (10.0, 0.0), shape, extent) == pytest.approx(90.0)
        assert bearing(origin, (0.0, -10.0), shape, extent) == pytest.approx(180.0)
        assert bearing(origin, (-10.0, 0.0), shape, extent) == pytest.approx(270.0)

    def test_bearing_across_seam_points_east(self):
        """Test the short way across the seam is east."""
        extent = Extent()
        assert bearing((175.0, 0.0), (-175.0, 0.0), WorldShape.CYLINDER, extent) == pytest.approx(90.0)
