"""Tests for tile graph generation."""

import numpy as np
import pytest

from py_cosmo.core.errors import StructuralError
from py_cosmo.core.tile_graph import (
    TileGraphConfig,
    build_grid_graph,
    generate_tile_graph,
    get_boundary_points,
    get_ghost_points,
    get_jittered_grid,
    grid_dimensions,
    hop_distances,
)
from py_cosmo.core.topology import Extent, WorldShape
from py_cosmo.utils.random import make_rng


def assert_symmetric(graph):
    for tile in range(graph.n_tiles):
        for neighbor in graph.neighbors_of(tile):
            assert tile in graph.neighbors_of(neighbor)


class TestJitteredGrid:
    """Test jittered grid generation."""

    def test_grid_dimensions(self):
        """Test the grid roughly matches the desired tile count."""
        cells_x, cells_y, spacing = grid_dimensions(Extent(), 200)
        assert cells_x * cells_y == pytest.approx(200, rel=0.2)
        assert spacing == pytest.approx(np.sqrt(360 * 180 / 200))

    @pytest.mark.parametrize("tiles_desired", [4, 5, 7, 100, 300])
    def test_grid_never_short(self, tiles_desired):
        """Test rounding never leaves fewer cells than desired."""
        cells_x, cells_y, _ = grid_dimensions(Extent(), tiles_desired)
        assert cells_x * cells_y >= tiles_desired

    def test_smallest_graph(self):
        """Test the minimum tile count still builds a graph."""
        graph = generate_tile_graph(TileGraphConfig(Extent(), 4), seed="tiny")
        assert (graph.cells_x, graph.cells_y) == (3, 2)
        assert graph.n_tiles == 6
        assert all(graph.neighbors_of(t) for t in range(graph.n_tiles))

    def test_points_keep_their_cells(self):
        """Test jitter never moves a point out of its grid cell."""
        extent = Extent()
        points, columns, rows = get_jittered_grid(extent, 20, 10, make_rng("test_seed"))
        step_x = extent.width / 20
        step_y = extent.height / 10
        assert np.all(np.floor((points[:, 0] - extent.west) / step_x) == columns)
        assert np.all(np.floor((points[:, 1] - extent.south) / step_y) == rows)

    def test_jittering_consistency(self):
        """Test that same seed produces same jittering."""
        points1, _, _ = get_jittered_grid(Extent(), 10, 5, make_rng("test_seed"))
        points2, _, _ = get_jittered_grid(Extent(), 10, 5, make_rng("test_seed"))
        np.testing.assert_array_equal(points1, points2)

    def test_different_seeds(self):
        """Test that different seeds produce different results."""
        points1, _, _ = get_jittered_grid(Extent(), 10, 5, make_rng("seed1"))
        points2, _, _ = get_jittered_grid(Extent(), 10, 5, make_rng("seed2"))
        assert not np.array_equal(points1, points2)


class TestBoundaryAndGhosts:
    """Test pseudo-clipping points and seam ghosts."""

    def test_boundary_points_outside_extent(self):
        """Test boundary points lie north and south of the extent."""
        extent = Extent()
        boundary = get_boundary_points(extent, 10, 5)
        assert np.all((boundary[:, 1] < extent.south) | (boundary[:, 1] > extent.north))

    def test_ghosts_are_shifted_copies(self):
        """Test ghosts copy edge columns shifted by the map width."""
        extent = Extent()
        points, columns, _ = get_jittered_grid(extent, 10, 5, make_rng("ghosts"))
        ghosts, origins = get_ghost_points(points, columns, 10, extent, band=1)
        assert len(ghosts) == 10
        offsets = np.abs(ghosts[:, 0] - points[origins, 0])
        np.testing.assert_allclose(offsets, extent.width)
        np.testing.assert_array_equal(ghosts[:, 1], points[origins, 1])


class TestGenerateTileGraph:
    """Test the Voronoi tile graph."""

    @pytest.fixture(scope="class")
    def cylinder(self):
        return generate_tile_graph(TileGraphConfig(Extent(), 300, WorldShape.CYLINDER), seed="cyl")

    @pytest.fixture(scope="class")
    def sphere(self):
        return generate_tile_graph(TileGraphConfig(Extent(), 300, WorldShape.SPHERE), seed="sph")

    def test_neighbors_symmetric_and_sorted(self, cylinder):
        """Test every neighbor relation is mutual and lists are sorted."""
        assert_symmetric(cylinder)
        for neighbors in cylinder.neighbors:
            assert neighbors == sorted(set(neighbors))

    def test_no_isolated_tiles(self, cylinder):
        """Test every tile has at least one neighbor."""
        assert all(len(n) > 0 for n in cylinder.neighbors)

    def test_cylinder_wrap_partner(self, cylinder):
        """Test the last tile of each row neighbors the first tile of the same row."""
        for row in range(cylinder.cells_y):
            last = cylinder.tile_at(cylinder.cells_x - 1, row)
            first = cylinder.tile_at(0, row)
            assert first in cylinder.neighbors_of(last)
            assert last in cylinder.neighbors_of(first)

    def test_seam_has_geometric_neighbors(self, cylinder):
        """Test seam tiles also link across the seam to other rows."""
        diagonal = 0
        for row in range(cylinder.cells_y):
            last = cylinder.tile_at(cylinder.cells_x - 1, row)
            diagonal += sum(
                1
                for n in cylinder.neighbors_of(last)
                if cylinder.columns[n] == 0 and cylinder.rows[n] != row
            )
        assert diagonal > 0

    def test_sphere_poles_stitched(self, sphere):
        """Test polar tiles link to the tile on the opposite meridian."""
        half = sphere.cells_x // 2
        for row in (0, sphere.cells_y - 1):
            for column in range(sphere.cells_x):
                tile = sphere.tile_at(column, row)
                assert sphere.tile_at(column + half, row) in sphere.neighbors_of(tile)
        assert_symmetric(sphere)

    def test_sites_inside_extent(self, cylinder):
        """Test all sites lie inside the extent."""
        extent = cylinder.extent
        for x, y in cylinder.sites:
            assert extent.contains(x, y)

    def test_reproducible(self):
        """Test the same seed yields the same graph."""
        config = TileGraphConfig(Extent(), 100)
        graph1 = generate_tile_graph(config, seed="again")
        graph2 = generate_tile_graph(config, seed="again")
        np.testing.assert_array_equal(graph1.sites, graph2.sites)
        assert graph1.neighbors == graph2.neighbors

    def test_find_tile(self, cylinder):
        """Test point lookup returns the tile with the nearest site."""
        for tile in (0, 57, cylinder.n_tiles - 1):
            x, y = cylinder.sites[tile]
            assert cylinder.find_tile(x, y) == tile

    def test_too_few_tiles(self):
        """Test degenerate inputs raise StructuralError."""
        with pytest.raises(StructuralError):
            generate_tile_graph(TileGraphConfig(Extent(), 2))

    def test_empty_extent(self):
        """Test an extent without area raises StructuralError."""
        with pytest.raises(StructuralError):
            generate_tile_graph(TileGraphConfig(Extent(0.0, 0.0, 0.0, 10.0), 100))


class TestGridGraph:
    """Test the rectilinear tile graph."""

    def test_cylinder_grid_neighbors(self):
        """Test a cylinder grid wraps rows but not columns."""
        graph = build_grid_graph(4, 3, WorldShape.CYLINDER)
        assert graph.neighbors_of(graph.tile_at(0, 1)) == sorted(
            [graph.tile_at(1, 1), graph.tile_at(3, 1), graph.tile_at(0, 0), graph.tile_at(0, 2)]
        )
        # polar rows are not stitched on a cylinder
        assert graph.tile_at(2, 0) not in graph.neighbors_of(graph.tile_at(0, 0))

    def test_sphere_grid_poles(self):
        """Test a sphere grid links polar tiles to their antipodes."""
        graph = build_grid_graph(4, 3, WorldShape.SPHERE)
        assert graph.tile_at(2, 0) in graph.neighbors_of(graph.tile_at(0, 0))
        assert graph.tile_at(3, 2) in graph.neighbors_of(graph.tile_at(1, 2))
        assert graph.tile_at(2, 1) not in graph.neighbors_of(graph.tile_at(0, 1))

    def test_validate_catches_asymmetry(self):
        """Test validation rejects a one-sided neighbor relation."""
        graph = build_grid_graph(3, 3)
        graph.neighbors[0] = graph.neighbors[0] + [4]
        with pytest.raises(StructuralError):
            graph.validate()

    def test_validate_catches_isolated_tile(self):
        """Test validation rejects an isolated tile."""
        graph = build_grid_graph(3, 3)
        graph.neighbors[4] = []
        with pytest.raises(StructuralError):
            graph.validate()

    def test_hop_distances(self):
        """Test breadth-first hops wrap across the seam."""
        graph = build_grid_graph(5, 1)
        hops = hop_distances(graph, [0])
        assert hops[graph.tile_at(4, 0)] == 1
        assert hops[graph.tile_at(2, 0)] == 2
