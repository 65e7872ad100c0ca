"""Tile graph (tessellation) generation."""

import math
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

import numpy as np
import structlog
from scipy.spatial import QhullError, Voronoi

from ..utils.random import Seed, make_rng
from .errors import StructuralError
from .topology import Extent, WorldShape, bearing, distance

logger = structlog.get_logger()

# Smallest number of tiles that still forms a usable graph
MIN_TILES = 4


class TileGraphConfig(NamedTuple):
    """Configuration for tile graph generation."""

    extent: Extent
    tiles_desired: int
    world_shape: WorldShape = WorldShape.CYLINDER


@dataclass
class TileGraph:
    """
    Arena of tiles indexed by dense integer id.

    Tiles are laid out from a (possibly jittered) grid in row-major order,
    row 0 being the southernmost row. Neighbor lists are index vectors,
    symmetric and sorted; they already include wrap partners and pole
    stitching, so consumers only ever call `neighbors_of`.
    """

    extent: Extent
    world_shape: WorldShape
    cells_x: int
    cells_y: int
    spacing: float

    sites: np.ndarray       # [n, 2] generating points
    centroids: np.ndarray   # [n, 2] polygon centroids
    columns: np.ndarray     # grid column each tile was generated from
    rows: np.ndarray        # grid row each tile was generated from
    neighbors: List[List[int]]
    polygons: List[np.ndarray] = field(default_factory=list)
    areas: Optional[np.ndarray] = field(default=None)
    seed: str = "default"

    @property
    def n_tiles(self) -> int:
        return len(self.sites)

    def __len__(self) -> int:
        return self.n_tiles

    def neighbors_of(self, tile: int) -> List[int]:
        """Neighbor ids of a tile, across the seam and poles included."""
        return self.neighbors[tile]

    def tile_at(self, column: int, row: int) -> int:
        """Id of the tile generated at a grid column and row."""
        return (row % self.cells_y) * self.cells_x + (column % self.cells_x)

    def distance(self, a: int, b: int) -> float:
        """Centroid-to-centroid distance under the world topology."""
        return distance(self.centroids[a], self.centroids[b], self.world_shape, self.extent)

    def bearing(self, a: int, b: int) -> float:
        """Direction from tile a to tile b, clockwise from north."""
        return bearing(self.centroids[a], self.centroids[b], self.world_shape, self.extent)

    def edge_count(self) -> int:
        return sum(len(n) for n in self.neighbors) // 2

    def average_area(self) -> float:
        if self.areas is None or len(self.areas) == 0:
            return self.extent.area / max(1, self.n_tiles)
        return float(np.mean(self.areas))

    def find_tile(self, x: float, y: float) -> int:
        """
        Find the tile whose site is nearest to a point.

        Starts from the grid estimate and walks to closer neighbors until
        no neighbor improves, which terminates because every step strictly
        reduces the distance.
        """
        column = int((self.extent.wrap_x(x) - self.extent.west) / self.extent.width * self.cells_x)
        row = int((y - self.extent.south) / self.extent.height * self.cells_y)
        row = min(max(row, 0), self.cells_y - 1)
        current = self.tile_at(min(column, self.cells_x - 1), row)

        point = (x, y)
        best = distance(self.sites[current], point, self.world_shape, self.extent)
        while True:
            improved = False
            for neighbor in self.neighbors[current]:
                d = distance(self.sites[neighbor], point, self.world_shape, self.extent)
                if d < best:
                    best = d
                    current = neighbor
                    improved = True
            if not improved:
                return current

    def validate(self) -> None:
        """Raise StructuralError if adjacency is asymmetric or a tile is isolated."""
        if len(self.neighbors) != self.n_tiles:
            raise StructuralError(
                f"neighbor table has {len(self.neighbors)} rows for {self.n_tiles} tiles"
            )
        for tile, neighbors in enumerate(self.neighbors):
            if not neighbors:
                raise StructuralError(f"tile {tile} has no neighbors")
            for neighbor in neighbors:
                if neighbor == tile:
                    raise StructuralError(f"tile {tile} lists itself as a neighbor")
                if tile not in self.neighbors[neighbor]:
                    raise StructuralError(
                        f"tile {tile} lists {neighbor} as neighbor, but not vice versa"
                    )


def _check_extent(extent: Extent, tiles_desired: int) -> None:
    if extent.width <= 0 or extent.height <= 0:
        raise StructuralError(f"extent {tuple(extent)} has no area")
    if tiles_desired < MIN_TILES:
        raise StructuralError(f"at least {MIN_TILES} tiles are required, got {tiles_desired}")


def grid_dimensions(extent: Extent, tiles_desired: int) -> Tuple[int, int, float]:
    """
    Work out grid columns and rows for a desired tile count.

    Columns divide the width exactly so the spacing across the west/east
    seam matches the spacing everywhere else. Rounding never leaves fewer
    cells than desired: the coarser axis gains a line until there are enough.
    """
    spacing = math.sqrt(extent.area / tiles_desired)
    cells_x = max(1, int(round(extent.width / spacing)))
    cells_y = max(1, int(round(extent.height / spacing)))
    while cells_x * cells_y < tiles_desired:
        if extent.width / cells_x >= extent.height / cells_y:
            cells_x += 1
        else:
            cells_y += 1
    return cells_x, cells_y, spacing


def get_jittered_grid(
    extent: Extent, cells_x: int, cells_y: int, rng: np.random.Generator
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Generate jittered grid points.

    Creates a regular grid with randomized positions to prevent artificial
    patterns. Each point moves at most 45% of a cell from its cell center,
    so points keep their grid column and row.

    Returns:
        Tuple of (points, columns, rows)
    """
    step_x = extent.width / cells_x
    step_y = extent.height / cells_y

    rows, columns = np.meshgrid(np.arange(cells_y), np.arange(cells_x), indexing="ij")
    rows = rows.ravel()
    columns = columns.ravel()

    jitter_x = rng.uniform(-0.45, 0.45, size=columns.shape) * step_x
    jitter_y = rng.uniform(-0.45, 0.45, size=rows.shape) * step_y

    xs = extent.west + (columns + 0.5) * step_x + jitter_x
    ys = extent.south + (rows + 0.5) * step_y + jitter_y

    return np.column_stack([xs, ys]), columns, rows


def get_boundary_points(extent: Extent, cells_x: int, cells_y: int) -> np.ndarray:
    """
    Generate boundary points beyond the north and south edges.

    These pseudo-clip the Voronoi cells of the outermost rows. No points
    are needed west or east because those edges wrap.
    """
    step_x = extent.width / cells_x
    step_y = extent.height / cells_y
    xs = extent.west + (np.arange(-2, cells_x + 2) + 0.5) * step_x
    south = np.column_stack([xs, np.full(len(xs), extent.south - step_y)])
    north = np.column_stack([xs, np.full(len(xs), extent.north + step_y)])
    return np.vstack([south, north])


def get_ghost_points(
    points: np.ndarray, columns: np.ndarray, cells_x: int, extent: Extent, band: int = 2
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Copy the points nearest the west and east edges across the seam.

    Returns:
        Tuple of (ghost points, id of the tile each ghost copies)
    """
    west_side = np.nonzero(columns < band)[0]
    east_side = np.nonzero(columns >= cells_x - band)[0]

    shifted_east = points[west_side] + np.array([extent.width, 0.0])
    shifted_west = points[east_side] - np.array([extent.width, 0.0])

    ghosts = np.vstack([shifted_east, shifted_west])
    origins = np.concatenate([west_side, east_side])
    return ghosts, origins


def _build_voronoi(all_points: np.ndarray) -> Voronoi:
    try:
        return Voronoi(all_points)
    except (QhullError, ValueError) as e:
        raise StructuralError(f"could not tessellate {len(all_points)} points: {e}") from e


def compute_polygon_centroid(vertices: np.ndarray) -> np.ndarray:
    """Compute the centroid of a polygon (shoelace formula)."""
    if len(vertices) < 3:
        return np.mean(vertices, axis=0)

    x = vertices[:, 0]
    y = vertices[:, 1]
    x_next = np.roll(x, -1)
    y_next = np.roll(y, -1)
    cross = x * y_next - x_next * y
    area = cross.sum() * 0.5

    if abs(area) < 1e-10:
        return np.mean(vertices, axis=0)

    cx = ((x + x_next) * cross).sum() / (6.0 * area)
    cy = ((y + y_next) * cross).sum() / (6.0 * area)
    return np.array([cx, cy])


def compute_polygon_area(vertices: np.ndarray) -> float:
    if len(vertices) < 3:
        return 0.0
    x = vertices[:, 0]
    y = vertices[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)) * 0.5)


def _region_polygon(vor: Voronoi, point_index: int) -> Optional[np.ndarray]:
    region = vor.regions[vor.point_region[point_index]]
    if not region or -1 in region or len(region) < 3:
        return None
    return vor.vertices[region]


def relax_points(
    points: np.ndarray,
    columns: np.ndarray,
    cells_x: int,
    cells_y: int,
    extent: Extent,
    n_iterations: int = 3,
) -> np.ndarray:
    """Apply Lloyd's relaxation, moving each point to its cell's centroid.

    Ghost copies are rebuilt every iteration so cells on the seam relax
    against their wrapped neighbors rather than against empty space.
    """
    logger.info("Starting Lloyd's relaxation", iterations=n_iterations)

    points = points.copy()
    n_points = len(points)
    boundary = get_boundary_points(extent, cells_x, cells_y)
    margin_x = 0.05 * extent.width / cells_x
    margin_y = 0.05 * extent.height / cells_y

    for iteration in range(n_iterations):
        ghosts, _ = get_ghost_points(points, columns, cells_x, extent)
        vor = _build_voronoi(np.vstack([points, ghosts, boundary]))

        for i in range(n_points):
            polygon = _region_polygon(vor, i)
            if polygon is None:
                continue
            centroid = compute_polygon_centroid(polygon)
            points[i, 0] = np.clip(centroid[0], extent.west + margin_x, extent.east - margin_x)
            points[i, 1] = np.clip(centroid[1], extent.south + margin_y, extent.north - margin_y)

        logger.debug("Relaxation iteration complete", iteration=iteration + 1)

    return points


def build_tile_connectivity(
    vor: Voronoi, n_tiles: int, ghost_origins: np.ndarray
) -> List[Set[int]]:
    """
    Build tile adjacency from Voronoi ridges.

    Ridges between a real tile and a ghost copy become wrap neighbors of
    the ghost's original. Ridges touching boundary points are ignored.
    """
    n_ghosts = len(ghost_origins)
    owner = np.full(len(vor.points), -1, dtype=np.int64)
    owner[:n_tiles] = np.arange(n_tiles)
    owner[n_tiles:n_tiles + n_ghosts] = ghost_origins

    adjacency: List[Set[int]] = [set() for _ in range(n_tiles)]
    for p1, p2 in vor.ridge_points:
        # a ridge between two ghosts repeats one between real tiles
        if p1 >= n_tiles and p2 >= n_tiles:
            continue
        a, b = owner[p1], owner[p2]
        if a < 0 or b < 0 or a == b:
            continue
        adjacency[a].add(int(b))
        adjacency[b].add(int(a))
    return adjacency


def _link(adjacency: List[Set[int]], a: int, b: int) -> None:
    if a != b:
        adjacency[a].add(b)
        adjacency[b].add(a)


def stitch_wrap_partners(adjacency: List[Set[int]], cells_x: int, cells_y: int) -> None:
    """Make the last tile of each row a neighbor of the first tile of that row."""
    if cells_x < 2:
        return
    for row in range(cells_y):
        _link(adjacency, row * cells_x + cells_x - 1, row * cells_x)


def stitch_poles(adjacency: List[Set[int]], cells_x: int, cells_y: int) -> None:
    """
    Stitch the polar rows of a sphere.

    Near a pole every tile of the outermost row touches the pole point, so
    each is linked to its horizontal neighbors and to the tile on the
    opposite meridian.
    """
    if cells_x < 2:
        return
    polar_rows = {0, cells_y - 1}
    for row in polar_rows:
        base = row * cells_x
        for column in range(cells_x):
            tile = base + column
            _link(adjacency, tile, base + (column + 1) % cells_x)
            _link(adjacency, tile, base + (column - 1) % cells_x)
            _link(adjacency, tile, base + (column + cells_x // 2) % cells_x)


def finalize_neighbors(adjacency: List[Set[int]]) -> List[List[int]]:
    return [sorted(neighbors) for neighbors in adjacency]


def stitch_topology(
    adjacency: List[Set[int]], cells_x: int, cells_y: int, world_shape: WorldShape
) -> None:
    """Apply every topology-specific stitch for the world shape."""
    stitch_wrap_partners(adjacency, cells_x, cells_y)
    if world_shape == WorldShape.SPHERE:
        stitch_poles(adjacency, cells_x, cells_y)


def generate_tile_graph(
    config: TileGraphConfig, seed: Optional[Seed] = None, apply_relaxation: bool = True
) -> TileGraph:
    """
    Generate a wrap-aware Voronoi tile graph.

    Args:
        config: Extent, tile count target and world shape
        seed: Random seed for reproducibility
        apply_relaxation: Whether to apply Lloyd's relaxation

    Returns:
        Validated TileGraph

    Raises:
        StructuralError: degenerate input or a malformed resulting graph
    """
    extent = config.extent
    _check_extent(extent, config.tiles_desired)

    logger.info(
        "Generating tile graph",
        extent=tuple(extent),
        tiles_desired=config.tiles_desired,
        world_shape=config.world_shape.value,
        seed=seed,
    )

    cells_x, cells_y, spacing = grid_dimensions(extent, config.tiles_desired)

    rng = make_rng(seed)
    points, columns, rows = get_jittered_grid(extent, cells_x, cells_y, rng)
    if apply_relaxation:
        points = relax_points(points, columns, cells_x, cells_y, extent)

    n_tiles = len(points)
    ghosts, ghost_origins = get_ghost_points(points, columns, cells_x, extent)
    boundary = get_boundary_points(extent, cells_x, cells_y)
    vor = _build_voronoi(np.vstack([points, ghosts, boundary]))

    logger.info(
        "Voronoi diagram calculated",
        tiles=n_tiles,
        ghosts=len(ghosts),
        vertices=len(vor.vertices),
        ridges=len(vor.ridge_points),
    )

    adjacency = build_tile_connectivity(vor, n_tiles, ghost_origins)
    stitch_topology(adjacency, cells_x, cells_y, config.world_shape)

    polygons: List[np.ndarray] = []
    centroids = points.copy()
    areas = np.zeros(n_tiles, dtype=np.float64)
    for i in range(n_tiles):
        polygon = _region_polygon(vor, i)
        if polygon is None:
            polygon = points[i:i + 1]
        else:
            centroid = compute_polygon_centroid(polygon)
            centroids[i] = (extent.wrap_x(centroid[0]), centroid[1])
            areas[i] = compute_polygon_area(polygon)
        polygons.append(polygon)

    graph = TileGraph(
        extent=extent,
        world_shape=config.world_shape,
        cells_x=cells_x,
        cells_y=cells_y,
        spacing=spacing,
        sites=points,
        centroids=centroids,
        columns=columns,
        rows=rows,
        neighbors=finalize_neighbors(adjacency),
        polygons=polygons,
        areas=areas,
        seed=str(seed) if seed is not None else "default",
    )
    graph.validate()

    logger.info("Tile graph built", tiles=graph.n_tiles, edges=graph.edge_count())
    return graph


def build_grid_graph(
    columns: int,
    rows: int,
    world_shape: WorldShape = WorldShape.CYLINDER,
    extent: Optional[Extent] = None,
) -> TileGraph:
    """
    Build a rectilinear tile graph with 4-connected square tiles.

    Wrap and pole stitching are the same as for Voronoi graphs, so small
    worlds behave identically under either tessellation.
    """
    extent = extent or Extent()
    _check_extent(extent, columns * rows)

    step_x = extent.width / columns
    step_y = extent.height / rows

    row_ids, column_ids = np.meshgrid(np.arange(rows), np.arange(columns), indexing="ij")
    row_ids = row_ids.ravel()
    column_ids = column_ids.ravel()
    sites = np.column_stack([
        extent.west + (column_ids + 0.5) * step_x,
        extent.south + (row_ids + 0.5) * step_y,
    ])

    adjacency: List[Set[int]] = [set() for _ in range(len(sites))]
    for tile in range(len(sites)):
        column, row = int(column_ids[tile]), int(row_ids[tile])
        if column + 1 < columns:
            _link(adjacency, tile, tile + 1)
        if row + 1 < rows:
            _link(adjacency, tile, tile + columns)
    stitch_topology(adjacency, columns, rows, world_shape)

    half = np.array([[-0.5, -0.5], [0.5, -0.5], [0.5, 0.5], [-0.5, 0.5]]) * [step_x, step_y]
    polygons = [site + half for site in sites]

    graph = TileGraph(
        extent=extent,
        world_shape=world_shape,
        cells_x=columns,
        cells_y=rows,
        spacing=math.sqrt(step_x * step_y),
        sites=sites,
        centroids=sites.copy(),
        columns=column_ids,
        rows=row_ids,
        neighbors=finalize_neighbors(adjacency),
        polygons=polygons,
        areas=np.full(len(sites), step_x * step_y),
        seed="grid",
    )
    graph.validate()
    return graph


def hop_distances(graph: TileGraph, sources: List[int]) -> Dict[int, int]:
    """Breadth-first hop counts from a set of source tiles."""
    result = {source: 0 for source in sources}
    frontier = list(sources)
    while frontier:
        next_frontier = []
        for tile in frontier:
            for neighbor in graph.neighbors_of(tile):
                if neighbor not in result:
                    result[neighbor] = result[tile] + 1
                    next_frontier.append(neighbor)
        frontier = next_frontier
    return result
