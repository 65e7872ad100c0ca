"""
Shore distance and water flow.

Both are frontier expansions over the tile graph:

- Shore distance spreads outward from the shoreline with a constant step
  cost, once over land and once over water.
- Water flow grows one drainage basin per sea outlet, with water traversal
  enabled and an elevation-based cost. Every tile drains into the tile its
  claim arrived from, and flow is accumulated from the most expensive
  tiles down to the outlets.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import structlog

from .attributes import AttributeLayer
from .expansion import NO_OWNER, NO_PARENT, ExpansionEngine, Seed
from .formula_parser import FormulaSource
from .scoring import Constant
from .tile_graph import TileGraph

logger = structlog.get_logger()

UNIT_STEP = Constant(1.0)


@dataclass
class FlowOptions:
    """Water flow options."""
    cost_formula: FormulaSource = "by_elevation"  # cost of draining through a tile
    river_threshold: float = 10.0  # Minimum flow to count as a river
    land_precipitation: float = 1.0  # Default precipitation per land tile


@dataclass
class FlowResult:
    """Drainage network of one water flow run."""
    flow: np.ndarray  # Accumulated flow per tile
    drains_to: np.ndarray  # Downstream tile, -1 for outlets and undrained tiles
    basins: np.ndarray  # Outlet index per tile, -1 if undrained
    outlets: List[int] = field(default_factory=list)
    river_threshold: float = 10.0

    def rivers(self, threshold: Optional[float] = None) -> np.ndarray:
        """Tiles whose flow exceeds the river threshold."""
        limit = self.river_threshold if threshold is None else threshold
        return np.nonzero(self.flow > limit)[0]

    def basin_tiles(self, outlet_index: int) -> np.ndarray:
        return np.nonzero(self.basins == outlet_index)[0]

    def path_to_outlet(self, tile: int) -> List[int]:
        """Tiles visited by water leaving `tile`, ending at its outlet."""
        path = [tile]
        while self.drains_to[path[-1]] != NO_PARENT:
            path.append(int(self.drains_to[path[-1]]))
        return path


def _shoreline(graph: TileGraph, is_water: np.ndarray):
    land_shore = []
    water_shore = []
    for tile in range(graph.n_tiles):
        if any(is_water[n] != is_water[tile] for n in graph.neighbors_of(tile)):
            (water_shore if is_water[tile] else land_shore).append(tile)
    return land_shore, water_shore


def measure_shore_distance(graph: TileGraph, attributes: AttributeLayer) -> np.ndarray:
    """
    Hop distance of every tile from the shoreline.

    Land tiles touching water are 1 and water tiles touching land are -1;
    distances grow outward, positive over land and negative over water.
    Tiles with no shoreline reachable keep 0. The result is written to the
    `shore_distance` field, and coast markers (harbor, water_count) are
    refreshed as a side effect.

    Returns:
        The shore distance array
    """
    attributes.check_graph(graph)
    is_water = attributes.is_water.astype(bool)
    land_shore, water_shore = _shoreline(graph, is_water)
    logger.info(
        "Measuring shore distance",
        land_shore=len(land_shore),
        water_shore=len(water_shore),
    )

    engine = ExpansionEngine(graph, attributes)
    distances = np.zeros(graph.n_tiles, dtype=np.float64)

    land = engine.expand(
        [Seed(tile=t, owner=0, initial_cost=1.0) for t in land_shore],
        UNIT_STEP,
        barriers=is_water,
    )
    water = engine.expand(
        [Seed(tile=t, owner=0, initial_cost=1.0) for t in water_shore],
        UNIT_STEP,
        barriers=~is_water,
    )

    land_claimed = land.owners != NO_OWNER
    water_claimed = water.owners != NO_OWNER
    distances[land_claimed] = land.costs[land_claimed]
    distances[water_claimed] = -water.costs[water_claimed]

    unreached = int(graph.n_tiles - np.count_nonzero(land_claimed | water_claimed))
    if unreached:
        logger.warning("Tiles without a reachable shoreline", count=unreached)

    attributes.set_field("shore_distance", distances)
    attributes.mark_coast(graph)
    return distances


def generate_water_flow(
    graph: TileGraph,
    attributes: AttributeLayer,
    options: Optional[FlowOptions] = None,
    precipitation: Optional[np.ndarray] = None,
) -> FlowResult:
    """
    Route precipitation from every land tile to the sea.

    Outlets are sea tiles adjacent to land. Each outlet grows its basin
    across land and lakes; the open sea beyond the outlets is a barrier.

    Args:
        graph: Tile graph
        attributes: Attribute layer with elevation and water flags
        options: Flow options
        precipitation: Water added per tile, defaults to
            `land_precipitation` on land and 0 on water

    Returns:
        FlowResult with accumulated flow and drainage directions
    """
    options = options or FlowOptions()
    attributes.check_graph(graph)
    n_tiles = graph.n_tiles
    is_water = attributes.is_water.astype(bool)
    is_sea = is_water & ~attributes.is_lake.astype(bool)

    outlets = [
        tile
        for tile in range(n_tiles)
        if is_sea[tile] and any(not is_water[n] for n in graph.neighbors_of(tile))
    ]
    barriers = is_sea.copy()
    barriers[outlets] = False

    if precipitation is None:
        precipitation = np.where(is_water, 0.0, options.land_precipitation)
    else:
        precipitation = np.asarray(precipitation, dtype=np.float64)

    logger.info("Generating water flow", outlets=len(outlets))

    engine = ExpansionEngine(graph, attributes)
    assignment = engine.expand(
        [Seed(tile=tile, owner=index) for index, tile in enumerate(outlets)],
        options.cost_formula,
        traverse_water=True,
        barriers=barriers,
    )

    claimed = assignment.owners != NO_OWNER
    flow = np.where(claimed, precipitation, 0.0).astype(np.float64)
    # claims are made in nondecreasing cost order, so walking them backwards
    # visits every tile after everything upstream of it
    for tile in reversed(assignment.order):
        parent = assignment.parents[tile]
        if parent != NO_PARENT:
            flow[parent] += flow[tile]

    result = FlowResult(
        flow=flow,
        drains_to=assignment.parents.copy(),
        basins=assignment.owners.copy(),
        outlets=outlets,
        river_threshold=options.river_threshold,
    )
    logger.info(
        "Water flow generated",
        drained_tiles=int(np.count_nonzero(claimed)),
        river_tiles=int(result.rivers().size),
    )
    return result
