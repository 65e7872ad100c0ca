"""
Town placement and catchments.

Capitals are placed first on the best-scoring populated tiles with wide
spacing, then ordinary towns with tighter spacing. Each town then grows a
catchment area whose size follows its population.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, Field

from ..config import get_settings
from ..utils.random import get_rng
from .attributes import AttributeLayer
from .errors import EvaluationError
from .expansion import NO_OWNER, CapacityLimit, ExpansionEngine, OwnershipAssignment, Seed
from .formula_parser import parse_formula
from .scoring import ScoringContext, evaluate
from .tile_graph import TileGraph

logger = structlog.get_logger()

DEFAULT_SCORE_FORMULA = "ratio(constant(100), add(by_habitability, constant(1)))"
DEFAULT_CATCHMENT_FORMULA = "ratio(constant(10), add(by_normalized_habitability, constant(1)))"

TILES_PER_CAPITAL = 10


class TownOptions(BaseModel):
    """Town generation options."""

    capital_count: int = Field(default=10, ge=0, description="Target number of capitals")
    town_count: Optional[int] = Field(
        default=None, ge=0, description="Target number of other towns (None = auto)"
    )
    score_formula: str = Field(
        default=DEFAULT_SCORE_FORMULA, description="Site score formula, lower is better"
    )
    catchment_formula: str = Field(
        default=DEFAULT_CATCHMENT_FORMULA, description="Catchment spreading cost formula"
    )
    score_jitter: float = Field(
        default=0.5, ge=0, description="Random worsening applied to site scores"
    )
    parameters: Dict[str, float] = Field(
        default_factory=dict, description="Named values formulas may use as temperature goals"
    )

    # Spacing parameters
    capital_spacing_divisor: float = Field(
        default=2.0, description="Divide map size by capital count * this"
    )
    town_spacing_base: float = Field(default=150.0, description="Base divisor for town spacing")
    town_spacing_power: float = Field(
        default=0.7, description="Power adjustment for town count"
    )

    # Population parameters
    capital_pop_multiplier: float = Field(default=1.3, description="Capital population boost")
    port_pop_multiplier: float = Field(default=1.3, description="Port population boost")
    catchment_scale: float = Field(
        default=40.0, gt=0, description="Habitability a town draws on per unit of population"
    )
    expansion_factor: float = Field(
        default_factory=lambda: get_settings().expansion_factor,
        gt=0,
        description="Multiplier on the spreading cost ceiling",
    )


class Town(BaseModel):
    """A placed town."""

    id: int = Field(description="Owner id used in the catchment expansion")
    tile: int = Field(description="Tile the town stands on")
    is_capital: bool = Field(default=False, description="Whether this is a capital")
    score: float = Field(description="Site score the town was chosen with")
    population: float = Field(default=0.0, description="Town population")
    port: bool = Field(default=False, description="Whether the town is on the sea coast")
    culture: Optional[int] = Field(default=None, description="Culture owning the town's tile")
    tile_count: int = Field(default=0, description="Tiles in the town's catchment")


class TownGenerator:
    """Places towns on the best sites and grows their catchments."""

    def __init__(
        self,
        graph: TileGraph,
        attributes: AttributeLayer,
        options: Optional[TownOptions] = None,
        cultures: Optional[OwnershipAssignment] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        attributes.check_graph(graph)
        self.graph = graph
        self.attributes = attributes
        self.options = options or TownOptions()
        self.cultures = cultures
        self.rng = rng if rng is not None else get_rng()
        self.context = ScoringContext.from_layer(attributes, **self.options.parameters)

        self.towns: List[Town] = []

    def generate(self) -> Tuple[List[Town], OwnershipAssignment]:
        """
        Place capitals and towns, then expand their catchments.

        Returns:
            Tuple of (towns with capitals first, catchment assignment)
        """
        logger.info(
            "Starting town generation",
            capitals=self.options.capital_count,
            towns=self.options.town_count,
        )
        sites = self._score_sites()
        capitals = self._place_capitals(sites)
        taken = {tile for tile, _ in capitals}
        remaining = [site for site in sites if site[0] not in taken]
        towns = self._place_towns(remaining, [tile for tile, _ in capitals])

        for tile, score in capitals:
            self._add_town(tile, score, is_capital=True)
        for tile, score in towns:
            self._add_town(tile, score, is_capital=False)

        catchments = self._expand_catchments()
        logger.info(
            "Generated towns",
            capitals=len(capitals),
            towns=len(towns),
        )
        return self.towns, catchments

    def _score_sites(self) -> List[Tuple[int, float]]:
        """Populated tiles with their jittered scores, best first."""
        formula = parse_formula(self.options.score_formula)
        self.context.check_parameters(formula)
        sites = []
        for tile in self.attributes.populated_tiles():
            tile = int(tile)
            try:
                score = evaluate(formula, self.attributes.tile(tile), self.context)
            except EvaluationError as e:
                logger.debug("Site score unevaluable", tile=tile, error=str(e))
                continue
            sites.append((tile, score * (1 + self.rng.random() * self.options.score_jitter)))
        sites.sort(key=lambda site: site[1])
        return sites

    def _too_close(self, placed: List[int], tile: int, spacing: float) -> bool:
        return any(self.graph.distance(other, tile) < spacing for other in placed)

    def _place_capitals(self, sites: List[Tuple[int, float]]) -> List[Tuple[int, float]]:
        count = self.options.capital_count
        if len(sites) < count * TILES_PER_CAPITAL:
            count = len(sites) // TILES_PER_CAPITAL
            logger.warning("Not enough populated tiles for requested capitals", count=count)
        if count == 0:
            return []

        extent = self.graph.extent
        spacing = (extent.width + extent.height) / self.options.capital_spacing_divisor / count
        while True:
            placed: List[Tuple[int, float]] = []
            for tile, score in sites:
                if not self._too_close([t for t, _ in placed], tile, spacing):
                    placed.append((tile, score))
                    if len(placed) == count:
                        return placed
            logger.debug("Not enough capitals placed, reducing spacing", spacing=spacing)
            spacing /= 1.2

    def _place_towns(
        self, sites: List[Tuple[int, float]], capitals: List[int]
    ) -> List[Tuple[int, float]]:
        count = self.options.town_count
        if count is None:
            count = len(sites) // 5
        if count > len(sites):
            logger.warning("Not enough populated tiles for requested towns", count=len(sites))
            count = len(sites)
        if count == 0:
            return []

        extent = self.graph.extent
        spacing = (extent.width + extent.height) / self.options.town_spacing_base / (
            (count ** self.options.town_spacing_power) / 66
        )
        min_spacing = self.graph.spacing / 2
        while True:
            placed: List[Tuple[int, float]] = []
            occupied = list(capitals)
            for tile, score in sites:
                s = spacing * float(np.clip(self.rng.normal(1.0, 0.3), 0.2, 2.0))
                if not self._too_close(occupied, tile, s):
                    placed.append((tile, score))
                    occupied.append(tile)
                    if len(placed) == count:
                        return placed
            if spacing <= min_spacing:
                logger.warning("Could not place all towns", placed=len(placed), requested=count)
                return placed
            logger.debug("Not enough towns placed, reducing spacing", spacing=spacing)
            spacing /= 2

    def _add_town(self, tile: int, score: float, is_capital: bool) -> None:
        a = self.attributes
        port = a.on_sea_coast(tile)
        population = max(float(a.habitability[tile]) / 8, 0.1)
        if is_capital:
            population *= self.options.capital_pop_multiplier
        if port:
            population *= self.options.port_pop_multiplier
        population *= float(np.clip(self.rng.normal(2, 3), 0.6, 20)) / 3

        culture = None
        if self.cultures is not None and self.cultures.owners[tile] != NO_OWNER:
            culture = int(self.cultures.owners[tile])

        self.towns.append(
            Town(
                id=len(self.towns),
                tile=tile,
                is_capital=is_capital,
                score=score,
                population=round(population, 3),
                port=port,
                culture=culture,
            )
        )

    def _expand_catchments(self) -> OwnershipAssignment:
        mean_population = self.attributes.mean_population()
        seeds = [
            Seed(
                tile=town.tile,
                owner=town.id,
                capacity=CapacityLimit.from_population(
                    town.population * self.options.catchment_scale, mean_population
                ),
            )
            for town in self.towns
        ]
        engine = ExpansionEngine(self.graph, self.attributes, self.context)
        catchments = engine.expand(
            seeds,
            self.options.catchment_formula,
            max_cost=self.graph.n_tiles / 2 * self.options.expansion_factor,
        )
        counts = catchments.owner_counts()
        for town in self.towns:
            town.tile_count = counts.get(town.id, 0)
        return catchments


def capital_towns(towns: List[Town]) -> List[Town]:
    return [town for town in towns if town.is_capital]

