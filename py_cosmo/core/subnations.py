"""
Subnation (province) generation.

Each nation with at least two towns is divided into provinces seated in its
most populous towns, the capital always among them. Provinces spread from
their seats in one expansion run per nation with every tile outside the
nation impassable, so no province ever leaves its nation. Nation land that
no seated province reached can be split into further provinces, each
started from the most habitable tile left over.
"""

from dataclasses import fields
from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, Field

from ..utils.random import get_rng
from .attributes import AttributeLayer
from .expansion import NO_OWNER, ExpansionEngine, OwnershipAssignment, Seed
from .nations import Nation
from .scoring import ScoringContext
from .tile_graph import TileGraph
from .towns import Town

logger = structlog.get_logger()

DEFAULT_SUBNATION_FORMULA = "add(constant(10), ratio(by_elevation, constant(2)))"

MIN_TOWNS = 2


class SubnationOptions(BaseModel):
    """Subnation generation options."""

    subnation_percentage: float = Field(
        default=20.0, gt=0, le=100, description="Provinces per hundred towns of a nation"
    )
    expansion_formula: str = Field(
        default=DEFAULT_SUBNATION_FORMULA, description="Province spreading cost formula"
    )
    max_cost: Optional[float] = Field(
        default=None, gt=0, description="Accumulated cost ceiling of a province"
    )
    fill_empty: bool = Field(
        default=True, description="Split nation land no province reached into new provinces"
    )
    seat_variance: float = Field(
        default=0.2, ge=0, description="Spread of the random factor on town populations"
    )
    parameters: Dict[str, float] = Field(
        default_factory=dict, description="Named values formulas may use as temperature goals"
    )


class Subnation(BaseModel):
    """A province of a nation."""

    id: int = Field(description="Owner id used in the expansion")
    nation: int = Field(description="Nation the province belongs to")
    center: int = Field(description="Tile the province spread from")
    seat: Optional[int] = Field(default=None, description="Town id of the seat, if any")
    culture: Optional[int] = Field(default=None, description="Culture of the center tile")
    tile_count: int = Field(default=0, description="Tiles claimed by the province")


class SubnationGenerator:
    """Divides every nation into provinces."""

    def __init__(
        self,
        graph: TileGraph,
        attributes: AttributeLayer,
        nations: List[Nation],
        nation_tiles: OwnershipAssignment,
        towns: List[Town],
        options: Optional[SubnationOptions] = None,
        cultures: Optional[OwnershipAssignment] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize subnation generator.

        Args:
            graph: Tile graph
            attributes: Attribute layer
            nations: Generated nations
            nation_tiles: Nation assignment the provinces must stay inside
            towns: Placed towns; those inside a nation may become seats
            options: Subnation generation options
            cultures: Culture assignment, gives provinces their culture
            rng: Random generator, the shared one if omitted
        """
        attributes.check_graph(graph)
        self.graph = graph
        self.attributes = attributes
        self.nations = nations
        self.nation_tiles = nation_tiles
        self.towns = towns
        self.options = options or SubnationOptions()
        self.cultures = cultures
        self.rng = rng if rng is not None else get_rng()
        self.engine = ExpansionEngine(
            graph, attributes, ScoringContext.from_layer(attributes, **self.options.parameters)
        )

        self.subnations: List[Subnation] = []

    def generate(self) -> Tuple[List[Subnation], OwnershipAssignment]:
        """
        Seat and expand provinces, nation by nation.

        Returns:
            Tuple of (subnations, ownership assignment)
        """
        logger.info("Starting subnation generation", nations=len(self.nations))
        assignment = OwnershipAssignment.empty(self.graph.n_tiles)
        towns_by_nation = self._towns_by_nation()

        for nation in self.nations:
            inside = self.nation_tiles.owners == nation.id
            seats = self._choose_seats(nation, towns_by_nation.get(nation.id, []))
            seeds = [self._add_subnation(nation, town.tile, town.id) for town in seats]
            if seeds:
                self._absorb(assignment, self._expand(seeds, inside))
            if self.options.fill_empty:
                self._fill_empty(nation, inside, assignment, towns_by_nation.get(nation.id, []))

        counts = assignment.owner_counts()
        for subnation in self.subnations:
            subnation.tile_count = counts.get(subnation.id, 0)
        logger.info("Generated subnations", count=len(self.subnations))
        return self.subnations, assignment

    def _towns_by_nation(self) -> Dict[int, List[Town]]:
        by_nation: Dict[int, List[Town]] = {}
        for town in self.towns:
            nation = self.nation_tiles.owner_of(town.tile)
            if nation is not None:
                by_nation.setdefault(nation, []).append(town)
        return by_nation

    def _choose_seats(self, nation: Nation, towns: List[Town]) -> List[Town]:
        if len(towns) < MIN_TOWNS:
            logger.debug("Nation has too few towns for provinces", nation=nation.id, towns=len(towns))
            return []
        count = max(MIN_TOWNS, int(len(towns) * self.options.subnation_percentage / 100))
        factors = np.clip(
            self.rng.normal(1.0, self.options.seat_variance, len(towns)), 0.5, 1.5
        )
        ranked = sorted(
            zip(towns, factors),
            key=lambda pair: (pair[0].id != nation.capital, -pair[0].population * pair[1]),
        )
        return [town for town, _ in ranked[:count]]

    def _add_subnation(self, nation: Nation, center: int, seat: Optional[int]) -> Seed:
        culture = nation.culture
        if self.cultures is not None and self.cultures.owners[center] != NO_OWNER:
            culture = int(self.cultures.owners[center])
        subnation = Subnation(
            id=len(self.subnations), nation=nation.id, center=center, seat=seat, culture=culture
        )
        self.subnations.append(subnation)
        return Seed(tile=center, owner=subnation.id)

    def _expand(self, seeds: List[Seed], passable: np.ndarray) -> OwnershipAssignment:
        return self.engine.expand(
            seeds,
            self.options.expansion_formula,
            barriers=~passable,
            max_cost=self.options.max_cost,
        )

    def _fill_empty(
        self,
        nation: Nation,
        inside: np.ndarray,
        assignment: OwnershipAssignment,
        towns: List[Town],
    ) -> None:
        town_at = {town.tile: town for town in towns}
        habitability = self.attributes.habitability
        while True:
            left = inside & (assignment.owners == NO_OWNER)
            tiles = np.nonzero(left)[0]
            if tiles.size == 0:
                return
            # most habitable first, lowest id on ties
            center = int(tiles[np.argmax(habitability[tiles])])
            seed = self._add_subnation(nation, center, None)
            subnation = self.subnations[-1]
            result = self._expand([seed], left)
            self._absorb(assignment, result)

            region_towns = [town_at[t] for t in result.order if t in town_at]
            if region_towns:
                subnation.seat = max(region_towns, key=lambda town: town.population).id
            logger.debug(
                "Filled empty nation land",
                nation=nation.id,
                subnation=subnation.id,
                tiles=len(result.order),
            )

    @staticmethod
    def _absorb(assignment: OwnershipAssignment, result: OwnershipAssignment) -> None:
        for tile in result.order:
            assignment.claim(
                tile, int(result.owners[tile]), float(result.costs[tile]), int(result.parents[tile])
            )
        for stat in fields(result.stats):
            total = getattr(assignment.stats, stat.name) + getattr(result.stats, stat.name)
            setattr(assignment.stats, stat.name, total)
