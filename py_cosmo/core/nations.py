"""
Nation generation.

Every capital town founds a nation. Nations inherit the culture of their
capital's tile and spread in one expansion run from their capitals.
Given the culture assignment, steps within one culture are cheaper and
steps across a culture border much dearer, so borders tend to follow
cultures.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, Field

from ..config import get_settings
from ..utils.random import get_rng
from .attributes import AttributeLayer
from .expansion import CapacityLimit, ExpansionEngine, GroupAffinity, OwnershipAssignment, Seed
from .scoring import ScoringContext
from .tile_graph import TileGraph
from .towns import Town, capital_towns

logger = structlog.get_logger()

DEFAULT_NATION_FORMULA = "add(constant(10), ratio(constant(20), add(by_normalized_habitability, constant(1))))"


class NationOptions(BaseModel):
    """Nation generation options."""

    expansion_formula: str = Field(
        default=DEFAULT_NATION_FORMULA, description="Nation spreading cost formula"
    )
    size_variance: float = Field(
        default_factory=lambda: get_settings().size_variance,
        ge=0,
        description="How much expansionism varies between nations",
    )
    expansion_factor: float = Field(
        default_factory=lambda: get_settings().expansion_factor,
        gt=0,
        description="Multiplier on the spreading cost ceiling",
    )
    max_population: Optional[float] = Field(
        default=None, gt=0, description="Population a single nation may absorb"
    )
    same_culture_cost: float = Field(
        default=-9.0, description="Step cost added when a step stays inside one culture"
    )
    foreign_culture_cost: float = Field(
        default=100.0, description="Step cost added when a step crosses a culture border"
    )
    parameters: Dict[str, float] = Field(
        default_factory=dict, description="Named values formulas may use as temperature goals"
    )


class Nation(BaseModel):
    """A nation founded by a capital town."""

    id: int = Field(description="Owner id used in the expansion")
    capital: int = Field(description="Town id of the capital")
    center: int = Field(description="Tile id of the capital")
    culture: Optional[int] = Field(default=None, description="Culture of the capital")
    expansionism: float = Field(default=1.0, description="Expansion tendency")
    tile_count: int = Field(default=0, description="Tiles claimed by the nation")


class NationGenerator:
    """Founds a nation per capital and spreads them over the map."""

    def __init__(
        self,
        graph: TileGraph,
        attributes: AttributeLayer,
        towns: List[Town],
        options: Optional[NationOptions] = None,
        cultures: Optional[OwnershipAssignment] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize nation generator.

        Args:
            graph: Tile graph
            attributes: Attribute layer
            towns: Placed towns; only capitals found nations
            options: Nation generation options
            cultures: Culture assignment; crossing culture borders costs extra
            rng: Random generator, the shared one if omitted
        """
        attributes.check_graph(graph)
        self.graph = graph
        self.attributes = attributes
        self.towns = towns
        self.options = options or NationOptions()
        self.cultures = cultures
        self.rng = rng if rng is not None else get_rng()

        self.nations: List[Nation] = []

    def generate(self) -> Tuple[List[Nation], OwnershipAssignment]:
        """
        Found and expand nations.

        Returns:
            Tuple of (nations, ownership assignment)
        """
        capitals = capital_towns(self.towns)
        logger.info("Starting nation generation", capitals=len(capitals))

        for capital in capitals:
            expansionism = 1.0 + self.rng.uniform(0.1, 1.0) * self.options.size_variance
            self.nations.append(
                Nation(
                    id=len(self.nations),
                    capital=capital.id,
                    center=capital.tile,
                    culture=capital.culture,
                    expansionism=expansionism,
                )
            )

        assignment = self._expand_nations()
        logger.info("Generated nations", count=len(self.nations))
        return self.nations, assignment

    def _expand_nations(self) -> OwnershipAssignment:
        capacity = CapacityLimit.from_population(
            self.options.max_population, self.attributes.mean_population()
        )
        seeds = [
            Seed(tile=n.center, owner=n.id, expansionism=n.expansionism, capacity=capacity)
            for n in self.nations
        ]
        affinity = None
        if self.cultures is not None:
            affinity = GroupAffinity.from_assignment(
                self.cultures, self.options.same_culture_cost, self.options.foreign_culture_cost
            )
        context = ScoringContext.from_layer(self.attributes, **self.options.parameters)
        engine = ExpansionEngine(self.graph, self.attributes, context)
        assignment = engine.expand(
            seeds,
            self.options.expansion_formula,
            max_cost=self.graph.n_tiles / 2 * self.options.expansion_factor,
            affinity=affinity,
        )
        counts = assignment.owner_counts()
        for nation in self.nations:
            nation.tile_count = counts.get(nation.id, 0)
        return assignment
