"""
Weighted multi-source frontier expansion.

Every spreading phenomenon (cultures, nations, towns, shore distance,
drainage basins) is grown by the same cost-ordered fill: a min-heap of
frontier records keyed by accumulated cost, ties broken by insertion order.
The cheapest record claims its tile, and a claimed tile is never revised.
The run always goes to exhaustion; it is a territory fill, not a
point-to-point query.
"""

import heapq
import itertools
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .attributes import AttributeLayer
from .errors import ConfigurationError, EvaluationError, OwnershipError
from .formula_parser import FormulaSource, parse_formula
from .scoring import Expression, ScoringContext, evaluate
from .tile_graph import TileGraph

logger = structlog.get_logger()

NO_OWNER = -1
NO_PARENT = -1


class CapacityLimit(BaseModel):
    """How far one owner may grow before its frontier is halted."""

    model_config = ConfigDict(frozen=True)

    max_tiles: Optional[int] = Field(default=None, ge=1, description="Maximum claimed tiles")
    max_cost: Optional[float] = Field(
        default=None, ge=0, description="Maximum accumulated cost of a claim"
    )

    @classmethod
    def from_population(
        cls, budget: Optional[float], mean_population: float
    ) -> Optional["CapacityLimit"]:
        """Tile capacity holding roughly `budget` population, None if unbounded."""
        if budget is None or mean_population <= 0:
            return None
        return cls(max_tiles=max(1, int(math.ceil(budget / mean_population))))


class Seed(BaseModel):
    """Starting point of one owner's frontier."""

    model_config = ConfigDict(frozen=True)

    tile: int = Field(ge=0, description="Tile the owner starts from")
    owner: int = Field(ge=0, description="Owner identifier")
    initial_cost: float = Field(
        default=0.0, allow_inf_nan=False, description="Accumulated cost at the seed"
    )
    expansionism: float = Field(
        default=1.0, gt=0, description="Step costs are divided by this factor"
    )
    capacity: Optional[CapacityLimit] = Field(
        default=None, description="Overrides the run's default capacity for this owner"
    )

    @classmethod
    def coerce(cls, value: Union["Seed", Sequence]) -> "Seed":
        """Accept a Seed or a (tile, owner[, initial_cost]) tuple."""
        if isinstance(value, Seed):
            return value
        try:
            tile, owner, *rest = value
        except (TypeError, ValueError):
            raise ConfigurationError("seed must be (tile, owner[, initial_cost])", value) from None
        if len(rest) > 1:
            raise ConfigurationError("seed must be (tile, owner[, initial_cost])", value)
        try:
            return cls(tile=tile, owner=owner, initial_cost=rest[0] if rest else 0.0)
        except ValidationError as e:
            fields = ", ".join(str(error["loc"][0]) for error in e.errors())
            raise ConfigurationError(f"invalid seed {fields}", value) from e


@dataclass
class ExpansionStats:
    """Counters describing one expansion run."""

    pushed: int = 0
    popped: int = 0
    discarded: int = 0
    claimed: int = 0
    unevaluable: int = 0
    skipped_seeds: int = 0


@dataclass(eq=False)
class OwnershipAssignment:
    """
    Final tile -> (owner, cost) mapping of one run.

    `parents` records the tile each claim arrived from (NO_PARENT for
    seeds); flow clients use it as the drainage direction.
    """

    owners: np.ndarray
    costs: np.ndarray
    parents: np.ndarray
    order: List[int] = field(default_factory=list)
    stats: ExpansionStats = field(default_factory=ExpansionStats)

    @classmethod
    def empty(cls, n_tiles: int) -> "OwnershipAssignment":
        return cls(
            owners=np.full(n_tiles, NO_OWNER, dtype=np.int64),
            costs=np.full(n_tiles, np.inf, dtype=np.float64),
            parents=np.full(n_tiles, NO_PARENT, dtype=np.int64),
        )

    def __len__(self) -> int:
        return len(self.owners)

    def __eq__(self, other) -> bool:
        if not isinstance(other, OwnershipAssignment):
            return NotImplemented
        return (
            np.array_equal(self.owners, other.owners)
            and np.array_equal(self.costs, other.costs)
            and np.array_equal(self.parents, other.parents)
        )

    def claim(self, tile: int, owner: int, cost: float, parent: int = NO_PARENT) -> None:
        """Record the first and only claim of a tile."""
        if self.owners[tile] != NO_OWNER:
            raise OwnershipError(
                f"tile {tile} already belongs to {self.owners[tile]}, cannot give it to {owner}"
            )
        self.owners[tile] = owner
        self.costs[tile] = cost
        self.parents[tile] = parent
        self.order.append(tile)

    def is_claimed(self, tile: int) -> bool:
        return self.owners[tile] != NO_OWNER

    def owner_of(self, tile: int) -> Optional[int]:
        owner = int(self.owners[tile])
        return None if owner == NO_OWNER else owner

    def cost_of(self, tile: int) -> Optional[float]:
        return None if self.owners[tile] == NO_OWNER else float(self.costs[tile])

    def tiles_of(self, owner: int) -> np.ndarray:
        return np.nonzero(self.owners == owner)[0]

    def claimed_count(self, owner: Optional[int] = None) -> int:
        if owner is None:
            return int(np.count_nonzero(self.owners != NO_OWNER))
        return int(np.count_nonzero(self.owners == owner))

    def owner_counts(self) -> Dict[int, int]:
        owners, counts = np.unique(self.owners[self.owners != NO_OWNER], return_counts=True)
        return {int(o): int(c) for o, c in zip(owners, counts)}

    def to_records(self) -> List[Tuple[int, int, float]]:
        """(tile, owner, cost) for every claimed tile, in tile order."""
        return [
            (int(tile), int(self.owners[tile]), float(self.costs[tile]))
            for tile in np.nonzero(self.owners != NO_OWNER)[0]
        ]


@dataclass(frozen=True, eq=False)
class GroupAffinity:
    """
    Extra step cost for staying inside or leaving a tile group.

    Stepping between two tiles with the same label adds `same_cost`, any
    other step adds `other_cost`. The sum with the formula cost is clamped
    at zero like any other step.
    """

    labels: np.ndarray
    same_cost: float = -9.0
    other_cost: float = 100.0

    @classmethod
    def from_assignment(
        cls, assignment: "OwnershipAssignment", same_cost: float = -9.0, other_cost: float = 100.0
    ) -> "GroupAffinity":
        """Group tiles by their owner in an earlier run; unclaimed tiles form one group."""
        return cls(assignment.owners.copy(), same_cost, other_cost)

    def cost(self, tile: int, neighbor: int) -> float:
        if self.labels[tile] == self.labels[neighbor]:
            return self.same_cost
        return self.other_cost


@dataclass
class _OwnerState:
    formula: Expression
    expansionism: float
    capacity: CapacityLimit
    claimed: int = 0
    exhausted: bool = False


class ExpansionEngine:
    """Runs frontier expansions over one tile graph and attribute layer."""

    def __init__(
        self,
        graph: TileGraph,
        attributes: AttributeLayer,
        context: Optional[ScoringContext] = None,
    ):
        """
        Initialize the engine.

        Args:
            graph: Tile graph to spread over
            attributes: Attribute layer bound to the graph
            context: Scoring context, derived from the attributes if omitted
        """
        attributes.check_graph(graph)
        self.graph = graph
        self.attributes = attributes
        self.context = context or ScoringContext.from_layer(attributes)

    def _barrier_mask(self, traverse_water: bool, barriers: Optional[np.ndarray]) -> np.ndarray:
        if barriers is not None:
            mask = np.asarray(barriers, dtype=bool)
            if mask.shape != (self.graph.n_tiles,):
                raise ConfigurationError(
                    f"barrier mask needs {self.graph.n_tiles} values", mask.shape
                )
            return mask
        if traverse_water:
            return np.zeros(self.graph.n_tiles, dtype=bool)
        return self.attributes.is_water.astype(bool)

    def _step_cost(
        self,
        formula: Expression,
        tile: int,
        cache: Dict[int, Optional[float]],
        stats: ExpansionStats,
    ) -> Optional[float]:
        """Cost of entering a tile, or None when the tile is impassable."""
        if tile in cache:
            return cache[tile]
        try:
            value = evaluate(formula, self.attributes.tile(tile), self.context)
        except EvaluationError as e:
            stats.unevaluable += 1
            logger.debug("Tile cost unevaluable, treating as impassable", tile=tile, error=str(e))
            value = None
        cache[tile] = value
        return value

    def expand(
        self,
        seeds: Iterable[Union[Seed, Sequence]],
        cost_formula: FormulaSource,
        capacity: Optional[CapacityLimit] = None,
        owner_formulas: Optional[Mapping[int, FormulaSource]] = None,
        traverse_water: bool = False,
        barriers: Optional[np.ndarray] = None,
        max_cost: Optional[float] = None,
        affinity: Optional[GroupAffinity] = None,
    ) -> OwnershipAssignment:
        """
        Grow every seed's territory until no frontier record remains.

        Args:
            seeds: Ordered seeds; earlier seeds win equal-cost races
            cost_formula: Formula giving the cost of entering a tile
            capacity: Default capacity for owners whose seed sets none
            owner_formulas: Per-owner formulas replacing cost_formula
            traverse_water: Let frontiers cross water tiles
            barriers: Explicit impassable-tile mask, overrides the water rule
            max_cost: Accumulated cost above which nothing is claimed
            affinity: Extra cost for steps that stay in or leave a tile group

        Returns:
            OwnershipAssignment with run statistics attached
        """
        formula = parse_formula(cost_formula)
        formulas = {owner: parse_formula(f) for owner, f in (owner_formulas or {}).items()}
        for run_formula in (formula, *formulas.values()):
            self.context.check_parameters(run_formula)
        default_capacity = capacity or CapacityLimit()
        barrier = self._barrier_mask(traverse_water, barriers)
        if affinity is not None and np.shape(affinity.labels) != (self.graph.n_tiles,):
            raise ConfigurationError(
                f"affinity labels need {self.graph.n_tiles} values", np.shape(affinity.labels)
            )

        n_tiles = self.graph.n_tiles
        assignment = OwnershipAssignment.empty(n_tiles)
        stats = assignment.stats
        owners: Dict[int, _OwnerState] = {}
        caches: Dict[int, Dict[int, Optional[float]]] = {}

        # (cost, sequence, tile, owner, parent)
        heap: List[Tuple[float, int, int, int, int]] = []
        sequence = itertools.count()

        for raw_seed in seeds:
            seed = Seed.coerce(raw_seed)
            if seed.tile >= n_tiles:
                raise ConfigurationError(f"seed tile is outside the graph of {n_tiles} tiles", seed.tile)
            if barrier[seed.tile]:
                stats.skipped_seeds += 1
                logger.warning("Seed on impassable tile skipped", tile=seed.tile, owner=seed.owner)
                continue
            if seed.owner not in owners:
                owners[seed.owner] = _OwnerState(
                    formula=formulas.get(seed.owner, formula),
                    expansionism=seed.expansionism,
                    capacity=seed.capacity or default_capacity,
                )
            heapq.heappush(heap, (seed.initial_cost, next(sequence), seed.tile, seed.owner, NO_PARENT))
            stats.pushed += 1

        logger.info(
            "Starting expansion",
            owners=len(owners),
            seeds=stats.pushed,
            traverse_water=traverse_water,
            max_cost=max_cost,
        )

        neighbors_of = self.graph.neighbors_of
        while heap:
            cost, _, tile, owner, parent = heapq.heappop(heap)
            stats.popped += 1

            state = owners[owner]
            if assignment.owners[tile] != NO_OWNER or state.exhausted:
                stats.discarded += 1
                continue
            if state.capacity.max_cost is not None and cost > state.capacity.max_cost:
                stats.discarded += 1
                continue

            assignment.claim(tile, owner, cost, parent)
            stats.claimed += 1
            state.claimed += 1
            if state.capacity.max_tiles is not None and state.claimed >= state.capacity.max_tiles:
                state.exhausted = True
                logger.debug("Owner capacity exhausted", owner=owner, tiles=state.claimed)
                continue

            cache = caches.setdefault(id(state.formula), {})
            for neighbor in neighbors_of(tile):
                if assignment.owners[neighbor] != NO_OWNER or barrier[neighbor]:
                    continue
                step = self._step_cost(state.formula, neighbor, cache, stats)
                if step is None:
                    continue
                if affinity is not None:
                    step += affinity.cost(tile, neighbor)
                total = cost + max(0.0, step) / state.expansionism
                if max_cost is not None and total > max_cost:
                    continue
                if state.capacity.max_cost is not None and total > state.capacity.max_cost:
                    continue
                heapq.heappush(heap, (total, next(sequence), neighbor, owner, tile))
                stats.pushed += 1

        logger.info(
            "Expansion complete",
            claimed=stats.claimed,
            discarded=stats.discarded,
            unevaluable=stats.unevaluable,
        )
        return assignment


def expand(
    graph: TileGraph,
    attributes: AttributeLayer,
    seeds: Iterable[Union[Seed, Sequence]],
    cost_formula: FormulaSource,
    context: Optional[ScoringContext] = None,
    **options,
) -> OwnershipAssignment:
    """Convenience wrapper running one expansion with a fresh engine."""
    return ExpansionEngine(graph, attributes, context).expand(seeds, cost_formula, **options)
