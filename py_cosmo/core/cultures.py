"""
Culture generation.

Cultures are drawn from a culture set, placed on populated tiles according
to each source's preference formula, typed by the geography around their
center, and then grown in a single expansion run where every culture
spreads with its own cost formula.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)

from ..config import get_settings
from ..utils.random import choose_biased_index, get_rng
from .attributes import AttributeLayer, BiomeType
from .errors import ConfigurationError, EvaluationError
from .expansion import CapacityLimit, ExpansionEngine, OwnershipAssignment, Seed
from .formula_parser import parse_formula
from .scoring import Expression, ScoringContext, evaluate, format_formula
from .tile_graph import TileGraph

logger = structlog.get_logger()

MAX_PLACEMENT_ATTEMPTS = 100
TILES_PER_CULTURE = 25
SELECTION_ATTEMPTS = 200

# Biomes where herding peoples settle, and where hunters do
NOMADIC_BIOMES = frozenset(
    {BiomeType.HOT_DESERT, BiomeType.DESERT, BiomeType.TEMPERATE_GRASSLAND}
)
HUNTING_BIOMES = frozenset(
    {
        BiomeType.SAVANNA,
        BiomeType.TEMPERATE_DECIDUOUS_FOREST,
        BiomeType.TEMPERATE_RAINFOREST,
        BiomeType.TAIGA,
        BiomeType.TUNDRA,
        BiomeType.WETLAND,
    }
)

DEFAULT_EXPANSION_FORMULA = "ratio(constant(30), add(by_normalized_habitability, constant(1)))"


class CultureType(str, Enum):
    GENERIC = "Generic"
    LAKE = "Lake"
    NAVAL = "Naval"
    RIVER = "River"
    NOMADIC = "Nomadic"
    HUNTING = "Hunting"
    HIGHLAND = "Highland"


# Base expansionism per culture type
TYPE_EXPANSIONISM = {
    CultureType.LAKE: 0.8,
    CultureType.NAVAL: 1.5,
    CultureType.NOMADIC: 1.5,
    CultureType.RIVER: 0.9,
    CultureType.HUNTING: 0.7,
    CultureType.HIGHLAND: 1.2,
    CultureType.GENERIC: 1.0,
}


def to_roman(number: int) -> str:
    """Roman numeral for 1..3999, plain digits otherwise."""
    if not 0 < number < 4000:
        return str(number)
    numerals = [
        (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"),
        (100, "C"), (90, "XC"), (50, "L"), (40, "XL"),
        (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
    ]
    result = []
    for value, numeral in numerals:
        count, number = divmod(number, value)
        result.append(numeral * count)
    return "".join(result)


class CultureSource(BaseModel):
    """One entry of a culture set."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(description="Culture name")
    namer: str = Field(description="Name generator used for the culture's places")
    probability: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Chance of being selected when drawn"
    )
    preferences: Expression = Field(
        description="Formula scoring tiles as a cultural center, higher is better"
    )
    expansion: Optional[Expression] = Field(
        default=None, description="Spreading cost formula, the run default if not set"
    )

    @field_validator("preferences", "expansion", mode="before")
    @classmethod
    def load_formula(cls, value: Any) -> Any:
        if value is None or isinstance(value, Expression):
            return value
        return parse_formula(value)

    @field_serializer("preferences", "expansion")
    def dump_formula(self, value: Optional[Expression]) -> Optional[str]:
        return None if value is None else format_formula(value)


_SOURCES = TypeAdapter(List[CultureSource])


class CultureSet:
    """
    Ordered collection of culture sources.

    Names may repeat: a repeated entry weights that culture's chance of
    appearing and lets variants coexist.
    """

    def __init__(self, sources: Optional[List[CultureSource]] = None):
        self.sources: List[CultureSource] = list(sources or [])

    @classmethod
    def from_data(cls, data: Any) -> "CultureSet":
        culture_set = cls()
        culture_set.extend_from_data(data)
        return culture_set

    @classmethod
    def from_json(cls, text: str) -> "CultureSet":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid culture set JSON ({e.msg})", text[:80]) from e
        return cls.from_data(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CultureSet":
        path = Path(path)
        logger.info("Loading culture set", path=str(path))
        return cls.from_json(path.read_text(encoding="utf-8"))

    @classmethod
    def default(cls) -> "CultureSet":
        """The culture set shipped with the package."""
        return cls.from_file(Path(__file__).resolve().parent.parent / "data" / "culture_set.json")

    def extend_from_data(self, data: Any) -> None:
        try:
            self.sources.extend(_SOURCES.validate_python(data))
        except ValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise ConfigurationError(
                f"invalid culture set at {location}: {error['msg']}", error.get("input")
            ) from e

    def to_data(self) -> List[Dict[str, Any]]:
        return _SOURCES.dump_python(self.sources, exclude_none=True)

    def to_json(self, indent: int = 4) -> str:
        return json.dumps(self.to_data(), indent=indent)

    def __len__(self) -> int:
        return len(self.sources)

    def __iter__(self) -> Iterator[CultureSource]:
        return iter(self.sources)

    def __getitem__(self, index: int) -> CultureSource:
        return self.sources[index]

    def select(self, rng: np.random.Generator, count: int) -> List[CultureSource]:
        """
        Draw up to `count` distinct entries.

        Each draw picks an entry uniformly and keeps it with its own
        probability; after enough rejections the next pick is kept
        regardless.
        """
        available = list(self.sources)
        result = []
        attempts = 0
        while len(result) < count and available:
            while True:
                attempts += 1
                choice = int(rng.integers(len(available)))
                if attempts >= SELECTION_ATTEMPTS or rng.random() < available[choice].probability:
                    break
            result.append(available.pop(choice))
        return result


class CultureOptions(BaseModel):
    """Culture generation options."""

    culture_count: int = Field(default=12, ge=0, description="Target number of cultures")
    expansion_formula: str = Field(
        default=DEFAULT_EXPANSION_FORMULA,
        description="Spreading cost formula for sources without their own",
    )
    expansion_factor: float = Field(
        default_factory=lambda: get_settings().expansion_factor,
        gt=0,
        description="Multiplier on the spreading cost ceiling",
    )
    size_variance: float = Field(
        default_factory=lambda: get_settings().size_variance,
        ge=0,
        description="How much expansionism varies between cultures",
    )
    river_threshold: float = Field(
        default_factory=lambda: get_settings().river_threshold,
        ge=0,
        description="Water flow above which a center is on a river",
    )
    max_population: Optional[float] = Field(
        default=None, gt=0, description="Population a single culture may absorb"
    )
    parameters: Dict[str, float] = Field(
        default_factory=dict, description="Named values formulas may use as temperature goals"
    )

    # Elevation thresholds, on the 0-100 height scale
    highland_elevation: float = Field(default=50.0, description="Centers above are highland")
    nomadic_max_elevation: float = Field(
        default=70.0, description="Centers below may be nomadic"
    )


class Culture(BaseModel):
    """A placed culture."""

    id: int = Field(description="Owner id used in the expansion")
    name: str = Field(description="Culture name, made unique")
    namer: str = Field(description="Name generator")
    type: CultureType = Field(default=CultureType.GENERIC, description="Culture type")
    expansionism: float = Field(default=1.0, description="Expansion tendency")
    center: int = Field(description="Tile id of the cultural center")
    expansion: str = Field(description="Spreading cost formula")
    tile_count: int = Field(default=0, description="Tiles claimed by the culture")


class CultureGenerator:
    """Places cultures from a culture set and spreads them over the map."""

    def __init__(
        self,
        graph: TileGraph,
        attributes: AttributeLayer,
        culture_set: CultureSet,
        options: Optional[CultureOptions] = None,
        water_flow: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize culture generator.

        Args:
            graph: Tile graph
            attributes: Attribute layer with shore distance and coast marked
            culture_set: Culture sources to draw from
            options: Culture generation options
            water_flow: Accumulated flow per tile, enables river cultures
            rng: Random generator, the shared one if omitted
        """
        attributes.check_graph(graph)
        self.graph = graph
        self.attributes = attributes
        self.culture_set = culture_set
        self.options = options or CultureOptions()
        self.water_flow = water_flow if water_flow is not None else np.zeros(graph.n_tiles)
        self.rng = rng if rng is not None else get_rng()
        self.context = ScoringContext.from_layer(attributes, **self.options.parameters)

        self.cultures: List[Culture] = []

    def generate(self) -> Tuple[List[Culture], OwnershipAssignment]:
        """
        Place and expand cultures.

        Returns:
            Tuple of (cultures, ownership assignment)
        """
        logger.info("Starting culture generation", requested=self.options.culture_count)
        sources = self._select_sources()
        self._place_cultures(sources)
        self._deduplicate_names()
        assignment = self._expand_cultures()
        logger.info("Generated cultures", count=len(self.cultures))
        return self.cultures, assignment

    def _select_sources(self) -> List[CultureSource]:
        count = self.options.culture_count
        if count > len(self.culture_set):
            logger.warning(
                "Culture set too small for requested count",
                requested=count,
                available=len(self.culture_set),
            )
            count = len(self.culture_set)

        populated = len(self.attributes.populated_tiles())
        if populated < count * TILES_PER_CULTURE:
            count = populated // TILES_PER_CULTURE
            logger.warning(
                "Not enough habitable tiles for requested cultures",
                populated_tiles=populated,
                count=count,
            )
        return self.culture_set.select(self.rng, count)

    def _preference_scores(self, formula: Expression, tiles: List[int]) -> np.ndarray:
        scores = np.empty(len(tiles))
        for i, tile in enumerate(tiles):
            try:
                scores[i] = evaluate(formula, self.attributes.tile(tile), self.context)
            except EvaluationError as e:
                logger.debug("Preference unevaluable", tile=tile, error=str(e))
                scores[i] = -np.inf
        return scores

    def _too_close(self, centers: List[int], tile: int, spacing: float) -> bool:
        return any(self.graph.distance(center, tile) < spacing for center in centers)

    def _place_cultures(self, sources: List[CultureSource]) -> None:
        if not sources:
            return
        for source in sources:
            self.context.check_parameters(source.preferences)
        populated = [int(t) for t in self.attributes.populated_tiles()]
        extent = self.graph.extent
        base_spacing = (extent.width + extent.height) / 2 / len(sources)
        max_choice = len(populated) // 2
        centers: List[int] = []

        for source in sources:
            # most preferred first; the sort is stable so ties keep tile order
            scores = self._preference_scores(source.preferences, populated)
            populated = [populated[i] for i in np.argsort(-scores, kind="stable")]

            spacing = base_spacing
            attempts = 0
            while True:
                index = choose_biased_index(self.rng, 0, max_choice, 5)
                if attempts > MAX_PLACEMENT_ATTEMPTS or not self._too_close(
                    centers, populated[index], spacing
                ):
                    break
                spacing *= 0.9
                attempts += 1
            center = populated.pop(index)
            centers.append(center)

            culture_type = self._culture_type(center)
            expansion = source.expansion or parse_formula(self.options.expansion_formula)
            culture = Culture(
                id=len(self.cultures),
                name=source.name,
                namer=source.namer,
                type=culture_type,
                expansionism=self._expansionism(culture_type),
                center=center,
                expansion=format_formula(expansion),
            )
            self.cultures.append(culture)
            logger.debug(
                "Culture placed",
                name=culture.name,
                center=center,
                type=culture_type.value,
                attempts=attempts,
            )

    def _culture_type(self, center: int) -> CultureType:
        a = self.attributes
        elevation = float(a.elevation[center])
        biome = int(a.biome[center])
        if elevation < self.options.nomadic_max_elevation and biome in NOMADIC_BIOMES:
            return CultureType.NOMADIC
        if elevation > self.options.highland_elevation:
            return CultureType.HIGHLAND

        harbor = int(a.harbor[center])
        if harbor >= 0:
            if a.is_lake[harbor]:
                return CultureType.LAKE
            if self.rng.random() < 0.1 or (a.water_count[center] == 1 and self.rng.random() < 0.6):
                return CultureType.NAVAL

        if self.water_flow[center] > self.options.river_threshold:
            return CultureType.RIVER
        if a.shore_distance[center] > 2 and biome in HUNTING_BIOMES:
            return CultureType.HUNTING
        return CultureType.GENERIC

    def _expansionism(self, culture_type: CultureType) -> float:
        variance = self.rng.random() * self.options.size_variance / 2
        return (variance + 1.0) * TYPE_EXPANSIONISM[culture_type]

    def _deduplicate_names(self) -> None:
        by_name: Dict[str, List[Culture]] = {}
        for culture in self.cultures:
            by_name.setdefault(culture.name, []).append(culture)
        for name, cultures in by_name.items():
            if len(cultures) > 1:
                for suffix, culture in enumerate(cultures, start=1):
                    culture.name = f"{name} {to_roman(suffix)}"

    def _expand_cultures(self) -> OwnershipAssignment:
        capacity = CapacityLimit.from_population(
            self.options.max_population, self.attributes.mean_population()
        )
        max_cost = self.graph.n_tiles / 2 * self.options.expansion_factor
        seeds = [
            Seed(tile=c.center, owner=c.id, expansionism=c.expansionism, capacity=capacity)
            for c in self.cultures
        ]
        engine = ExpansionEngine(self.graph, self.attributes, self.context)
        assignment = engine.expand(
            seeds,
            self.options.expansion_formula,
            owner_formulas={c.id: c.expansion for c in self.cultures},
            max_cost=max_cost,
        )
        counts = assignment.owner_counts()
        for culture in self.cultures:
            culture.tile_count = counts.get(culture.id, 0)
        return assignment


def generate_cultures(
    graph: TileGraph,
    attributes: AttributeLayer,
    culture_set: Optional[CultureSet] = None,
    options: Optional[CultureOptions] = None,
    water_flow: Optional[np.ndarray] = None,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[List[Culture], OwnershipAssignment]:
    """Generate cultures with the default culture set unless one is given."""
    generator = CultureGenerator(
        graph,
        attributes,
        culture_set if culture_set is not None else CultureSet.default(),
        options,
        water_flow,
        rng,
    )
    return generator.generate()
