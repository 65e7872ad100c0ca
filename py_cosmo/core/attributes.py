"""
Per-tile attribute storage.

The attribute layer is a passive keyed store over tile ids: upstream
terrain and climate stages write fields in bulk, scoring and expansion
read them. Every tile gets a default-initialized record as soon as the
layer is created, so no stage ever meets a tile without attributes.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, NamedTuple, Union

import numpy as np
import structlog

from .errors import ConfigurationError, StructuralError
from .tile_graph import TileGraph

logger = structlog.get_logger()


class BiomeType(IntEnum):
    """Biome identifiers."""

    OCEAN = 0
    LAKE = 1
    RIVER = 2
    WETLAND = 3
    GLACIER = 4
    TUNDRA = 5
    TAIGA = 6
    TEMPERATE_DECIDUOUS_FOREST = 7
    TEMPERATE_RAINFOREST = 8
    TEMPERATE_GRASSLAND = 9
    MEDITERRANEAN = 10
    DESERT = 11
    HOT_DESERT = 12
    SAVANNA = 13
    TROPICAL_SEASONAL_FOREST = 14
    TROPICAL_RAINFOREST = 15
    MANGROVE = 16
    ALPINE = 17


# Biome names for display and for formula configuration
BIOME_NAMES = {
    BiomeType.OCEAN: "Ocean",
    BiomeType.LAKE: "Lake",
    BiomeType.RIVER: "River",
    BiomeType.WETLAND: "Wetland",
    BiomeType.GLACIER: "Glacier",
    BiomeType.TUNDRA: "Tundra",
    BiomeType.TAIGA: "Taiga",
    BiomeType.TEMPERATE_DECIDUOUS_FOREST: "Temperate Deciduous Forest",
    BiomeType.TEMPERATE_RAINFOREST: "Temperate Rainforest",
    BiomeType.TEMPERATE_GRASSLAND: "Temperate Grassland",
    BiomeType.MEDITERRANEAN: "Mediterranean",
    BiomeType.DESERT: "Desert",
    BiomeType.HOT_DESERT: "Hot Desert",
    BiomeType.SAVANNA: "Savanna",
    BiomeType.TROPICAL_SEASONAL_FOREST: "Tropical Seasonal Forest",
    BiomeType.TROPICAL_RAINFOREST: "Tropical Rainforest",
    BiomeType.MANGROVE: "Mangrove",
    BiomeType.ALPINE: "Alpine",
}

_BIOME_LOOKUP = {
    name.lower().replace(" ", "_"): biome for biome, name in BIOME_NAMES.items()
}


def resolve_biome(value: Union[int, str]) -> int:
    """
    Resolve a biome id from an integer id or a biome name.

    Names are matched case-insensitively with spaces or underscores, so
    "Hot Desert", "hot_desert" and "HOT_DESERT" are all accepted.
    """
    if isinstance(value, bool):
        raise ConfigurationError("biome must be a name or an integer id", value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, str):
        key = value.strip().lower().replace(" ", "_")
        if key in _BIOME_LOOKUP:
            return int(_BIOME_LOOKUP[key])
        raise ConfigurationError("unknown biome", value)
    raise ConfigurationError("biome must be a name or an integer id", value)


class TileRecord(NamedTuple):
    """Read-only snapshot of one tile's attributes, as seen by scoring."""

    id: int
    elevation: float
    habitability: float
    biome: int
    temperature: float
    shore_distance: float
    is_water: bool
    is_lake: bool
    sea_coast: bool


# field name -> numpy dtype and default value
FIELDS: Dict[str, tuple] = {
    "elevation": (np.float64, 0.0),
    "habitability": (np.float64, 0.0),
    "biome": (np.int32, 0),
    "temperature": (np.float64, 0.0),
    "shore_distance": (np.float64, 0.0),
    "is_water": (np.bool_, False),
    "is_lake": (np.bool_, False),
    "harbor": (np.int64, -1),        # closest adjacent water tile, -1 if none
    "water_count": (np.int32, 0),    # number of adjacent water tiles
}


@dataclass
class AttributeLayer:
    """Typed per-tile fields stored as numpy arrays indexed by tile id."""

    n_tiles: int
    arrays: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        for name, (dtype, default) in FIELDS.items():
            if name not in self.arrays:
                self.arrays[name] = np.full(self.n_tiles, default, dtype=dtype)

    @classmethod
    def for_graph(cls, graph: TileGraph) -> "AttributeLayer":
        """Create a default-initialized record for every tile of a graph."""
        return cls(n_tiles=graph.n_tiles)

    def __len__(self) -> int:
        return self.n_tiles

    def __getattr__(self, name: str) -> np.ndarray:
        # only reached for names not found normally, i.e. field arrays
        arrays = self.__dict__.get("arrays")
        if arrays is not None and name in arrays:
            return arrays[name]
        raise AttributeError(name)

    def check_graph(self, graph: TileGraph) -> None:
        if graph.n_tiles != self.n_tiles:
            raise StructuralError(
                f"attribute layer holds {self.n_tiles} tiles but graph has {graph.n_tiles}"
            )

    def set_field(self, name: str, values: Union[Iterable, float, int, bool]) -> None:
        """Bulk-set a field from a sequence (one value per tile) or a scalar."""
        if name not in FIELDS:
            raise KeyError(f"unknown tile field '{name}'")
        dtype = FIELDS[name][0]
        array = np.asarray(values, dtype=dtype)
        if array.ndim == 0:
            self.arrays[name][:] = array
            return
        if array.shape != (self.n_tiles,):
            raise StructuralError(
                f"field '{name}' needs {self.n_tiles} values, got {array.shape[0] if array.ndim else 1}"
            )
        self.arrays[name] = array.copy()

    def get_field(self, name: str) -> np.ndarray:
        if name not in FIELDS:
            raise KeyError(f"unknown tile field '{name}'")
        return self.arrays[name]

    def update(self, **fields) -> "AttributeLayer":
        for name, values in fields.items():
            self.set_field(name, values)
        return self

    def is_sea(self, tile: int) -> bool:
        return bool(self.arrays["is_water"][tile] and not self.arrays["is_lake"][tile])

    def on_sea_coast(self, tile: int) -> bool:
        """True if the closest adjacent water of the tile is open sea."""
        harbor = int(self.arrays["harbor"][tile])
        return harbor >= 0 and self.is_sea(harbor)

    def max_habitability(self) -> float:
        if self.n_tiles == 0:
            return 0.0
        return float(np.max(self.arrays["habitability"]))

    def tile(self, tile: int) -> TileRecord:
        a = self.arrays
        return TileRecord(
            id=tile,
            elevation=float(a["elevation"][tile]),
            habitability=float(a["habitability"][tile]),
            biome=int(a["biome"][tile]),
            temperature=float(a["temperature"][tile]),
            shore_distance=float(a["shore_distance"][tile]),
            is_water=bool(a["is_water"][tile]),
            is_lake=bool(a["is_lake"][tile]),
            sea_coast=self.on_sea_coast(tile),
        )

    def land_tiles(self) -> np.ndarray:
        return np.nonzero(~self.arrays["is_water"])[0]

    def populated_tiles(self) -> np.ndarray:
        """Land tiles with positive habitability."""
        a = self.arrays
        return np.nonzero(~a["is_water"] & (a["habitability"] > 0))[0]

    def mean_population(self) -> float:
        """Average habitability of populated tiles, 0 if there are none."""
        populated = self.populated_tiles()
        if populated.size == 0:
            return 0.0
        return float(np.mean(self.arrays["habitability"][populated]))

    def mark_coast(self, graph: TileGraph) -> None:
        """
        Find each land tile's closest adjacent water tile and count its water
        neighbors. Water tiles keep harbor -1.
        """
        self.check_graph(graph)
        is_water = self.arrays["is_water"]
        harbor = np.full(self.n_tiles, -1, dtype=np.int64)
        water_count = np.zeros(self.n_tiles, dtype=np.int32)

        for tile in range(self.n_tiles):
            if is_water[tile]:
                continue
            closest = None
            for neighbor in graph.neighbors_of(tile):
                if not is_water[neighbor]:
                    continue
                water_count[tile] += 1
                d = graph.distance(tile, neighbor)
                if closest is None or d < closest[0]:
                    closest = (d, neighbor)
            if closest is not None:
                harbor[tile] = closest[1]

        self.arrays["harbor"] = harbor
        self.arrays["water_count"] = water_count
        logger.debug("Coast marked", coastal_tiles=int(np.count_nonzero(harbor >= 0)))
