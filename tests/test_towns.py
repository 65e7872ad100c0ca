"""Tests for town placement and catchments."""

import itertools

import numpy as np
import pytest

from py_cosmo.core.attributes import AttributeLayer, BiomeType
from py_cosmo.core.cultures import CultureOptions, generate_cultures
from py_cosmo.core.errors import ConfigurationError
from py_cosmo.core.hydrology import measure_shore_distance
from py_cosmo.core.tile_graph import build_grid_graph
from py_cosmo.core.towns import TownGenerator, TownOptions, capital_towns
from py_cosmo.utils.random import make_rng


@pytest.fixture
def world():
    """20x10 grid with a sea along its southern row."""
    graph = build_grid_graph(20, 10)
    layer = AttributeLayer.for_graph(graph)
    layer.update(
        is_water=graph.rows == 0,
        habitability=np.where(graph.rows == 0, 0.0, make_rng("hab").uniform(1.0, 10.0, graph.n_tiles)),
        elevation=np.where(graph.rows == 0, 0.0, 20.0),
        temperature=12.0,
        biome=int(BiomeType.TEMPERATE_DECIDUOUS_FOREST),
    )
    measure_shore_distance(graph, layer)
    return graph, layer


class TestTownPlacement:
    """Test capital and town placement."""

    def test_capitals_first(self, world):
        """Test capitals come before other towns and ids follow the order."""
        graph, layer = world
        options = TownOptions(capital_count=5, town_count=10)
        towns, _ = TownGenerator(graph, layer, options, rng=make_rng("order")).generate()
        assert [t.is_capital for t in towns] == [True] * 5 + [False] * 10
        assert [t.id for t in towns] == list(range(15))
        assert len(capital_towns(towns)) == 5

    def test_towns_on_distinct_populated_tiles(self, world):
        """Test towns stand on distinct populated land tiles."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=5, town_count=10), rng=make_rng("tiles")
        ).generate()
        tiles = [t.tile for t in towns]
        assert len(set(tiles)) == len(tiles)
        assert all(not layer.is_water[t] and layer.habitability[t] > 0 for t in tiles)

    def test_capitals_spaced(self, world):
        """Test capitals keep the initial spacing when the map has room."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=3, town_count=0), rng=make_rng("spacing")
        ).generate()
        spacing = (graph.extent.width + graph.extent.height) / 2 / 3
        for a, b in itertools.combinations(towns, 2):
            assert graph.distance(a.tile, b.tile) >= spacing

    def test_capitals_in_score_order(self, world):
        """Test capitals are taken best site first."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=4, town_count=0), rng=make_rng("scores")
        ).generate()
        scores = [t.score for t in towns]
        assert scores == sorted(scores)

    def test_capital_count_limited(self, world):
        """Test each capital needs enough populated tiles."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=30, town_count=0), rng=make_rng("limit")
        ).generate()
        # 180 populated tiles support 18 capitals
        assert len(towns) == 18

    def test_default_town_count(self, world):
        """Test the town count defaults to a fifth of the remaining sites."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=5), rng=make_rng("auto")
        ).generate()
        assert len(towns) - 5 == 175 // 5

    def test_population_and_ports(self, world):
        """Test population is positive and ports sit on the sea coast."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=5, town_count=20), rng=make_rng("ports")
        ).generate()
        for town in towns:
            assert town.population > 0
            assert town.population == round(town.population, 3)
            assert town.port == layer.on_sea_coast(town.tile)
            assert town.port == (graph.rows[town.tile] == 1)

    def test_culture_lookup(self, world):
        """Test towns take the culture owning their tile."""
        graph, layer = world
        _, cultures = generate_cultures(
            graph, layer, options=CultureOptions(culture_count=3), rng=make_rng("cultures")
        )
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=3, town_count=5),
            cultures=cultures, rng=make_rng("lookup"),
        ).generate()
        for town in towns:
            assert town.culture == cultures.owner_of(town.tile)

    def test_without_cultures(self, world):
        """Test towns have no culture when none were generated."""
        graph, layer = world
        towns, _ = TownGenerator(
            graph, layer, TownOptions(capital_count=2, town_count=2), rng=make_rng("none")
        ).generate()
        assert all(t.culture is None for t in towns)

    def test_empty_world(self):
        """Test a lifeless world has no towns."""
        graph = build_grid_graph(6, 4)
        towns, catchments = TownGenerator(
            graph, AttributeLayer.for_graph(graph), rng=make_rng("empty")
        ).generate()
        assert towns == []
        assert catchments.claimed_count() == 0


class TestCatchments:
    """Test town catchment areas."""

    def test_towns_hold_their_tiles(self, world):
        """Test each town's catchment starts at its own tile."""
        graph, layer = world
        towns, catchments = TownGenerator(
            graph, layer, TownOptions(capital_count=4, town_count=8), rng=make_rng("catch")
        ).generate()
        for town in towns:
            assert catchments.owner_of(town.tile) == town.id
            assert catchments.cost_of(town.tile) == 0.0
            assert town.tile_count == catchments.claimed_count(town.id)
        assert np.all(catchments.owners[graph.rows == 0] == -1)

    def test_catchment_scale_limits_size(self, world):
        """Test catchments hold roughly population times scale in habitability."""
        graph, layer = world
        options = TownOptions(capital_count=2, town_count=0, catchment_scale=1.0)
        towns, _ = TownGenerator(graph, layer, options, rng=make_rng("scale")).generate()
        mean = layer.mean_population()
        for town in towns:
            assert 1 <= town.tile_count <= max(1, int(np.ceil(town.population / mean)))

    def test_unset_score_parameter(self, world):
        """Test a site score naming an unset parameter fails before placement."""
        graph, layer = world
        formula = "by_temperature_difference(goal=ideal)"
        with pytest.raises(ConfigurationError, match="ideal"):
            TownGenerator(
                graph, layer, TownOptions(capital_count=2, score_formula=formula),
                rng=make_rng("param"),
            ).generate()

        options = TownOptions(
            capital_count=2, town_count=0, score_formula=formula, parameters={"ideal": 12.0}
        )
        towns, _ = TownGenerator(graph, layer, options, rng=make_rng("param")).generate()
        assert len(towns) == 2
