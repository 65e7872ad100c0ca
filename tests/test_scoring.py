"""Tests for the scoring expression engine."""

import pytest

from py_cosmo.core.attributes import BiomeType, TileRecord
from py_cosmo.core.errors import ConfigurationError, EvaluationError
from py_cosmo.core.scoring import (
    Add,
    Biomes,
    Constant,
    Elevation,
    Habitability,
    Multiply,
    Negate,
    NormalizedHabitability,
    Pow,
    Ratio,
    ScoringContext,
    SeaCoast,
    ShoreDistance,
    TemperatureDifference,
    evaluate,
    format_formula,
)


def make_tile(**overrides):
    values = dict(
        id=0,
        elevation=30.0,
        habitability=50.0,
        biome=int(BiomeType.TAIGA),
        temperature=10.0,
        shore_distance=3.0,
        is_water=False,
        is_lake=False,
        sea_coast=False,
    )
    values.update(overrides)
    return TileRecord(**values)


CONTEXT = ScoringContext(max_habitability=100.0)


class TestPrimitives:
    """Test primitive formulas."""

    def test_attribute_reads(self):
        """Test the attribute primitives return the raw attributes."""
        tile = make_tile()
        assert evaluate(Habitability(), tile, CONTEXT) == 50.0
        assert evaluate(ShoreDistance(), tile, CONTEXT) == 3.0
        assert evaluate(Elevation(), tile, CONTEXT) == 30.0

    @pytest.mark.parametrize(
        "habitability,expected",
        [(0.0, 0.0), (10.0, 1.0), (34.0, 2.0), (100.0, 3.0), (150.0, 5.0)],
    )
    def test_normalized_habitability(self, habitability, expected):
        """Test habitability is bucketed into thirds of the maximum."""
        tile = make_tile(habitability=habitability)
        assert evaluate(NormalizedHabitability(), tile, CONTEXT) == expected

    def test_normalized_habitability_zero_maximum(self):
        """Test a zero maximum habitability cannot be normalized."""
        with pytest.raises(EvaluationError):
            evaluate(NormalizedHabitability(), make_tile(), ScoringContext(max_habitability=0.0))

    def test_temperature_difference_offset(self):
        """Test the temperature difference never reaches zero."""
        assert evaluate(TemperatureDifference(goal=10.0), make_tile(), CONTEXT) == 1.0
        assert evaluate(TemperatureDifference(goal=15.0), make_tile(), CONTEXT) == 6.0
        assert evaluate(TemperatureDifference(goal=5.0), make_tile(), CONTEXT) == 6.0

    def test_temperature_goal_from_context(self):
        """Test a goal can name a context parameter."""
        context = ScoringContext(max_habitability=100.0, parameters={"preferred": 12.0})
        assert evaluate(TemperatureDifference(goal="preferred"), make_tile(), context) == 3.0
        with pytest.raises(EvaluationError):
            evaluate(TemperatureDifference(goal="missing"), make_tile(), context)

    def test_check_parameters(self):
        """Test formulas naming unset parameters are caught before evaluation."""
        context = ScoringContext(max_habitability=100.0, parameters={"preferred": 12.0})
        nested = Ratio((Habitability(), Pow(TemperatureDifference(goal="missing"), 2.0)))
        with pytest.raises(ConfigurationError, match="missing"):
            context.check_parameters(nested)
        context.check_parameters(Ratio((Habitability(), TemperatureDifference(goal="preferred"))))
        context.check_parameters(TemperatureDifference(goal=4.0))

    def test_biomes_default_fee(self):
        """Test the fee for a non-matching biome defaults to 4."""
        formula = Biomes(biomes=frozenset({int(BiomeType.DESERT)}))
        assert evaluate(formula, make_tile(), CONTEXT) == 4.0
        assert evaluate(formula, make_tile(biome=int(BiomeType.DESERT)), CONTEXT) == 1.0

    def test_sea_coast(self):
        """Test the sea coast fee."""
        assert evaluate(SeaCoast(), make_tile(sea_coast=True), CONTEXT) == 1.0
        assert evaluate(SeaCoast(fee=7.0), make_tile(), CONTEXT) == 7.0


class TestCombinators:
    """Test combinator formulas."""

    def test_arithmetic(self):
        """Test negate, multiply, ratio and add."""
        tile = make_tile()
        assert evaluate(Negate(Habitability()), tile, CONTEXT) == -50.0
        assert evaluate(Multiply((Habitability(), Constant(2.0))), tile, CONTEXT) == 100.0
        assert evaluate(Ratio((Habitability(), Constant(4.0))), tile, CONTEXT) == 12.5
        assert evaluate(Add((Habitability(), Elevation())), tile, CONTEXT) == 80.0

    def test_variadic_folds_left(self):
        """Test more than two operands fold left to right."""
        formula = Ratio((Constant(100.0), Constant(5.0), Constant(2.0)))
        assert evaluate(formula, make_tile(), CONTEXT) == 10.0

    def test_ratio_by_zero(self):
        """Test division by zero is an evaluation error."""
        with pytest.raises(EvaluationError):
            evaluate(Ratio((Habitability(), Constant(0.0))), make_tile(), CONTEXT)

    def test_pow(self):
        """Test powers, including an integral power of a negative base."""
        assert evaluate(Pow(Constant(4.0), 0.5), make_tile(), CONTEXT) == 2.0
        assert evaluate(Pow(Constant(-2.0), 3.0), make_tile(), CONTEXT) == -8.0

    def test_pow_negative_base_fractional_exponent(self):
        """Test a fractional power of a negative base is an evaluation error."""
        with pytest.raises(EvaluationError):
            evaluate(Pow(Negate(Habitability()), 0.5), make_tile(), CONTEXT)

    def test_pow_zero_negative_exponent(self):
        """Test zero to a negative power is an evaluation error."""
        with pytest.raises(EvaluationError):
            evaluate(Pow(Constant(0.0), -1.0), make_tile(), CONTEXT)

    def test_overflow_is_not_finite(self):
        """Test results that overflow are evaluation errors."""
        with pytest.raises(EvaluationError):
            evaluate(Pow(Constant(1e200), 3.0), make_tile(), CONTEXT)
        with pytest.raises(EvaluationError):
            evaluate(Multiply((Constant(1e200), Constant(1e200))), make_tile(), CONTEXT)

    def test_pure(self):
        """Test evaluation does not depend on earlier evaluations."""
        formula = Ratio((NormalizedHabitability(), TemperatureDifference(goal=12.0)))
        tile = make_tile()
        first = evaluate(formula, tile, CONTEXT)
        evaluate(formula, make_tile(habitability=1.0), CONTEXT)
        assert evaluate(formula, tile, CONTEXT) == first == 2.0 / 3.0


class TestFormat:
    """Test canonical formula text."""

    def test_format(self):
        """Test nodes render as functional text."""
        formula = Ratio(
            (
                NormalizedHabitability(),
                Multiply((TemperatureDifference(goal=12.0), Biomes(frozenset({7, 6}), 2.5))),
            )
        )
        assert format_formula(formula) == (
            "ratio(by_normalized_habitability, multiply(by_temperature_difference(goal=12), "
            "by_biome(biomes=[6, 7], fee=2.5)))"
        )

    def test_depth(self):
        """Test tree depth counts nested nodes."""
        assert Habitability().depth() == 1
        assert Negate(Pow(Habitability(), 2.0)).depth() == 3
        assert Ratio((Habitability(), Negate(Constant(1.0)))).depth() == 3

    def test_walk(self):
        """Test walking visits every node depth first."""
        formula = Add((Habitability(), Negate(Constant(2.0)), Elevation()))
        assert [node.name for node in formula.walk()] == [
            "add",
            "by_habitability",
            "negate",
            "constant",
            "by_elevation",
        ]
