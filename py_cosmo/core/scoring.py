"""
Scoring expression engine.

A cost formula is an immutable tree of nodes, one class per primitive or
combinator. Trees are built once (see `formula_parser`) and evaluated by
recursive descent for every tile a spreading run touches. Nodes hold no
per-evaluation state, so one tree can be shared by any number of runs.

Evaluation either returns a finite float or raises `EvaluationError`.
"""

import math
from dataclasses import dataclass, field
from typing import ClassVar, FrozenSet, Iterator, Mapping, Tuple, Union

from .attributes import AttributeLayer, TileRecord
from .errors import ConfigurationError, EvaluationError

DEFAULT_FEE = 4.0


@dataclass(frozen=True)
class ScoringContext:
    """Run-scoped inputs that are not stored per tile."""

    max_habitability: float = 1.0
    parameters: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_layer(cls, layer: AttributeLayer, **parameters: float) -> "ScoringContext":
        """Context whose maximum habitability is observed across all tiles."""
        return cls(max_habitability=layer.max_habitability(), parameters=dict(parameters))

    def parameter(self, name: str) -> float:
        try:
            return float(self.parameters[name])
        except KeyError:
            raise EvaluationError(f"context parameter '{name}' is not set") from None

    def check_parameters(self, formula: "Expression") -> None:
        """Fail at load time when a formula names a parameter this context lacks."""
        for node in formula.walk():
            if isinstance(node, TemperatureDifference) and isinstance(node.goal, str):
                if node.goal not in self.parameters:
                    raise ConfigurationError("formula names an unset context parameter", node.goal)


def _number(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def _check_finite(value: float, node: "Expression") -> float:
    if isinstance(value, complex) or not math.isfinite(value):
        raise EvaluationError(f"{node} produced a non-finite value")
    return float(value)


class Expression:
    """Base class of all formula nodes."""

    name: ClassVar[str] = ""

    def evaluate(self, tile: TileRecord, context: ScoringContext) -> float:
        raise NotImplementedError

    def children(self) -> Tuple["Expression", ...]:
        return ()

    def walk(self) -> Iterator["Expression"]:
        """This node and all its descendants, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def depth(self) -> int:
        return 1 + max((child.depth() for child in self.children()), default=0)

    def __str__(self) -> str:
        return self.name


# Primitives


@dataclass(frozen=True)
class Habitability(Expression):
    name: ClassVar[str] = "by_habitability"

    def evaluate(self, tile, context):
        return tile.habitability


@dataclass(frozen=True)
class ShoreDistance(Expression):
    name: ClassVar[str] = "by_shore_distance"

    def evaluate(self, tile, context):
        return tile.shore_distance


@dataclass(frozen=True)
class Elevation(Expression):
    name: ClassVar[str] = "by_elevation"

    def evaluate(self, tile, context):
        return tile.elevation


@dataclass(frozen=True)
class NormalizedHabitability(Expression):
    """Habitability bucketed into thirds of the run's maximum."""

    name: ClassVar[str] = "by_normalized_habitability"

    def evaluate(self, tile, context):
        if context.max_habitability == 0:
            raise EvaluationError("maximum habitability is zero")
        return float(math.ceil((tile.habitability / context.max_habitability) * 3))


@dataclass(frozen=True)
class TemperatureDifference(Expression):
    """Distance from a goal temperature, offset by one so it never reaches zero."""

    name: ClassVar[str] = "by_temperature_difference"
    goal: Union[float, str] = 0.0

    def evaluate(self, tile, context):
        goal = context.parameter(self.goal) if isinstance(self.goal, str) else self.goal
        return abs(tile.temperature - goal) + 1

    def __str__(self):
        goal = self.goal if isinstance(self.goal, str) else _number(self.goal)
        return f"{self.name}(goal={goal})"


@dataclass(frozen=True)
class Biomes(Expression):
    name: ClassVar[str] = "by_biome"
    biomes: FrozenSet[int] = frozenset()
    fee: float = DEFAULT_FEE

    def evaluate(self, tile, context):
        return 1.0 if tile.biome in self.biomes else self.fee

    def __str__(self):
        biomes = ", ".join(str(b) for b in sorted(self.biomes))
        return f"{self.name}(biomes=[{biomes}], fee={_number(self.fee)})"


@dataclass(frozen=True)
class SeaCoast(Expression):
    name: ClassVar[str] = "by_sea_coast"
    fee: float = DEFAULT_FEE

    def evaluate(self, tile, context):
        return 1.0 if tile.sea_coast else self.fee

    def __str__(self):
        return f"{self.name}(fee={_number(self.fee)})"


@dataclass(frozen=True)
class Constant(Expression):
    name: ClassVar[str] = "constant"
    value: float = 0.0

    def evaluate(self, tile, context):
        return self.value

    def __str__(self):
        return f"{self.name}({_number(self.value)})"


# Combinators


@dataclass(frozen=True)
class Negate(Expression):
    name: ClassVar[str] = "negate"
    operand: Expression = field(default_factory=Constant)

    def evaluate(self, tile, context):
        return -self.operand.evaluate(tile, context)

    def children(self):
        return (self.operand,)

    def __str__(self):
        return f"{self.name}({self.operand})"


@dataclass(frozen=True)
class _Fold(Expression):
    """Left fold of a binary operator over two or more operands."""

    operands: Tuple[Expression, ...] = ()

    def apply(self, left: float, right: float) -> float:
        raise NotImplementedError

    def evaluate(self, tile, context):
        result = self.operands[0].evaluate(tile, context)
        for operand in self.operands[1:]:
            result = _check_finite(self.apply(result, operand.evaluate(tile, context)), self)
        return result

    def children(self):
        return self.operands

    def __str__(self):
        return f"{self.name}({', '.join(str(op) for op in self.operands)})"


@dataclass(frozen=True)
class Multiply(_Fold):
    name: ClassVar[str] = "multiply"

    def apply(self, left, right):
        return left * right


@dataclass(frozen=True)
class Add(_Fold):
    name: ClassVar[str] = "add"

    def apply(self, left, right):
        return left + right


@dataclass(frozen=True)
class Ratio(_Fold):
    name: ClassVar[str] = "ratio"

    def apply(self, left, right):
        if right == 0:
            raise EvaluationError(f"division by zero in {self}")
        return left / right


@dataclass(frozen=True)
class Pow(Expression):
    name: ClassVar[str] = "pow"
    operand: Expression = field(default_factory=Constant)
    exponent: float = 1.0

    def evaluate(self, tile, context):
        base = self.operand.evaluate(tile, context)
        # no sign convention is assumed for fractional powers of negatives
        if base < 0 and not float(self.exponent).is_integer():
            raise EvaluationError(f"negative base {base} in {self}")
        if base == 0 and self.exponent < 0:
            raise EvaluationError(f"zero raised to a negative power in {self}")
        return _check_finite(base ** self.exponent, self)

    def children(self):
        return (self.operand,)

    def __str__(self):
        return f"{self.name}({self.operand}, {_number(self.exponent)})"


PRIMITIVES = {
    cls.name: cls
    for cls in (
        Habitability,
        ShoreDistance,
        Elevation,
        NormalizedHabitability,
        TemperatureDifference,
        Biomes,
        SeaCoast,
        Constant,
    )
}

COMBINATORS = {cls.name: cls for cls in (Negate, Multiply, Add, Ratio, Pow)}


def evaluate(node: Expression, tile: TileRecord, context: ScoringContext) -> float:
    """
    Evaluate a formula for one tile.

    Raises:
        EvaluationError: division by zero or a non-finite result anywhere
            in the tree
    """
    try:
        value = node.evaluate(tile, context)
    except ZeroDivisionError as e:
        raise EvaluationError(f"division by zero in {node}") from e
    except OverflowError as e:
        raise EvaluationError(f"overflow in {node}") from e
    return _check_finite(value, node)


def format_formula(node: Expression) -> str:
    """Canonical text form of a formula, accepted back by `parse_formula`."""
    return str(node)
