"""
Formula loading.

Cost formulas come from configuration in one of two shapes:

* functional text, e.g. ``ratio(by_habitability, by_temperature_difference(goal=12))``
* nested data as found in JSON files, e.g.
  ``{"ratio": ["by_habitability", {"by_temperature_difference": {"goal": 12}}]}``

Both are reduced to the same call form and then bound against the
signature of each primitive or combinator. Any problem is reported as a
ConfigurationError before a single tile is evaluated.
"""

import json
import re
from typing import Any, Dict, List, NamedTuple, Tuple, Union

import numpy as np

from .attributes import resolve_biome
from .errors import ConfigurationError
from .scoring import (
    COMBINATORS,
    DEFAULT_FEE,
    PRIMITIVES,
    Add,
    Biomes,
    Constant,
    Elevation,
    Expression,
    Habitability,
    Multiply,
    Negate,
    NormalizedHabitability,
    Pow,
    Ratio,
    SeaCoast,
    ShoreDistance,
    TemperatureDifference,
)

FormulaSource = Union[Expression, str, dict, list, int, float]

# parameter names in positional order; REQUIRED marks parameters without default
REQUIRED = object()
SIGNATURES: Dict[str, Tuple[Tuple[str, Any], ...]] = {
    "by_habitability": (),
    "by_shore_distance": (),
    "by_elevation": (),
    "by_normalized_habitability": (),
    "by_temperature_difference": (("goal", REQUIRED),),
    "by_biome": (("biomes", REQUIRED), ("fee", DEFAULT_FEE)),
    "by_sea_coast": (("fee", DEFAULT_FEE),),
    "constant": (("value", REQUIRED),),
    "negate": (("operand", REQUIRED),),
    "pow": (("operand", REQUIRED), ("exponent", REQUIRED)),
}
VARIADIC = {"multiply": Multiply, "add": Add, "ratio": Ratio}

KNOWN_NAMES = set(PRIMITIVES) | set(COMBINATORS)


class Call(NamedTuple):
    """A formula name applied to positional and keyword arguments."""

    name: str
    args: List[Any]
    kwargs: Dict[str, Any]


# Text form


_TOKEN = re.compile(
    r"""\s*(?:
        (?P<number>[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?)
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<string>"[^"]*"|'[^']*')
      | (?P<punct>[(),=\[\]])
    )""",
    re.VERBOSE,
)


def tokenize(text: str) -> List[Tuple[str, str, int]]:
    """Split formula text into (kind, value, position) tokens."""
    tokens = []
    position = 0
    stripped_end = len(text.rstrip())
    while position < stripped_end:
        match = _TOKEN.match(text, position)
        if match is None or match.end() == position:
            raise ConfigurationError("unexpected character in formula", text[position:position + 20])
        kind = match.lastgroup
        tokens.append((kind, match.group(kind), match.start(kind)))
        position = match.end()
    return tokens


class _TextParser:
    """Recursive descent parser from formula text to call form."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def _fragment(self) -> str:
        if self.index < len(self.tokens):
            start = self.tokens[self.index][2]
            return self.text[start:start + 30]
        return self.text[-30:]

    def _peek(self, offset: int = 0):
        index = self.index + offset
        return self.tokens[index] if index < len(self.tokens) else (None, None, len(self.text))

    def _expect(self, value: str) -> None:
        kind, token, _ = self._peek()
        if token != value or kind != "punct":
            raise ConfigurationError(f"expected '{value}' in formula", self._fragment())
        self.index += 1

    def parse(self) -> Any:
        if not self.tokens:
            raise ConfigurationError("empty formula", self.text)
        value = self._value()
        if self.index != len(self.tokens):
            raise ConfigurationError("unexpected trailing text in formula", self._fragment())
        return value

    def _value(self) -> Any:
        kind, token, _ = self._peek()
        if kind == "number":
            self.index += 1
            return float(token)
        if kind == "string":
            self.index += 1
            return token[1:-1]
        if kind == "punct" and token == "[":
            return self._list()
        if kind == "name":
            self.index += 1
            if self._peek()[1] == "(":
                return self._call(token)
            if token in KNOWN_NAMES:
                return Call(token, [], {})
            # bare words are biome names or context parameter names
            return token
        raise ConfigurationError("expected a formula, number or list", self._fragment())

    def _list(self) -> List[Any]:
        self._expect("[")
        items = []
        if self._peek()[1] == "]":
            self.index += 1
            return items
        while True:
            items.append(self._value())
            kind, token, _ = self._peek()
            if token == ",":
                self.index += 1
            elif token == "]":
                self.index += 1
                return items
            else:
                raise ConfigurationError("expected ',' or ']' in list", self._fragment())

    def _call(self, name: str) -> Call:
        self._expect("(")
        args: List[Any] = []
        kwargs: Dict[str, Any] = {}
        if self._peek()[1] == ")":
            self.index += 1
            return Call(name, args, kwargs)
        while True:
            kind, token, _ = self._peek()
            if kind == "name" and self._peek(1)[1] == "=":
                self.index += 2
                if token in kwargs:
                    raise ConfigurationError(f"parameter '{token}' given twice", f"{name}(...)")
                kwargs[token] = self._value()
            else:
                if kwargs:
                    raise ConfigurationError(
                        "positional argument after keyword argument", self._fragment()
                    )
                args.append(self._value())
            kind, token, _ = self._peek()
            if token == ",":
                self.index += 1
            elif token == ")":
                self.index += 1
                return Call(name, args, kwargs)
            else:
                raise ConfigurationError("expected ',' or ')' in formula", self._fragment())


# Data form


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def _to_call(source: Any) -> Union[Call, float]:
    """Reduce a data-form formula (or a parsed text value) to call form."""
    if isinstance(source, Call):
        return source
    if _is_number(source):
        return float(source)
    if isinstance(source, str):
        if source in KNOWN_NAMES:
            return Call(source, [], {})
        raise ConfigurationError("unknown formula name", source)
    if isinstance(source, dict):
        if len(source) != 1:
            raise ConfigurationError("a formula object must have exactly one name", source)
        (name, value), = source.items()
        if not isinstance(name, str) or name not in KNOWN_NAMES:
            raise ConfigurationError("unknown formula name", name)
        if isinstance(value, dict):
            return Call(name, [], dict(value))
        if isinstance(value, (list, tuple)):
            return Call(name, list(value), {})
        return Call(name, [value], {})
    raise ConfigurationError("cannot read formula", source)


def _describe(call: Call) -> str:
    parts = [repr(a) for a in call.args] + [f"{k}={v!r}" for k, v in call.kwargs.items()]
    return f"{call.name}({', '.join(parts)})"


def _bind(call: Call) -> Dict[str, Any]:
    """Match arguments to a fixed signature."""
    signature = SIGNATURES[call.name]
    if len(call.args) > len(signature):
        raise ConfigurationError(
            f"'{call.name}' takes at most {len(signature)} argument(s), got {len(call.args)}",
            _describe(call),
        )
    names = [param for param, _ in signature]
    bound = dict(zip(names, call.args))
    for key, value in call.kwargs.items():
        if key not in names:
            raise ConfigurationError(f"'{call.name}' has no parameter '{key}'", _describe(call))
        if key in bound:
            raise ConfigurationError(f"parameter '{key}' given twice", _describe(call))
        bound[key] = value
    for param, default in signature:
        if param not in bound:
            if default is REQUIRED:
                raise ConfigurationError(
                    f"'{call.name}' is missing required parameter '{param}'", _describe(call)
                )
            bound[param] = default
    return bound


def _number(call: Call, param: str, value: Any) -> float:
    if not _is_number(value):
        raise ConfigurationError(f"'{param}' of '{call.name}' must be a number", _describe(call))
    return float(value)


def _biome_key(value: Any) -> Any:
    # numbers read from text arrive as floats
    if _is_number(value) and float(value).is_integer():
        return int(value)
    return value


def build_expression(source: Any) -> Expression:
    """Build an expression tree from call form or data form."""
    if isinstance(source, Expression):
        return source
    call = _to_call(source)
    if isinstance(call, float):
        return Constant(call)

    name = call.name
    if name not in KNOWN_NAMES:
        raise ConfigurationError("unknown formula name", name)
    if name in VARIADIC:
        if call.kwargs:
            raise ConfigurationError(f"'{name}' takes no named parameters", _describe(call))
        if len(call.args) < 2:
            raise ConfigurationError(
                f"'{name}' needs at least two operands, got {len(call.args)}", _describe(call)
            )
        return VARIADIC[name](tuple(build_expression(arg) for arg in call.args))

    bound = _bind(call)
    if name == "by_habitability":
        return Habitability()
    if name == "by_shore_distance":
        return ShoreDistance()
    if name == "by_elevation":
        return Elevation()
    if name == "by_normalized_habitability":
        return NormalizedHabitability()
    if name == "by_temperature_difference":
        goal = bound["goal"]
        if isinstance(goal, str):
            return TemperatureDifference(goal=goal)
        return TemperatureDifference(goal=_number(call, "goal", goal))
    if name == "by_biome":
        biomes = bound["biomes"]
        if not isinstance(biomes, (list, tuple, set, frozenset)):
            raise ConfigurationError("'biomes' of 'by_biome' must be a list", _describe(call))
        return Biomes(
            biomes=frozenset(resolve_biome(_biome_key(b)) for b in biomes),
            fee=_number(call, "fee", bound["fee"]),
        )
    if name == "by_sea_coast":
        return SeaCoast(fee=_number(call, "fee", bound["fee"]))
    if name == "constant":
        return Constant(_number(call, "value", bound["value"]))
    if name == "negate":
        return Negate(build_expression(bound["operand"]))
    if name == "pow":
        return Pow(build_expression(bound["operand"]), _number(call, "exponent", bound["exponent"]))

    raise ConfigurationError("unknown formula name", name)


def parse_formula(source: FormulaSource) -> Expression:
    """
    Load a cost formula from text, JSON text or nested data.

    Raises:
        ConfigurationError: unknown name, wrong arity, missing or unknown
            parameter, unknown biome, or malformed text
    """
    if isinstance(source, str):
        text = source.strip()
        if text[:1] in ("{", "[", '"'):
            try:
                source = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"invalid JSON formula ({e.msg})", text) from e
        else:
            source = _TextParser(text).parse()
    return build_expression(source)
