"""
Error taxonomy for world generation.

Structural and configuration errors are fatal. Evaluation errors are raised
by the scoring engine and recovered locally by the expansion engine, which
treats the affected step as impassable.
"""


class CosmoError(Exception):
    """Base class for all py-cosmo errors."""


class StructuralError(CosmoError, ValueError):
    """The tile graph (or a layer bound to it) is malformed."""


class ConfigurationError(CosmoError, ValueError):
    """A formula, culture set or option value could not be loaded."""

    def __init__(self, message: str, fragment=None):
        self.fragment = fragment
        if fragment is not None:
            message = f"{message}: {fragment!r}"
        super().__init__(message)


class EvaluationError(CosmoError, ArithmeticError):
    """A cost formula produced no finite value for a tile."""


class OwnershipError(CosmoError, RuntimeError):
    """A tile that was already claimed was claimed again."""
