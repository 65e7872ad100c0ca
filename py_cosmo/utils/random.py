"""
Random number generation utilities.

All generation stages draw from numpy Generators created here so a single
seed string (or integer) reproduces a whole world. Python's `random`
module should not be used in py-cosmo code.
"""

import hashlib
from typing import Optional, Union

import numpy as np

Seed = Union[str, int]

# Global generator instance
_rng: Optional[np.random.Generator] = None


def seed_to_int(seed: Seed) -> int:
    """Turn a seed string into a stable 64-bit integer.

    Python's built-in `hash` is salted per process, so a digest is used
    instead.
    """
    if isinstance(seed, (int, np.integer)):
        return int(seed)
    digest = hashlib.sha256(str(seed).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "little")


def make_rng(seed: Optional[Seed] = None) -> np.random.Generator:
    """Create an independent generator for one stage."""
    return np.random.default_rng(seed_to_int(seed if seed is not None else "default"))


def set_random_seed(seed: Seed) -> None:
    """
    Set the seed of the shared generator.

    Args:
        seed: Seed string or integer to use
    """
    global _rng
    _rng = make_rng(seed)


def get_rng() -> np.random.Generator:
    """
    Get the shared generator, creating a default-seeded one if needed.

    Returns:
        numpy Generator instance
    """
    global _rng
    if _rng is None:
        _rng = make_rng("default")
    return _rng


def choose_biased_index(
    rng: np.random.Generator, low: int, high: int, power: float
) -> int:
    """Pick an index in [low, high) biased toward low.

    Raising a uniform sample to `power` pushes picks toward the start of
    the range, so a list sorted best-first yields mostly good picks.
    """
    if high <= low:
        return low
    return low + int((high - low) * rng.random() ** power)
