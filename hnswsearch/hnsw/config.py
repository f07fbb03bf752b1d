"""
Construction parameters of an HNSW index.
"""

import logging
from dataclasses import dataclass

import numpy as np

from hnswsearch.errors import ConfigError
from hnswsearch.hnsw.base import Space

logger = logging.getLogger(__name__)

MAX_M = 10000


def _check_non_negative(name: str, value) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise ConfigError(f"`{name}` must be an integer, got {value!r}")
    value = int(value)
    if value < 0:
        raise ConfigError(f"`{name}` must be non-negative, got {value}")
    return value


@dataclass(frozen=True)
class IndexConfig:
    """
    Immutable construction parameters.

    Defaults: m=16, ef_construction=200, random_seed=100,
    allow_replace_deleted=False, ef=10. dim and max_elements may be zero,
    which yields a placeholder index that cannot hold any vector.
    """

    space: Space
    dim: int
    max_elements: int
    m: int = 16
    ef_construction: int = 200
    random_seed: int = 100
    allow_replace_deleted: bool = False
    ef: int = 10

    def __post_init__(self):
        try:
            space = Space(self.space)
        except ValueError:
            raise ConfigError(
                f"Unknown space {self.space!r}, expected one of "
                f"{[s.value for s in Space]}"
            ) from None
        object.__setattr__(self, "space", space)

        for name in ("dim", "max_elements", "m", "ef_construction", "random_seed", "ef"):
            object.__setattr__(self, name, _check_non_negative(name, getattr(self, name)))

        if not isinstance(self.allow_replace_deleted, bool):
            raise ConfigError(
                f"`allow_replace_deleted` must be a boolean, got {self.allow_replace_deleted!r}"
            )
        if self.m == 0:
            raise ConfigError("`m` must be at least 1")
        if self.ef == 0:
            raise ConfigError("`ef` must be at least 1")
        if self.m > MAX_M:
            logger.warning(f"m={self.m} is too large, capping it to {MAX_M}")
            object.__setattr__(self, "m", MAX_M)

    @property
    def effective_ef_construction(self) -> int:
        return max(self.ef_construction, self.m)
