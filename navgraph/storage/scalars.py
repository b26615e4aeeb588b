"""
Scalar types vectors can be stored as.

Lower precision trades accuracy for memory: f16 halves the footprint
of f32. Distances are always computed in at least single precision.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple, Union

import numpy as np

from ..core.exceptions import InvalidConfigurationError


class ScalarKind(str, Enum):
    """Storage precision of vector components."""

    F64 = "f64"
    F32 = "f32"
    F16 = "f16"

    def __str__(self) -> str:
        return self.value

    @property
    def code(self) -> int:
        """Code persisted in index file headers."""
        return _SCALARS[self][0]

    @property
    def dtype(self) -> np.dtype:
        """Storage dtype."""
        return np.dtype(_SCALARS[self][1])

    @property
    def compute_dtype(self) -> np.dtype:
        """Dtype queries and distance computations run in."""
        return np.dtype(_SCALARS[self][2])

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize


# kind -> (file code, storage dtype, compute dtype)
_SCALARS: Dict[ScalarKind, Tuple[int, type, type]] = {
    ScalarKind.F32: (0, np.float32, np.float32),
    ScalarKind.F64: (1, np.float64, np.float64),
    ScalarKind.F16: (2, np.float16, np.float32),
}

_ALIASES = {
    "float64": ScalarKind.F64,
    "double": ScalarKind.F64,
    "float32": ScalarKind.F32,
    "single": ScalarKind.F32,
    "float16": ScalarKind.F16,
    "half": ScalarKind.F16,
}


def get_scalar(name: Union[str, ScalarKind, np.dtype, type]) -> ScalarKind:
    """
    Resolve a scalar kind from its name, an alias or a numpy dtype.

    Example:
        >>> get_scalar("half")
        <ScalarKind.F16: 'f16'>

    Raises:
        InvalidConfigurationError: If the name is unknown
    """
    if isinstance(name, ScalarKind):
        return name

    if isinstance(name, str):
        key = name.lower()
        if key in _ALIASES:
            return _ALIASES[key]
        try:
            return ScalarKind(key)
        except ValueError:
            pass
    elif name is not None:
        try:
            dtype = np.dtype(name)
        except TypeError:
            dtype = None
        for kind, (_, stored, _) in _SCALARS.items():
            if dtype == np.dtype(stored):
                return kind

    available = [k.value for k in ScalarKind]
    raise InvalidConfigurationError(
        f"Unknown quantization: '{name}'. Available: {available}"
    )


def scalar_by_code(code: int) -> ScalarKind:
    """
    Scalar kind from its persisted code.

    Raises:
        InvalidConfigurationError: If no kind uses the code
    """
    for kind, (kind_code, _, _) in _SCALARS.items():
        if kind_code == code:
            return kind
    raise InvalidConfigurationError(f"Unknown scalar code: {code}")
