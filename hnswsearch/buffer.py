"""
Input canonicalization for vectors and identifiers.

Callers may hand vectors over as packed float32 bytes, a list of such
buffers, or a 1-D/2-D numeric array. Everything is turned into a fresh
C-contiguous float32 array of shape (rows, features) before it reaches the
index, so nothing the caller still holds is shared with the graph.
"""

import operator
from typing import NamedTuple, Optional

import numpy as np

from hnswsearch.errors import DimensionMismatch, InvalidShape, MalformedBuffer

FLOAT_SIZE = 4
ID_SIZE = 8
MAX_ID = 2**64 - 1

_BYTES_TYPES = (bytes, bytearray, memoryview)


class VectorBuffer(NamedTuple):
    data: np.ndarray  # (rows, features) float32, C-contiguous
    rows: int
    features: int


def canonicalize_vectors(data, dim: Optional[int] = None) -> VectorBuffer:
    """Canonicalize vector input and, if dim is given, check its width."""
    if isinstance(data, _BYTES_TYPES):
        matrix = _from_bytes([data])
    elif isinstance(data, (list, tuple)) and data and all(
        isinstance(row, _BYTES_TYPES) for row in data
    ):
        matrix = _from_bytes(data)
    elif isinstance(data, (list, tuple)) and not data:
        raise MalformedBuffer("Empty vector list")
    else:
        matrix = _from_array(data)

    rows, features = matrix.shape
    if dim is not None and features != dim:
        raise DimensionMismatch(dim, features)
    return VectorBuffer(matrix, rows, features)


def _from_bytes(buffers) -> np.ndarray:
    sizes = set()
    for buf in buffers:
        size = memoryview(buf).nbytes
        if size % FLOAT_SIZE != 0:
            raise MalformedBuffer(
                f"vector feature size should be a multiple of {FLOAT_SIZE} (sizeof(float))"
            )
        sizes.add(size)
    if len(sizes) > 1:
        raise MalformedBuffer("All vectors in the list must have the same number of features")

    features = sizes.pop() // FLOAT_SIZE
    if features == 0:
        return np.zeros((len(buffers), 0), dtype=np.float32)
    joined = b"".join(bytes(buf) for buf in buffers)
    matrix = np.frombuffer(joined, dtype="<f4").reshape(len(buffers), features)
    return np.array(matrix, dtype=np.float32, order="C", copy=True)


def _from_array(data) -> np.ndarray:
    try:
        arr = np.asarray(data)
    except ValueError as exc:
        raise MalformedBuffer(f"Could not read vector data: {exc}") from exc

    if arr.dtype.kind not in "biuf":
        raise MalformedBuffer(f"Vector data must be numeric, got dtype {arr.dtype}")
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    elif arr.ndim != 2:
        raise InvalidShape(
            f"Input vector data wrong shape. Number of dimensions {arr.ndim}. "
            "Data must be a 1D or 2D array."
        )
    return np.array(arr, dtype=np.float32, order="C", copy=True)


def canonicalize_ids(ids, rows: Optional[int] = None) -> Optional[np.ndarray]:
    """Turn an identifier sequence into a fresh uint64 array.

    When rows is given the array must have exactly that many entries.
    Returns None when ids is None, meaning "assign sequential identifiers".
    """
    if ids is None:
        return None

    if isinstance(ids, _BYTES_TYPES):
        raw = bytes(ids)
        if len(raw) % ID_SIZE != 0:
            raise MalformedBuffer(f"ids byte size should be a multiple of {ID_SIZE}")
        result = np.frombuffer(raw, dtype="<u8").astype(np.uint64)
    elif isinstance(ids, np.ndarray):
        if ids.ndim != 1:
            raise InvalidShape(f"expect ids to be a 1D array, got `{ids.shape}`")
        if ids.dtype.kind not in "iu":
            raise MalformedBuffer(f"ids must be integers, got dtype {ids.dtype}")
        if ids.dtype.kind == "i" and (ids < 0).any():
            raise MalformedBuffer("ids must be non-negative")
        result = ids.astype(np.uint64)
    else:
        try:
            items = iter(ids)
        except TypeError:
            raise InvalidShape("expect ids to be a 1D sequence") from None
        values = []
        for value in items:
            if isinstance(value, (list, tuple, np.ndarray)):
                raise InvalidShape("expect ids to be a 1D sequence")
            try:
                value = operator.index(value)
            except TypeError:
                raise MalformedBuffer(f"ids must be integers, got {value!r}") from None
            if value < 0 or value > MAX_ID:
                raise MalformedBuffer(f"id {value} does not fit in an unsigned 64-bit integer")
            values.append(value)
        result = np.array(values, dtype=np.uint64)

    if rows is not None and len(result) != rows:
        raise MalformedBuffer(
            f"Number of ids ({len(result)}) must match number of vectors ({rows})"
        )
    return result
