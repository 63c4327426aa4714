# Copyright (c) 2025
# Author: Nenad Micic <nenad@micic.be>
# License: MIT License
"""
binviz.py - Binary File to 3D Point Cloud Decoder

Turns an arbitrary binary file into a set of unique 3D points so that the
byte-value distribution of the file can be inspected visually.

PIPELINE:
    bytes  ->  24-bit keys  ->  sort + collapse  ->  spherical -> cartesian

    1. Every 3 consecutive bytes (b0, b1, b2) become one key:
           key = b2 << 16 | b1 << 8 | b0
       Trailing 1-2 bytes that do not fill a triple are dropped.
    2. Keys are sorted, so equal keys sit next to each other; each run of
       equal keys collapses into one point whose count is the run length.
    3. Each unique key is unpacked into three scalars in [0, 1]:
           theta = b2/255 * 2pi,  phi = b1/255 * 2pi,  r = b0/255
       and mapped with the spherical identity
           x = r sin(theta) cos(phi)
           y = r sin(theta) sin(phi)
           z = r cos(theta)
       so every point lies inside (or on) the unit sphere.

USAGE:
    from binviz import decode

    cloud = decode("some.bin")
    for p in cloud:
        print(p.x, p.y, p.z, p.count)
"""

import math
import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple, Union

import numpy as np


#==============================================================================
# CONSTANTS
#==============================================================================

KEY_BYTES = 3
KEY_BITS = 8 * KEY_BYTES
KEY_MASK = (1 << KEY_BITS) - 1   # 0xFFFFFF
BYTE_MAX = 0xFF
TWO_PI = 2.0 * math.pi

BytesLike = Union[bytes, bytearray, memoryview, np.ndarray]
PathLike = Union[str, os.PathLike]


#==============================================================================
# DATA STRUCTURES
#==============================================================================

@dataclass(frozen=True)
class Point:
    """
    One unique point of the decoded cloud.

    Fields:
        x, y, z: Cartesian position inside the unit sphere
        count: How many times the underlying key occurs in the file
        first_index: Position of this point in the sorted, deduplicated
                     output (NOT a byte offset in the file)
        key: The packed 24-bit key the point was built from
    """
    x: float
    y: float
    z: float
    count: int
    first_index: int
    key: int

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, eq=False)
class PointCloud:
    """
    Decode result: unique points in ascending key order.

    Stored column-wise as numpy arrays; indexing or iterating yields Point
    objects; slicing yields a list of Point. An empty cloud is falsy and
    means "nothing to visualize".

    Fields:
        keys: (N,) uint32, strictly ascending
        positions: (N, 3) float64
        counts: (N,) int64, each >= 1
        total_keys: number of keys the cloud was built from
                    (always equal to counts.sum())
    """
    keys: np.ndarray
    positions: np.ndarray
    counts: np.ndarray
    total_keys: int = 0

    @classmethod
    def empty(cls) -> "PointCloud":
        return cls(
            keys=np.empty(0, dtype=np.uint32),
            positions=np.empty((0, 3), dtype=np.float64),
            counts=np.empty(0, dtype=np.int64),
            total_keys=0,
        )

    def __len__(self) -> int:
        return int(self.keys.size)

    def __bool__(self) -> bool:
        return self.keys.size > 0

    def __getitem__(self, index: Union[int, slice]) -> Union[Point, List[Point]]:
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        if not isinstance(index, (int, np.integer)):
            raise TypeError(f"point index must be int or slice, not {type(index).__name__}")
        index = int(index)
        n = len(self)
        if index < 0:
            index += n
        if not 0 <= index < n:
            raise IndexError(f"point index {index} out of range for {n} points")
        x, y, z = self.positions[index]
        return Point(
            x=float(x),
            y=float(y),
            z=float(z),
            count=int(self.counts[index]),
            first_index=index,
            key=int(self.keys[index]),
        )

    def __iter__(self) -> Iterator[Point]:
        for i in range(len(self)):
            yield self[i]

    @property
    def duplicates(self) -> int:
        """Keys that were folded into an already emitted point."""
        return self.total_keys - len(self)


#==============================================================================
# KEY PACKING
#==============================================================================

def pack_key(b0: int, b1: int, b2: int) -> int:
    """
    Pack three byte values into a 24-bit key, b0 least significant.

    pack_key(1, 2, 3) = 0x030201
    """
    for b in (b0, b1, b2):
        if not 0 <= b <= BYTE_MAX:
            raise ValueError(f"byte value must be in [0, 255], got {b}")
    return (b2 << 16) | (b1 << 8) | b0


def unpack_key(key: int) -> Tuple[int, int, int]:
    """Inverse of pack_key: returns (b0, b1, b2)."""
    return (key & 0xFF, (key >> 8) & 0xFF, (key >> 16) & 0xFF)


def as_byte_array(data: BytesLike) -> np.ndarray:
    """
    View input as a flat uint8 array.

    Bytes are always read as unsigned: an int8 array is reinterpreted, not
    sign-extended, so 0x80-0xFF keep their value. Wider integer dtypes are
    range-checked against [0, 255]; non-integer dtypes raise ValueError.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return np.frombuffer(data, dtype=np.uint8)

    arr = np.asarray(data)
    if arr.size == 0:
        return np.empty(0, dtype=np.uint8)
    if arr.dtype == np.uint8:
        return arr.ravel()
    if arr.dtype == np.int8:
        return np.ascontiguousarray(arr).ravel().view(np.uint8)
    if not np.issubdtype(arr.dtype, np.integer):
        raise ValueError(f"expected byte values, got dtype {arr.dtype}")
    if arr.min() < 0 or arr.max() > BYTE_MAX:
        raise ValueError("byte values must be in [0, 255]")
    return arr.ravel().astype(np.uint8)


def extract_keys(data: BytesLike) -> np.ndarray:
    """
    Pack each consecutive byte triple into one 24-bit key.

    Returns floor(len/3) keys as uint32 in file order. A trailing
    remainder of 1 or 2 bytes is dropped.

    Example:
        >>> extract_keys(bytes([1, 2, 3, 4])).tolist()
        [197121]
    """
    buf = as_byte_array(data)
    n = buf.size // KEY_BYTES
    triples = buf[:n * KEY_BYTES].reshape(n, KEY_BYTES).astype(np.uint32)
    return (triples[:, 2] << 16) | (triples[:, 1] << 8) | triples[:, 0]


#==============================================================================
# SPHERICAL MAPPING
#==============================================================================

def key_to_position(key: int) -> Tuple[float, float, float]:
    """
    Map one key to (x, y, z) inside the unit sphere.

    Top byte -> polar angle, middle byte -> azimuth, low byte -> radius.

    Example:
        >>> key_to_position(0x000000)
        (0.0, 0.0, 0.0)
    """
    b0, b1, b2 = unpack_key(key)
    theta = b2 / BYTE_MAX * TWO_PI
    phi = b1 / BYTE_MAX * TWO_PI
    r = b0 / BYTE_MAX

    x = r * math.sin(theta) * math.cos(phi)
    y = r * math.sin(theta) * math.sin(phi)
    z = r * math.cos(theta)
    return (x, y, z)


def keys_to_positions(keys: np.ndarray) -> np.ndarray:
    """Vectorized key_to_position; returns an (N, 3) float64 array."""
    keys = np.asarray(keys, dtype=np.uint32)
    theta = ((keys >> 16) & 0xFF) / BYTE_MAX * TWO_PI
    phi = ((keys >> 8) & 0xFF) / BYTE_MAX * TWO_PI
    r = (keys & 0xFF) / BYTE_MAX

    sin_theta = np.sin(theta)
    x = r * sin_theta * np.cos(phi)
    y = r * sin_theta * np.sin(phi)
    z = r * np.cos(theta)
    return np.stack([x, y, z], axis=1)


#==============================================================================
# DEDUPLICATION
#==============================================================================

def map_points(keys) -> PointCloud:
    """
    Sort keys, collapse equal runs, and map each unique key to a point.

    The input is not modified. Output points are in ascending key order and
    each count is the number of occurrences of that key in the input.

    Args:
        keys: 1-D sequence of 24-bit integer keys, in any order

    Returns:
        PointCloud (empty for empty input)
    """
    arr = np.asarray(keys)
    if arr.ndim != 1:
        raise ValueError(f"keys must be 1-D, got shape {arr.shape}")
    if arr.size == 0:
        return PointCloud.empty()
    if not np.issubdtype(arr.dtype, np.integer):
        raise ValueError(f"keys must be integers, got dtype {arr.dtype}")
    if arr.min() < 0 or arr.max() > KEY_MASK:
        raise ValueError(f"keys must fit in {KEY_BITS} bits")

    # np.sort returns a copy, the caller's buffer stays untouched
    ordered = np.sort(arr.astype(np.uint32))

    # A run starts wherever a key differs from its predecessor
    run_start = np.empty(ordered.size, dtype=bool)
    run_start[0] = True
    np.not_equal(ordered[1:], ordered[:-1], out=run_start[1:])
    starts = np.flatnonzero(run_start)

    unique = ordered[starts]
    counts = np.diff(np.append(starts, ordered.size)).astype(np.int64)

    return PointCloud(
        keys=unique,
        positions=keys_to_positions(unique),
        counts=counts,
        total_keys=int(ordered.size),
    )


#==============================================================================
# FILE DECODING
#==============================================================================

def read_bytes(path: PathLike) -> np.ndarray:
    """
    Read a whole file as a uint8 array.

    Raises OSError if the file is missing or cannot be read.
    """
    return np.fromfile(os.fspath(path), dtype=np.uint8)


def decode_bytes(data: BytesLike) -> PointCloud:
    """Decode an in-memory byte buffer into a PointCloud."""
    return map_points(extract_keys(data))


def decode(path: PathLike) -> PointCloud:
    """
    Decode a binary file into unique 3D points.

    An empty file (or one shorter than 3 bytes) gives an empty cloud;
    I/O failures raise OSError.
    """
    return decode_bytes(read_bytes(path))


#==============================================================================
# MODULE EXPORTS
#==============================================================================

__all__ = [
    # Constants
    'KEY_BYTES',
    'KEY_BITS',
    'KEY_MASK',

    # Data structures
    'Point',
    'PointCloud',

    # Key packing
    'pack_key',
    'unpack_key',
    'as_byte_array',
    'extract_keys',

    # Spherical mapping
    'key_to_position',
    'keys_to_positions',

    # Deduplication
    'map_points',

    # File decoding
    'read_bytes',
    'decode_bytes',
    'decode',
]
