"""Core Gaussian splat types, coordinate systems and small vector helpers."""

from __future__ import annotations

import math
import struct
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import IntEnum


class SpzError(ValueError):
    """Raised when splat data is malformed or unsupported."""


class CoordinateSystem(IntEnum):
    """Axis conventions, named by the directions of the x, y and z axes."""

    UNSPECIFIED = 0
    LDB = 1  # Left Down Back
    RDB = 2  # Right Down Back
    LUB = 3  # Left Up Back
    RUB = 4  # Right Up Back, Three.js coordinate system
    LDF = 5  # Left Down Front
    RDF = 6  # Right Down Front, PLY coordinate system
    LUF = 7  # Left Up Front, GLB coordinate system
    RUF = 8  # Right Up Front, Unity coordinate system


@dataclass(frozen=True)
class CoordinateConverter:
    """Sign flips that map positions, rotations and SH coefficients between systems."""

    flip_p: tuple[float, float, float] = (1.0, 1.0, 1.0)
    flip_q: tuple[float, float, float] = (1.0, 1.0, 1.0)
    flip_sh: tuple[float, ...] = (1.0,) * 15


def axes_match(a: CoordinateSystem, b: CoordinateSystem) -> tuple[bool, bool, bool]:
    """Return, per axis, whether the two systems point that axis the same way."""
    a_num = int(a) - 1
    b_num = int(b) - 1
    if a_num < 0 or b_num < 0:
        return (True, True, True)
    return tuple(((a_num >> bit) & 1) == ((b_num >> bit) & 1) for bit in range(3))


def coordinate_converter(
    from_system: CoordinateSystem, to_system: CoordinateSystem
) -> CoordinateConverter:
    """Build the converter that maps data from one coordinate system to another."""
    x, y, z = (1.0 if match else -1.0 for match in axes_match(from_system, to_system))
    return CoordinateConverter(
        flip_p=(x, y, z),
        flip_q=(y * z, x * z, x * y),
        flip_sh=(
            y,
            z,
            x,
            x * y,
            y * z,
            1.0,
            x * z,
            1.0,
            y,
            x * y * z,
            y,
            z,
            x,
            z,
            x,
        ),
    )


def degree_for_dim(dim: int) -> int:
    """Spherical harmonics degree for a number of coefficients per channel."""
    if dim < 3:
        return 0
    if dim < 8:
        return 1
    if dim < 15:
        return 2
    return 3


def dim_for_degree(degree: int) -> int:
    """Number of coefficients per channel for a spherical harmonics degree."""
    dims = {0: 0, 1: 3, 2: 8, 3: 15}
    try:
        return dims[degree]
    except KeyError:
        raise SpzError(f"Unsupported SH degree: {degree}") from None


def half_to_float(h: int) -> float:
    """Decode an IEEE half-precision bit pattern."""
    if not 0 <= h <= 0xFFFF:
        raise ValueError(f"half-precision value out of range: {h}")
    sign_mul = -1.0 if (h >> 15) & 0x1 else 1.0
    exponent = (h >> 10) & 0x1F
    mantissa = h & 0x3FF
    if exponent == 0:
        return sign_mul * 2.0**-14 * mantissa / 1024.0
    if exponent == 31:
        return math.nan if mantissa else sign_mul * math.inf
    return sign_mul * 2.0 ** (exponent - 15) * (1.0 + mantissa / 1024.0)


def float_to_half(f: float) -> int:
    """Encode a float as a half-precision bit pattern, truncating the mantissa."""
    try:
        (f32,) = struct.unpack("<I", struct.pack("<f", f))
    except OverflowError:
        f32 = (0x80000000 if f < 0 else 0) | 0x7F800000
    sign = (f32 >> 31) & 0x1
    exponent = (f32 >> 23) & 0xFF
    mantissa = f32 & 0x7FFFFF

    if exponent == 0xFF:
        return (sign << 15) | (0x7C00 if mantissa == 0 else 0x7C01)

    centered_exp = exponent - 127
    if centered_exp > 15:
        return (sign << 15) | 0x7C00
    if centered_exp > -15:
        return (sign << 15) | ((centered_exp + 15) << 10) | (mantissa >> 13)

    full_mantissa = 0x800000 | mantissa
    shift = -(centered_exp + 14)
    return (sign << 15) | ((full_mantissa >> shift) >> 13)


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product of two equal-length vectors."""
    return sum(x * y for x, y in zip(a, b))


def squared_norm(v: Sequence[float]) -> float:
    """Squared Euclidean length."""
    return dot(v, v)


def norm(v: Sequence[float]) -> float:
    """Euclidean length of a vector or quaternion."""
    return math.sqrt(squared_norm(v))


def normalized(v: Sequence[float]) -> tuple[float, ...]:
    """Scale a vector or quaternion to unit length."""
    n = norm(v)
    return tuple(x / n for x in v)


def quat_times(a: Sequence[float], b: Sequence[float]) -> tuple[float, float, float, float]:
    """Normalized product of two (w, x, y, z) quaternions."""
    w, x, y, z = a
    qw, qx, qy, qz = b
    return normalized(
        (
            w * qw - x * qx - y * qy - z * qz,
            w * qx + x * qw + y * qz - z * qy,
            w * qy - x * qz + y * qw + z * qx,
            w * qz + x * qy - y * qx + z * qw,
        )
    )


def rotate_vector(q: Sequence[float], p: Sequence[float]) -> tuple[float, float, float]:
    """Rotate a 3-vector by a unit (w, x, y, z) quaternion."""
    w, x, y, z = q
    vx, vy, vz = p
    x2, y2, z2 = x + x, y + y, z + z
    wx2, wy2, wz2 = w * x2, w * y2, w * z2
    xx2, xy2, xz2 = x * x2, x * y2, x * z2
    yy2, yz2, zz2 = y * y2, y * z2, z * z2
    return (
        vx * (1.0 - (yy2 + zz2)) + vy * (xy2 - wz2) + vz * (xz2 + wy2),
        vx * (xy2 + wz2) + vy * (1.0 - (xx2 + zz2)) + vz * (yz2 - wx2),
        vx * (xz2 - wy2) + vy * (yz2 + wx2) + vz * (1.0 - (xx2 + yy2)),
    )


def axis_angle_quat(scaled_axis: Sequence[float]) -> tuple[float, float, float, float]:
    """Quaternion (w, x, y, z) for a rotation given as axis scaled by angle."""
    a0, a1, a2 = scaled_axis
    theta_squared = a0 * a0 + a1 * a1 + a2 * a2
    if theta_squared > 0.0:
        theta = math.sqrt(theta_squared)
        half_theta = theta * 0.5
        k = math.sin(half_theta) / theta
        return normalized((math.cos(half_theta), a0 * k, a1 * k, a2 * k))
    # First-order Taylor approximation avoids dividing by a zero angle.
    k = 0.5
    return normalized((1.0, a0 * k, a1 * k, a2 * k))


def _chunks(values: Sequence[float], size: int) -> Iterator[Sequence[float]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


@dataclass
class GaussianCloud:
    """A point cloud of Gaussians stored as flat per-attribute lists.

    Scales are log-scale, rotations are xyzw quaternions, alphas are before
    sigmoid activation, colors are the SH DC component, and ``sh`` holds the
    higher spherical harmonics with the color channel varying fastest.
    """

    num_points: int = 0
    sh_degree: int = 0
    antialiased: bool = False
    positions: list[float] = field(default_factory=list)
    scales: list[float] = field(default_factory=list)
    rotations: list[float] = field(default_factory=list)
    alphas: list[float] = field(default_factory=list)
    colors: list[float] = field(default_factory=list)
    sh: list[float] = field(default_factory=list)

    def check_sizes(self) -> None:
        """Raise SpzError unless every attribute list matches the point count."""
        n = self.num_points
        if n < 0:
            raise SpzError(f"negative point count: {n}")
        if not 0 <= self.sh_degree <= 3:
            raise SpzError(f"Unsupported SH degree: {self.sh_degree}")
        expected = {
            "positions": n * 3,
            "scales": n * 3,
            "rotations": n * 4,
            "alphas": n,
            "colors": n * 3,
            "sh": n * dim_for_degree(self.sh_degree) * 3,
        }
        for name, size in expected.items():
            actual = len(getattr(self, name))
            if actual != size:
                raise SpzError(f"{name} has {actual} values, expected {size}")

    def convert_coordinates(
        self, from_system: CoordinateSystem, to_system: CoordinateSystem
    ) -> None:
        """Convert the cloud in place from one coordinate system to another."""
        c = coordinate_converter(from_system, to_system)
        self.positions = [v * c.flip_p[k % 3] for k, v in enumerate(self.positions)]
        flip_q = c.flip_q + (1.0,)
        self.rotations = [v * flip_q[k % 4] for k, v in enumerate(self.rotations)]
        if self.num_points <= 0 or not self.sh:
            return
        per_point = len(self.sh) // 3 // self.num_points
        if per_point == 0:
            return
        self.sh = [v * c.flip_sh[(k // 3) % per_point] for k, v in enumerate(self.sh)]

    def rotate_180_deg_about_x(self) -> None:
        """Rotate in place by 180 degrees about x (RUB <-> RDF)."""
        self.convert_coordinates(CoordinateSystem.RUB, CoordinateSystem.RDF)

    def median_volume(self) -> float:
        """Median ellipsoid volume of the Gaussians."""
        if self.num_points == 0:
            return 0.01
        sums = sorted(sum(triple) for triple in _chunks(self.scales, 3))
        median = sums[len(sums) // 2]
        return (math.pi * 4 / 3) * math.exp(median)