"""Quantized splat representation and the gzip-compressed .spz container."""

from __future__ import annotations

import math
import struct
import zlib
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Union

from .types import (
    CoordinateConverter,
    CoordinateSystem,
    GaussianCloud,
    SpzError,
    coordinate_converter,
    dim_for_degree,
    half_to_float,
    normalized,
)

StrPath = Union[str, "PathLike[str]"]

# DC colors are scaled by less than the SH constant (0.282) so that base colors
# slightly out of range can still be represented.
COLOR_SCALE = 0.15
MAGIC = 0x5053474E  # "NGSP" in little-endian byte order
VERSION = 2
FLAG_ANTIALIASED = 0x1
MAX_POINTS_TO_READ = 10_000_000
FRACTIONAL_BITS = 12

_HEADER = struct.Struct("<IIIBBBB")
_SH1_BITS = 5
_SH_REST_BITS = 4


@dataclass
class PackOptions:
    """Options for packing: the coordinate system the input cloud is in."""

    from_system: CoordinateSystem = CoordinateSystem.UNSPECIFIED


@dataclass
class UnpackOptions:
    """Options for unpacking: the coordinate system to produce."""

    to_system: CoordinateSystem = CoordinateSystem.UNSPECIFIED


@dataclass
class UnpackedGaussian:
    """A single Gaussian inflated back to floating point values."""

    position: tuple[float, float, float]
    rotation: tuple[float, float, float, float]  # x, y, z, w
    scale: tuple[float, float, float]  # log scale
    color: tuple[float, float, float]  # SH DC component
    alpha: float  # before sigmoid activation
    sh_r: tuple[float, ...]
    sh_g: tuple[float, ...]
    sh_b: tuple[float, ...]


def _round(x: float) -> int:
    """Round half away from zero."""
    if x >= 0:
        return math.floor(x + 0.5)
    return -math.floor(-x + 0.5)


def _to_uint8(x: float) -> int:
    if math.isnan(x):
        return 0
    return _round(min(max(x, 0.0), 255.0))


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // b
    return q if a >= 0 else -q


def _quantize_sh(x: float, bucket_size: int) -> int:
    """Quantize to 8 bits, snapping to bucket centers; 0 is always a center."""
    if math.isnan(x):
        x = 0.0
    scaled = min(max(x * 128.0, -1e9), 1e9)
    q = _round(scaled) + 128
    q = _trunc_div(q + bucket_size // 2, bucket_size) * bucket_size
    return min(max(q, 0), 255)


def _unquantize_sh(x: int) -> float:
    return (x - 128.0) / 128.0


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def _inv_sigmoid(x: float) -> float:
    if x <= 0.0:
        return -math.inf
    if x >= 1.0:
        return math.inf
    return math.log(x / (1.0 - x))


def _decode_fixed24(chunk: bytes) -> int:
    value = int.from_bytes(chunk, "little")
    if value & 0x800000:
        value -= 1 << 24
    return value


def _decode_rotation(
    r: bytes, flip: tuple[float, float, float] = (1.0, 1.0, 1.0)
) -> tuple[float, float, float, float]:
    x, y, z = ((b / 127.5 - 1.0) * f for b, f in zip(r, flip))
    # The quaternion was normalized with w non-negative, so w follows from xyz.
    w = math.sqrt(max(0.0, 1.0 - (x * x + y * y + z * z)))
    return (x, y, z, w)


def _decode_color(b: int) -> float:
    return ((b / 255.0) - 0.5) / COLOR_SCALE


@dataclass
class PackedGaussian:
    """A single low-precision Gaussian with SH padded to degree 3."""

    position: bytes = bytes(9)
    rotation: bytes = bytes(3)
    scale: bytes = bytes(3)
    color: bytes = bytes(3)
    alpha: int = 0
    sh_r: tuple[int, ...] = (128,) * 15
    sh_g: tuple[int, ...] = (128,) * 15
    sh_b: tuple[int, ...] = (128,) * 15

    def unpack(
        self,
        uses_float16: bool,
        fractional_bits: int,
        converter: CoordinateConverter | None = None,
    ) -> UnpackedGaussian:
        """Inflate this Gaussian, applying the converter's sign flips."""
        c = converter or CoordinateConverter()
        if uses_float16:
            halves = struct.unpack_from("<3H", self.position)
            position = tuple(f * half_to_float(h) for f, h in zip(c.flip_p, halves))
        else:
            scale = 1.0 / (1 << fractional_bits)
            position = tuple(
                f * _decode_fixed24(self.position[k * 3 : k * 3 + 3]) * scale
                for k, f in enumerate(c.flip_p)
            )
        return UnpackedGaussian(
            position=position,
            rotation=_decode_rotation(self.rotation, c.flip_q),
            scale=tuple(s / 16.0 - 10.0 for s in self.scale),
            color=tuple(_decode_color(b) for b in self.color),
            alpha=_inv_sigmoid(self.alpha / 255.0),
            sh_r=tuple(f * _unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_r)),
            sh_g=tuple(f * _unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_g)),
            sh_b=tuple(f * _unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_b)),
        )


@dataclass
class PackedGaussians:
    """A whole splat at low precision, stored attribute by attribute."""

    num_points: int = 0
    sh_degree: int = 0
    fractional_bits: int = 0
    antialiased: bool = False
    positions: bytes = b""
    scales: bytes = b""
    rotations: bytes = b""
    alphas: bytes = b""
    colors: bytes = b""
    sh: bytes = field(default=b"")

    def uses_float16(self) -> bool:
        """Whether positions use the legacy half-precision encoding."""
        return len(self.positions) == self.num_points * 3 * 2

    def check_sizes(self) -> None:
        """Raise SpzError unless every attribute matches the point count."""
        n = self.num_points
        sh_dim = dim_for_degree(self.sh_degree)
        expected = {
            "positions": n * 3 * (2 if self.uses_float16() else 3),
            "scales": n * 3,
            "rotations": n * 3,
            "alphas": n,
            "colors": n * 3,
            "sh": n * sh_dim * 3,
        }
        for name, size in expected.items():
            actual = len(getattr(self, name))
            if actual != size:
                raise SpzError(f"packed {name} has {actual} bytes, expected {size}")

    def at(self, i: int) -> PackedGaussian:
        """The i-th Gaussian, with spherical harmonics padded by 128."""
        if not 0 <= i < self.num_points:
            raise IndexError(f"gaussian index out of range: {i}")
        position_bytes = 6 if self.uses_float16() else 9
        start3 = i * 3
        sh_dim = dim_for_degree(self.sh_degree)
        coeffs = self.sh[i * sh_dim * 3 : (i + 1) * sh_dim * 3]
        pad = (128,) * (15 - sh_dim)
        return PackedGaussian(
            position=bytes(self.positions[i * position_bytes : (i + 1) * position_bytes]),
            rotation=bytes(self.rotations[start3 : start3 + 3]),
            scale=bytes(self.scales[start3 : start3 + 3]),
            color=bytes(self.colors[start3 : start3 + 3]),
            alpha=self.alphas[i],
            sh_r=tuple(coeffs[0::3]) + pad,
            sh_g=tuple(coeffs[1::3]) + pad,
            sh_b=tuple(coeffs[2::3]) + pad,
        )

    def unpack(
        self, i: int, converter: CoordinateConverter | None = None
    ) -> UnpackedGaussian:
        """Inflate the i-th Gaussian."""
        return self.at(i).unpack(self.uses_float16(), self.fractional_bits, converter)


def pack_gaussians(
    cloud: GaussianCloud, options: PackOptions | None = None
) -> PackedGaussians:
    """Quantize a cloud into the packed representation (RUB coordinates)."""
    options = options or PackOptions()
    cloud.check_sizes()
    sh_dim = dim_for_degree(cloud.sh_degree)
    c = coordinate_converter(options.from_system, CoordinateSystem.RUB)

    scale = float(1 << FRACTIONAL_BITS)
    positions = bytearray()
    for k, value in enumerate(cloud.positions):
        fixed = _round(c.flip_p[k % 3] * value * scale)
        positions += (fixed & 0xFFFFFF).to_bytes(3, "little")

    scales = bytes(_to_uint8((s + 10.0) * 16.0) for s in cloud.scales)

    rotations = bytearray()
    for start in range(0, len(cloud.rotations), 4):
        try:
            x, y, z, w = normalized(cloud.rotations[start : start + 4])
        except ZeroDivisionError:
            raise SpzError(f"zero-length rotation at point {start // 4}") from None
        s = -127.5 if w < 0 else 127.5
        rotations += bytes(
            _to_uint8(v * f * s + 127.5) for v, f in zip((x, y, z), c.flip_q)
        )

    alphas = bytes(_to_uint8(_sigmoid(a) * 255.0) for a in cloud.alphas)
    colors = bytes(
        _to_uint8(v * (COLOR_SCALE * 255.0) + 0.5 * 255.0) for v in cloud.colors
    )

    sh = bytearray()
    per_point = sh_dim * 3
    for k, value in enumerate(cloud.sh):
        j = k % per_point
        bits = _SH1_BITS if j < 9 else _SH_REST_BITS
        sh.append(_quantize_sh(c.flip_sh[j // 3] * value, 1 << (8 - bits)))

    return PackedGaussians(
        num_points=cloud.num_points,
        sh_degree=cloud.sh_degree,
        fractional_bits=FRACTIONAL_BITS,
        antialiased=cloud.antialiased,
        positions=bytes(positions),
        scales=scales,
        rotations=bytes(rotations),
        alphas=alphas,
        colors=colors,
        sh=bytes(sh),
    )


def unpack_gaussians(
    packed: PackedGaussians, options: UnpackOptions | None = None
) -> GaussianCloud:
    """Inflate a packed splat into a cloud in the requested coordinate system."""
    options = options or UnpackOptions()
    packed.check_sizes()
    n = packed.num_points

    if packed.uses_float16():
        halves = struct.unpack(f"<{n * 3}H", packed.positions)
        positions = [half_to_float(h) for h in halves]
    else:
        scale = 1.0 / (1 << packed.fractional_bits)
        positions = [
            _decode_fixed24(packed.positions[k : k + 3]) * scale
            for k in range(0, len(packed.positions), 3)
        ]

    rotations: list[float] = []
    for start in range(0, len(packed.rotations), 3):
        rotations.extend(_decode_rotation(packed.rotations[start : start + 3]))

    result = GaussianCloud(
        num_points=n,
        sh_degree=packed.sh_degree,
        antialiased=packed.antialiased,
        positions=positions,
        scales=[s / 16.0 - 10.0 for s in packed.scales],
        rotations=rotations,
        alphas=[_inv_sigmoid(a / 255.0) for a in packed.alphas],
        colors=[_decode_color(b) for b in packed.colors],
        sh=[_unquantize_sh(b) for b in packed.sh],
    )
    result.convert_coordinates(CoordinateSystem.RUB, options.to_system)
    return result


def serialize_packed_gaussians(packed: PackedGaussians) -> bytes:
    """Header followed by the attribute arrays, uncompressed."""
    header = _HEADER.pack(
        MAGIC,
        VERSION,
        packed.num_points,
        packed.sh_degree,
        packed.fractional_bits,
        FLAG_ANTIALIASED if packed.antialiased else 0,
        0,
    )
    return b"".join(
        (
            header,
            packed.positions,
            packed.alphas,
            packed.colors,
            packed.scales,
            packed.rotations,
            packed.sh,
        )
    )


def deserialize_packed_gaussians(data: bytes) -> PackedGaussians:
    """Parse uncompressed packed data; raises SpzError on any problem."""
    if len(data) < _HEADER.size:
        raise SpzError("header not found")
    magic, version, num_points, sh_degree, fractional_bits, flags, _ = (
        _HEADER.unpack_from(data)
    )
    if magic != MAGIC:
        raise SpzError("header not found")
    if not 1 <= version <= 2:
        raise SpzError(f"version not supported: {version}")
    if num_points > MAX_POINTS_TO_READ:
        raise SpzError(f"Too many points: {num_points}")
    if sh_degree > 3:
        raise SpzError(f"Unsupported SH degree: {sh_degree}")

    sh_dim = dim_for_degree(sh_degree)
    uses_float16 = version == 1
    sections = (
        ("positions", num_points * 3 * (2 if uses_float16 else 3)),
        ("alphas", num_points),
        ("colors", num_points * 3),
        ("scales", num_points * 3),
        ("rotations", num_points * 3),
        ("sh", num_points * sh_dim * 3),
    )
    if len(data) < _HEADER.size + sum(size for _, size in sections):
        raise SpzError("read error")

    fields: dict[str, bytes] = {}
    offset = _HEADER.size
    for name, size in sections:
        fields[name] = bytes(data[offset : offset + size])
        offset += size

    return PackedGaussians(
        num_points=num_points,
        sh_degree=sh_degree,
        fractional_bits=fractional_bits,
        antialiased=bool(flags & FLAG_ANTIALIASED),
        **fields,
    )


def compress_gzipped(data: bytes) -> bytes:
    """Compress into a gzip stream."""
    compressor = zlib.compressobj(
        zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 16 + zlib.MAX_WBITS, 9
    )
    return compressor.compress(data) + compressor.flush()


def decompress_gzipped(data: bytes) -> bytes:
    """Decompress a complete gzip stream; raises SpzError if it is invalid."""
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        out = decompressor.decompress(data) + decompressor.flush()
    except zlib.error as exc:
        raise SpzError(f"invalid gzip data: {exc}") from None
    if not decompressor.eof:
        raise SpzError("truncated gzip data")
    return out


def save_spz(cloud: GaussianCloud, options: PackOptions | None = None) -> bytes:
    """Pack, serialize and compress a cloud into .spz bytes."""
    return compress_gzipped(serialize_packed_gaussians(pack_gaussians(cloud, options)))


def load_spz_packed(data: bytes) -> PackedGaussians:
    """Decompress and parse .spz bytes without inflating them."""
    return deserialize_packed_gaussians(decompress_gzipped(data))


def load_spz(data: bytes, options: UnpackOptions | None = None) -> GaussianCloud:
    """Load a cloud from .spz bytes."""
    return unpack_gaussians(load_spz_packed(data), options)


def save_spz_file(
    cloud: GaussianCloud, options: PackOptions | None, path: StrPath
) -> None:
    """Write a cloud to a .spz file."""
    Path(path).write_bytes(save_spz(cloud, options))


def load_spz_file(path: StrPath, options: UnpackOptions | None = None) -> GaussianCloud:
    """Read a cloud from a .spz file."""
    return load_spz(Path(path).read_bytes(), options)


def load_spz_packed_file(path: StrPath) -> PackedGaussians:
    """Read packed data from a .spz file."""
    return load_spz_packed(Path(path).read_bytes())