"""Reading and writing Gaussian splats in binary little-endian .ply files."""

from __future__ import annotations

import logging
import re
import sys
from array import array
from os import PathLike
from pathlib import Path
from typing import BinaryIO, Union

from .packed import PackOptions, UnpackOptions
from .types import (
    CoordinateSystem,
    GaussianCloud,
    SpzError,
    coordinate_converter,
    degree_for_dim,
)

StrPath = Union[str, "PathLike[str]"]

logger = logging.getLogger(__name__)

MAX_PLY_POINTS = 10 * 1024 * 1024
_MAX_SH_COEFFS = 45
_FORMAT_LINE = "format binary_little_endian 1.0"
_VERTEX_PREFIX = "element vertex "
_PROPERTY_PREFIX = "property float "
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _read_line(stream: BinaryIO) -> str | None:
    raw = stream.readline()
    if not raw:
        return None
    line = raw.decode("latin-1")
    return line[:-1] if line.endswith("\n") else line


def _floats_from_bytes(data: bytes) -> list[float]:
    values = array("f")
    values.frombytes(data)
    if sys.byteorder == "big":
        values.byteswap()
    return values.tolist()


def _floats_to_bytes(values: list[float]) -> bytes:
    packed = array("f", values)
    if sys.byteorder == "big":
        packed.byteswap()
    return packed.tobytes()


def _parse_vertex_count(text: str, name: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise SpzError(f"{name}: invalid vertex count: {text!r}")
    return int(match.group(1))


def load_splat_from_ply(
    path: StrPath, options: UnpackOptions | None = None
) -> GaussianCloud:
    """Load a Gaussian splat from a .ply file; raises SpzError on bad content."""
    options = options or UnpackOptions()
    name = str(path)
    logger.info("Loading: %s", name)
    with open(path, "rb") as stream:
        if _read_line(stream) != "ply":
            raise SpzError(f"{name}: not a .ply file")
        if _read_line(stream) != _FORMAT_LINE:
            raise SpzError(f"{name}: unsupported .ply format")
        line = _read_line(stream)
        if line is None or not line.startswith(_VERTEX_PREFIX):
            raise SpzError(f"{name}: missing vertex count")
        num_points = _parse_vertex_count(line[len(_VERTEX_PREFIX):], name)
        if num_points <= 0 or num_points > MAX_PLY_POINTS:
            raise SpzError(f"{name}: invalid vertex count: {num_points}")
        logger.info("Loading %d points", num_points)

        fields: dict[str, int] = {}
        index = 0
        while True:
            line = _read_line(stream)
            if line is None:
                raise SpzError(f"{name}: missing end_header")
            if line == "end_header":
                break
            if not line.startswith(_PROPERTY_PREFIX):
                raise SpzError(f"{name}: unsupported property data type: {line}")
            fields[line[len(_PROPERTY_PREFIX):]] = index
            index += 1

        def lookup(*names: str) -> list[int]:
            missing = [n for n in names if n not in fields]
            if missing:
                raise SpzError(f"Missing field: {missing[0]}")
            return [fields[n] for n in names]

        position_idx = lookup("x", "y", "z")
        scale_idx = lookup("scale_0", "scale_1", "scale_2")
        rot_idx = lookup("rot_1", "rot_2", "rot_3", "rot_0")
        alpha_idx = lookup("opacity")
        color_idx = lookup("f_dc_0", "f_dc_1", "f_dc_2")

        # Spherical harmonics are optional; take the leading run of f_rest_* fields.
        sh_idx: list[int] = []
        for k in range(_MAX_SH_COEFFS):
            key = f"f_rest_{k}"
            if key not in fields:
                break
            sh_idx.append(fields[key])
        sh_dim = len(sh_idx) // 3

        stride = len(fields)
        expected = num_points * stride * 4
        data = stream.read(expected)
        if len(data) != expected:
            raise SpzError(f"Unable to load data from: {name}")

    values = _floats_from_bytes(data)
    cloud = GaussianCloud(num_points=num_points, sh_degree=degree_for_dim(sh_dim))
    for start in range(0, len(values), stride):
        row = values[start : start + stride]
        cloud.positions.extend(row[k] for k in position_idx)
        cloud.scales.extend(row[k] for k in scale_idx)
        cloud.rotations.extend(row[k] for k in rot_idx)
        cloud.alphas.extend(row[k] for k in alpha_idx)
        cloud.colors.extend(row[k] for k in color_idx)
        # The file stores channel-major coefficients; the cloud interleaves channels.
        red = sh_idx[:sh_dim]
        green = sh_idx[sh_dim : 2 * sh_dim]
        blue = sh_idx[2 * sh_dim : 3 * sh_dim]
        for r, g, b in zip(red, green, blue):
            cloud.sh.extend((row[r], row[g], row[b]))

    cloud.convert_coordinates(CoordinateSystem.RDF, options.to_system)
    return cloud


def _header(num_points: int, sh_dim: int) -> bytes:
    lines = [
        "ply",
        _FORMAT_LINE,
        f"{_VERTEX_PREFIX}{num_points}",
        *(f"{_PROPERTY_PREFIX}{n}" for n in ("x", "y", "z", "nx", "ny", "nz")),
        *(f"{_PROPERTY_PREFIX}f_dc_{k}" for k in range(3)),
        *(f"{_PROPERTY_PREFIX}f_rest_{k}" for k in range(sh_dim * 3)),
        f"{_PROPERTY_PREFIX}opacity",
        *(f"{_PROPERTY_PREFIX}scale_{k}" for k in range(3)),
        *(f"{_PROPERTY_PREFIX}rot_{k}" for k in range(4)),
        "end_header",
    ]
    return ("\n".join(lines) + "\n").encode("ascii")


def save_splat_to_ply(
    cloud: GaussianCloud, options: PackOptions | None, path: StrPath
) -> None:
    """Write a Gaussian splat to a .ply file in RDF coordinates."""
    options = options or PackOptions()
    n = cloud.num_points
    expected = {
        "positions": n * 3,
        "scales": n * 3,
        "rotations": n * 4,
        "alphas": n,
        "colors": n * 3,
    }
    for attr, size in expected.items():
        actual = len(getattr(cloud, attr))
        if actual != size:
            raise SpzError(f"{attr} has {actual} values, expected {size}")
    sh_dim = len(cloud.sh) // n // 3 if n > 0 else 0
    if sh_dim > 15:
        raise SpzError(f"too many SH coefficients per point: {sh_dim}")

    c = coordinate_converter(options.from_system, CoordinateSystem.RDF)
    flip_sh = c.flip_sh[:sh_dim]
    values: list[float] = []
    for i in range(n):
        px, py, pz = cloud.positions[i * 3 : i * 3 + 3]
        rx, ry, rz, rw = cloud.rotations[i * 4 : i * 4 + 4]
        coeffs = cloud.sh[i * sh_dim * 3 : (i + 1) * sh_dim * 3]
        values.extend(f * p for f, p in zip(c.flip_p, (px, py, pz)))
        values.extend((0.0, 0.0, 0.0))  # normals, expected by some viewers
        values.extend(cloud.colors[i * 3 : i * 3 + 3])
        for channel in range(3):
            values.extend(f * v for f, v in zip(flip_sh, coeffs[channel::3]))
        values.append(cloud.alphas[i])
        values.extend(cloud.scales[i * 3 : i * 3 + 3])
        values.append(rw)
        values.extend(f * v for f, v in zip(c.flip_q, (rx, ry, rz)))

    if len(values) != n * (17 + sh_dim * 3):
        raise SpzError("inconsistent spherical harmonics data")

    with open(path, "wb") as out:
        out.write(_header(n, sh_dim))
        out.write(_floats_to_bytes(values))