# spzformat

Read and write 3D Gaussian splats in the compact SPZ format, and convert
between SPZ and the binary little-endian PLY layout used by common
Gaussian-splatting trainers.

A `.spz` file is a gzip-compressed stream with a 16-byte header followed by,
for each gaussian, a 24-bit fixed-point position, an 8-bit opacity, base
colour, log-scale, rotation (xyz of a unit quaternion with non-negative w)
and optional spherical harmonics of degree 1 to 3, each quantised to 8 bits
or fewer. Files with the older half-precision positions (version 1) can
still be read; files are always written as version 2.

## Installation

```
pip install .
```

The package needs only the Python standard library (Python 3.10 or later).
To run the tests, install the `test` extra and run `pytest`.

## Command line

```
spz-convert ply_to_spz input.ply output.spz
spz-convert spz_to_ply input.spz output.ply
```

The first argument picks the direction. With the wrong number of arguments
the command prints a usage line and exits with status 1; an unknown
direction also exits with status 1. If the input is malformed or a file
cannot be read or written, it prints `[SPZ ERROR]` and the reason to
standard error and exits with status 1. The same command is available as
`python -m spzformat.cli`.

## Library use

```python
from spzformat.ply import load_splat_from_ply, save_splat_to_ply
from spzformat.packed import (
    PackOptions,
    UnpackOptions,
    save_spz_file,
    load_spz_file,
)
from spzformat.types import CoordinateSystem

cloud = load_splat_from_ply("scene.ply", UnpackOptions())
print(cloud.num_points, cloud.sh_degree, cloud.median_volume())

save_spz_file(cloud, PackOptions(), "scene.spz")

restored = load_spz_file("scene.spz", UnpackOptions(to_system=CoordinateSystem.RUB))
save_splat_to_ply(restored, PackOptions(from_system=CoordinateSystem.RUB), "copy.ply")
```

### Modules

- `spzformat.types`: `GaussianCloud` (flat lists of positions, log-scales,
  xyzw rotations, pre-sigmoid alphas, DC colours and SH coefficients, with
  `check_sizes()`, `convert_coordinates()`, `rotate_180_deg_about_x()` and
  `median_volume()`), `CoordinateSystem`, `CoordinateConverter`,
  `coordinate_converter()`, `axes_match()`, `SpzError`, half-precision
  helpers (`half_to_float`, `float_to_half`) and small vector and
  quaternion helpers (`dot`, `norm`, `normalized`, `quat_times`,
  `rotate_vector`, `axis_angle_quat`).
- `spzformat.packed`: the quantised form and the `.spz` container.
  `pack_gaussians` / `unpack_gaussians` convert between `GaussianCloud` and
  `PackedGaussians`; `serialize_packed_gaussians` /
  `deserialize_packed_gaussians` handle the uncompressed layout;
  `compress_gzipped` / `decompress_gzipped` wrap it in gzip.
  `save_spz(cloud, options)` and `load_spz(data, options)` work on `bytes`;
  `save_spz_file`, `load_spz_file` and `load_spz_packed_file` work on paths.
  `load_spz_packed` returns a `PackedGaussians` without inflating it, and
  `PackedGaussians.at(i)` or `PackedGaussians.unpack(i, converter)` give a
  single `PackedGaussian` or `UnpackedGaussian`.
- `spzformat.ply`: `load_splat_from_ply(path, options)` and
  `save_splat_to_ply(cloud, options, path)`. Only
  `format binary_little_endian 1.0` files whose vertex properties are all
  `float` are read; up to 10,485,760 points.
- `spzformat.cli`: `main(argv=None)`, the converter command.

### Coordinate systems

`CoordinateSystem` names the direction of each axis (for example `RUB`,
right-up-back, or `RDF`, right-down-front, the PLY convention). SPZ data is
stored in RUB and PLY data in RDF. Pass `PackOptions(from_system=...)` to
say what the cloud uses when saving, and `UnpackOptions(to_system=...)` to
choose what you get back when loading. `UNSPECIFIED` leaves the axes alone.
`GaussianCloud.convert_coordinates(from_system, to_system)` converts a cloud
in place, flipping positions, quaternion components and the matching
spherical-harmonic coefficients.

### Errors

Malformed input raises `spzformat.types.SpzError`, a subclass of
`ValueError`: a bad header, an unsupported version or SH degree, more than
10,000,000 points in a `.spz` file, truncated or invalid gzip data,
an unsupported PLY property type, a missing PLY field, mismatched array
sizes, or a zero-length rotation when packing. Missing or unreadable files
raise the usual `OSError`. `PackedGaussians.at` raises `IndexError` for an
index outside the cloud.

## What it does not do

This package only reads, writes and converts splat data. It does not render
or display splats, and it reads only binary little-endian PLY files with
float properties, not ASCII or other PLY variants.