"""Command-line converter between .ply and .spz splat files."""

from __future__ import annotations

import sys
from collections.abc import Sequence

from .packed import PackOptions, UnpackOptions, load_spz_file, save_spz_file
from .ply import load_splat_from_ply, save_splat_to_ply
from .types import SpzError

_PROG = "gaussian_converter"


def main(argv: Sequence[str] | None = None) -> int:
    """Run the converter; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 3:
        print(f"Usage: {_PROG} <format> <input_file> <output_file>", file=sys.stderr)
        return 1
    fmt, input_file, output_file = args
    try:
        if fmt == "ply_to_spz":
            cloud = load_splat_from_ply(input_file, UnpackOptions())
            save_spz_file(cloud, PackOptions(), output_file)
        elif fmt == "spz_to_ply":
            cloud = load_spz_file(input_file, UnpackOptions())
            save_splat_to_ply(cloud, PackOptions(), output_file)
        else:
            print("Invalid format. Use 'ply_to_spz' or 'spz_to_ply'.", file=sys.stderr)
            return 1
    except (SpzError, OSError) as exc:
        print(f"[SPZ ERROR] {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())