[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "spzformat"
version = "1.1.0"
description = "Read, write and convert compressed 3D Gaussian splats in the SPZ format and binary PLY"
requires-python = ">=3.10"
dependencies = []
keywords = ["gaussian-splatting", "spz", "ply", "3d", "point-cloud", "compression"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Graphics Conversion",
    "Topic :: Multimedia :: Graphics :: 3D Rendering",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
spz-convert = "spzformat.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["spzformat"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
