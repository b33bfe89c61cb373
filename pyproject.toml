[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hpm"
version = "0.1.0"
description = "Marker geometry and perspective-n-point pose estimation for measuring a printer effector from camera images"
requires-python = ">=3.10"
keywords = ["pose estimation", "pnp", "ellipse", "markers", "computer vision", "3d printer"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["hpm"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
