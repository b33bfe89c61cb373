"""Marker geometry and perspective-n-point pose estimation for a pinhole camera."""

__version__ = "0.1.0"
__all__ = ["marks", "solve_pnp", "util"]