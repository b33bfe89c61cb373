"""Geometry helpers for projecting spheres onto the image plane."""

from __future__ import annotations

import math
from typing import MutableSequence, NamedTuple, Sequence, TypeVar

import numpy as np

T = TypeVar("T")

_L = np.longdouble


class EllipseProjection(NamedTuple):
    """Full width and height of a projected ellipse and its offset from the image center."""

    width: float
    height: float
    xt: float
    yt: float


def reorder(items: MutableSequence[T], old_index: int, new_index: int) -> None:
    """Move the item at ``old_index`` to ``new_index`` in place, shifting the items between."""
    items.insert(new_index, items.pop(old_index))


def sphere_to_ellipse_width_height(
    sphere_center: Sequence[float], focal_length: float, sphere_radius: float
) -> EllipseProjection:
    """Project a sphere through a pinhole camera and measure the resulting ellipse.

    ``sphere_center`` and ``sphere_radius`` share units; the result is in the
    units of ``focal_length``.
    """
    x, y, z = (_L(c) for c in sphere_center)
    r = _L(sphere_radius)
    f = _L(focal_length)

    # Implicit ellipse: a x^2 + 2b'' xy + a' y^2 + 2b' x + 2b y + a'' = 0
    a = -y * y - z * z + r * r
    bpp = x * y
    ap = -x * x - z * z + r * r
    bp = x * f * z
    b = y * f * z
    app = f * f * (-x * x - y * y + r * r)

    # Translate to remove the linear terms.
    yt = (-b + bpp * bp / a) / (ap - bpp * bpp / a)
    xt = (-bp - bpp * yt) / a
    appp = (
        a * xt * xt
        + _L(2) * bpp * xt * yt
        + ap * yt * yt
        + _L(2) * bp * xt
        + _L(2) * b * yt
    ) + app

    # Rotate onto the principal axes: eigenvalues of [[a, b''], [b'', a']].
    half_diff = (a - ap) / _L(2)
    discrepand = np.sqrt(half_diff * half_diff + bpp * bpp)
    mean = (a + ap) / _L(2)
    r0 = mean + discrepand
    r1 = mean - discrepand

    width = _L(2) * np.sqrt(abs(appp / r0))
    height = _L(2) * np.sqrt(abs(appp / r1))
    return EllipseProjection(float(width), float(height), float(xt), float(yt))


def sphere_to_ellipse_width_height2(
    sphere_center: Sequence[float], focal_length: float, sphere_radius: float
) -> tuple[float, float]:
    """Width and height of a projected sphere, derived geometrically."""
    x, y, z = (_L(c) for c in sphere_center)
    dist = _L(math.sqrt(sum(float(c) * float(c) for c in sphere_center)))
    r = _L(sphere_radius)
    f = _L(focal_length)

    # The height depends only on z.
    gamma_c = np.arcsin(r / z)
    closer_r = r * np.cos(gamma_c)
    closer_z = z - r * np.sin(gamma_c)
    height = f * _L(2) * closer_r / closer_z

    # The sphere projects like a slightly closer, slightly smaller disc.
    mid_ang = np.arctan(np.sqrt(x * x + y * y) / z)
    gamma = np.arcsin(r / dist)
    width = f * (np.tan(mid_ang + gamma) - np.tan(mid_ang - gamma))
    return float(width), float(height)