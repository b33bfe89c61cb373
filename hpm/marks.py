"""Marker geometry: turning detected ellipses into camera-framed positions.

Positions in the camera frame are numpy arrays of shape ``(3,)`` and pixel
positions are numpy arrays of shape ``(2,)``.
"""

from __future__ import annotations

import enum
import itertools
import math
import sys
from dataclasses import dataclass
from functools import cmp_to_key
from typing import MutableSequence, Sequence

import numpy as np

from hpm.util import reorder

NUMBER_OF_MARKERS = 6

_ZERO3 = (0.0, 0.0, 0.0)
_EPS = 1e-9


class MarkerType(enum.Enum):
    """Physical shape of a marker."""

    SPHERE = "sphere"
    DISK = "disk"


@dataclass(frozen=True)
class Ellipse:
    """An ellipse in pixel coordinates; ``major`` and ``minor`` are full axis lengths."""

    center: tuple[float, float]
    major: float
    minor: float
    rot: float

    def __post_init__(self) -> None:
        cx, cy = self.center
        object.__setattr__(self, "center", (float(cx), float(cy)))


@dataclass
class TwoPoses:
    """The two disk poses that are consistent with one ellipse."""

    center0: np.ndarray
    normal0: np.ndarray
    center1: np.ndarray
    normal1: np.ndarray


def _vec(values: Sequence[float], size: int) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(size)


def _signed_2d_cross(v0: Sequence[float], v1: Sequence[float], v2: Sequence[float]) -> float:
    return (v1[0] - v0[0]) * (v2[1] - v0[1]) - (v2[0] - v0[0]) * (v1[1] - v0[1])


def _fan_sort(marks: MutableSequence[Ellipse]) -> None:
    pivot = marks[0].center

    def compare(lhs: Ellipse, rhs: Ellipse) -> int:
        cross = _signed_2d_cross(pivot, lhs.center, rhs.center)
        if cross < 0.0:
            return -1
        if cross > 0.0:
            return 1
        return 0

    marks[1:] = sorted(marks[1:], key=cmp_to_key(compare))


def _rotate_left(marks: MutableSequence[Ellipse], count: int) -> None:
    marks[:] = list(marks[count:]) + list(marks[:count])


def _cyclic_errors(found: Sequence[float], expected: Sequence[float]) -> list[float]:
    n = len(found)
    return [
        sum((found[(start + j) % n] - expected[j]) ** 2 for j in range(n))
        for start in range(n)
    ]


def _loop_distances(points: Sequence[np.ndarray]) -> list[float]:
    n = len(points)
    return [float(np.linalg.norm(points[i] - points[(i + 1) % n])) for i in range(n)]


def identify(
    marks: MutableSequence[Ellipse],
    marker_diameter: float,
    mark_pos,
    focal_length: float,
    image_center: Sequence[float],
    marker_type: MarkerType,
    try_hard: bool = False,
) -> float:
    """Reorder ``marks`` in place to match the provided marker positions.

    Returns the squared error of the best match, or the largest float when
    the number of marks is wrong (the marks are then left untouched).
    """
    n = NUMBER_OF_MARKERS
    if len(marks) != n:
        return sys.float_info.max

    provided = np.asarray(mark_pos, dtype=float).reshape(-1, 3)
    _fan_sort(marks)
    positions = [
        to_position(mark, marker_diameter, focal_length, image_center, marker_type)
        for mark in marks
    ]

    if not try_hard:
        expected = _loop_distances([provided[i] for i in range(n)])
        errs = _cyclic_errors(_loop_distances(positions), expected)
        best_err = min(errs)
        _rotate_left(marks, errs.index(best_err))
        return best_err

    at_wrong_position = 0
    should_have_been_at = 0
    best_pivot = 0
    global_best = sys.float_info.max
    for excluded in range(n):
        kept = [p for i, p in enumerate(positions) if i != excluded]
        found = _loop_distances(kept)
        for excluded_from in range(n):
            expected = [
                float(
                    np.linalg.norm(
                        provided[i] - provided[(i + (2 if i + 1 == excluded_from else 1)) % n]
                    )
                )
                for i in range(n)
                if i != excluded_from
            ]
            errs = _cyclic_errors(found, expected)
            best_err = min(errs)
            if best_err < global_best:
                at_wrong_position = excluded
                should_have_been_at = excluded_from
                global_best = best_err
                best_pivot = errs.index(best_err)
                if best_pivot >= excluded:
                    best_pivot += 1

    _rotate_left(marks, best_pivot)
    reorder(marks, (at_wrong_position + (n - best_pivot)) % n, should_have_been_at)
    return global_best


def _sphere_z_from_semi_minor(
    sphere_projection: Ellipse, sphere_diameter: float, focal_length: float
) -> float:
    semi_minor = sphere_projection.minor / 2.0
    sphere_r = sphere_diameter / 2.0
    r_small = sphere_r * focal_length / math.sqrt(semi_minor**2 + focal_length**2)
    theta_z = math.atan(semi_minor / focal_length)
    return r_small * focal_length / semi_minor + sphere_r * math.sin(theta_z)


def _sphere_center_ray_from_z(sphere_diameter: float, center_distance: float, z: float) -> float:
    sphere_r = sphere_diameter / 2.0
    return center_distance * (z * z - sphere_r * sphere_r) / (z * z)


def sphere_center_ray(
    sphere_projection: Ellipse,
    sphere_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
) -> np.ndarray:
    """Pixel position where the ray through the sphere's center hits the image."""
    center = _vec(image_center, 2)
    z = _sphere_z_from_semi_minor(sphere_projection, sphere_diameter, focal_length)
    offset = _vec(sphere_projection.center, 2) - center
    c = float(np.linalg.norm(offset))
    if c == 0.0:
        return center.copy()
    ray = _sphere_center_ray_from_z(sphere_diameter, c, z)
    return center + ray * offset / c


def _sphere_angular_range(
    focal_length: float, semi_minor: float, center_distance: float, center_ray_length: float
) -> tuple[float, float]:
    c = center_distance
    semi_major = semi_minor * math.sqrt(center_ray_length * c / (focal_length**2) + 1.0)
    return math.atan((c - semi_major) / focal_length), math.atan((c + semi_major) / focal_length)


def sphere_proj_to_position(
    sphere_projection: Ellipse,
    sphere_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
) -> np.ndarray:
    """Camera-framed center of a sphere, from its projected ellipse."""
    # Only the center and minor axis are trusted; the major axis and the
    # rotation of detected sphere projections are unreliable.
    f = focal_length
    semi_minor = sphere_projection.minor / 2.0
    z = _sphere_z_from_semi_minor(sphere_projection, sphere_diameter, f)

    offset = _vec(sphere_projection.center, 2) - _vec(image_center, 2)
    c = float(np.linalg.norm(offset))
    ray = _sphere_center_ray_from_z(sphere_diameter, c, z)

    smallest, largest = _sphere_angular_range(f, semi_minor, c, ray)
    alpha = (largest + smallest) / 2.0
    theta = (largest - smallest) / 2.0

    sphere_r = sphere_diameter / 2.0
    distance = sphere_r / math.sin(theta)
    dxy = math.sin(alpha) * distance
    rot = math.atan2(offset[1], offset[0])
    return np.array([dxy * math.cos(rot), dxy * math.sin(rot), z])


def ellipse_eq_in_cam_coords2(
    ellipse: Ellipse, image_center: Sequence[float]
) -> tuple[float, float, float, float, float, float]:
    """Implicit ellipse coefficients (A, B, C, D, E, F), expanded term by term."""
    ang = ellipse.rot
    h, k = _vec(image_center, 2) - _vec(ellipse.center, 2)
    asqinv = 4.0 / (ellipse.major * ellipse.major)
    bsqinv = 4.0 / (ellipse.minor * ellipse.minor)
    cos_a, sin_a = math.cos(ang), math.sin(ang)
    cossq = cos_a * cos_a
    sinsq = sin_a * sin_a
    cossin = cos_a * sin_a
    twocossin = 2.0 * cossin

    a_coef = cossq * asqinv + sinsq * bsqinv
    b_coef = cossin * (asqinv - bsqinv)
    c_coef = sinsq * asqinv + cossq * bsqinv
    d_coef = (
        -2.0 * h * cossq * asqinv
        - twocossin * k * asqinv
        - 2.0 * h * sinsq * bsqinv
        + twocossin * k * bsqinv
    )
    e_coef = (
        -twocossin * h * asqinv
        - 2.0 * k * sinsq * asqinv
        + twocossin * h * bsqinv
        - 2.0 * k * cossq * bsqinv
    )
    f_coef = (
        h * h * cossq * asqinv
        + twocossin * h * k * asqinv
        + k * k * sinsq * asqinv
        + h * h * sinsq * bsqinv
        - twocossin * h * k * bsqinv
        + k * k * cossq * bsqinv
        - 1.0
    )
    return (
        float(a_coef),
        float(b_coef),
        float(c_coef),
        float(d_coef),
        float(e_coef),
        float(f_coef),
    )


def ellipse_eq_in_cam_coords(
    ellipse: Ellipse, image_center: Sequence[float]
) -> tuple[float, float, float, float, float, float]:
    """Implicit ellipse coefficients (A, B, C, D, E, F) relative to the image center."""
    cos_r, sin_r = math.cos(ellipse.rot), math.sin(ellipse.rot)
    rotation = np.array([[cos_r, -sin_r], [sin_r, cos_r]])
    scale = np.diag([4.0 / (ellipse.major**2), 4.0 / (ellipse.minor**2)])
    m = rotation @ (scale @ rotation.T)
    x0 = _vec(ellipse.center, 2) - _vec(image_center, 2)
    linear = 2.0 * m @ x0
    constant = float(x0 @ (m @ x0)) - 1.0
    return (
        float(m[0, 0]),
        float(m[0, 1]),
        float(m[1, 1]),
        float(linear[0]),
        float(linear[1]),
        constant,
    )


def _satisfies_chen_eqn_16(eigenvalues: np.ndarray, idx: Sequence[int]) -> bool:
    l0, l1, l2 = (eigenvalues[i] for i in idx)
    return abs(l0) >= abs(l1) and l0 * l1 > 0 and l0 * l2 < 0


def disk_proj_to_two_poses(
    disk_projection: Ellipse,
    disk_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
) -> TwoPoses:
    """The two disk center/normal candidates that project to ``disk_projection``.

    Follows Chen et al., "Camera Calibration with Two Arbitrary Coplanar
    Circles". Raises ValueError when the conic has no valid eigen-decomposition.
    """
    a, b, c, d, e, f_coef = ellipse_eq_in_cam_coords(disk_projection, image_center)
    fl = focal_length
    q = np.array(
        [
            [a, b, -d / (2.0 * fl)],
            [b, c, -e / (2.0 * fl)],
            [-d / (2.0 * fl), -e / (2.0 * fl), f_coef / (fl * fl)],
        ]
    )
    eigenvalues, eigenvectors = np.linalg.eigh(q)

    idx = [0, 1, 2]
    i = 0
    while i < 3 and not _satisfies_chen_eqn_16(eigenvalues, idx):
        idx = [i % 3, (i + 1) % 3, (i + 2) % 3]
        i += 1
        if not abs(eigenvalues[idx[0]]) >= abs(eigenvalues[idx[1]]):
            idx[0], idx[1] = idx[1], idx[0]
        if not eigenvalues[idx[0]] * eigenvalues[idx[1]] > 0.0:
            idx[1], idx[2] = idx[2], idx[1]
    if not _satisfies_chen_eqn_16(eigenvalues, idx):
        raise ValueError("could not satisfy Chen et al. eqn. 16")

    l0, l1, l2 = (float(eigenvalues[k]) for k in idx)
    v = eigenvectors[:, idx]
    radius = disk_diameter / 2.0
    ratio_a = math.sqrt(max(0.0, (l0 - l1) / (l0 - l2)))
    ratio_b = math.sqrt(max(0.0, (l1 - l2) / (l0 - l2)))

    candidates: list[tuple[np.ndarray, np.ndarray]] = []
    for s1, s2, s3 in itertools.product((1.0, -1.0), repeat=3):
        z0 = s3 * l1 * radius / math.sqrt(-l0 * l2)
        center = z0 * (v @ np.array([s2 * (l2 / l1) * ratio_a, 0.0, -s1 * (l0 / l1) * ratio_b]))
        normal = v @ np.array([s2 * ratio_a, 0.0, -s1 * ratio_b])
        candidates.append((center, normal))

    valid = [k for k, (cen, nor) in enumerate(candidates) if cen[2] > 0.0 and nor[2] < 0.0][:2]
    valid += [0] * (2 - len(valid))
    (c0, n0), (c1, n1) = candidates[valid[0]], candidates[valid[1]]
    return TwoPoses(c0, n0, c1, n1)


def _prefer_first(candidates: TwoPoses, expected_normal_direction: Sequence[float]) -> bool:
    expected = _vec(expected_normal_direction, 3)
    return bool(
        np.linalg.norm(expected) < _EPS
        or abs(expected @ candidates.normal0) > abs(expected @ candidates.normal1)
    )


def disk_proj_to_position(
    disk_projection: Ellipse,
    disk_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
    expected_normal_direction: Sequence[float],
) -> np.ndarray:
    """Disk center whose normal best matches the expected normal direction."""
    candidates = disk_proj_to_two_poses(disk_projection, disk_diameter, focal_length, image_center)
    if _prefer_first(candidates, expected_normal_direction):
        return candidates.center0
    return candidates.center1


def disk_proj_to_normal(
    disk_projection: Ellipse,
    disk_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
    expected_normal_direction: Sequence[float],
) -> np.ndarray:
    """Disk normal that best matches the expected normal direction."""
    candidates = disk_proj_to_two_poses(disk_projection, disk_diameter, focal_length, image_center)
    if _prefer_first(candidates, expected_normal_direction):
        return candidates.normal0
    return candidates.normal1


def disk_center_ray(
    disk_projection: Ellipse,
    disk_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
    expected_normal_direction: Sequence[float],
) -> np.ndarray:
    """Pixel position of the projected disk center."""
    position = disk_proj_to_position(
        disk_projection, disk_diameter, focal_length, image_center, expected_normal_direction
    )
    factor = focal_length / position[2]
    return _vec(image_center, 2) + factor * position[:2]


def to_position(
    marker_projection: Ellipse,
    marker_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
    marker_type: MarkerType,
    expected_normal_direction: Sequence[float] = _ZERO3,
) -> np.ndarray:
    """Camera-framed marker center for either marker type."""
    if marker_type is MarkerType.SPHERE:
        return sphere_proj_to_position(marker_projection, marker_diameter, focal_length, image_center)
    return disk_proj_to_position(
        marker_projection, marker_diameter, focal_length, image_center, expected_normal_direction
    )


def center_ray(
    marker_projection: Ellipse,
    marker_diameter: float,
    focal_length: float,
    image_center: Sequence[float],
    marker_type: MarkerType,
    expected_normal_direction: Sequence[float] = _ZERO3,
) -> np.ndarray:
    """Pixel position of the projected marker center for either marker type."""
    if marker_type is MarkerType.SPHERE:
        return sphere_center_ray(marker_projection, marker_diameter, focal_length, image_center)
    return disk_center_ray(
        marker_projection, marker_diameter, focal_length, image_center, expected_normal_direction
    )