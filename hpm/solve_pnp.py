"""Camera pose from identified marker centers (perspective-n-point)."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from hpm.marks import NUMBER_OF_MARKERS, Ellipse, MarkerType, center_ray

_MIN_POINTS = 4
_MIN_DLT_POINTS = 6
_PLANARITY_RATIO = 1e-3


@dataclass(eq=False)
class SixDof:
    """A pose: Rodrigues rotation vector, translation and the RMS reprojection error."""

    rotation: np.ndarray
    translation: np.ndarray
    reprojection_error: float = 0.0

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(3)
        self.translation = np.asarray(self.translation, dtype=float).reshape(3)
        self.reprojection_error = float(self.reprojection_error)

    def rot_x(self) -> float:
        return float(self.rotation[0])

    def rot_y(self) -> float:
        return float(self.rotation[1])

    def rot_z(self) -> float:
        return float(self.rotation[2])

    def x(self) -> float:
        return float(self.translation[0])

    def y(self) -> float:
        return float(self.translation[1])

    def z(self) -> float:
        return float(self.translation[2])


def _zero_positions() -> list[np.ndarray]:
    return [np.zeros(2) for _ in range(NUMBER_OF_MARKERS)]


@dataclass
class SolvePnpPoints:
    """Pixel positions of the marker centers, each flagged as identified or not.

    Given positions with no flags, every position counts as identified; with
    neither, all positions are zero and none is identified.
    """

    pixel_positions: list[np.ndarray] = field(default_factory=_zero_positions)
    identified: list[bool] | None = None

    def __post_init__(self) -> None:
        given_flags = self.identified is not None
        self.pixel_positions = [np.asarray(p, dtype=float).reshape(2) for p in self.pixel_positions]
        if not given_flags:
            all_zero = all(not p.any() for p in self.pixel_positions)
            default = not all_zero
            self.identified = [default] * len(self.pixel_positions)
        else:
            self.identified = [bool(flag) for flag in self.identified]

    @classmethod
    def from_marks(
        cls,
        marks: Sequence[Ellipse],
        marker_diameter: float,
        focal_length: float,
        image_center: Sequence[float],
        marker_type: MarkerType,
        expected_normal_direction: Sequence[float] = (0.0, 0.0, 0.0),
    ) -> "SolvePnpPoints":
        """Projected marker centers of ordered marks; none identified unless all are present."""
        if len(marks) != NUMBER_OF_MARKERS:
            return cls(_zero_positions(), [False] * NUMBER_OF_MARKERS)
        positions = [
            center_ray(
                mark,
                marker_diameter,
                focal_length,
                image_center,
                marker_type,
                expected_normal_direction,
            )
            for mark in marks
        ]
        return cls(positions, [True] * NUMBER_OF_MARKERS)

    def is_identified(self, idx: int) -> bool:
        return 0 <= idx < len(self.identified) and self.identified[idx]

    def get(self, idx: int) -> np.ndarray:
        return self.pixel_positions[idx]

    def all_identified(self) -> bool:
        return all(self.identified)

    def copy(self) -> "SolvePnpPoints":
        return SolvePnpPoints([p.copy() for p in self.pixel_positions], list(self.identified))

    def __str__(self) -> str:
        lines = []
        for idx, position in enumerate(self.pixel_positions):
            if self.is_identified(idx):
                lines.append(f"[{position[0]}, {position[1]}]")
            else:
                lines.append("?")
        return "".join(line + "\n" for line in lines)


def _project(object_points: np.ndarray, rvec: np.ndarray, tvec: np.ndarray, camera: np.ndarray) -> np.ndarray:
    rot = Rotation.from_rotvec(rvec).as_matrix()
    in_camera = object_points @ rot.T + tvec
    homogeneous = in_camera @ camera.T
    return homogeneous[:, :2] / homogeneous[:, 2:3]


def _normalizing_transform(points: np.ndarray) -> np.ndarray | None:
    centroid = points.mean(axis=0)
    mean_dist = float(np.linalg.norm(points - centroid, axis=1).mean())
    if mean_dist <= 0.0 or not math.isfinite(mean_dist):
        return None
    scale = math.sqrt(2.0) / mean_dist
    return np.array(
        [[scale, 0.0, -scale * centroid[0]], [0.0, scale, -scale * centroid[1]], [0.0, 0.0, 1.0]]
    )


def _homogeneous(points: np.ndarray) -> np.ndarray:
    return np.hstack([points, np.ones((len(points), 1))])


def _homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray | None:
    t_src = _normalizing_transform(src)
    t_dst = _normalizing_transform(dst)
    if t_src is None or t_dst is None:
        return None
    s = _homogeneous(src) @ t_src.T
    d = _homogeneous(dst) @ t_dst.T
    zeros = np.zeros_like(s)
    rows_u = np.hstack([s, zeros, -d[:, 0:1] * s])
    rows_v = np.hstack([zeros, s, -d[:, 1:2] * s])
    system = np.vstack([rows_u, rows_v])
    _, _, vt = np.linalg.svd(system)
    h = vt[-1].reshape(3, 3)
    return np.linalg.inv(t_dst) @ h @ t_src


def _nearest_rotation(matrix: np.ndarray) -> np.ndarray:
    u, _, vt = np.linalg.svd(matrix)
    rot = u @ vt
    if np.linalg.det(rot) < 0.0:
        rot = u @ np.diag([1.0, 1.0, -1.0]) @ vt
    return rot


def _planar_initial_pose(object_points: np.ndarray, normalized: np.ndarray) -> tuple[np.ndarray, np.ndarray] | None:
    mean = object_points.mean(axis=0)
    centered = object_points - mean
    _, _, basis = np.linalg.svd(centered)
    if np.linalg.det(basis) < 0.0:
        basis[2] = -basis[2]
    plane_coords = centered @ basis.T
    h = _homography(plane_coords[:, :2], normalized)
    if h is None:
        return None
    h1, h2, h3 = h[:, 0], h[:, 1], h[:, 2]
    norm_product = float(np.linalg.norm(h1) * np.linalg.norm(h2))
    if norm_product <= 0.0:
        return None
    lam = 1.0 / math.sqrt(norm_product)
    r1, r2, t_plane = lam * h1, lam * h2, lam * h3
    if t_plane[2] < 0.0:
        r1, r2, t_plane = -r1, -r2, -t_plane
    rot_plane = _nearest_rotation(np.column_stack([r1, r2, np.cross(r1, r2)]))
    rot = rot_plane @ basis
    return rot, t_plane - rot @ mean


def _dlt_initial_pose(object_points: np.ndarray, normalized: np.ndarray) -> tuple[np.ndarray, np.ndarray] | None:
    obj = _homogeneous(object_points)
    zeros = np.zeros_like(obj)
    rows_u = np.hstack([obj, zeros, -normalized[:, 0:1] * obj])
    rows_v = np.hstack([zeros, obj, -normalized[:, 1:2] * obj])
    _, _, vt = np.linalg.svd(np.vstack([rows_u, rows_v]))
    projection = vt[-1].reshape(3, 4)
    if np.linalg.det(projection[:, :3]) < 0.0:
        projection = -projection
    u, s, vt_m = np.linalg.svd(projection[:, :3])
    scale = float(s.mean())
    if scale <= 0.0:
        return None
    return u @ vt_m, projection[:, 3] / scale


def solve_pnp(camera_matrix, provided_positions, points: SolvePnpPoints) -> SixDof | None:
    """Pose of the provided marker layout relative to the camera.

    Only identified points are used. Returns None when no pose can be found;
    raises ValueError with fewer than four usable points.
    """
    camera = np.asarray(camera_matrix, dtype=float).reshape(3, 3)
    provided = np.asarray(provided_positions, dtype=float).reshape(-1, 3)
    used = [i for i in range(len(provided)) if points.is_identified(i)]
    if len(used) < _MIN_POINTS:
        raise ValueError(f"need at least {_MIN_POINTS} identified points, got {len(used)}")

    object_points = provided[used]
    image_points = np.array([points.get(i) for i in used], dtype=float)
    normalized = (_homogeneous(image_points) @ np.linalg.inv(camera).T)
    normalized = normalized[:, :2] / normalized[:, 2:3]

    singular = np.linalg.svd(object_points - object_points.mean(axis=0), compute_uv=False)
    planar = singular[0] == 0.0 or singular[2] / singular[0] < _PLANARITY_RATIO
    if planar or len(used) < _MIN_DLT_POINTS:
        initial = _planar_initial_pose(object_points, normalized)
    else:
        initial = _dlt_initial_pose(object_points, normalized)
    if initial is None:
        return None
    rot, tvec = initial
    start = np.concatenate([Rotation.from_matrix(rot).as_rotvec(), tvec])
    if not np.all(np.isfinite(start)):
        return None

    def residuals(params: np.ndarray) -> np.ndarray:
        return (_project(object_points, params[:3], params[3:], camera) - image_points).ravel()

    fit = least_squares(residuals, start, method="lm", xtol=1e-15, ftol=1e-15, gtol=1e-15)
    params = fit.x
    if not np.all(np.isfinite(params)):
        return None
    projected = _project(object_points, params[:3], params[3:], camera)
    rmse = float(np.linalg.norm(projected - image_points) / math.sqrt(2 * len(projected)))
    return SixDof(params[:3], params[3:], rmse)


def try_hard_solve_pnp(camera_matrix, provided_positions, points: SolvePnpPoints) -> SixDof | None:
    """Best pose found while leaving out one marker at a time.

    The left-out marker of the best pose is marked as not identified in
    ``points``. Returns None unless all points are identified.
    """
    if not points.all_identified():
        return None
    trial = points.copy()
    results: list[SixDof] = []
    for idx in range(NUMBER_OF_MARKERS):
        trial.identified[idx] = False
        result = solve_pnp(camera_matrix, provided_positions, trial)
        trial.identified[idx] = True
        if result is None:
            raise RuntimeError(f"no pose found with marker {idx} left out")
        results.append(result)
    excluded = min(range(len(results)), key=lambda i: results[i].reprojection_error)
    points.identified[excluded] = False
    return results[excluded]