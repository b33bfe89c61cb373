# hpm

Geometry for locating circular markers (spheres or flat disks) seen by a
calibrated pinhole camera, and for recovering the pose of a group of six such
markers with a perspective-n-point solver.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `hpm.util`

- `sphere_to_ellipse_width_height(sphere_center, focal_length, sphere_radius)`
  projects a sphere through a pinhole camera and returns an
  `EllipseProjection` (`width`, `height`, and the offset `xt`, `yt` of the
  ellipse centre from the image centre). Sphere centre and radius share
  units; the result is in the units of the focal length.
- `sphere_to_ellipse_width_height2(...)` computes the same width and height
  by a geometric derivation and returns them as a pair.
- `reorder(items, old_index, new_index)` moves one item of a list in place,
  shifting the items in between.

### `hpm.marks`

- `Ellipse(center, major, minor, rot)`: an ellipse in pixel coordinates, with
  full axis lengths and a rotation in radians.
- `MarkerType.SPHERE` and `MarkerType.DISK`.
- `ellipse_eq_in_cam_coords` and `ellipse_eq_in_cam_coords2` return the
  implicit ellipse coefficients `(A, B, C, D, E, F)` relative to the image
  centre, computed two independent ways.
- `to_position` gives a marker's centre in the camera frame (a numpy array of
  shape `(3,)`), dispatching to `sphere_proj_to_position` or
  `disk_proj_to_position`.
- `disk_proj_to_two_poses` returns a `TwoPoses` with the two centre/normal
  candidates for a disk; it raises `ValueError` when the conic has no valid
  decomposition. `disk_proj_to_position` and `disk_proj_to_normal` pick the
  candidate whose normal best matches an expected normal direction (the first
  candidate when that direction is zero).
- `center_ray`, `sphere_center_ray` and `disk_center_ray` give the pixel at
  which a marker's centre projects.
- `identify(marks, marker_diameter, mark_pos, focal_length, image_center,
  marker_type, try_hard=False)` reorders six detected marks in place to match
  the known marker layout and returns the squared distance error of the best
  match. With a number of marks other than six it leaves them alone and
  returns the largest float. With `try_hard`, one mark that seems to be at the
  wrong place in the order is moved to where it fits best.

### `hpm.solve_pnp`

- `SolvePnpPoints`: six pixel positions with a flag per position telling
  whether it was identified. Built from positions alone, every non-zero set
  counts as identified; `SolvePnpPoints.from_marks(...)` computes the
  positions from six ordered marks via `center_ray`, and flags none when the
  number of marks is wrong. Methods: `is_identified`, `get`,
  `all_identified`, `copy`.
- `SixDof`: a Rodrigues rotation vector, a translation and the RMS
  reprojection error, with accessors `rot_x()`, `rot_y()`, `rot_z()`, `x()`,
  `y()`, `z()`.
- `solve_pnp(camera_matrix, provided_positions, points)` fits the pose of the
  provided marker layout using only identified points. It returns `None` when
  no pose can be found and raises `ValueError` with fewer than four
  identified points.
- `try_hard_solve_pnp(camera_matrix, provided_positions, points)` solves once
  per marker with that marker left out, returns the pose with the lowest
  reprojection error, and marks the left-out marker as not identified in
  `points`. It returns `None` unless all points are identified.

## Example

```python
from hpm.marks import Ellipse, MarkerType, to_position

focal_length = 3000.0
image_center = (1000.0, 1000.0)
ellipse = Ellipse(center=(1000.0, 1000.0), major=210.0, minor=210.0, rot=0.0)

position = to_position(ellipse, 70.0, focal_length, image_center,
                       MarkerType.DISK, (0.0, 0.0, -1.0))
print(position)  # close to (0, 0, 1000)
```

```python
import numpy as np
from hpm.solve_pnp import SolvePnpPoints, solve_pnp

camera_matrix = np.array([[3000.0, 0.0, 1000.0],
                          [0.0, 3000.0, 1000.0],
                          [0.0, 0.0, 1.0]])
provided = np.array([[-1, -1, 0], [1, -1, 0], [1, 0, 0],
                     [1, 1, 0], [-1, 1, 0], [-1, 0, 0]], dtype=float)
points = SolvePnpPoints([(900, 900), (1100, 900), (1100, 1000),
                         (1100, 1100), (900, 1100), (900, 1000)])
pose = solve_pnp(camera_matrix, provided, points)
print(pose.x(), pose.y(), pose.z(), pose.reprojection_error)
```

## What this package does not do

It works on ellipses and pixel positions that are already known. It does not
read images, detect ellipses in them, undistort them, draw results or show
windows, read camera or marker parameter files, and it has no command-line
program.