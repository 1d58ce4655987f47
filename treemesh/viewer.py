import math
import time
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.mplot3d.art3d import Poly3DCollection

from treemesh.tools.gen_mesh import TreeMesh
from treemesh.tools.gen_nodes import BranchTree

LEFT_KEYS = ("left", "a")
RIGHT_KEYS = ("right", "d")


def look_at(eye, target, up=(0.0, 1.0, 0.0)) -> np.ndarray:
    """
    Right-handed view matrix looking from 'eye' at 'target'.
    The camera looks down its local -Z axis, +Y is up.
    """
    eye = np.asarray(eye, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    up = np.asarray(up, dtype=np.float64)

    forward = target - eye
    forward_norm = np.linalg.norm(forward)
    if forward_norm < 1e-12:
        raise ValueError("eye and target must be distinct points")
    forward /= forward_norm

    right = np.cross(forward, up)
    right_norm = np.linalg.norm(right)
    if right_norm < 1e-12:
        raise ValueError("up must not be parallel to the viewing direction")
    right /= right_norm
    true_up = np.cross(right, forward)

    view = np.eye(4, dtype=np.float32)
    view[0, :3] = right
    view[1, :3] = true_up
    view[2, :3] = -forward
    view[:3, 3] = [-np.dot(right, eye), -np.dot(true_up, eye), np.dot(forward, eye)]
    return view


class OrbitCamera:
    """
    Camera circling the tree around the vertical axis.

    Held left/right keys turn the orbit at 'speed' radians per second;
    frame times are clamped to 'max_dt' so a stalled frame does not jump.
    """
    def __init__(self, radius=1.0, height=0.0, target=(0.0, 0.0, 0.0), speed=2.0, max_dt=1.0 / 30.0):
        self.radius = radius
        self.height = height
        self.target = tuple(target)
        self.speed = speed
        self.max_dt = max_dt
        self.angle = 0.0
        self.left_pressed = False
        self.right_pressed = False
        self.last_tick = None

    def handle_key(self, key, pressed: bool) -> bool:
        """Record a key state change; returns False for keys the camera ignores."""
        if key is None:
            return False
        key = key.lower()
        if key in LEFT_KEYS:
            self.left_pressed = pressed
        elif key in RIGHT_KEYS:
            self.right_pressed = pressed
        else:
            return False
        return True

    def update(self, dt: float) -> float:
        dt = min(max(dt, 0.0), self.max_dt)
        v = 0.0
        if self.left_pressed:
            v -= self.speed
        if self.right_pressed:
            v += self.speed
        self.angle += v * dt
        return self.angle

    def tick(self, now=None) -> float:
        """Advance by the time measured since the previous tick; the first tick starts the clock."""
        if now is None:
            now = time.perf_counter()
        dt = 0.0 if self.last_tick is None else now - self.last_tick
        self.last_tick = now
        return self.update(dt)

    def eye(self):
        tx, ty, tz = self.target
        return (tx + math.sin(self.angle) * self.radius,
                ty + self.height,
                tz + math.cos(self.angle) * self.radius)

    def view_matrix(self) -> np.ndarray:
        return look_at(self.eye(), self.target)

    def azimuth_degrees(self) -> float:
        """Matplotlib azimuth matching the current orbit angle (y-up scene drawn z-up)."""
        return 90.0 - math.degrees(self.angle)


def _to_plot(points):
    # Scenes are y-up, matplotlib 3D axes are z-up
    points = np.asarray(points)
    return points[..., 0], points[..., 2], points[..., 1]


def _set_equal_limits(ax, points):
    mins, maxs = points.min(axis=0), points.max(axis=0)
    max_range = float(np.max(maxs - mins)) or 1.0
    mids = (maxs + mins) / 2
    ax.set_xlim(mids[0] - max_range / 2, mids[0] + max_range / 2)
    ax.set_ylim(mids[2] - max_range / 2, mids[2] + max_range / 2)
    ax.set_zlim(mids[1] - max_range / 2, mids[1] + max_range / 2)


def visualize_tree(tree: BranchTree, ax):
    """
    Draw the branch skeleton: stems in green, laterals in blue.
    :param tree: BranchTree to draw.
    :param ax: Matplotlib 3D axis.
    """
    points = []
    for _, branch in tree.walk():
        start, end = branch.start_point.to_tuple(), branch.end_point.to_tuple()
        xs, ys, zs = _to_plot([start, end])
        color = "g" if branch.is_stem else "b"
        ax.plot(xs, ys, zs, color=color, linewidth=0.8)
        ax.scatter(*_to_plot([end]), c=color, s=6)
        points.extend([start, end])
    _set_equal_limits(ax, np.array(points))


def save_structure_png(tree: BranchTree, path, dpi=300):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")
    ax.set_title("3D Tree Visualization")
    ax.set_xlabel("X")
    ax.set_ylabel("Z")
    ax.set_zlabel("Y")
    visualize_tree(tree, ax)
    fig.savefig(path, dpi=dpi)
    plt.close(fig)


def show_mesh(mesh: TreeMesh, camera=None, interval_ms=16):
    """
    Open an interactive window with the tube mesh.
    Left/right (or A/D) orbit the camera around the vertical axis.
    """
    positions = np.asarray(mesh.positions, dtype=np.float64)
    if camera is None:
        lo, hi = mesh.bounds()
        camera = OrbitCamera(radius=float(np.max(hi - lo)) or 1.0,
                             target=tuple((np.asarray(lo) + np.asarray(hi)) / 2))

    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")
    ax.set_title("Tree mesh (left/right to orbit)")
    xs, ys, zs = _to_plot(positions)
    triangles = np.stack([xs, ys, zs], axis=-1)[mesh.faces]
    ax.add_collection3d(Poly3DCollection(triangles, facecolor="saddlebrown", edgecolor="k", linewidths=0.1))
    _set_equal_limits(ax, positions)
    ax.view_init(elev=15, azim=camera.azimuth_degrees())

    fig.canvas.mpl_connect("key_press_event", lambda event: camera.handle_key(event.key, True))
    fig.canvas.mpl_connect("key_release_event", lambda event: camera.handle_key(event.key, False))

    def on_timer():
        camera.tick()
        ax.view_init(elev=15, azim=camera.azimuth_degrees())
        fig.canvas.draw_idle()

    timer = fig.canvas.new_timer(interval=interval_ms)
    timer.add_callback(on_timer)
    camera.tick()
    timer.start()
    plt.show()
    return camera
