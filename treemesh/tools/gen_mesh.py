import logging
import math
import numbers
from pathlib import Path

import numpy as np
import trimesh

from treemesh.tools.common import vec3
from treemesh.tools.errors import ConfigurationError, GeometryError

logger = logging.getLogger(__name__)

POSITION_DTYPE = np.float32
INDEX_DTYPE = np.uint32


class TreeMesh:
    """
    Tube mesh of a branch tree, ready for upload to a GPU buffer.

    - positions: (N, 3) float32 array, two rings of 'radial_resolution'
      vertices per branch (start ring first, then end ring)
    - indices: flat uint32 triangle list, 6 * radial_resolution per branch

    Both arrays are read-only.
    """
    def __init__(self, positions, indices, radial_resolution, branch_count):
        self.positions = positions
        self.indices = indices
        self.radial_resolution = radial_resolution
        self.branch_count = branch_count
        self.positions.flags.writeable = False
        self.indices.flags.writeable = False

    @property
    def vertex_count(self):
        return len(self.positions)

    @property
    def triangle_count(self):
        return len(self.indices) // 3

    @property
    def faces(self):
        return self.indices.reshape(-1, 3)

    def bounds(self):
        return self.positions.min(axis=0), self.positions.max(axis=0)

    def __iter__(self):
        return iter((self.positions, self.indices))


def _build_local_frame(forward: vec3):
    """
    Builds a local orthonormal frame (side1, side2) perpendicular to the unit
    vector 'forward', with side1 x side2 == forward.
    """
    up_candidate = vec3(0, 1, 0)
    # If they are nearly parallel, change the candidate
    if abs(forward.dot(up_candidate)) > 0.999:
        up_candidate = vec3(1, 0, 0)

    side1 = forward.cross(up_candidate).normalized()
    side2 = forward.cross(side1).normalized()
    return side1, side2


def _transport_frame(prev_forward: vec3, prev_side1: vec3, forward: vec3):
    """
    Carry 'prev_side1' from 'prev_forward' to 'forward' with the smallest
    rotation, so consecutive rings stay phase aligned without twisting.
    """
    axis = prev_forward.cross(forward)
    if axis.length() > 1e-10:
        side1 = prev_side1.rotate(axis, prev_forward.angle(forward))
    elif prev_forward.dot(forward) > 0:
        side1 = prev_side1
    else:
        return _build_local_frame(forward)

    # Re-orthogonalise against rounding drift
    side1 = side1 - forward * side1.dot(forward)
    if side1.length() < 1e-10:
        return _build_local_frame(forward)
    side1 = side1.normalized()
    side2 = forward.cross(side1).normalized()
    return side1, side2


def _segment_direction(index, branch):
    if not (branch.start_point.is_finite() and branch.end_point.is_finite()):
        raise GeometryError(f"Branch {index} has a non-finite end point.", branch_index=index)
    segment = branch.end_point - branch.start_point
    length = segment.length()
    if length == 0.0:
        raise GeometryError(
            f"Branch {index} has zero length (start and end at {branch.start_point}).",
            branch_index=index,
        )
    return segment / length


def _check_radius(index, radius):
    if not math.isfinite(radius) or radius <= 0:
        raise GeometryError(f"Branch {index} has invalid radius {radius!r}.", branch_index=index)


def _side_indices(radial_resolution):
    """
    Local indices of one tube side: ring vertex i of the start ring is i, of
    the end ring radial_resolution + i. Each quad is split along the
    start[i] -> end[i + 1] diagonal, counter-clockwise seen from outside.
    """
    i = np.arange(radial_resolution, dtype=np.int64)
    i_next = (i + 1) % radial_resolution
    s_i, s_n = i, i_next
    e_i, e_n = i + radial_resolution, i_next + radial_resolution
    quads = np.stack([s_i, s_n, e_n, s_i, e_n, e_i], axis=1)
    return quads.reshape(-1)


def _ring(center: vec3, side1: vec3, side2: vec3, radius: float, cos_a, sin_a):
    c = np.array(center.to_tuple(), dtype=np.float64)
    s1 = np.array(side1.to_tuple(), dtype=np.float64)
    s2 = np.array(side2.to_tuple(), dtype=np.float64)
    return c + radius * (np.outer(cos_a, s1) + np.outer(sin_a, s2))


def tessellate(tree, radial_resolution):
    """
    Tessellate every branch of 'tree' into a closed tube side.

    :param tree:               BranchTree to mesh
    :param radial_resolution:  Vertices per ring, at least 3
    :return:                   (positions, indices) numpy arrays;
                               len(positions) == 2 * radial_resolution * len(tree),
                               len(indices) == 6 * radial_resolution * len(tree)
    :raises ConfigurationError: for a resolution that cannot form a tube
    :raises GeometryError:      for a zero-length or non-finite segment
    """
    if isinstance(radial_resolution, bool) or not isinstance(radial_resolution, numbers.Integral):
        raise ConfigurationError(f"radial_resolution must be an integer, got {radial_resolution!r}")
    if radial_resolution < 3:
        raise ConfigurationError(f"radial_resolution must be at least 3, got {radial_resolution}")
    radial_resolution = int(radial_resolution)

    ring_size = radial_resolution
    verts_per_branch = 2 * ring_size
    indices_per_branch = 6 * ring_size

    positions = np.empty((len(tree) * verts_per_branch, 3), dtype=POSITION_DTYPE)
    indices = np.empty(len(tree) * indices_per_branch, dtype=INDEX_DTYPE)
    side = _side_indices(ring_size)

    angles = 2.0 * np.pi * np.arange(ring_size) / ring_size
    cos_a, sin_a = np.cos(angles), np.sin(angles)

    # (forward, side1) of every branch already meshed, needed by its clones
    frames = [None] * len(tree)

    for slot, (index, branch) in enumerate(tree.walk()):
        forward = _segment_direction(index, branch)
        _check_radius(index, branch.start_radius)
        _check_radius(index, branch.end_radius)

        parent_frame = frames[index]
        if branch.is_clone and parent_frame is not None:
            side1, side2 = _transport_frame(parent_frame[0], parent_frame[1], forward)
        else:
            side1, side2 = _build_local_frame(forward)
        for child_index in branch.children:
            frames[child_index] = (forward, side1)

        base = slot * verts_per_branch
        positions[base:base + ring_size] = _ring(
            branch.start_point, side1, side2, branch.start_radius, cos_a, sin_a)
        positions[base + ring_size:base + verts_per_branch] = _ring(
            branch.end_point, side1, side2, branch.end_radius, cos_a, sin_a)

        offset = slot * indices_per_branch
        indices[offset:offset + indices_per_branch] = side + base

    logger.debug("Tessellated %d branches into %d vertices and %d triangles",
                 len(tree), len(positions), len(indices) // 3)
    return positions, indices


def generate_tree_mesh(tree, radial_resolution=8):
    """Tessellate 'tree' and wrap the buffers in a TreeMesh."""
    positions, indices = tessellate(tree, radial_resolution)
    return TreeMesh(positions, indices, radial_resolution, len(tree))


def export_mesh_to_obj(filename, mesh: TreeMesh, name="tree"):
    """
    Exports mesh data to a simple OBJ file.

    :param filename:  The output OBJ filename
    :param mesh:      TreeMesh to write
    :param name:      Group name written before the faces
    """
    with open(filename, "w", encoding="utf-8") as f:
        # Write out vertex positions
        for x, y, z in mesh.positions:
            f.write(f"v {x} {y} {z}\n")
        f.write(f"g {name}\n")
        # Note: OBJ format uses 1-based indexing
        for i1, i2, i3 in mesh.faces:
            f.write(f"f {i1 + 1} {i2 + 1} {i3 + 1}\n")


def to_trimesh(mesh: TreeMesh):
    """Wrap the buffers in a trimesh.Trimesh, keeping vertex order as is."""
    return trimesh.Trimesh(
        vertices=np.asarray(mesh.positions, dtype=np.float64),
        faces=np.asarray(mesh.faces, dtype=np.int64),
        process=False,
    )


def export_mesh(path, mesh: TreeMesh):
    """Write '.obj' with the plain writer, any other suffix through trimesh."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".obj":
        export_mesh_to_obj(path, mesh)
    else:
        to_trimesh(mesh).export(path)
    return path
