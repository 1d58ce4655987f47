import logging
import math
import numbers
import random
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, fields, replace

from treemesh.tools.common import vec3
from treemesh.tools.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Branch:
    """
    One tube segment of the tree.

    Parameters:
      - start_point (vec3): Base of the segment, equal to the parent's end_point.
      - end_point (vec3): Tip of the segment.
      - direction (vec3): Unit growth direction of the segment.
      - start_radius, end_radius (float): Tube radius at either end (tapered).
      - depth (int): Number of ancestor branches, 0 for the trunk.
      - is_clone (bool): Stem clone (continues the parent) or lateral branch.
      - children: Arena indices of the child branches.
    """
    start_point: vec3
    end_point: vec3
    direction: vec3
    start_radius: float
    end_radius: float
    depth: int
    is_clone: bool
    children: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def is_stem(self):
        """The trunk and its clones form the stem; only stems produce clones."""
        return self.depth == 0 or self.is_clone

    @property
    def length(self):
        return (self.end_point - self.start_point).length()

    def __repr__(self):
        kind = "clone" if self.is_clone else "lateral"
        return (f"Branch(depth={self.depth}, {kind}, {self.start_point} -> {self.end_point}, "
                f"children={list(self.children)})")


class BranchTree:
    """
    Arena of branches addressed by index, index 0 being the trunk.

    Children always have a larger index than their parent, which keeps the
    arena acyclic and lets every traversal run without recursion.
    """
    def __init__(self, branches):
        self._branches = tuple(branches)
        self._check_structure()

    def _check_structure(self):
        if not self._branches:
            raise ConfigurationError("A branch tree needs at least a root branch.")
        root = self._branches[0]
        if root.depth != 0 or root.is_clone:
            raise ConfigurationError("The root branch must have depth 0 and must not be a clone.")

        seen = set()
        for index, branch in enumerate(self._branches):
            for child_index in branch.children:
                if not index < child_index < len(self._branches):
                    raise ConfigurationError(
                        f"Branch {index} references invalid child index {child_index}."
                    )
                if child_index in seen:
                    raise ConfigurationError(f"Branch {child_index} has more than one parent.")
                seen.add(child_index)
                child = self._branches[child_index]
                if child.depth != branch.depth + 1:
                    raise ConfigurationError(
                        f"Branch {child_index} has depth {child.depth}, expected {branch.depth + 1}."
                    )
                if child.start_point != branch.end_point:
                    raise ConfigurationError(
                        f"Branch {child_index} does not start at the end of its parent {index}."
                    )
        if len(seen) != len(self._branches) - 1:
            raise ConfigurationError("Every branch except the root must have exactly one parent.")

    @property
    def root(self):
        return self._branches[0]

    def __len__(self):
        return len(self._branches)

    def __getitem__(self, index):
        return self._branches[index]

    def __iter__(self):
        return iter(self._branches)

    def children_of(self, branch):
        if isinstance(branch, Branch):
            return [self._branches[i] for i in branch.children]
        return [self._branches[i] for i in self._branches[branch].children]

    def walk(self):
        """Pre-order traversal yielding (index, branch)."""
        stack = [0]
        while stack:
            index = stack.pop()
            branch = self._branches[index]
            yield index, branch
            stack.extend(reversed(branch.children))

    def max_depth(self):
        return max(branch.depth for branch in self._branches)

    def depth_histogram(self):
        histogram = [0] * (self.max_depth() + 1)
        for branch in self._branches:
            histogram[branch.depth] += 1
        return histogram

    def leaves(self):
        return [branch for branch in self._branches if not branch.children]

    def structure(self):
        """Pre-order (depth, is_clone, child count) signature for structural comparison."""
        return tuple((b.depth, b.is_clone, len(b.children)) for _, b in self.walk())


@dataclass(frozen=True)
class GrowthPolicy:
    """
    Geometry of the generated segments.

    Lengths shrink by 'length_decay' per depth, laterals are additionally
    scaled by 'lateral_length_scale'. Each segment tapers by 'taper' from its
    start radius; a clone starts at its parent's end radius, a lateral at that
    radius times 'lateral_radius_scale'. Lengths and radii never drop below
    'min_length' and 'min_radius'. Angles are in degrees.
    """
    trunk_direction: tuple = (0.0, 1.0, 0.0)
    trunk_length: float = 1.0
    length_decay: float = 0.8
    lateral_length_scale: float = 0.7
    trunk_radius: float = 0.1
    taper: float = 0.8
    lateral_radius_scale: float = 0.6
    min_radius: float = 0.005
    min_length: float = 0.001
    lateral_angle_range: tuple = (25.0, 55.0)
    clone_curvature_range: tuple = (0.0, 0.0)

    @classmethod
    def from_config(cls, growth_config):
        if growth_config is None:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in growth_config.items():
            if key not in known:
                continue
            kwargs[key] = tuple(value) if isinstance(value, list) else value
        return cls(**kwargs)

    def validate(self):
        vec3.from_iterable(self.trunk_direction, "trunk_direction")
        if vec3(*self.trunk_direction).length() < 1e-12:
            raise ConfigurationError("trunk_direction must not be the zero vector.")

        for name in ("trunk_length", "length_decay", "lateral_length_scale", "trunk_radius",
                     "taper", "lateral_radius_scale", "min_radius", "min_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real) \
                    or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive finite number, got {value!r}")

        _check_range(self.lateral_angle_range, "lateral_angle_range", 0.0, 180.0)
        _check_range(self.clone_curvature_range, "clone_curvature_range", 0.0, math.inf)
        return self


def _check_range(value_range, name, lower, upper):
    if not isinstance(value_range, Sequence) or isinstance(value_range, str) or len(value_range) != 2:
        raise ConfigurationError(f"{name} must be a (min, max) pair, got {value_range!r}")
    low, high = value_range
    for v in (low, high):
        if isinstance(v, bool) or not isinstance(v, numbers.Real) or not math.isfinite(v):
            raise ConfigurationError(f"{name} bounds must be finite numbers, got {value_range!r}")
    if not lower <= low <= high <= upper:
        raise ConfigurationError(f"{name} must satisfy {lower} <= min <= max <= {upper}, got {value_range!r}")


def validate_table(table, name="table"):
    """
    Check a branching-factor table and return it as a tuple.

    :raises ConfigurationError: for anything but a sequence of finite,
        non-negative numbers.
    """
    if not isinstance(table, Sequence) or isinstance(table, (str, bytes)):
        raise ConfigurationError(f"{name} must be a sequence of numbers, got {table!r}")
    for depth, value in enumerate(table):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ConfigurationError(f"{name}[{depth}] must be a number, got {value!r}")
        if not math.isfinite(value) or value < 0:
            raise ConfigurationError(f"{name}[{depth}] must be finite and non-negative, got {value!r}")
    return tuple(table)


def table_lookup(table, depth):
    """Entry of 'table' at 'depth'; depths past the end of the table read as 0."""
    if depth < 0:
        raise ConfigurationError(f"depth must be non-negative, got {depth}")
    if depth >= len(table):
        return 0
    return table[depth]


def expected_branch_count(stem_table, branch_table, max_depth):
    """
    Expected total number of branches for the given tables and depth bound.

    Stems (trunk and clones) at depth d produce stem_table[d] clones each,
    every branch produces branch_table[d] laterals. Exact for integer tables.
    """
    stems, laterals = 1.0, 0.0
    total = 1.0
    for depth in range(max_depth):
        stems, laterals = (
            stems * table_lookup(stem_table, depth),
            (stems + laterals) * table_lookup(branch_table, depth),
        )
        if stems == 0 and laterals == 0:
            break
        total += stems + laterals
    return total


def _resolve_random_source(seed):
    if isinstance(seed, random.Random):
        return seed
    if isinstance(seed, bool) or not isinstance(seed, numbers.Integral):
        raise ConfigurationError(f"seed must be an integer or a random.Random instance, got {seed!r}")
    return random.Random(int(seed))


def _realize_count(rng, expected):
    """
    Integer realisation of 'expected': floor plus one more with probability
    equal to the fractional part. Whole numbers consume no randomness.
    """
    whole = math.floor(expected)
    fraction = expected - whole
    if fraction > 0 and rng.random() < fraction:
        whole += 1
    return int(whole)


def _random_unit_vector(rng):
    """
    Generate a random unit vector uniformly distributed on the sphere.
    """
    theta = rng.random() * 2.0 * math.pi
    z = rng.uniform(-1.0, 1.0)
    r = math.sqrt(1.0 - z * z)
    x = r * math.cos(theta)
    y = r * math.sin(theta)
    return vec3(x, y, z).normalized()


def _random_angle_in_range(rng, angle_limit):
    """
    Convert a random angle (in degrees) within 'angle_limit' to radians.

    :param angle_limit: A tuple (min_deg, max_deg)
    :return: Random angle in radians.
    """
    min_angle_deg, max_angle_deg = angle_limit
    angle_deg = rng.uniform(min_angle_deg, max_angle_deg)
    return math.radians(angle_deg)


def _random_perpendicular(rng, base_dir):
    """Random unit vector perpendicular to the unit vector 'base_dir'."""
    while True:
        rv = _random_unit_vector(rng)
        perp = rv - base_dir * rv.dot(base_dir)
        if perp.length() > 1e-3:
            return perp.normalized()


def _rotate_direction(rng, base_dir: vec3, angle_degs: tuple) -> vec3:
    """
    Rotate 'base_dir' by a random angle within 'angle_degs',
    around a random axis perpendicular to 'base_dir'.
    """
    angle = _random_angle_in_range(rng, angle_degs)
    v = base_dir.normalized()
    axis = _random_perpendicular(rng, v)
    return v.rotate(axis, angle).normalized()


def _random_curvature_dir(rng, base_dir: vec3, curvature_range: tuple) -> vec3:
    """
    Add a small random perpendicular offset to 'base_dir' to simulate curvature.
    """
    curv_min, curv_max = curvature_range
    curvature = rng.uniform(curv_min, curv_max)
    v = base_dir.normalized()
    perp_dir = _random_perpendicular(rng, v) * curvature
    return (v + perp_dir).normalized()


def _segment_length(policy, depth, is_stem):
    length = policy.trunk_length * policy.length_decay ** depth
    if not is_stem:
        length *= policy.lateral_length_scale
    return max(length, policy.min_length)


def _grow_branch(policy, start_point, direction, start_radius, depth, is_clone):
    is_stem = depth == 0 or is_clone
    start_radius = max(start_radius, policy.min_radius)
    end_point = start_point + direction * _segment_length(policy, depth, is_stem)
    return Branch(
        start_point=start_point,
        end_point=end_point,
        direction=direction,
        start_radius=start_radius,
        end_radius=max(start_radius * policy.taper, policy.min_radius),
        depth=depth,
        is_clone=is_clone,
    )


def generate(root_point, seed, stem_table, branch_table, max_depth, policy=None, max_branches=1_000_000):
    """
    Generate a branch tree from two per-depth branching-factor tables.

    Parameters:
      - root_point: Base of the trunk, three finite numbers.
      - seed: Integer seed or a random.Random instance to draw from.
      - stem_table: Expected number of stem clones per stem at each depth.
      - branch_table: Expected number of laterals per branch at each depth.
      - max_depth: Deepest depth that may be generated; always enforced.
      - policy: GrowthPolicy for segment lengths, radii and angles.
      - max_branches: Refuse configurations whose worst case exceeds this.

    Returns:
      - The BranchTree, its root being the trunk at depth 0.

    All parameters are validated before generation starts; any problem
    raises ConfigurationError.
    """
    root = vec3.from_iterable(root_point, "root_point")
    rng = _resolve_random_source(seed)
    stem_table = validate_table(stem_table, "stem_table")
    branch_table = validate_table(branch_table, "branch_table")
    if isinstance(max_depth, bool) or not isinstance(max_depth, numbers.Integral):
        raise ConfigurationError(f"max_depth must be an integer, got {max_depth!r}")
    if max_depth < 0:
        raise ConfigurationError(f"max_depth must be non-negative, got {max_depth}")
    policy = (policy or GrowthPolicy()).validate()

    worst_case = expected_branch_count(
        [math.ceil(v) for v in stem_table], [math.ceil(v) for v in branch_table], max_depth
    )
    if max_branches is not None and worst_case > max_branches:
        raise ConfigurationError(
            f"Tables allow up to {worst_case:.0f} branches, more than max_branches={max_branches}."
        )

    trunk_direction = vec3(*policy.trunk_direction).normalized()
    branches = [_grow_branch(policy, root, trunk_direction, policy.trunk_radius, 0, False)]
    child_lists = [[]]

    queue = deque([0])
    while queue:
        index = queue.popleft()
        parent = branches[index]
        if parent.depth >= max_depth:
            continue

        clone_count = 0
        if parent.is_stem:
            clone_count = _realize_count(rng, table_lookup(stem_table, parent.depth))
        lateral_count = _realize_count(rng, table_lookup(branch_table, parent.depth))

        for _ in range(clone_count):
            direction = parent.direction
            if policy.clone_curvature_range[1] > 0:
                direction = _random_curvature_dir(rng, parent.direction, policy.clone_curvature_range)
            child = _grow_branch(policy, vec3(*parent.end_point), direction,
                                 parent.end_radius, parent.depth + 1, True)
            child_lists[index].append(len(branches))
            queue.append(len(branches))
            branches.append(child)
            child_lists.append([])

        for _ in range(lateral_count):
            direction = _rotate_direction(rng, parent.direction, policy.lateral_angle_range)
            child = _grow_branch(policy, vec3(*parent.end_point), direction,
                                 parent.end_radius * policy.lateral_radius_scale, parent.depth + 1, False)
            child_lists[index].append(len(branches))
            queue.append(len(branches))
            branches.append(child)
            child_lists.append([])

    tree = BranchTree(replace(branch, children=children) for branch, children in zip(branches, child_lists))
    logger.debug("Generated %d branches, max depth %d", len(tree), tree.max_depth())
    return tree
