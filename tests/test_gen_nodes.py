import dataclasses
import math
import random

import pytest

from treemesh.tools.common import vec3
from treemesh.tools.errors import ConfigurationError
from treemesh.tools.gen_nodes import (
    Branch,
    BranchTree,
    GrowthPolicy,
    expected_branch_count,
    generate,
    table_lookup,
    validate_table,
)

STEM_TABLE = [1, 1, 1, 1, 0]
BRANCH_TABLE = [0, 2, 3, 4, 1, 1]


class ExplodingRandom(random.Random):
    """Fails the test if generation starts drawing numbers."""

    def random(self):
        raise AssertionError("random source consumed before validation")


def _parent_map(tree):
    parents = {}
    for index, branch in enumerate(tree):
        for child in branch.children:
            parents[child] = index
    return parents


class TestTableLookup:
    def test_in_range(self):
        assert table_lookup(BRANCH_TABLE, 3) == 4

    def test_past_the_end_reads_zero(self):
        assert table_lookup(STEM_TABLE, len(STEM_TABLE)) == 0
        assert table_lookup(STEM_TABLE, 100) == 0
        assert table_lookup([], 0) == 0

    def test_negative_depth(self):
        with pytest.raises(ConfigurationError):
            table_lookup(STEM_TABLE, -1)

    def test_validate_table_returns_tuple(self):
        assert validate_table([1, 0.5, 0]) == (1, 0.5, 0)

    @pytest.mark.parametrize("table", [
        "1100",
        [1, -1],
        [1, float("nan")],
        [float("inf")],
        [True, 1],
        [1, "2"],
        None,
        {0: 1},
    ])
    def test_validate_table_rejects(self, table):
        with pytest.raises(ConfigurationError):
            validate_table(table)


class TestConfigurationErrors:
    @pytest.mark.parametrize("kwargs", [
        {"root_point": (0, float("nan"), 0)},
        {"root_point": (0, 0)},
        {"max_depth": -1},
        {"max_depth": 2.5},
        {"stem_table": [1, -2]},
        {"branch_table": "abc"},
        {"policy": GrowthPolicy(trunk_length=0.0)},
        {"policy": GrowthPolicy(lateral_angle_range=(50, 10))},
        {"policy": GrowthPolicy(trunk_direction=(0, 0, 0))},
    ])
    def test_rejected_before_generation(self, kwargs):
        args = dict(root_point=(0, 0, 0), seed=ExplodingRandom(1), stem_table=STEM_TABLE,
                    branch_table=[0.5, 0.5], max_depth=3)
        args.update(kwargs)
        with pytest.raises(ConfigurationError):
            generate(**args)

    @pytest.mark.parametrize("seed", [None, 1.5, "7", True])
    def test_bad_seed(self, seed):
        with pytest.raises(ConfigurationError):
            generate((0, 0, 0), seed, STEM_TABLE, BRANCH_TABLE, 4)

    def test_too_many_branches(self):
        with pytest.raises(ConfigurationError):
            generate((0, 0, 0), 0, [1] * 20, [10] * 20, 20, max_branches=10_000)


def test_max_depth_zero_is_a_single_branch():
    tree = generate((0, 0, 0), 0, STEM_TABLE, BRANCH_TABLE, 0)
    assert len(tree) == 1
    assert tree.root.depth == 0
    assert tree.root.children == ()
    assert not tree.root.is_clone


def test_reference_tables_give_closed_form_count():
    tree = generate((0, 0, 0), 123, STEM_TABLE, BRANCH_TABLE, 4)
    assert expected_branch_count(STEM_TABLE, BRANCH_TABLE, 4) == 56
    assert len(tree) == 56
    assert tree.depth_histogram() == [1, 1, 3, 10, 41]
    assert tree.max_depth() == 4

    # one clone per depth continues the trunk
    clones_per_depth = [0] * 5
    for branch in tree:
        if branch.is_clone:
            clones_per_depth[branch.depth] += 1
    assert clones_per_depth == [0, 1, 1, 1, 1]


def test_integer_tables_match_expected_count_for_any_seed():
    for seed in range(5):
        tree = generate((1, 2, 3), seed, [1, 2, 1], [1, 1, 2, 0], 4)
        assert len(tree) == expected_branch_count([1, 2, 1], [1, 1, 2, 0], 4)


def test_generation_is_deterministic():
    stem, branch = [1, 0.7, 1, 0.5], [0.5, 1.5, 2.2, 1.3, 0.4]
    first = generate((0, 0, 0), 42, stem, branch, 5)
    second = generate((0, 0, 0), 42, stem, branch, 5)
    assert first.structure() == second.structure()
    for a, b in zip(first, second):
        assert a.start_point == b.start_point
        assert a.end_point == b.end_point
        assert a.is_clone == b.is_clone


def test_random_instance_is_used_as_the_source():
    stem, branch = [1, 0.5, 0.5], [1.5, 1.5, 1.5]
    from_seed = generate((0, 0, 0), 9, stem, branch, 3)
    from_rng = generate((0, 0, 0), random.Random(9), stem, branch, 3)
    assert from_seed.structure() == from_rng.structure()


def test_generation_ignores_global_random_state():
    stem, branch = [1, 0.5, 0.5], [1.5, 1.5, 1.5]
    random.seed(1)
    first = generate((0, 0, 0), 5, stem, branch, 3)
    random.seed(2)
    second = generate((0, 0, 0), 5, stem, branch, 3)
    assert first.structure() == second.structure()


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_depth_and_contiguity_invariants(seed):
    tree = generate((0.2, -1.0, 0.4), seed, [1, 1, 0.5, 1], [0.5, 2.5, 1.5, 1.2], 5)
    parents = _parent_map(tree)
    assert tree.root.depth == 0
    assert len(parents) == len(tree) - 1
    for child_index, parent_index in parents.items():
        child, parent = tree[child_index], tree[parent_index]
        assert child.depth == parent.depth + 1
        assert child.start_point == parent.end_point
    assert tree.max_depth() <= 5


def test_max_depth_is_enforced_even_with_nonzero_tables():
    tree = generate((0, 0, 0), 0, [2] * 10, [2] * 10, 3)
    assert tree.max_depth() == 3
    assert all(not b.children for b in tree if b.depth == 3)
    assert len(tree) == expected_branch_count([2] * 10, [2] * 10, 3)


def test_all_zero_tables_yield_a_lone_trunk():
    tree = generate((0, 0, 0), 0, [0, 0, 0], [0, 0, 0], 5)
    assert len(tree) == 1


def test_stem_only_tables_yield_a_trunk_chain():
    tree = generate((0, 0, 0), 0, [1] * 10, [0] * 10, 5)
    assert len(tree) == 6
    assert [b.depth for _, b in tree.walk()] == [0, 1, 2, 3, 4, 5]
    assert all(b.is_clone for b in list(tree)[1:])
    assert tree.leaves()[0].depth == 5


def test_zero_entry_stops_growth_at_that_depth():
    # depth 1 has no entries, deeper entries are unreachable
    tree = generate((0, 0, 0), 0, [1, 0, 1, 1], [1, 0, 5, 5], 4)
    assert tree.max_depth() == 1
    assert len(tree) == 3


def test_laterals_never_clone():
    tree = generate((0, 0, 0), 3, [1, 1, 1], [1, 1, 1], 3)
    for branch in tree:
        if not branch.is_stem:
            assert not any(child.is_clone for child in tree.children_of(branch))


def test_clones_continue_parent_direction():
    tree = generate((0, 0, 0), 0, [1, 1, 1], [1, 1, 1], 3)
    for branch in tree:
        for child in tree.children_of(branch):
            if child.is_clone:
                assert child.direction == branch.direction
                assert child.start_radius == pytest.approx(branch.end_radius)


def test_lateral_angles_stay_in_range():
    policy = GrowthPolicy(lateral_angle_range=(30.0, 40.0))
    tree = generate((0, 0, 0), 11, [1, 1], [3, 3, 3], 3, policy=policy)
    for branch in tree:
        for child in tree.children_of(branch):
            if not child.is_clone:
                angle = math.degrees(branch.direction.angle(child.direction))
                assert 30.0 - 1e-6 <= angle <= 40.0 + 1e-6


def test_segments_taper_and_shorten():
    policy = GrowthPolicy(trunk_length=2.0, length_decay=0.5, trunk_radius=0.2, taper=0.5, min_radius=1e-6)
    tree = generate((0, 0, 0), 0, [1, 1], [0], 2, policy=policy)
    lengths = [b.length for _, b in tree.walk()]
    assert lengths == pytest.approx([2.0, 1.0, 0.5])
    assert tree[1].start_radius == pytest.approx(0.1)
    assert tree[2].end_radius == pytest.approx(0.025)
    assert tree.root.end_point == vec3(0.0, 2.0, 0.0)


def test_segment_length_is_clamped_by_min_length():
    policy = GrowthPolicy(trunk_length=1.0, length_decay=0.01, min_length=0.05, min_radius=1e-6)
    tree = generate((0, 0, 0), 0, [1, 1, 1], [0], 3, policy=policy)
    lengths = [b.length for _, b in tree.walk()]
    assert lengths == pytest.approx([1.0, 0.05, 0.05, 0.05])


@pytest.mark.parametrize("min_length", [0.0, -1.0, float("nan")])
def test_growth_policy_rejects_bad_min_length(min_length):
    with pytest.raises(ConfigurationError):
        GrowthPolicy(min_length=min_length).validate()


def test_generated_tree_is_frozen():
    tree = generate((0, 0, 0), 0, [1, 1], [0], 2)
    with pytest.raises(dataclasses.FrozenInstanceError):
        tree[1].children = (0,)
    with pytest.raises(AttributeError):
        tree[0].end_point.x = 5.0
    assert tree[1].start_point == tree[0].end_point
    assert tree[1].children == (2,)


def test_fractional_tables_average_to_the_entry():
    rng = random.Random(2024)
    counts = [len(generate((0, 0, 0), rng, [0], [1.5], 1)) - 1 for _ in range(2000)]
    assert set(counts) <= {1, 2}
    assert sum(counts) / len(counts) == pytest.approx(1.5, abs=0.08)


def test_growth_policy_from_config_ignores_unknown_keys():
    policy = GrowthPolicy.from_config({"trunk_length": 3.0, "lateral_angle_range": [10, 20], "leaf_colour": "green"})
    assert policy.trunk_length == 3.0
    assert policy.lateral_angle_range == (10, 20)
    policy.validate()


class TestBranchTree:
    def _branch(self, start, end, depth, is_clone=False, children=()):
        start, end = vec3(*start), vec3(*end)
        return Branch(start, end, (end - start).normalized(), 0.1, 0.08, depth, is_clone, children)

    def test_walk_is_pre_order(self):
        tree = BranchTree([
            self._branch((0, 0, 0), (0, 1, 0), 0, children=(1, 2)),
            self._branch((0, 1, 0), (0, 2, 0), 1, True, children=(3,)),
            self._branch((0, 1, 0), (1, 1, 0), 1),
            self._branch((0, 2, 0), (0, 3, 0), 2, True),
        ])
        assert [index for index, _ in tree.walk()] == [0, 1, 3, 2]

    def test_rejects_gap_between_parent_and_child(self):
        with pytest.raises(ConfigurationError):
            BranchTree([
                self._branch((0, 0, 0), (0, 1, 0), 0, children=(1,)),
                self._branch((0, 1.5, 0), (0, 2, 0), 1, True),
            ])

    def test_rejects_wrong_depth(self):
        with pytest.raises(ConfigurationError):
            BranchTree([
                self._branch((0, 0, 0), (0, 1, 0), 0, children=(1,)),
                self._branch((0, 1, 0), (0, 2, 0), 2, True),
            ])

    def test_rejects_orphans(self):
        with pytest.raises(ConfigurationError):
            BranchTree([
                self._branch((0, 0, 0), (0, 1, 0), 0),
                self._branch((0, 1, 0), (0, 2, 0), 1, True),
            ])

    def test_rejects_empty(self):
        with pytest.raises(ConfigurationError):
            BranchTree([])
