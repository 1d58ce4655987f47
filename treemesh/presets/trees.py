import copy

from treemesh.tools.errors import ConfigurationError

# Reference tables: the trunk clones once per depth up to
# depth 3, laterals fan out from depth 1 onwards.
default_config = {
    "root_point": (0.0, -0.5, 0.0),
    "seed": 0,
    "stem_table": [1, 1, 1, 1, 0],       # Expected stem clones for a stem with n ancestors
    "branch_table": [0, 2, 3, 4, 1, 1],  # Expected laterals for any branch with n ancestors
    "max_depth": 4,
    "radial_resolution": 8,

    "growth": {
        "trunk_direction": (0.0, 1.0, 0.0),  # y-up, matches the orbit camera
        "trunk_length": 0.3,
        "length_decay": 0.8,
        "lateral_length_scale": 0.7,
        "trunk_radius": 0.05,
        "taper": 0.8,
        "lateral_radius_scale": 0.6,
        "min_radius": 0.002,
        "min_length": 0.001,
        "lateral_angle_range": (25, 55),     # Degrees away from the parent direction
        "clone_curvature_range": (0.0, 0.0),
    },

    "output_files": {
        "mesh_path": "tree.obj",
        "structure_png": None,
    },
    "runtime_progress_logging": {
        "enable_progress_prints": True,
    },
}


# Pine: long straight stem, sparse narrow laterals
pine_config = copy.deepcopy(default_config)
pine_config.update({
    "stem_table": [1, 1, 1, 1, 1, 1, 0],
    "branch_table": [0, 1.5, 2, 2, 1.5, 1, 0],
    "max_depth": 6,
})
pine_config["growth"].update({
    "trunk_length": 0.25,
    "length_decay": 0.9,
    "lateral_length_scale": 0.6,
    "lateral_angle_range": (60, 80),   # Near horizontal whorls
    "clone_curvature_range": (0.0, 0.02),
})


# Oak: short trunk, wide open crown
oak_config = copy.deepcopy(default_config)
oak_config.update({
    "stem_table": [1, 1, 0.5, 0],
    "branch_table": [0, 3, 2.5, 2, 1],
    "max_depth": 5,
})
oak_config["growth"].update({
    "trunk_radius": 0.08,
    "length_decay": 0.75,
    "lateral_length_scale": 0.9,
    "lateral_angle_range": (30, 60),
    "clone_curvature_range": (0.0, 0.1),
})


# Generic broadleaf
broadleaf_config = copy.deepcopy(default_config)
broadleaf_config.update({
    "stem_table": [1, 1, 1, 0.5, 0],
    "branch_table": [0, 2, 2.5, 2.5, 1.5, 1],
    "max_depth": 6,
})
broadleaf_config["growth"].update({
    "length_decay": 0.8,
    "lateral_angle_range": (20, 60),
    "clone_curvature_range": (0.0, 0.05),
})


PRESETS = {
    "default": default_config,
    "pine": pine_config,
    "oak": oak_config,
    "broadleaf": broadleaf_config,
}


def get_preset(name: str) -> dict:
    """Return an independent copy of the named preset."""
    if name not in PRESETS:
        raise ConfigurationError(f"Unknown preset {name!r}, choose one of {sorted(PRESETS)}")
    return copy.deepcopy(PRESETS[name])
