#!/usr/bin/env python3
import argparse
from pathlib import Path

from treemesh.tools.common import process_config
from treemesh.tools.configuration_loader import load_configuration
from treemesh.tools.gen_mesh import export_mesh, generate_tree_mesh
from treemesh.tools.gen_nodes import GrowthPolicy, generate
from treemesh.tools.progress_logging import configure_logging, log_progress


def run_tree_simulation(config, show=False):
    """
    Using the provided config, perform the following steps:

    1. Resolve the config against its preset and validate it.
    2. Generate the branch tree from the stem and branch tables.
    3. Tessellate the tree into vertex and index buffers.
    4. Export the mesh, optionally save the structure plot and open the viewer.

    Returns the (tree, mesh) pair.
    """
    config = process_config(config)
    output_files = config.get("output_files", {})
    enable_progress_prints = config.get("runtime_progress_logging", {}).get("enable_progress_prints", True)

    policy = GrowthPolicy.from_config(config.get("growth"))

    log_progress(
        enable_progress_prints,
        f"Generating tree: seed={config['seed']}, max_depth={config['max_depth']}, "
        f"stem_table={list(config['stem_table'])}, branch_table={list(config['branch_table'])}",
    )
    tree = generate(
        root_point=config["root_point"],
        seed=config["seed"],
        stem_table=config["stem_table"],
        branch_table=config["branch_table"],
        max_depth=config["max_depth"],
        policy=policy,
    )
    log_progress(
        enable_progress_prints,
        f"Generated {len(tree)} branches, depth histogram {tree.depth_histogram()}",
    )

    mesh = generate_tree_mesh(tree, radial_resolution=config["radial_resolution"])
    log_progress(
        enable_progress_prints,
        f"Built mesh with {mesh.vertex_count} vertices and {mesh.triangle_count} triangles",
    )

    mesh_path = output_files.get("mesh_path")
    if mesh_path:
        written = export_mesh(mesh_path, mesh)
        log_progress(enable_progress_prints, f"Mesh exported to '{written}'.")

    structure_png = output_files.get("structure_png")
    if structure_png or show:
        from treemesh import viewer

        if structure_png:
            viewer.save_structure_png(tree, structure_png)
            log_progress(enable_progress_prints, f"Structure plot saved to '{structure_png}'.")
        if show:
            viewer.show_mesh(mesh)

    return tree, mesh


def parse_arguments(argv=None) -> argparse.Namespace:
    argument_parser = argparse.ArgumentParser(
        description="Generate a procedural tree from branching tables and tessellate it"
    )
    argument_parser.add_argument("--config", type=Path, default=None, help="Path to config YAML file")
    argument_parser.add_argument("--preset", default=None, help="Preset to start from (default, pine, oak, broadleaf)")
    argument_parser.add_argument("--seed", type=int, default=None, help="Override the random seed")
    argument_parser.add_argument("--output", default=None, help="Mesh path (.obj, or any format trimesh writes)")
    argument_parser.add_argument("--structure-png", default=None, help="Save the branch skeleton plot")
    argument_parser.add_argument("--show", action="store_true", help="Open the orbit viewer")
    argument_parser.add_argument("--quiet", action="store_true", help="Disable progress prints")
    return argument_parser.parse_args(argv)


def build_config(arguments) -> dict:
    config = load_configuration(arguments.config) if arguments.config else {}
    if arguments.preset:
        config["preset"] = arguments.preset
    if arguments.seed is not None:
        config["seed"] = arguments.seed
    output_files = dict(config.get("output_files") or {})
    if arguments.output:
        output_files["mesh_path"] = arguments.output
    if arguments.structure_png:
        output_files["structure_png"] = arguments.structure_png
    if output_files:
        config["output_files"] = output_files
    if arguments.quiet:
        config["runtime_progress_logging"] = {"enable_progress_prints": False}
    return config


def main(argv=None) -> None:
    arguments = parse_arguments(argv)
    configure_logging()
    run_tree_simulation(build_config(arguments), show=arguments.show)


if __name__ == "__main__":
    main()
