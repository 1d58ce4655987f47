from treemesh.tools.errors import ConfigurationError, GeometryError, TreeMeshError
from treemesh.tools.gen_mesh import TreeMesh, generate_tree_mesh, tessellate
from treemesh.tools.gen_nodes import (
    Branch,
    BranchTree,
    GrowthPolicy,
    expected_branch_count,
    generate,
    table_lookup,
)

__version__ = "0.1.0"
