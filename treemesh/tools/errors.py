class TreeMeshError(ValueError):
    """Base class for errors raised while building a tree or its mesh."""


class ConfigurationError(TreeMeshError):
    """
    Invalid generation or tessellation parameters.

    Raised before any generation work starts: malformed branching tables,
    a non-finite root point, a negative depth, a bad seed or growth policy,
    a radial resolution that cannot form a tube.
    """


class GeometryError(TreeMeshError):
    """A branch segment cannot be tessellated (zero length or non-finite)."""

    def __init__(self, message, branch_index=None):
        super().__init__(message)
        self.branch_index = branch_index
