import math
import numbers

from treemesh.presets.trees import get_preset
from treemesh.tools.errors import ConfigurationError


class vec3:
    """Immutable 3-D vector; every operation returns a new vec3."""
    __slots__ = ("x", "y", "z")

    def __init__(self, x=0.0, y=0.0, z=0.0):
        object.__setattr__(self, "x", x)
        object.__setattr__(self, "y", y)
        object.__setattr__(self, "z", z)

    def __setattr__(self, name, value):
        raise AttributeError(f"vec3 is immutable, cannot set {name!r}")

    def __delattr__(self, name):
        raise AttributeError(f"vec3 is immutable, cannot delete {name!r}")

    def __reduce__(self):
        return (vec3, (self.x, self.y, self.z))

    @classmethod
    def from_iterable(cls, values, name="point"):
        """
        Build a vec3 from any 3-element sequence of finite numbers.

        :raises ConfigurationError: if the sequence has the wrong length or
            holds anything but finite real numbers.
        """
        try:
            values = tuple(values)
        except TypeError:
            raise ConfigurationError(f"{name} must be a sequence of 3 numbers, got {values!r}") from None
        if len(values) != 3:
            raise ConfigurationError(f"{name} must have exactly 3 components, got {len(values)}")
        for v in values:
            if isinstance(v, bool) or not isinstance(v, numbers.Real):
                raise ConfigurationError(f"{name} components must be real numbers, got {v!r}")
            if not math.isfinite(v):
                raise ConfigurationError(f"{name} components must be finite, got {values!r}")
        return cls(float(values[0]), float(values[1]), float(values[2]))

    def __add__(self, other):
        return vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other):
        return vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, other):
        return vec3(self.x * other, self.y * other, self.z * other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        return vec3(self.x / other, self.y / other, self.z / other)

    def __str__(self):
        return f"({self.x}, {self.y}, {self.z})"

    def __repr__(self):
        return f"vec3({self.x}, {self.y}, {self.z})"

    def __eq__(self, other):
        if not isinstance(other, vec3):
            return NotImplemented
        return self.x == other.x and self.y == other.y and self.z == other.z

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self.x, self.y, self.z))

    def __neg__(self):
        return vec3(-self.x, -self.y, -self.z)

    def __abs__(self):
        return self.length()

    def __iter__(self):
        return iter((self.x, self.y, self.z))

    def dot(self, other):
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other):
        return vec3(self.y * other.z - self.z * other.y,
                    self.z * other.x - self.x * other.z,
                    self.x * other.y - self.y * other.x)

    def normalized(self):
        return self / abs(self)

    def angle(self, other):
        cos_theta = self.dot(other) / (abs(self) * abs(other))
        return math.acos(max(-1.0, min(1.0, cos_theta)))

    def rotate(self, axis, angle):
        """Rotate around 'axis' by 'angle' radians (Rodrigues)."""
        axis = axis.normalized()
        u = axis * self.dot(axis)
        w = self - u
        v = axis.cross(w)
        return u + w * math.cos(angle) + v * math.sin(angle)

    def length(self):
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def is_finite(self):
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)

    def to_tuple(self):
        return (self.x, self.y, self.z)


def _check_int(value, name, minimum=None):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return int(value)


def process_config(config=None, preset="default"):
    """
    Resolve a user configuration against a named preset.

    - Keys missing from 'config' are taken from the preset.
    - The "growth" mapping is merged key by key so a config can override a
      single policy field.
    - Scalar fields are type checked here; tables and the growth policy are
      validated again by the generator itself.
    """
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"configuration must be a mapping, got {type(config).__name__}")

    preset_name = config.get("preset", preset)
    resolved = get_preset(preset_name)

    for key, value in config.items():
        if key == "growth":
            if not isinstance(value, dict):
                raise ConfigurationError("growth must be a mapping of growth policy fields")
            resolved["growth"] = {**resolved.get("growth", {}), **value}
        elif key in ("output_files", "runtime_progress_logging"):
            if not isinstance(value, dict):
                raise ConfigurationError(f"{key} must be a mapping")
            resolved[key] = {**resolved.get(key, {}), **value}
        else:
            resolved[key] = value

    resolved["root_point"] = vec3.from_iterable(resolved["root_point"], "root_point").to_tuple()
    resolved["max_depth"] = _check_int(resolved["max_depth"], "max_depth", 0)
    resolved["radial_resolution"] = _check_int(resolved["radial_resolution"], "radial_resolution", 3)
    resolved["seed"] = _check_int(resolved["seed"], "seed")
    return resolved
