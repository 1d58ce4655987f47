from pathlib import Path

import yaml

from treemesh.tools.errors import ConfigurationError


def load_configuration(config_path: Path) -> dict:
    with Path(config_path).open("r", encoding="utf-8") as file:
        configuration = yaml.safe_load(file)
    if configuration is None:
        return {}
    if not isinstance(configuration, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    return configuration
