"""
This module defines the data structures for our configuration.
The YAML stack file is parsed into an immutable TopologyConfig so the same
value can be handed to the declarations and to the builder without either
of them mutating it.
"""

import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

REQUIRED_KEYS = ["team", "service", "environment", "region"]

@dataclass(frozen=True)
class TopologyConfig:
    team: str
    service: str
    environment: str
    region: str
    tags: Dict[str, str] = field(default_factory=dict)
    template_file: Optional[str] = None

def parse_config(config_data: Any) -> TopologyConfig:
    """Validate a raw configuration mapping and build a TopologyConfig."""
    if not isinstance(config_data, dict):
        raise ValueError("Configuration must be a mapping")

    # Ensure required keys exist
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    tags = config_data.get("tags") or {}
    if not isinstance(tags, dict):
        raise ValueError("Configuration key 'tags' must be a mapping")

    return TopologyConfig(
        team=str(config_data["team"]),
        service=str(config_data["service"]),
        environment=str(config_data["environment"]),
        region=str(config_data["region"]),
        tags={str(k): str(v) for k, v in tags.items()},
        template_file=config_data.get("template_file"),
    )

def load_config(file_path: str) -> TopologyConfig:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)
    return parse_config(config_data)
