import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into the AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Config file is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    # A flat file (no `defaults:` section) is treated as the defaults section itself
    if data and "defaults" not in data:
        data = {"defaults": data}

    return AppConfig(**data)
