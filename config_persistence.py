import json
from dataclasses import asdict
from pathlib import Path

from config import (
    Config,
    apply_dict_to_dataclass,
    migrate_config,
)
from logging_utils import log_event


def get_config_dir() -> Path:
    """Get config directory in the user's home folder."""
    config_dir = Path.home() / '.ambientvolume'
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get config file path."""
    return get_config_dir() / 'config.json'


def get_report_dir() -> Path:
    """Get directory for per-session volume reports."""
    return get_config_dir() / 'reports'


def save_config(config: Config) -> bool:
    """Save config to JSON file."""
    try:
        config_file = get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(asdict(config), f, indent=2)
        log_event("INFO", "Config", "Saved", path=config_file)
        return True
    except (OSError, TypeError, ValueError) as e:
        log_event("ERROR", "Config", "Failed to save", error=e)
        return False


def load_config() -> Config:
    """Load config from JSON file, returns default if not found."""
    try:
        config_file = get_config_file()
        if config_file.exists():
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            config = Config()
            apply_dict_to_dataclass(config, data)
            loaded_version = data.get('version') if isinstance(data, dict) else None
            migrate_config(config, loaded_version)

            version = getattr(config, 'version', 'unknown')
            log_event("INFO", "Config", "Loaded", path=config_file, version=version)

            if loaded_version != version:
                save_config(config)
            return config

        log_event("INFO", "Config", "No saved config found, using defaults")
        return Config()
    except (OSError, ValueError) as e:
        log_event("WARN", "Config", "Failed to load, using defaults", error=e)
        return Config()
