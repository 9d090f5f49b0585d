"""Configuration loading and parsing."""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    'paths': {
        'roms': None,
        'gamelist': None,      # <roms>/gamelist.xml
        'media': None,         # <roms>/images
        'media_xml': './images',
        'missing': None,
        'hash_map': None,
        'catalog': None,
    },
    'scraping': {
        'workers': 1,
        'max_retries': 0,
        'image_workers': 0,    # 0 = same as workers
        'mode': 'new_only',
        'add_not_found': False,
        'use_pretty_name': True,
        'use_filename': False,
        'overview_length': 0,
        'sources': ['hash', 'filename'],
        'provider_maxthreads': None,
        'provider_threads': None,
    },
    'hashing': {
        'algorithm': 'sha1',
        'cache_size': 500,
        'buffer_size': 1024 * 1024,
        'extra_extensions': [],
        'magic_policy': 'lenient',
    },
    'media': {
        'download': True,
        'image_types': ['b', 's', 't'],
        'thumb_only': False,
        'image_suffix': '-image',
        'thumb_suffix': '-thumb',
        'add_thumbnails': False,
        'download_videos': False,
        'video_types': ['v', 'vn'],
        'video_suffix': '-video',
        'request_timeout': 30,
    },
    'logging': {
        'level': 'INFO',
        'console': True,
        'file': None,
    },
}


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``config`` with DEFAULT_CONFIG merged underneath it."""
    return _merge(DEFAULT_CONFIG, config or {})


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and parse configuration file.

    Args:
        config_path: Path to config.yaml file. If None, searches current directory.

    Returns:
        Parsed configuration dictionary with defaults filled in

    Raises:
        ConfigError: If config file cannot be loaded or parsed
    """
    if config_path is None:
        config_path = Path.cwd() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}\n"
            f"Copy config.yaml.example to config.yaml and configure it."
        )

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}")

    if not isinstance(config, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    return apply_defaults(config)


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., 'scraping.workers')
        default: Default value if path not found

    Returns:
        Configuration value or default

    Example:
        >>> get_config_value(config, 'hashing.algorithm')
        'sha1'
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value
