"""
Configuration loading.

Configuration is a nested dictionary read from YAML; every section falls back
to the defaults below.
"""

import copy
import logging
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'

DEFAULT_CONFIG: Dict[str, Any] = {
    'face_detection': {
        'method': 'haar',
        'detector_backend': 'opencv',
        'min_face_size': 40,
    },
    'embedding': {
        'model': 'facenet',
        'normalization': True,
    },
    'recognition': {
        'similarity_threshold': 0.55,
    },
    'quality': {
        'min_face_size': 80,
        'edge_margin': 20,
        'min_aspect_ratio': 0.6,
        'max_aspect_ratio': 1.6,
    },
    'enrollment': {
        'padding': 20,
        'skip_keyword': 'skip',
        'magnitude_tolerance': 0.1,
    },
    'diagnostics': {
        'magnitude_tolerance': 0.01,
        'min_std': 0.03,
        'weak_threshold': 0.45,
        'maybe_threshold': 0.35,
        'threshold_floor': 0.3,
        'threshold_margin': 0.05,
    },
    'storage': {
        'database_file': 'face_database.json',
        'backup_dir': None,
        'max_listed_backups': 10,
        'embedding_dimension': 512,
        'schema_version': '1.0',
    },
    'video': {
        'camera_id': 0,
        'frame_width': 640,
        'frame_height': 480,
        'fps': 30,
        'window_name': 'Face Recognition with JSON Storage',
    },
    'logging': {
        'level': 'INFO',
        'file': 'face_recognition.log',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_default_config() -> Dict[str, Any]:
    """Return a deep copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


def build_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge partial configuration over the defaults.

    Args:
        overrides: Nested dictionary of settings to override

    Returns:
        Complete configuration dictionary
    """
    return _merge(DEFAULT_CONFIG, overrides or {})


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary; the defaults when the file cannot be read
    """
    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Top-level YAML value must be a mapping, got {type(loaded).__name__}")
        logger.info(f"Configuration loaded from {config_path}")
        return build_config(loaded)
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        return get_default_config()
