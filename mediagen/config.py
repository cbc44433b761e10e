#!/usr/bin/env python3
"""
config.py - Configuration Loading
═══════════════════════════════════════════════════════════════════════════════

config.yaml is deep-merged over DEFAULT_CONFIG, then CLI overrides are
merged on top. Every section is optional.

Part of MediaGen v0.1.0
"""
import copy
import logging
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'output_dir': './output',
    'history_file': './output/history.json',
    'settings_file': '~/.mediagen/settings.yaml',
    'log_level': 'INFO',
    'safety': {
        'enabled': True,
    },
    'credentials': {},
    'backends': {
        'gemini': {
            'model': 'gemini-2.5-flash-image-preview',
            'upload_format': 'jpeg',
            'upload_quality': 0.6,
        },
        'comfyui': {
            'url': 'http://localhost:8188',
            'poll_interval': 2,
            'timeout': 600,
            'interrupt_on_cancel': True,
        },
        'grok': {
            'model': 'grok-2-image-1212',
        },
        'aimlapi': {
            'model': 'flux/dev',
            'poll_interval': 10,
            'timeout': 1200,
            'upload_format': 'jpeg',
            'upload_quality': 0.6,
        },
        'imgbb': {
            'enabled': True,
            'expiration': None,
        },
    },
}


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: Optional[Path] = None, override: Optional[Dict] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file (if present) over the defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        path = Path(path)
        if path.exists():
            try:
                loaded = yaml.safe_load(path.read_text()) or {}
            except yaml.YAMLError as e:
                raise InvalidConfiguration(f"{path} is not valid YAML ({e})")
            if not isinstance(loaded, dict):
                raise InvalidConfiguration(f"{path} must contain a mapping")
            config = deep_merge(config, loaded)
            logger.info(f"[Config] Loaded config from {path}")
        else:
            logger.warning(f"[Config] No {path.name} found, using defaults")

    if override:
        config = deep_merge(config, override)

    _validate(config)
    return config


def _validate(config: Dict[str, Any]):
    backends = config.get('backends')
    if not isinstance(backends, dict):
        raise InvalidConfiguration("'backends' must be a mapping")
    for name, section in backends.items():
        if not isinstance(section, dict):
            raise InvalidConfiguration(f"backends.{name} must be a mapping")
        for key in ('poll_interval', 'timeout'):
            value = section.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value < 0):
                raise InvalidConfiguration(f"backends.{name}.{key} must be a non-negative number")


__all__ = ['DEFAULT_CONFIG', 'load_config', 'deep_merge']
