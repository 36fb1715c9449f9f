"""Config loading: one JSON file deep-merged over DEFAULT_CONFIG."""

import copy
import orjson
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_CONFIG: Dict[str, Any] = {
    'server': {
        'baseUrl': 'http://localhost:8080',
        'host': '0.0.0.0',
        'port': 8080,
        'heartbeatSeconds': 20,
    },
    'grid': {
        'count': 3,
        'width': 1920,
        'height': 1080,
    },
    'auth': {
        'tokensPath': 'data/tokens.json',
        'jwtSecret': None,
        'cookieMaxAgeDays': 365,
        'secureCookies': False,
        'hashRounds': 10,
        'anonymousAdmin': False,
    },
    'streams': {
        'path': None,
        'customPath': 'data/custom-streams.json',
    },
    'layout': {
        'path': 'data/layout.json',
        'saveDelaySeconds': 2.0,
    },
    'log': {
        'dir': None,
        'level': 'INFO',
        'console': True,
        'maxBytes': 10_000_000,
        'backupCount': 5,
        'utc': False,
    },
}


class ConfigError(Exception):
    """Config file missing, unreadable, or not a JSON object"""


def deepMerge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deepMerge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def loadConfig(configPath: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from JSON file; None gives the defaults"""
    if configPath is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    path = Path(configPath)
    try:
        data = orjson.loads(path.read_bytes())
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except orjson.JSONDecodeError as e:
        raise ConfigError(f"Config {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a JSON object")
    return deepMerge(DEFAULT_CONFIG, data)
