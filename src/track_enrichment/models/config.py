"""Configuration model for track enrichment."""

import json
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_USER_AGENT = "track-enrichment/0.1 (https://github.com/track-enrichment)"

# JSON Schema for configuration files
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "cache_path": {"type": "string"},
        "data_dir": {"type": "string"},
        "matching": {
            "type": "object",
            "properties": {
                "minimum_match_score": {"type": "integer", "minimum": 0, "maximum": 100},
                "enable_lyric_analysis": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "analysis": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "binary_path": {"type": "string"},
                "max_concurrency": {"type": "integer"},
                "timeout_seconds": {"type": "number"},
                "accepted_exit_codes": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "uniqueItems": True,
                },
                "temp_dir": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "providers": {
            "type": "object",
            "properties": {
                "lastfm_api_key": {"type": "string"},
                "enable_musicbrainz": {"type": "boolean"},
                "user_agent": {"type": "string", "minLength": 1},
                "request_timeout": {"type": "number", "exclusiveMinimum": 0},
                "musicbrainz_timeout": {"type": "number", "exclusiveMinimum": 0},
                "lookup_delay": {"type": "number", "minimum": 0},
                "musicbrainz_delay": {"type": "number", "minimum": 0},
                "mood_batch_size": {"type": "integer", "minimum": 1},
                "persist_every_batches": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


@dataclass
class MatchingConfig:
    """Configuration for catalog matching."""
    minimum_match_score: int = 80
    enable_lyric_analysis: bool = False


@dataclass
class AnalysisConfig:
    """Configuration for the external audio analyzer."""
    enabled: bool = True
    binary_path: str = ""  # empty means bundled copy, then PATH
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    accepted_exit_codes: List[int] = field(default_factory=lambda: [0, 1])
    temp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            self.max_concurrency = DEFAULT_MAX_CONCURRENCY
        if self.timeout_seconds <= 0:
            self.timeout_seconds = DEFAULT_TIMEOUT_SECONDS


@dataclass
class ProvidersConfig:
    """Configuration for remote tag providers."""
    lastfm_api_key: str = ""
    enable_musicbrainz: bool = False  # one request per second, slow on big libraries
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 10.0
    musicbrainz_timeout: float = 15.0
    lookup_delay: float = 0.05
    musicbrainz_delay: float = 1.1
    mood_batch_size: int = 50
    persist_every_batches: int = 5


@dataclass
class EnrichmentConfig:
    """Main configuration model."""
    cache_path: Path = field(
        default_factory=lambda: Path.home() / ".cache" / "track-enrichment" / "metadata_cache.json"
    )
    data_dir: Path = field(
        default_factory=lambda: Path.home() / ".local" / "share" / "track-enrichment"
    )
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)

    @classmethod
    def default(cls) -> "EnrichmentConfig":
        """Create a configuration with every default applied."""
        return cls()


def _dataclass_to_dict(obj):
    """Convert dataclass to dict recursively."""
    from dataclasses import is_dataclass, fields
    if is_dataclass(obj):
        return {f.name: _dataclass_to_dict(getattr(obj, f.name)) for f in fields(obj)}
    elif isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: _dataclass_to_dict(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_dataclass_to_dict(item) for item in obj]
    else:
        return obj


def _dict_to_dataclass(data, dataclass_type):
    """Convert dict to dataclass recursively."""
    from dataclasses import is_dataclass, fields
    if not is_dataclass(dataclass_type):
        return data

    # Get field types
    field_types = {f.name: f.type for f in fields(dataclass_type)}

    kwargs = {}
    for field_name, field_type in field_types.items():
        if field_name not in data:
            continue
        if hasattr(field_type, '__dataclass_fields__'):
            kwargs[field_name] = _dict_to_dataclass(data[field_name], field_type)
        elif field_type is Path:
            kwargs[field_name] = Path(data[field_name]).expanduser()
        else:
            kwargs[field_name] = data[field_name]

    return dataclass_type(**kwargs)


def validate_config_data(config_data: Dict[str, Any]) -> List[str]:
    """Validate a configuration mapping.

    Returns:
        List of validation error messages
    """
    validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(config_data), key=lambda e: list(e.absolute_path)):
        path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        errors.append(f"Validation error at {path}: {error.message}")
    return errors


def config_from_dict(config_data: Dict[str, Any]) -> EnrichmentConfig:
    """Build a configuration from a mapping, validating it first."""
    errors = validate_config_data(config_data)
    if errors:
        raise ConfigurationError("; ".join(errors))
    return _dict_to_dataclass(config_data, EnrichmentConfig)


def load_config(config_path: Optional[Path] = None) -> EnrichmentConfig:
    """Load configuration from JSON file.

    A missing path yields the default configuration.
    """
    if config_path is None:
        return EnrichmentConfig.default()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"JSON parsing error in {config_path}: {e.msg} at line {e.lineno}, column {e.colno}"
        ) from e

    config = config_from_dict(config_data)
    logger.debug(f"Loaded configuration from {config_path}")
    return config


def save_config(config: EnrichmentConfig, config_path: Path) -> None:
    """Save configuration to JSON file."""
    config_dict = _dataclass_to_dict(config)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config_dict, f, indent=2)


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    save_config(EnrichmentConfig.default(), config_path)
