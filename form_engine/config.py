"""
Configuration loading utilities for the form state engine.

This module loads engine settings from a YAML file with fallback to
defaults and configures logging from those settings.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Literal
import logging
from copy import deepcopy

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.yaml")
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LoggingSettings(BaseModel):
    """Root log level, format and per-logger level overrides."""
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT
    loggers: Dict[str, str] = Field(default_factory=dict)


class EvaluationSettings(BaseModel):
    """Switches for evaluator diagnostics. They never change returned values."""
    warn_on_null: bool = True
    warn_on_error: bool = True


class CalculateSettings(BaseModel):
    # "dependency" evaluates computed fields in topological order,
    # "declaration" keeps the authored order and lets forward references see null.
    order: Literal["dependency", "declaration"] = "dependency"


class ValidationSettings(BaseModel):
    only_visible: bool = True


class ValuesSettings(BaseModel):
    exclude_hidden: bool = False


class EngineSettings(BaseModel):
    """Validated engine configuration."""
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)
    calculate: CalculateSettings = Field(default_factory=CalculateSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    values: ValuesSettings = Field(default_factory=ValuesSettings)


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with update_dict taking precedence.

    Args:
        base_dict: Base dictionary (defaults)
        update_dict: Dictionary to merge in (user config)

    Returns:
        Merged dictionary
    """
    result = deepcopy(base_dict)

    for key, value in update_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)

    return result


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration.

    Returns:
        Dictionary with default configuration
    """
    return {
        'logging': {
            'level': 'INFO',
            'format': DEFAULT_LOG_FORMAT,
            'loggers': {}
        },
        'evaluation': {
            'warn_on_null': True,
            'warn_on_error': True
        },
        'calculate': {
            'order': 'dependency'
        },
        'validation': {
            'only_visible': True
        },
        'values': {
            'exclude_hidden': False
        }
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load engine configuration merged over the defaults.

    Args:
        config_path: Optional path to config file (defaults to config.yaml)

    Returns:
        Complete configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    default_config = get_default_config()

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.info("Using default configuration")
        return default_config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)

        if user_config is None:
            logger.warning(f"Configuration file is empty: {config_path}")
            return default_config

        if not isinstance(user_config, dict):
            logger.error(f"Configuration file is not a valid dictionary: {config_path}")
            logger.info("Using default configuration")
            return default_config

        config = deep_merge(default_config, user_config)

        logger.info(f"Successfully loaded configuration from {config_path}")
        return config

    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config

    except (IOError, OSError) as e:
        logger.error(f"Failed to read configuration file {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config


def load_settings(config_path: Optional[Path] = None) -> EngineSettings:
    """
    Load configuration and validate it into EngineSettings.

    Invalid values fall back to the default settings.

    Args:
        config_path: Optional path to config file

    Returns:
        EngineSettings instance
    """
    config = load_config(config_path)

    try:
        return EngineSettings.model_validate(config)
    except ValidationError as e:
        logger.error(f"Invalid engine configuration: {e}")
        logger.info("Using default configuration")
        return EngineSettings()


def resolve_settings(settings: Optional[EngineSettings]) -> EngineSettings:
    """Return the given settings or the defaults."""
    return settings if settings is not None else EngineSettings()


def get_logging_level(level_str: str) -> int:
    """Map string logging level to logging constant."""
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    return level_map.get(str(level_str).upper(), logging.INFO)


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    """
    Configure logging from engine settings.

    Args:
        settings: Engine settings (defaults when omitted)
    """
    settings = resolve_settings(settings)

    logging.basicConfig(
        level=get_logging_level(settings.logging.level),
        format=settings.logging.format
    )

    for logger_name, level_str in settings.logging.loggers.items():
        logging.getLogger(logger_name).setLevel(get_logging_level(level_str))

    logger.debug(f"Logging configured at {settings.logging.level}")
