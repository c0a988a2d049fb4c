"""Handles loading configuration from YAML files."""

import copy
import yaml
import os
import logging
from typing import Optional
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    # Remote transcription service
    'endpoint': "https://api.openai.com/v1/audio/transcriptions",
    'model': "whisper-1",
    'language': None,
    'prompt': None,
    'temperature': None,
    'request_timeout': 60.0,
    'api_key_env': "OPENAI_API_KEY",
    # Segmentation
    'segment_duration': 60.0,
    'overlap_duration': 1.0,
    'sample_rate': 16000,
    'channels': 1,
    'ffmpeg_path': None,
    'ffprobe_path': None,
    'temp_dir': None,
    # Scheduling
    'max_concurrency': 3,
    'max_attempts': 3,
    'backoff_base': 1.0,
    'backoff_max': 30.0,
    'fail_fast': False,
    # Assembly
    'stitch_window': 8,
    'gap_marker': "[segment {index} failed]",
    # Output / logging
    'show_progress': True,
    'log_dir': None,
    'log_file': "whisper-t.log",
}

_POSITIVE_NUMBERS = ('segment_duration', 'request_timeout', 'sample_rate', 'channels',
                     'max_concurrency', 'max_attempts')
_INTEGERS = ('sample_rate', 'channels', 'max_concurrency', 'max_attempts', 'stitch_window')


class ConfigLoader:
    """Loads configuration settings from a YAML file, layered over the defaults."""

    def load_config(self, config_path: Optional[str] = None) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Values from the file override DEFAULT_CONFIG. Without a path the
        defaults are returned as-is.

        Args:
            config_path: The path to the YAML configuration file, or None.

        Returns:
            A dictionary containing the merged and validated configuration.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML, if there
                              are other reading errors, or if a value is invalid.
        """
        config = copy.deepcopy(DEFAULT_CONFIG)
        if config_path is None:
            logger.debug("No configuration file given; using defaults.")
            return self.validate(config)

        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            logger.error(f"Configuration path is not a file: {config_path}")
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except IOError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if loaded is None:
            loaded = {} # Empty file
        if not isinstance(loaded, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")

        unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys in {config_path}: {', '.join(unknown)}")
        for key in DEFAULT_CONFIG:
            if key in loaded:
                config[key] = loaded[key]

        logger.info(f"Configuration loaded successfully from {config_path}")
        return self.validate(config)

    def validate(self, config: dict) -> dict:
        """
        Checks value types and ranges. Returns the config with numbers normalized.

        Raises:
            ConfigurationError: If any value is out of range or of the wrong type.
        """
        for key in _POSITIVE_NUMBERS + ('overlap_duration', 'backoff_base', 'backoff_max', 'stitch_window'):
            value = config.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"Configuration value '{key}' must be a number, got {value!r}")
            if key in _INTEGERS:
                if int(value) != value:
                    raise ConfigurationError(f"Configuration value '{key}' must be an integer, got {value!r}")
                config[key] = int(value)
            else:
                config[key] = float(value)
            if key in _POSITIVE_NUMBERS and config[key] <= 0:
                raise ConfigurationError(f"Configuration value '{key}' must be positive, got {value!r}")
            if config[key] < 0:
                raise ConfigurationError(f"Configuration value '{key}' must not be negative, got {value!r}")

        if config['overlap_duration'] >= config['segment_duration']:
            raise ConfigurationError(
                f"overlap_duration ({config['overlap_duration']}) must be smaller than "
                f"segment_duration ({config['segment_duration']})"
            )
        if not isinstance(config.get('fail_fast'), bool):
            raise ConfigurationError(f"Configuration value 'fail_fast' must be true or false, got {config.get('fail_fast')!r}")
        if not config.get('endpoint') or not config.get('model'):
            raise ConfigurationError("Configuration values 'endpoint' and 'model' must not be empty")
        if not config.get('api_key_env'):
            raise ConfigurationError("Configuration value 'api_key_env' must not be empty")
        try:
            config['gap_marker'].format(index=0, start="", end="")
        except (AttributeError, KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(f"Invalid gap_marker template {config.get('gap_marker')!r}: {e}") from e
        return config
