"""Loads and validates OverlaySync settings from YAML."""

import yaml
import os
import logging
from typing import Any, Dict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Values used when a key is missing from the YAML file.
DEFAULT_CONFIG: Dict[str, Any] = {
    'log_dir': 'logs',
    'log_file': 'overlaysync.log',
    'output_dir': 'sync_blocks',
    'ffmpeg_path': None,
    # Tap-to-sync guards (seconds)
    'min_hold_duration': 0.15,
    'min_sync_interval': 0.3,
    'undo_depth': 10,
    'recording_level': 'sentence',
    'show_word_track': True,
    'sibling_tolerance': 0.05,
    # Silence snapping
    'snap_to_silence': True,
    'snap_window_ms': 100,
    'snap_threshold': 0.1,
    'sample_rate': 16000,
    # Automatic alignment
    'alignment_method': 'forced',
    'fallback_to_linear': True,
    'language': 'en',
    'whisper_model': 'base.en',
    'device': 'cuda',
    'whisper_fp16': True,
    'alignment_timeout_seconds': 900,
    'match_lookahead_words': 40,
    'min_match_ratio': 0.6,
    'granularity': 'sentence',
    # Exclusion policy
    'use_default_exclusions': True,
    'exclude_id_patterns': [],
    'exclude_text_patterns': [],
    'exclude_ids': [],
}

class ConfigLoader:
    """Reads sync settings from a YAML file on top of DEFAULT_CONFIG."""

    def load_config(self, config_path: str) -> dict:
        """
        Loads and validates the YAML config at `config_path`.

        An empty file yields the defaults.

        Raises:
            FileNotFoundError: If nothing exists at `config_path`.
            ConfigurationError: If the path is not a readable YAML mapping
                                or a value fails validation.
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Could not read {config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Top level of {config_path} must be a mapping, got {type(loaded).__name__}.")

        config = self.with_defaults(loaded)
        logger.info(f"Loaded configuration from {config_path} ({len(loaded)} keys set)")
        return config

    @staticmethod
    def with_defaults(overrides: Dict[str, Any]) -> dict:
        """Returns DEFAULT_CONFIG updated with the given keys, validating the numeric guards."""
        config = dict(DEFAULT_CONFIG)
        config.update(overrides or {})

        for key in ('min_hold_duration', 'min_sync_interval', 'sibling_tolerance',
                    'snap_window_ms', 'snap_threshold'):
            try:
                value = float(config[key])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Configuration value '{key}' must be a number, got {config[key]!r}") from e
            if value < 0:
                raise ConfigurationError(f"Configuration value '{key}' must not be negative, got {value}")
            config[key] = value

        try:
            undo_depth = int(config['undo_depth'])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Configuration value 'undo_depth' must be an integer, got {config['undo_depth']!r}") from e
        if undo_depth < 1:
            raise ConfigurationError("Configuration value 'undo_depth' must be at least 1.")
        config['undo_depth'] = undo_depth
        if config['alignment_method'] not in ('forced', 'linear'):
            raise ConfigurationError(
                f"Unsupported alignment_method '{config['alignment_method']}'. Choose 'forced' or 'linear'."
            )
        for key in ('granularity', 'recording_level'):
            if str(config[key]).lower() not in ('paragraph', 'sentence', 'word'):
                raise ConfigurationError(
                    f"Unsupported {key} '{config[key]}'. Choose 'paragraph', 'sentence' or 'word'."
                )
        return config
