"""
Configuration management for DemoReel-Headless.

Loads and validates TOML config against strict bounds.
All tunable parameters are bounded and validated at startup.
"""

import copy
import os
from pathlib import Path
from typing import Dict, Any, Optional
import toml
import logging

from .context import RenderingContext
from .render.compressor import MasteringBusConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when config validation fails."""
    pass


class Config:
    """Configuration loader and validator."""

    # Parameter bounds; None means no numeric range check
    PARAM_BOUNDS = {
        "mix": {
            "normalize": None,  # bool
            "segment_duration_seconds": (1.0, 600.0),
            "fade_duration_seconds": (0.0, 10.0),
            "silence_gap_seconds": (0.0, 10.0),
        },
        "watermark": {
            "tag_interval_seconds": (0.0, 3600.0),
            "tag_gain": (0.0, 1.0),
        },
        "mastering": {
            "threshold_db": (-60.0, 0.0),
            "knee_db": (0.0, 40.0),
            "ratio": (1.0, 20.0),
            "attack_seconds": (0.0, 1.0),
            "release_seconds": (0.0, 1.0),
        },
        "engine": {
            "decode_workers": (1, 16),
        },
    }

    DEFAULT_CONFIG = {
        "config_version": "1.0",
        "mix": {
            "normalize": False,
            "segment_duration_seconds": 25.0,
            "fade_duration_seconds": 0.5,
            "silence_gap_seconds": 0.3,
        },
        "watermark": {
            "tag_interval_seconds": 30.0,
            "tag_gain": 0.4,
        },
        "mastering": {
            "threshold_db": -20.0,
            "knee_db": 10.0,
            "ratio": 4.0,
            "attack_seconds": 0.003,
            "release_seconds": 0.25,
        },
        "engine": {
            "decode_workers": 4,
        },
    }

    def __init__(self, config_dict: Dict[str, Any]):
        """Initialize config from dictionary."""
        self.data = config_dict
        self._validate()

    @classmethod
    def defaults(cls) -> "Config":
        """Config built purely from DEFAULT_CONFIG."""
        return cls(copy.deepcopy(cls.DEFAULT_CONFIG))

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load config from TOML file.

        Args:
            config_path: Path to demoreel.toml. If None, uses DEMOREEL_CONFIG_PATH env var
                        or defaults to configs/demoreel.toml.

        Returns:
            Config instance.

        Raises:
            ConfigError: If config is invalid or unreadable.
        """
        if config_path is None:
            config_path = os.getenv("DEMOREEL_CONFIG_PATH", "configs/demoreel.toml")

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}. Using defaults.")
            return cls.defaults()

        try:
            config_dict = toml.load(config_path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

        logger.info(f"Loaded config from {config_path}")
        return cls(config_dict)

    def _validate(self) -> None:
        """
        Validate all config parameters against PARAM_BOUNDS.

        Raises:
            ConfigError: If any parameter is out of bounds or has the wrong type.
        """
        for section, params in self.PARAM_BOUNDS.items():
            if section not in self.data:
                logger.warning(f"Missing config section: {section}. Using defaults.")
                self.data[section] = copy.deepcopy(self.DEFAULT_CONFIG.get(section, {}))
                continue

            section_data = self.data[section]

            for param, bounds in params.items():
                if param not in section_data:
                    default_val = self.DEFAULT_CONFIG.get(section, {}).get(param)
                    if default_val is not None:
                        logger.warning(f"Missing param {section}.{param}. Using default: {default_val}")
                        section_data[param] = default_val
                    continue

                value = section_data[param]

                # Boolean switches (no bounds check needed)
                if bounds is None:
                    if not isinstance(value, bool):
                        raise ConfigError(f"Parameter {section}.{param}={value!r} must be true or false")
                    continue

                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigError(f"Parameter {section}.{param}={value!r} must be a number")

                min_val, max_val = bounds
                if not (min_val <= value <= max_val):
                    raise ConfigError(
                        f"Parameter {section}.{param}={value} out of bounds "
                        f"[{min_val}, {max_val}]"
                    )

        logger.info("✅ Config validation passed")

    def get(self, section: str, param: str, default: Any = None) -> Any:
        """Get a config parameter safely."""
        return self.data.get(section, {}).get(param, default)

    def __getitem__(self, section: str) -> Dict[str, Any]:
        """Allow dict-like access: config["mix"]"""
        return self.data.get(section, {})

    def mix_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_demo_mix() drawn from [mix] and [watermark]."""
        return {
            "normalize": self.get("mix", "normalize"),
            "segment_duration": float(self.get("mix", "segment_duration_seconds")),
            "fade_duration": float(self.get("mix", "fade_duration_seconds")),
            "silence_gap": float(self.get("mix", "silence_gap_seconds")),
            "tag_interval": float(self.get("watermark", "tag_interval_seconds")),
            "tag_gain": float(self.get("watermark", "tag_gain")),
        }

    def bus_config(self) -> MasteringBusConfig:
        """Mastering compressor settings from [mastering]."""
        section = self["mastering"]
        return MasteringBusConfig(
            threshold_db=float(section["threshold_db"]),
            knee_db=float(section["knee_db"]),
            ratio=float(section["ratio"]),
            attack=float(section["attack_seconds"]),
            release=float(section["release_seconds"]),
        )

    def context(self) -> RenderingContext:
        """A fresh RenderingContext for one render."""
        return RenderingContext(
            bus=self.bus_config(),
            decode_workers=int(self.get("engine", "decode_workers")),
        )

    def __repr__(self) -> str:
        version = self.data.get('config_version', 'unknown')
        return f"Config(version={version})"
