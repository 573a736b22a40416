"""Configuration management for adaptloop.

Four config groups:
- registry: spec cache TTL and slug conventions
- pipeline: which spec configures the stage list, and the stage-loading policy
- engine: rule-engine defaults (window size, minimum observations, confidence)
- defaults: storage location

Config resolution order (highest priority first):
1. Programmatic (AdaptloopConfig constructed in code)
2. Environment variables (ADAPTLOOP_DB_PATH, ADAPTLOOP_STAGE_POLICY, etc.),
   including values from a .env file found from the working directory
3. Config file (~/.config/adaptloop/config.json, managed by `adaptloop config`)
4. Hardcoded defaults
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv


logger = logging.getLogger(__name__)


# =============================================================================
# Config file location
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "adaptloop"
CONFIG_FILE = CONFIG_DIR / "config.json"

STAGE_POLICIES = ("strict", "fallback")


# =============================================================================
# Config dataclasses
# =============================================================================


@dataclass
class RegistryConfig:
    """Spec registry settings.

    - ttl_seconds: how long active-spec lookups stay cached
    - slug_prefix: conventional prefix stripped when normalizing slugs
      ("spec-pipeline-001" -> "PIPELINE-001")
    """

    ttl_seconds: float = 30.0
    slug_prefix: str = "spec-"


@dataclass
class PipelineSettings:
    """Stage resolution settings.

    stage_policy:
    - "strict": a missing or malformed stage spec aborts the run
    - "fallback": log a warning and use the built-in default stage list
    """

    pipeline_spec: str = "PIPELINE-001"
    stage_policy: str = "strict"


@dataclass
class EngineConfig:
    """Rule-engine defaults applied when a rule set leaves them unset."""

    default_window_size: int = 5
    default_minimum_observations: int = 3
    adapt_confidence: float = 0.8
    profile_scope: str = "LEARNER_PROFILE"


@dataclass
class DefaultsConfig:
    """Non-engine default settings."""

    db_path: str = "./storage/adaptloop.db"


# =============================================================================
# Main config class
# =============================================================================


@dataclass
class AdaptloopConfig:
    """Top-level adaptloop configuration.

    Construct programmatically for package use, or load from config file for CLI use.

    Examples:
        # Package use: no files needed
        config = AdaptloopConfig(pipeline=PipelineSettings(stage_policy="fallback"))

        # CLI use: loads from ~/.config/adaptloop/config.json
        config = AdaptloopConfig.load()
    """

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    engine: EngineConfig = field(default_factory=EngineConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    @classmethod
    def load(cls) -> "AdaptloopConfig":
        """Load config from file + env vars.

        Priority: env var values > config.json values > defaults.
        """
        config = cls()

        # Layer 1: Load from config file if it exists
        if CONFIG_FILE.exists():
            try:
                with open(CONFIG_FILE) as f:
                    data = json.load(f)
                _apply_dict(config, data)
            except (ValueError, OSError) as exc:
                logger.warning("Failed to load config from %s: %s", CONFIG_FILE, exc)

        # Layer 2: Env var overrides (.env in the working tree fills unset vars)
        _ensure_dotenv()
        if val := os.environ.get("ADAPTLOOP_DB_PATH"):
            config.defaults.db_path = val
        if val := os.environ.get("ADAPTLOOP_PIPELINE_SPEC"):
            config.pipeline.pipeline_spec = val
        if val := os.environ.get("ADAPTLOOP_STAGE_POLICY"):
            if val in STAGE_POLICIES:
                config.pipeline.stage_policy = val
            else:
                logger.warning("Invalid ADAPTLOOP_STAGE_POLICY=%r, ignoring", val)
        if val := os.environ.get("ADAPTLOOP_REGISTRY_TTL"):
            try:
                config.registry.ttl_seconds = float(val)
            except ValueError:
                logger.warning("Invalid ADAPTLOOP_REGISTRY_TTL=%r, ignoring", val)

        return config

    def save(self) -> None:
        """Save config to ~/.config/adaptloop/config.json."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for display."""
        return {
            "registry": asdict(self.registry),
            "pipeline": asdict(self.pipeline),
            "engine": asdict(self.engine),
            "defaults": asdict(self.defaults),
        }

    @property
    def db_path_resolved(self) -> Path:
        """Resolve database path."""
        path = Path(self.defaults.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


# =============================================================================
# Config dict application
# =============================================================================


def _coerce(current: Any, value: Any) -> Any:
    """Coerce a file value to the type of the field's current value."""
    if isinstance(current, (int, float)) and not isinstance(current, bool):
        return type(current)(value)
    return value


def _apply_dict(config: AdaptloopConfig, data: dict) -> None:
    """Apply a dict of values onto an AdaptloopConfig."""
    if not isinstance(data, dict):
        return
    for section in ("registry", "pipeline", "engine", "defaults"):
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section)
        for k, v in values.items():
            if hasattr(target, k):
                setattr(target, k, _coerce(getattr(target, k), v))
    if config.pipeline.stage_policy not in STAGE_POLICIES:
        logger.warning(
            "Unknown stage_policy %r in config file, using 'strict'",
            config.pipeline.stage_policy,
        )
        config.pipeline.stage_policy = "strict"


# =============================================================================
# .env loading
# =============================================================================

_dotenv_loaded = False


def _ensure_dotenv() -> None:
    """Load .env file into os.environ if not already loaded."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        _dotenv_loaded = True
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path=dotenv_path, override=False)


# =============================================================================
# Global config singleton
# =============================================================================

_config: AdaptloopConfig | None = None


def get_config() -> AdaptloopConfig:
    """Get the global AdaptloopConfig instance.

    First call loads from file + env vars. Subsequent calls return cached instance.
    Use configure() to replace the global config programmatically.
    """
    global _config
    if _config is None:
        _config = AdaptloopConfig.load()
    return _config


def configure(config: AdaptloopConfig) -> None:
    """Set the global AdaptloopConfig programmatically.

    Use this when adaptloop is used as a package:
        from adaptloop.config import configure, AdaptloopConfig, PipelineSettings
        configure(AdaptloopConfig(pipeline=PipelineSettings(stage_policy="fallback")))
    """
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global config (forces reload on next get_config())."""
    global _config
    _config = None
