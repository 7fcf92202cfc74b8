"""Configuration management for permadeploy."""

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from . import CONFIG_FILE, PD_DIR
from .errors import ConfigError

DEFAULT_EXTENSIONS = [
    ".html", ".htm", ".css", ".js", ".mjs", ".json",
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".txt", ".xml", ".webmanifest",
]

DEFAULT_EXCLUDE_PATTERNS = [
    ".git",
    "node_modules",
    ".DS_Store",
    ".env*",
    "*.log",
    "*.md",
    "README*",
    ".vscode",
    ".idea",
    ".cursor",
    "scripts",
    "templates",
    "data",
    PD_DIR,
    "prd.txt",
]


class DeployConfig(BaseModel):
    """Configuration for a deployment."""

    version: int = 1
    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    entry_point: str = "index.html"
    batch_size: int = Field(default=10, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0)
    hash_workers: int = Field(default=1, ge=1)
    fail_fast_reads: bool = False
    gateway_url: str = "https://arweave.net"
    manifest_content_type: str = "application/x.arweave-manifest+json"
    ar_price_usd: float = Field(default=10.0, gt=0)


def get_pd_dir(project_root: Path) -> Path:
    """Get the .permadeploy directory path."""
    return project_root / PD_DIR


def get_config_path(project_root: Path) -> Path:
    """Get the config file path."""
    return get_pd_dir(project_root) / CONFIG_FILE


def load_config(project_root: Path) -> DeployConfig:
    """Load configuration from the project's config file.

    Falls back to defaults if file doesn't exist.
    Environment variables can override config values.
    """
    config_path = get_config_path(project_root)

    try:
        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)
            config = DeployConfig.model_validate(data)
        else:
            config = DeployConfig()

        # Apply environment variable overrides
        return _apply_env_overrides(config)
    except (ValidationError, json.JSONDecodeError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def save_config(config: DeployConfig, project_root: Path) -> None:
    """Save configuration to the project's config file."""
    config_path = get_config_path(project_root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config.model_dump(), f, indent=2)


def _apply_env_overrides(config: DeployConfig) -> DeployConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    # PD_BATCH_SIZE
    if batch_size := os.environ.get("PD_BATCH_SIZE"):
        data["batch_size"] = batch_size

    # PD_BATCH_DELAY
    if delay := os.environ.get("PD_BATCH_DELAY"):
        data["batch_delay_seconds"] = delay

    # PD_GATEWAY_URL
    if gateway := os.environ.get("PD_GATEWAY_URL"):
        data["gateway_url"] = gateway.rstrip("/")

    # PD_ENTRY_POINT
    if entry_point := os.environ.get("PD_ENTRY_POINT"):
        data["entry_point"] = entry_point

    return DeployConfig.model_validate(data)
