"""Run configuration loader.

Values come from an optional ``promotex.yaml`` file, then from environment
variables named after the pipeline run parameters, then from CLI overrides.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from promotex.errors import ConfigError

DEFAULT_CONFIG_FILENAME = "promotex.yaml"
DEFAULT_VERSION_FILE = "VERSION"
DEFAULT_APPROVAL_TIMEOUT_SECONDS = 120.0
DEFAULT_ROLLOUT_TIMEOUT_SECONDS = 600.0
DEFAULT_ROLLOUT_POLL_INTERVAL_SECONDS = 5.0

REQUIRED_KEYS = (
    "registry_uri",
    "registry_project",
    "image_stream_name",
    "prod_uri",
    "prod_project",
    "app_template_path",
    "app_dc_name",
)

# Environment variable -> config key
ENV_KEYS: dict[str, str] = {
    "PROD_SECRET_NAME": "prod_secret_name",
    "REGISTRY_SECRET_NAME": "registry_secret_name",
    "RELEASE_VERSION_TAG": "release_version_tag",
    "OPENSHIFT_REGISTRY_URI": "openshift_registry_uri",
    "REGISTRY_PROJECT": "registry_project",
    "IMAGE_STREAM_NAME": "image_stream_name",
    "PROD_URI": "prod_uri",
    "PROD_PROJECT": "prod_project",
    "APP_TEMPLATE_PATH": "app_template_path",
    "BASE_TEMPLATE_PATH": "base_template_path",
    "APP_DC_NAME": "app_dc_name",
    "NOTIFY_EMAIL_LIST": "notify_email_list",
    "NOTIFY_EMAIL_FROM": "notify_email_from",
    "NOTIFY_EMAIL_REPLYTO": "notify_email_replyto",
    "REGISTRY_URI": "registry_uri",
    "VERSION_FILE": "version_file",
    "BUILD_URL": "run_url",
    "RUN_URL": "run_url",
    "SMTP_HOST": "smtp_host",
    "SMTP_PORT": "smtp_port",
}


@dataclass(frozen=True)
class PromotionTarget:
    """Source and destination (project, image stream) pairs."""

    source_project: str
    source_stream: str
    dest_project: str
    dest_stream: str

    def source_ref(self, tag: str) -> str:
        return f"{self.source_project}/{self.source_stream}:{tag}"

    def dest_ref(self, tag: str) -> str:
        return f"{self.dest_project}/{self.dest_stream}:{tag}"


@dataclass(frozen=True)
class PromotionConfig:
    """Resolved configuration for one promotion run."""

    registry_uri: str
    registry_project: str
    image_stream_name: str
    prod_uri: str
    prod_project: str
    app_template_path: Path
    app_dc_name: str
    openshift_registry_uri: str = ""
    base_template_path: Path | None = None
    prod_secret_name: str | None = None
    registry_secret_name: str | None = None
    release_version_tag: str | None = None
    version_file: Path = Path(DEFAULT_VERSION_FILE)
    notify_email_list: tuple[str, ...] = field(default_factory=tuple)
    notify_email_from: str | None = None
    notify_email_replyto: str | None = None
    notify_on_abort: bool = False
    run_url: str | None = None
    smtp_host: str = "localhost"
    smtp_port: int = 25
    approval_timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS
    rollout_timeout_seconds: float = DEFAULT_ROLLOUT_TIMEOUT_SECONDS
    rollout_poll_interval_seconds: float = DEFAULT_ROLLOUT_POLL_INTERVAL_SECONDS

    @property
    def target(self) -> PromotionTarget:
        # Promotion re-tags within the source stream; production pulls from it.
        return PromotionTarget(
            source_project=self.registry_project,
            source_stream=self.image_stream_name,
            dest_project=self.registry_project,
            dest_stream=self.image_stream_name,
        )

    @property
    def image_registry(self) -> str:
        return self.openshift_registry_uri or self.registry_uri

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PromotionConfig:
        """Parse and validate a flat config mapping."""
        missing = [key for key in REQUIRED_KEYS if not _present(data.get(key))]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                continue
            values[key] = raw

        try:
            for key in ("app_template_path", "base_template_path", "version_file"):
                if key in values:
                    values[key] = Path(str(values[key])).expanduser()
            if "notify_email_list" in values:
                values["notify_email_list"] = parse_address_list(values["notify_email_list"])
            if "notify_on_abort" in values:
                values["notify_on_abort"] = _as_bool(values["notify_on_abort"])
            if "smtp_port" in values:
                values["smtp_port"] = int(values["smtp_port"])
            for key in (
                "approval_timeout_seconds",
                "rollout_timeout_seconds",
                "rollout_poll_interval_seconds",
            ):
                if key in values:
                    values[key] = float(values[key])
                    if values[key] <= 0:
                        raise ValueError(f"{key} must be positive")
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        return cls(**values)


def load_config(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    cwd: Path | None = None,
) -> PromotionConfig:
    """Load configuration with precedence file < environment < overrides.

    Args:
        config_path: Explicit YAML file; must exist when given
        environ: Environment mapping (defaults to ``os.environ``)
        overrides: CLI-level values; ``None`` entries are ignored
        cwd: Directory searched for ``promotex.yaml`` when no path is given

    Raises:
        ConfigError: If the file is malformed or required keys are missing
    """
    data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        data.update(_read_yaml(config_path))
    else:
        default_path = (cwd or Path.cwd()) / DEFAULT_CONFIG_FILENAME
        if default_path.exists():
            data.update(_read_yaml(default_path))

    env = os.environ if environ is None else environ
    for env_name, key in ENV_KEYS.items():
        value = env.get(env_name, "").strip()
        if value:
            data[key] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return PromotionConfig.from_dict(data)


def parse_address_list(value: Any) -> tuple[str, ...]:
    """Split a comma- or whitespace-separated address list."""
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = re.split(r"[,\s]+", str(value))
    return tuple(item.strip() for item in items if item.strip())


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML config at {path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config at {path} must be a mapping, got {type(loaded).__name__}")
    return {str(key).lower(): value for key, value in loaded.items()}


def _present(value: Any) -> bool:
    if value is None:
        return False
    return bool(str(value).strip())


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")
