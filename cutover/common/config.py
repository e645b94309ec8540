"""
Configuration for a blue-green rollout.

Adds:
- DeployConfig with strict nested sections (unknown keys fail fast)
- YAML file loading with .env support (python-dotenv)
- Environment overrides with the CUTOVER_ prefix (pydantic-settings)
- One-time resolution of ports, process names and the external host

The resolved config is built once in load_config() and passed down; nothing
reads the environment mid-run.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _check_paths(paths: List[str]) -> List[str]:
    for p in paths:
        if not str(p).startswith("/"):
            raise ValueError(f"path must start with '/': {p!r}")
    return paths


class ReadinessSettings(BaseModel):
    model_config = {"extra": "forbid"}

    max_attempts: int = Field(20, ge=1)
    check_interval_ms: int = Field(500, ge=0)
    request_timeout_ms: int = Field(500, gt=0)


class WarmupSettings(BaseModel):
    model_config = {"extra": "forbid"}

    paths: List[str] = Field(default_factory=lambda: ["/", "/favicon.ico"])
    attempts: int = Field(2, ge=1)
    timeout_ms: int = Field(20000, gt=0)
    required_paths: List[str] = Field(default_factory=lambda: ["/"])

    # Main instance warmup is best-effort
    main_attempts: int = Field(3, ge=1)
    main_timeout_ms: int = Field(10000, gt=0)

    base_timeout_ms: int = Field(300, gt=0)
    max_timeout_ms: int = Field(2000, gt=0)

    @field_validator("paths", "required_paths")
    @classmethod
    def _paths_start_with_slash(cls, v: List[str]) -> List[str]:
        return _check_paths(v)

    @model_validator(mode="after")
    def _timeout_bounds_ordered(self) -> "WarmupSettings":
        if self.max_timeout_ms < self.base_timeout_ms:
            raise ValueError(
                f"max_timeout_ms ({self.max_timeout_ms}) must not be below base_timeout_ms ({self.base_timeout_ms})"
            )
        return self


class StagingSettings(BaseModel):
    model_config = {"extra": "forbid"}

    symlink_paths: List[str] = Field(default_factory=lambda: ["public"])
    copy_paths: List[str] = Field(default_factory=lambda: [
        "node_modules",
        ".output",
        "server",
        "assets",
        "components",
        "composables",
        "layouts",
        "middleware",
        "pages",
        "plugins",
        "app.vue",
        ".env",
        "nuxt.config.js",
        "package.json",
        "package-lock.json",
        "ecosystem.config.js",
    ])
    critical_files: List[str] = Field(default_factory=lambda: [
        ".output/server/index.mjs",
        "ecosystem.config.js",
        ".env",
    ])
    stream_threshold_bytes: int = Field(10 * 1024 * 1024, gt=0)
    copy_batch_size: int = Field(50, ge=1)
    command_timeout_s: float = Field(600.0, gt=0)


class ResourceValidationSettings(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    mount_marker: str = '<div id="__nuxt">'
    asset_prefix: str = "_nuxt"
    min_script_size: int = Field(100, ge=0)
    max_scripts_to_check: int = Field(3, ge=1)
    tokens: List[str] = Field(default_factory=lambda: ["function", "var", "const", "export"])

    main_page_timeout_ms: int = Field(5000, gt=0)
    script_timeout_ms: int = Field(3000, gt=0)
    static_dir_timeout_ms: int = Field(2000, gt=0)

    stability_check_retries: int = Field(3, ge=1)
    response_time_warning_ms: int = Field(1000, gt=0)
    response_probe_timeout_ms: int = Field(3000, gt=0)
    endpoint_attempts: int = Field(3, ge=1)
    endpoint_interval_ms: int = Field(300, ge=0)


class TrafficSettings(BaseModel):
    model_config = {"extra": "forbid"}

    identity_path: str = "/api/server-identity"
    sample_size: int = Field(10, ge=1)
    sample_delay_ms: int = Field(300, ge=0)
    request_timeout_ms: int = Field(2000, gt=0)
    retries: int = Field(3, ge=1)
    new_tag: str = "running"
    old_tag: str = "main"
    confirm_ratio: float = Field(0.9, ge=0.0, le=1.0)
    warn_ratio: float = Field(0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ratios_ordered(self) -> "TrafficSettings":
        if self.warn_ratio > self.confirm_ratio:
            raise ValueError("warn_ratio must not exceed confirm_ratio")
        return self


class ProcessSettings(BaseModel):
    model_config = {"extra": "forbid"}

    binary: str = "pm2"
    main_suffix: str = "--spare"
    running_suffix: str = ""
    ecosystem_file: str = "ecosystem.config.js"
    register_delay_ms: int = Field(2000, ge=0)
    not_online_wait_ms: int = Field(5000, ge=0)
    timeout_s: float = Field(60.0, gt=0)


class RolloutSettings(BaseModel):
    model_config = {"extra": "forbid"}

    build_command: List[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    build_timeout_s: float = Field(1800.0, gt=0)
    retry_base_delay_ms: int = Field(3000, ge=0)
    settle_delay_ms: int = Field(3000, ge=0)
    warmup_recheck_delay_ms: int = Field(5000, ge=0)
    recheck_attempts: int = Field(5, ge=1)
    recheck_interval_ms: int = Field(1000, ge=0)


class DeployConfig(BaseSettings):
    """Strict rollout configuration. Extra keys are forbidden."""

    model_config = SettingsConfigDict(
        env_prefix="CUTOVER_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    project_dir: Path = Path(".")
    app_name: Optional[str] = None
    running_dir: Optional[Path] = None
    log_dir: Optional[Path] = None

    service_host: str = "localhost"
    external_host: Optional[str] = None
    production_external_host: str = "https://domain.com"
    development_external_host: str = "https://beta.domain.com"

    port_env_var: str = "PORT"
    default_port: int = Field(3000, ge=1, le=65535)
    running_port_prefix: str = "1"
    main_port: Optional[int] = Field(None, ge=1, le=65535)
    running_port: Optional[int] = Field(None, ge=1, le=65535)

    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    warmup: WarmupSettings = Field(default_factory=WarmupSettings)
    staging: StagingSettings = Field(default_factory=StagingSettings)
    resources: ResourceValidationSettings = Field(default_factory=ResourceValidationSettings)
    traffic: TrafficSettings = Field(default_factory=TrafficSettings)
    process: ProcessSettings = Field(default_factory=ProcessSettings)
    rollout: RolloutSettings = Field(default_factory=RolloutSettings)

    @model_validator(mode="after")
    def _derive_layout(self) -> "DeployConfig":
        self.project_dir = Path(self.project_dir).resolve()
        if not self.app_name:
            self.app_name = self.project_dir.name
        if self.running_dir is None:
            self.running_dir = self.project_dir.parent / f"{self.app_name}-running"
        if self.log_dir is None:
            self.log_dir = self.project_dir / "logs"
        return self

    @property
    def main_process_name(self) -> str:
        return f"{self.app_name}{self.process.main_suffix}"

    @property
    def running_process_name(self) -> str:
        return f"{self.app_name}{self.process.running_suffix}"

    @property
    def main_host(self) -> str:
        return f"{self.service_host}:{self.main_port}"

    @property
    def running_host(self) -> str:
        return f"{self.service_host}:{self.running_port}"

    @property
    def manual_stop_command(self) -> str:
        return f"{self.process.binary} stop {self.main_process_name}"


def resolve_runtime(cfg: DeployConfig, environ: Optional[Mapping[str, str]] = None) -> DeployConfig:
    """
    Fill in values derived from the environment: ports and the external host.

    The running instance listens on the main port with a numeric prefix
    (PORT=3000 -> 13000) unless either port is configured explicitly.
    """
    env = os.environ if environ is None else environ
    update: Dict[str, Any] = {}

    main_port = cfg.main_port
    if main_port is None:
        raw = env.get(cfg.port_env_var) or str(cfg.default_port)
        try:
            main_port = int(raw)
        except ValueError:
            raise ValueError(f"{cfg.port_env_var}={raw!r} is not a port number") from None
        update["main_port"] = main_port
    if cfg.running_port is None:
        running_port = int(f"{cfg.running_port_prefix}{main_port}")
        if running_port > 65535:
            raise ValueError(
                f"running port {running_port} derived from {main_port} is out of range; set running_port"
            )
        update["running_port"] = running_port

    if not cfg.external_host:
        development = env.get("MODE") == "development"
        update["external_host"] = (
            cfg.development_external_host if development else cfg.production_external_host
        )

    resolved = cfg.model_copy(update=update)
    logger.debug(
        "Resolved ports main=%s running=%s external=%s",
        resolved.main_port, resolved.running_port, resolved.external_host,
    )
    return resolved


FILE_RELATIVE_KEYS = ("project_dir", "running_dir", "log_dir")


def load_config(
    path: Optional[Union[str, Path]] = None,
    project_dir: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DeployConfig:
    """
    Load, validate and resolve the rollout configuration.

    Args:
        path: Optional YAML file; missing keys use defaults. Relative
            project_dir, running_dir and log_dir are resolved against the
            file's directory
        project_dir: Overrides `project_dir` from the file
        environ: Environment used for port/host resolution (default: os.environ)

    Raises:
        FileNotFoundError: config path given but missing
        pydantic.ValidationError: invalid or unknown keys
    """
    data: Dict[str, Any] = {}
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
        # Relative directories in the file are relative to the file itself
        for key in FILE_RELATIVE_KEYS:
            if data.get(key) is not None and not Path(data[key]).is_absolute():
                data[key] = Path(path).resolve().parent / data[key]
    if project_dir is not None:
        data["project_dir"] = project_dir

    base_dir = Path(data.get("project_dir", ".")).resolve()
    env_file = base_dir / ".env"
    if environ is None and env_file.exists():
        # Does not override variables already set in the environment
        load_dotenv(env_file, override=False)

    cfg = DeployConfig(**data)
    return resolve_runtime(cfg, environ)
