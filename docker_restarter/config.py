"""docker-restarter — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. Environment variables prefixed with RESTARTER_
       (nested keys use ``__``: RESTARTER_DOCKER__BASE_URL)
    3. System config: /etc/docker-restarter/config.yaml
    4. User config:   ~/.docker-restarter/config.yaml
    5. An explicit ``--config`` file
    6. Command-line options (passed as ``overrides``)

Call ``Settings.load()`` once at startup.  Any validation failure is reported
as a ``ConfigurationError`` so that the process exits before watching starts.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docker_restarter.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Watch rules
# ---------------------------------------------------------------------------


class WatchRule(BaseModel):
    """One watched container with its restart targets, pattern and policy.

    ``restart`` accepts either a list or a comma-delimited string.  Blank
    entries are dropped and duplicates collapsed, keeping first-seen order.
    """

    watch: str
    restart: tuple[str, ...]
    pattern: str
    skip_first: bool = False

    model_config = {"frozen": True}

    @field_validator("watch")
    @classmethod
    def _watch_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("watch container identifier must not be empty")
        return v

    @field_validator("restart", mode="before")
    @classmethod
    def _split_restart(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            targets: list[str] = []
            for item in v:
                name = str(item).strip()
                if name and name not in targets:
                    targets.append(name)
            if not targets:
                raise ValueError("at least one restart target is required")
            return tuple(targets)
        return v

    @field_validator("pattern")
    @classmethod
    def _pattern_not_empty(cls, v: str) -> str:
        if v == "":
            raise ValueError("pattern must not be empty")
        return v


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class DockerConfig(BaseModel):
    base_url: str | None = Field(
        default=None,
        description=(
            "Docker daemon URL, e.g. 'unix:///var/run/docker.sock'. "
            "None = use DOCKER_HOST and friends from the environment."
        ),
    )
    stop_timeout: Annotated[int, Field(ge=0, le=600)] = Field(
        default=10,
        description="Seconds the daemon waits for a container to stop before killing it on restart.",
    )


class StreamConfig(BaseModel):
    start_from: Literal["now", "start"] = Field(
        default="now",
        description="Read only new lines ('now') or the whole log ('start') on the first connection.",
    )
    backoff_base_seconds: Annotated[float, Field(gt=0)] = 1.0
    backoff_cap_seconds: Annotated[float, Field(gt=0)] = 30.0
    max_reconnect_attempts: Annotated[int, Field(ge=0)] = Field(
        default=0,
        description="Consecutive failed reconnects before giving up. 0 = retry forever.",
    )

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "StreamConfig":
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_cap_seconds must be >= backoff_base_seconds")
        return self


class DispatchConfig(BaseModel):
    timeout_seconds: Annotated[float, Field(gt=0, le=3600)] = Field(
        default=60.0,
        description="Upper bound for one restart call; slower calls are treated as failed.",
    )
    max_concurrency: Annotated[int, Field(ge=1, le=64)] = Field(
        default=4,
        description="Maximum restart calls in flight for a single matching line.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None

    @field_validator("level", "format", mode="before")
    @classmethod
    def _lowercase(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RESTARTER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    docker: DockerConfig = Field(default_factory=DockerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    rules: list[WatchRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dispatch_outlasts_stop(self) -> "Settings":
        if self.dispatch.timeout_seconds <= self.docker.stop_timeout:
            raise ValueError(
                "dispatch.timeout_seconds must be greater than docker.stop_timeout"
            )
        return self

    @classmethod
    def load(cls, config_file: Path | None = None, **overrides: Any) -> "Settings":
        """Load settings from YAML files + environment variables.

        Raises:
            ConfigurationError: a file is unreadable or validation fails.
        """
        data: dict[str, Any] = {}

        candidates = [
            Path("/etc/docker-restarter/config.yaml"),
            Path.home() / ".docker-restarter" / "config.yaml",
        ]
        if config_file:
            if not config_file.exists():
                raise ConfigurationError(f"Config file not found: {config_file}")
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml  # lazy import

                try:
                    with path.open() as f:
                        loaded = yaml.safe_load(f) or {}
                except (OSError, yaml.YAMLError) as exc:
                    raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
                if not isinstance(loaded, dict):
                    raise ConfigurationError(f"Config file {path} must contain a mapping")
                _deep_merge(data, loaded)

        _deep_merge(data, {k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid configuration",
                errors=[_format_error(e) for e in exc.errors()],
            ) from exc

    def require_rules(self) -> list[WatchRule]:
        """Return the configured rules, raising if there are none."""
        if not self.rules:
            raise ConfigurationError(
                "No watch rules configured. Expected at least one "
                "'--watch <container> --restart <a,b> --pattern <text> --skip-first <bool>'."
            )
        return list(self.rules)


def build_rules(
    watch: list[str],
    restart: list[str],
    pattern: list[str],
    skip_first: list[str],
) -> list[WatchRule]:
    """Zip repeated CLI options into WatchRules.

    The number of ``--watch``, ``--restart``, ``--pattern`` and
    ``--skip-first`` options must be the same.
    """
    counts = {len(watch), len(restart), len(pattern), len(skip_first)}
    if len(counts) != 1:
        raise ConfigurationError(
            "Invalid args. The number of --watch, --restart, --pattern and "
            "--skip-first options must be the same.",
            errors=[
                f"watch={len(watch)} restart={len(restart)} "
                f"pattern={len(pattern)} skip_first={len(skip_first)}"
            ],
        )

    rules: list[WatchRule] = []
    errors: list[str] = []
    for index, (w, r, p, s) in enumerate(zip(watch, restart, pattern, skip_first)):
        try:
            rules.append(WatchRule(watch=w, restart=r, pattern=p, skip_first=s))
        except ValidationError as exc:
            errors.extend(f"rule {index}: {_format_error(e)}" for e in exc.errors())
    if errors:
        raise ConfigurationError("Invalid watch rule", errors=errors)
    return rules


def _format_error(error: Any) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    msg = error.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> None:
    """Merge *extra* into *base* in place, recursing into nested mappings."""
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
