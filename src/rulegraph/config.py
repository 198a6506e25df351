# config.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .errors import ConfigurationError
from .tracker import DEFAULT_STATE_DIR, FINGERPRINT_MODES

ENV_PREFIX = "RULEGRAPH_"
SETTINGS_FILE = "rulegraph.json"
SETTINGS_FILE_ENV = "RULEGRAPH_SETTINGS_FILE"


# ---------------------------------------------------------------------
# CLI string parsing
# ---------------------------------------------------------------------

def parse_cores(value: Any) -> Optional[int]:
    """
    "8" -> 8, "unlimited"/"all"... -> None (no core limit).
    """
    if value is None:
        return None
    if isinstance(value, int):
        cores = value
    else:
        text = str(value).strip().lower()
        if text in ("unlimited", "none", "inf"):
            return None
        if text == "all":
            return os.cpu_count() or 1
        try:
            cores = int(text)
        except ValueError:
            raise ConfigurationError(
                message=f"Invalid core count: {value!r}",
                details={"hint": "Use a positive integer or 'unlimited'."},
            )
    if cores < 1:
        raise ConfigurationError(message=f"Core count must be >= 1, got {cores}")
    return cores


def parse_resources(items: Iterable[str]) -> Dict[str, int]:
    """["mem_mb=4000", "gpu=1"] -> {"mem_mb": 4000, "gpu": 1}"""
    out: Dict[str, int] = {}
    for item in items:
        name, sep, qty = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ConfigurationError(
                message=f"Invalid resource {item!r}",
                details={"hint": "Use name=quantity, e.g. --resources mem_mb=4000"},
            )
        try:
            amount = int(qty)
        except ValueError:
            raise ConfigurationError(message=f"Resource {name} needs an integer quantity, got {qty!r}")
        if amount < 0:
            raise ConfigurationError(message=f"Resource {name} cannot be negative")
        out[name] = amount
    return out


def _coerce(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def parse_config_overrides(items: Iterable[str]) -> Dict[str, Any]:
    """["threshold=0.5", "name=x"] -> {"threshold": 0.5, "name": "x"}; values are JSON if they parse."""
    out: Dict[str, Any] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(message=f"Invalid config override {item!r}", details={"hint": "Use key=value"})
        out[key.strip()] = _coerce(value)
    return out


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Run settings, highest precedence first:
      - keyword arguments (CLI flags, via merged())
      - RULEGRAPH_* environment variables
      - the JSON settings file
      - defaults below
    """

    _json_file_override: ClassVar[Optional[Path]] = None

    cores: Optional[int] = Field(default_factory=lambda: os.cpu_count() or 1)
    resources: Dict[str, int] = Field(default_factory=dict)
    keep_going: bool = True
    state_dir: str = DEFAULT_STATE_DIR
    latency_wait: float = 5.0
    fingerprint: str = "sha256"
    kill_on_abort: bool = False
    use_singularity: bool = False
    singularity_args: str = ""
    cluster: Optional[str] = None
    jobs: Optional[int] = None
    printshellcmds: bool = False

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        json_settings = JsonConfigSettingsSource(settings_cls, json_file=cls._json_file_override)
        return (init_settings, env_settings, json_settings)

    @field_validator("cores", mode="before")
    @classmethod
    def _cores(cls, v):
        return parse_cores(v)

    @field_validator("fingerprint")
    @classmethod
    def _fingerprint(cls, v: str) -> str:
        if v not in FINGERPRINT_MODES:
            raise ValueError(f"must be one of {FINGERPRINT_MODES}")
        return v

    @field_validator("latency_wait")
    @classmethod
    def _latency(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("jobs")
    @classmethod
    def _jobs(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("must be >= 1")
        return v

    def merged(self, **overrides: Any) -> "Settings":
        """Copy with the non-None overrides applied (CLI flags)."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return Settings.model_validate(data)
        except ValidationError as e:
            raise _invalid(e, "command line")


def _invalid(e: ValidationError, source: str) -> ConfigurationError:
    return ConfigurationError(
        message=f"Invalid settings ({source})",
        details={"errors": "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())},
    )


def resolve_settings_file(workdir: str | Path = ".", override: Optional[Path] = None) -> Path:
    """Settings file from explicit override, RULEGRAPH_SETTINGS_FILE, or workdir/rulegraph.json."""
    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = Path(workdir) / SETTINGS_FILE
    return chosen


def load_settings(workdir: str | Path = ".", settings_file: Optional[Path] = None) -> Settings:
    """
    Settings from defaults, then the JSON settings file, then RULEGRAPH_* env vars.

    CLI flags are applied on top with Settings.merged().
    """
    path = resolve_settings_file(workdir, settings_file)
    Settings._json_file_override = path
    try:
        return Settings()
    except ValidationError as e:
        raise _invalid(e, str(path) if path.exists() else "environment")
    except (TypeError, ValueError) as e:
        # unreadable file: bad JSON, or JSON that is not an object
        raise ConfigurationError(
            message=f"Settings file is not a JSON object: {e}",
            details={"path": str(path)},
        )
    finally:
        Settings._json_file_override = None
