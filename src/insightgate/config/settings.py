#
#  Copyright (C) 2017-2025 Dremio Corporation
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#
from uuid import UUID

from pydantic import (
    Field,
    AfterValidator,
    BaseModel,
    ConfigDict,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import (
    Optional,
    Union,
    Annotated,
    Self,
    List,
    Dict,
    Any,
    Callable,
    Literal,
)
from enum import auto, StrEnum
from pathlib import Path
from yaml import safe_load, add_representer, dump
from contextvars import ContextVar
from os import environ
from importlib.util import find_spec


def _resolve_token_file(pat: Optional[str]) -> Optional[str]:
    if pat is None:
        return None
    return (
        Path(pat[1:]).expanduser().read_text().strip() if pat.startswith("@") else pat
    )


class StoreKind(StrEnum):
    sqlite = auto()
    flightsql = auto()


class Store(BaseModel):
    kind: Optional[StoreKind] = StoreKind.sqlite
    path: Optional[str] = Field(default=":memory:")
    uri: Optional[str] = None
    pat: Annotated[Optional[str], AfterValidator(_resolve_token_file)] = None
    project_id: Optional[UUID] = None
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)


class InjectionSeverity(StrEnum):
    error = auto()
    warning = auto()


class Validation(BaseModel):
    abort_early: Optional[bool] = True
    strip_unknown: Optional[bool] = True
    injection_severity: Optional[InjectionSeverity] = InjectionSeverity.error
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)


class Analysis(BaseModel):
    """Statistical thresholds shared by the summarizer and metric alerting"""

    deadband_pct: Optional[float] = Field(
        default=5.0,
        description="Percentage change below which a trend is stable",
    )
    anomaly_threshold: Optional[float] = Field(
        default=2.0, description="Absolute z-score above which a value is anomalous"
    )
    window_size_days: Optional[int] = 90
    min_data_points: Optional[int] = 30
    smoothing_alpha: Optional[float] = 0.3
    smoothing_window: Optional[int] = 10
    change_threshold: Optional[float] = 0.1
    model_config = ConfigDict(validate_assignment=True)


class Execution(BaseModel):
    default_page_size: Optional[int] = Field(default=50, ge=1, le=100)
    model_config = ConfigDict(validate_assignment=True)


class Tenant(BaseModel):
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    role: Optional[Literal["admin", "member"]] = None
    model_config = ConfigDict(validate_assignment=True)


class Auth(BaseModel):
    """Bearer tokens accepted over HTTP and the tenant each one is issued to"""

    tokens: Optional[Dict[str, Tenant]] = Field(default_factory=dict)
    model_config = ConfigDict(validate_assignment=True)


class Gate(BaseModel):
    token_budget: Optional[int] = None
    model_config = ConfigDict(validate_assignment=True)


class Metrics(BaseModel):
    enabled: Optional[bool] = False
    port: Optional[int] = 9091
    model_config = ConfigDict(validate_assignment=True)


class Settings(BaseSettings):
    store: Optional[Store] = Field(default_factory=Store)
    validation: Optional[Validation] = Field(default_factory=Validation)
    analysis: Optional[Analysis] = Field(default_factory=Analysis)
    execution: Optional[Execution] = Field(default_factory=Execution)
    tenant: Optional[Tenant] = Field(default=None)
    gate: Optional[Gate] = Field(default=None)
    auth: Optional[Auth] = Field(default_factory=Auth)
    metrics: Optional[Metrics] = Field(default_factory=Metrics)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        env_prefix="INSIGHTGATE_",
        extra="allow",
        use_enum_values=True,
    )

    def with_overrides(self, overrides: Dict[str, Any]) -> Self:
        def set_values(aparts: List[str], value: Any, obj: Any):
            if len(aparts) == 1 and hasattr(obj, aparts[0]):
                setattr(obj, aparts[0], value)
            elif hasattr(obj, aparts[0]):
                set_values(aparts[1:], value, getattr(obj, aparts[0]))

        for aparts, value in [
            (attr.split("."), value)
            for attr, value in overrides.items()
            if value is not None
        ]:
            set_values(aparts, value, self)

        return self


_settings: ContextVar[Settings] = ContextVar("settings", default=None)


# the default config is ~/.config/insightgate/config.yaml, use it if it exists
def default_config() -> Path:
    _top = "insightgate"
    if (_top := find_spec(__name__)) and _top.name:
        _top = _top.name.split(".")[0]
    return (
        Path(environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
        / _top
        / "config.yaml"
    )


# configures the settings using the given config file and overwrites the global
# settings instance if force is True
def configure(cfg: Union[str, Path] = None, force=False) -> ContextVar[Settings]:
    global _settings
    if force and isinstance(_settings.get(), Settings):
        old = _settings.get()
        try:
            _settings.set(None)
            configure(cfg, force=False)
        except Exception:
            # don't replace the old if there is an issue setting the new value
            _settings.set(old)
            raise

    if isinstance(cfg, str):
        cfg = Path(cfg)

    if cfg is None:
        cfg = default_config()

    if not cfg.exists():
        cfg.parent.mkdir(parents=True, exist_ok=True)
        cfg.touch()

    with cfg.open() as f:
        s = safe_load(f)
        _settings.set(Settings.model_validate(s if s else {}))

    return _settings


# Get the current settings instance if one has been configured. If not try
# to configure it using the default config file. If that fails, create a new
# empty settings instance.
def instance() -> Settings | None:
    global _settings
    if not isinstance(_settings.get(), Settings):
        try:
            configure()  # use default config, if exists
        except (FileNotFoundError, PermissionError):
            # no usable default config, fall back to defaults
            _settings.set(Settings())
    return _settings.get()


async def run_with(
    func: Callable,
    overrides: Optional[Dict[str, Any]] = None,
    args: Optional[List[Any]] = None,
    kw: Optional[Dict[str, Any]] = None,
) -> Any:
    tok = _settings.set(
        instance().model_copy(deep=True).with_overrides(overrides or {})
    )
    try:
        return await func(*(args or []), **(kw or {}))
    finally:
        _settings.reset(tok)


def write_settings(
    cfg: Path = None, inst: Settings = None, dry_run: bool = False
) -> str | None:
    if cfg is None:
        cfg = default_config()

    if not isinstance(inst, Settings):
        inst = instance()

    d = inst.model_dump(exclude_none=True, mode="json", exclude_unset=True)
    add_representer(
        str,
        lambda dumper, data: dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style=('"' if "@" in data else None)
        ),
    )
    if dry_run:
        return dump(d)

    if not cfg.exists() or not cfg.parent.exists():
        cfg.parent.mkdir(parents=True, exist_ok=True)

    with cfg.open("w") as f:
        dump(d, f)
