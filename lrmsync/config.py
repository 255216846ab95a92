from __future__ import annotations

from pathlib import Path
from typing import Literal, Mapping
import hashlib
import json
import os

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
)

from lrmsync import hash as lrmhash
from lrmsync.formats import language_path
from lrmsync.models import LanguageInfo

ResourceFormat = Literal["json", "po"]

ENV_PREFIX = "LRMSYNC_"


def compute_canonical_hash(data: dict) -> str:
    canonical = lrmhash.canonical_json_bytes(data)
    return hashlib.sha256(canonical).hexdigest()


class _BaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ResourcesConfig(_BaseModel):
    directory: StrictStr = "."
    base_name: StrictStr = Field(default="strings", min_length=1)
    format: ResourceFormat = "json"

    @field_validator("base_name")
    @classmethod
    def _base_name_plain(cls, value: str) -> str:
        if "/" in value or "\\" in value:
            raise ValueError("resources.base_name must be a file name, not a path")
        return value


class CloudConfig(_BaseModel):
    url: StrictStr
    project_id: StrictStr = Field(min_length=1)
    token_env: StrictStr = "LRMSYNC_API_TOKEN"
    timeout_seconds: float = Field(default=30, gt=0)

    @field_validator("url")
    @classmethod
    def _url_scheme(cls, value: str) -> str:
        if not value.startswith(("sqlite:///", "http://", "https://")):
            raise ValueError("cloud.url must start with sqlite:///, http:// or https://")
        return value.rstrip("/") if value.startswith("http") else value

    @property
    def is_local(self) -> bool:
        return self.url.startswith("sqlite:///")

    @property
    def database_path(self) -> Path:
        return Path(self.url[len("sqlite:///"):])

    def api_token(self, environ: Mapping[str, str] | None = None) -> str | None:
        env = os.environ if environ is None else environ
        return env.get(self.token_env) or None


class Config(_BaseModel):
    format: Literal[1]
    resources: ResourcesConfig = Field(default_factory=ResourcesConfig)
    cloud: CloudConfig
    actor: StrictStr | None = None
    config_hash: StrictStr = ""

    def model_post_init(self, __context: object) -> None:
        self.config_hash = compute_canonical_hash(self.data)

    @property
    def data(self) -> dict:
        return self.model_dump(mode="json", exclude={"config_hash"})

    def resource_dir(self, project_root: Path) -> Path:
        return (project_root / self.resources.directory).resolve()

    def language_info(self, project_root: Path, code: str) -> LanguageInfo:
        path = language_path(
            self.resource_dir(project_root),
            self.resources.base_name,
            code,
            self.resources.format,
        )
        return LanguageInfo.for_path(path, self.resources.base_name, code)


def load_config_data(path: Path) -> dict:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return payload


def load_config(path: Path) -> Config:
    return Config.model_validate(load_config_data(path))


class ServerSettings(_BaseModel):
    """Settings of the cloud service, from a JSON file and LRMSYNC_* variables."""

    database_path: StrictStr
    api_token: StrictStr | None = None
    webhook_secret: StrictStr | None = None
    github_token: StrictStr | None = None
    github_api_url: StrictStr = "https://api.github.com"
    github_timeout_seconds: float = Field(default=30, gt=0)
    busy_timeout_ms: StrictInt = Field(default=5000, ge=0)
    synchronous: StrictStr = "NORMAL"
    default_max_snapshots: StrictInt = Field(default=20, ge=1)
    default_snapshot_retention_days: StrictInt = Field(default=30, ge=1)

    @field_validator("synchronous")
    @classmethod
    def _synchronous_value(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raise ValueError("synchronous must be one of: OFF, NORMAL, FULL, EXTRA")
        return upper


_INT_SETTINGS = {"busy_timeout_ms", "default_max_snapshots", "default_snapshot_retention_days"}
_FLOAT_SETTINGS = {"github_timeout_seconds"}


def _settings_from_env(environ: Mapping[str, str]) -> dict:
    data: dict[str, object] = {}
    for name in ServerSettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        if name in _INT_SETTINGS:
            try:
                data[name] = int(raw)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer") from exc
        elif name in _FLOAT_SETTINGS:
            try:
                data[name] = float(raw)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a number") from exc
        else:
            data[name] = raw
    return data


def load_server_settings(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> ServerSettings:
    """File values, then environment, then explicit overrides (highest wins)."""
    data: dict[str, object] = {}
    if path is not None:
        data.update(load_config_data(path))
    data.update(_settings_from_env(os.environ if environ is None else environ))
    if overrides:
        data.update({key: value for key, value in overrides.items() if value is not None})
    return ServerSettings.model_validate(data)
