import os
from pathlib import Path
from typing import Dict, Iterator, Optional

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigCorrupt
from .utils import atomic_write_text


class Provider(BaseModel):
    # 手动编辑配置时加入的其他键原样保留
    model_config = ConfigDict(extra="allow")

    name: str
    api_url: str
    token: str
    model: Optional[str] = None

    @field_validator("model", mode="before")
    @classmethod
    def _empty_model_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Store(BaseModel):
    model_config = ConfigDict(extra="allow")

    current_provider: Optional[str] = None
    providers: Dict[str, Provider] = Field(default_factory=dict)

    @field_validator("current_provider", mode="before")
    @classmethod
    def _empty_current_is_none(cls, value):
        if isinstance(value, str) and not value:
            return None
        return value

    @field_validator("providers", mode="before")
    @classmethod
    def _fill_names_from_keys(cls, value):
        # 表中省略 name 时用表名补齐
        if isinstance(value, dict):
            filled = {}
            for key, entry in value.items():
                if isinstance(entry, dict) and "name" not in entry:
                    entry = {**entry, "name": key}
                filled[key] = entry
            return filled
        return value

    def active(self) -> Optional[Provider]:
        """当前服务商；指针悬空（配置被手动编辑过）时视为没有当前服务商"""
        if self.current_provider is None:
            return None
        return self.providers.get(self.current_provider)

    def iter_providers(self) -> Iterator[Provider]:
        for name in sorted(self.providers):
            yield self.providers[name]

    def to_toml(self) -> str:
        data = {}
        if self.current_provider is not None:
            data["current_provider"] = self.current_provider
        data.update(self.model_extra or {})
        data["providers"] = {
            name: provider.model_dump(exclude_none=True)
            for name, provider in sorted(self.providers.items())
        }
        return toml.dumps(data)


class ConfigManager:
    config_file_name = "config.toml"

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir if config_dir is not None else self._get_config_dir()
        self.config_path = self.config_dir / self.config_file_name

    def _get_config_dir(self) -> Path:
        override = os.environ.get("CCE_CONFIG_DIR")
        if override:
            return Path(override).expanduser()
        return Path.home() / ".cce"

    def load(self) -> Store:
        if not self.config_path.exists():
            return Store()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = toml.load(f)
        except toml.TomlDecodeError as e:
            raise ConfigCorrupt(self.config_path, str(e)) from e
        except UnicodeDecodeError as e:
            raise ConfigCorrupt(self.config_path, "file is not valid UTF-8") from e

        try:
            return Store(**data)
        except (ValidationError, TypeError) as e:
            raise ConfigCorrupt(self.config_path, str(e)) from e

    def save(self, store: Store):
        atomic_write_text(self.config_path, store.to_toml(), mode=0o600)
