from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .config import ConfigManager, Provider, Store
from .env import CheckReport, EnvManager
from .errors import InvalidProviderName, ProviderNotFound
from .utils import is_valid_provider_name


@dataclass
class SwitchResult:
    """use/clear 的结果：设置的变量与清除的变量"""
    provider: Optional[Provider]
    applied: Dict[str, str]
    cleared: List[str]
    already_active: bool = False


class ProviderManager:
    def __init__(self, config_manager: Optional[ConfigManager] = None, env_manager: Optional[EnvManager] = None):
        self.config_manager = config_manager or ConfigManager()
        self.env_manager = env_manager or EnvManager()
        self._store: Optional[Store] = None

    @property
    def store(self) -> Store:
        if self._store is None:
            self._store = self.config_manager.load()
        return self._store

    def add_provider(self, name: str, api_url: str, token: str, model: Optional[str] = None) -> bool:
        """添加或覆盖服务商，返回是否覆盖了已有配置"""
        if not is_valid_provider_name(name):
            raise InvalidProviderName(name)

        store = self.store
        existed = name in store.providers
        store.providers[name] = Provider(name=name, api_url=api_url, token=token, model=model)
        self.config_manager.save(store)
        return existed

    def remove_provider(self, name: str) -> bool:
        store = self.store
        if name not in store.providers:
            return False

        del store.providers[name]
        if store.current_provider == name:
            store.current_provider = None
        self.config_manager.save(store)
        return True

    def list_providers(self) -> Iterator[Provider]:
        return self.store.iter_providers()

    def get_provider(self, name: str) -> Provider:
        provider = self.store.providers.get(name)
        if provider is None:
            raise ProviderNotFound(name, self.get_similar_names(name))
        return provider

    def get_current_provider(self) -> Optional[Provider]:
        return self.store.active()

    def use_provider(self, name: str) -> SwitchResult:
        provider = self.get_provider(name)
        store = self.store
        already_active = store.current_provider == name
        if not already_active:
            store.current_provider = name
            self.config_manager.save(store)

        return SwitchResult(
            provider=provider,
            applied=self.env_manager.variables_for(provider),
            cleared=[],
            already_active=already_active,
        )

    def clear_current(self) -> SwitchResult:
        store = self.store
        previous = store.active()
        if store.current_provider is not None:
            store.current_provider = None
            self.config_manager.save(store)

        return SwitchResult(provider=previous, applied={}, cleared=self.env_manager.clear_variables())

    def check_environment(self) -> CheckReport:
        return self.env_manager.check(self.store)

    def get_similar_names(self, name: str) -> List[str]:
        similar = []

        name_lower = name.lower()
        for candidate in sorted(self.store.providers):
            candidate_lower = candidate.lower()
            if (name_lower in candidate_lower or
                candidate_lower in name_lower or
                abs(len(name_lower) - len(candidate_lower)) <= 2):
                similar.append(candidate)

        return similar[:3]
