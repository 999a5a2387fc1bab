"""
cce - Claude API 服务商切换工具

保存多个 Claude API 服务商配置，并通过 shell 集成在当前终端中切换 ANTHROPIC_* 环境变量。
"""

__version__ = "0.1.0"
__description__ = "Switch the Claude API provider of the current shell"

from .config import ConfigManager, Provider, Store
from .env import EnvManager
from .errors import (
    CceError,
    ConfigCorrupt,
    InvalidProviderName,
    ProfileWriteError,
    ProviderNotFound,
    UnsupportedShell,
)
from .provider import ProviderManager
from .shell_integration import InstallOutcome, ShellIntegration, ShellKind, detect_shell, target_file
from .utils import is_valid_provider_name, mask_sensitive_value

__all__ = [
    "ConfigManager",
    "Provider",
    "Store",
    "EnvManager",
    "ProviderManager",
    "ShellIntegration",
    "ShellKind",
    "InstallOutcome",
    "detect_shell",
    "target_file",
    "CceError",
    "ConfigCorrupt",
    "InvalidProviderName",
    "ProfileWriteError",
    "ProviderNotFound",
    "UnsupportedShell",
    "is_valid_provider_name",
    "mask_sensitive_value",
]
