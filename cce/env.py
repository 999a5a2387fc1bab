import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .config import Provider, Store
from .utils import mask_sensitive_value


AUTH_TOKEN_VAR = "ANTHROPIC_AUTH_TOKEN"
BASE_URL_VAR = "ANTHROPIC_BASE_URL"
MODEL_VARIABLES = [
    "ANTHROPIC_MODEL",
    "ANTHROPIC_DEFAULT_OPUS_MODEL",
    "ANTHROPIC_DEFAULT_SONNET_MODEL",
    "ANTHROPIC_DEFAULT_HAIKU_MODEL",
]
ALL_VARIABLES = [AUTH_TOKEN_VAR, BASE_URL_VAR] + MODEL_VARIABLES

SHELL_INTEGRATION_FLAG = "CCE_SHELL_INTEGRATION"
SHELL_DIALECT_VAR = "CCE_SHELL_DIALECT"
WRAPPED_FLAG = "CCE_WRAPPED"


class RenderMode(str, Enum):
    DISPLAY = "display"
    SHELL_EVAL = "shell-eval"


class Dialect(str, Enum):
    POSIX = "posix"
    POWERSHELL = "powershell"


class VarStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    MISMATCH = "mismatch"
    UNEXPECTED = "unexpected"


@dataclass
class VarCheck:
    name: str
    status: VarStatus
    expected: Optional[str]
    actual: Optional[str]


@dataclass
class CheckReport:
    provider: Optional[Provider]
    dangling_name: Optional[str] = None
    variables: List[VarCheck] = field(default_factory=list)

    @property
    def matches(self) -> bool:
        return self.provider is not None and all(v.status == VarStatus.OK for v in self.variables)


class EnvManager:
    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def render_mode(self) -> RenderMode:
        """只有 CCE_SHELL_INTEGRATION=1 时才输出可 eval 的语句"""
        if self.environ.get(SHELL_INTEGRATION_FLAG) == "1":
            return RenderMode.SHELL_EVAL
        return RenderMode.DISPLAY

    def dialect(self) -> Dialect:
        value = self.environ.get(SHELL_DIALECT_VAR, "").strip().lower()
        if value in ("powershell", "pwsh"):
            return Dialect.POWERSHELL
        return Dialect.POSIX

    def is_wrapped(self) -> bool:
        return self.environ.get(WRAPPED_FLAG) == "1"

    @staticmethod
    def variables_for(provider: Provider) -> Dict[str, str]:
        """服务商对应的环境变量，顺序固定"""
        variables = {
            AUTH_TOKEN_VAR: provider.token,
            BASE_URL_VAR: provider.api_url,
        }
        if provider.model:
            for var in MODEL_VARIABLES:
                variables[var] = provider.model
        return variables

    @staticmethod
    def clear_variables() -> List[str]:
        return list(ALL_VARIABLES)

    def export_statements(self, variables: Dict[str, str], dialect: Optional[Dialect] = None) -> List[str]:
        dialect = dialect or self.dialect()
        if dialect == Dialect.POWERSHELL:
            return [f"$env:{var} = '{_powershell_quote(value)}'" for var, value in variables.items()]
        return [f"export {var}={shlex.quote(value)}" for var, value in variables.items()]

    def unset_statements(self, variables: List[str], dialect: Optional[Dialect] = None) -> List[str]:
        dialect = dialect or self.dialect()
        if dialect == Dialect.POWERSHELL:
            return [f"Remove-Item Env:{var} -ErrorAction SilentlyContinue" for var in variables]
        return [f"unset {var}" for var in variables]

    def check(self, store: Store) -> CheckReport:
        """比较当前进程环境变量与当前服务商应有的值，只读"""
        provider = store.active()
        if provider is None:
            return CheckReport(provider=None, dangling_name=store.current_provider)

        expected = self.variables_for(provider)
        report = CheckReport(provider=provider)
        for var in ALL_VARIABLES:
            actual = self.environ.get(var)
            wanted = expected.get(var)
            if wanted is None:
                status = VarStatus.OK if not actual else VarStatus.UNEXPECTED
            elif actual is None:
                status = VarStatus.MISSING
            elif actual != wanted:
                status = VarStatus.MISMATCH
            else:
                status = VarStatus.OK
            report.variables.append(VarCheck(name=var, status=status, expected=wanted, actual=actual))
        return report

    @staticmethod
    def display_value(var: str, value: Optional[str]) -> str:
        if value is None:
            return "Not set"
        if var == AUTH_TOKEN_VAR:
            return mask_sensitive_value(value)
        return value


def _powershell_quote(value: str) -> str:
    return value.replace("'", "''")
