import os
import platform
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .env import AUTH_TOKEN_VAR, BASE_URL_VAR, MODEL_VARIABLES
from .errors import ProfileWriteError, UnsupportedShell
from .utils import atomic_write_text


MARKER_START = "# >>> cce shell integration >>>"
MARKER_END = "# <<< cce shell integration <<<"


class ShellKind(str, Enum):
    BASH = "bash"
    ZSH = "zsh"
    POWERSHELL = "powershell"
    UNKNOWN = "unknown"


class InstallOutcome(str, Enum):
    INSTALLED = "installed"
    ALREADY_INSTALLED = "already-installed"
    NEEDS_UPGRADE = "needs-upgrade"
    REPLACED = "replaced"


def parse_shell_name(name: str) -> ShellKind:
    """把 $SHELL 或 --shell 的值归类，例如 /bin/zsh、-bash、pwsh.exe"""
    base = re.split(r"[\\/]", name.strip())[-1].lower().lstrip("-")
    if base.endswith(".exe"):
        base = base[:-4]

    if base == "bash":
        return ShellKind.BASH
    if base == "zsh":
        return ShellKind.ZSH
    if base in ("pwsh", "powershell"):
        return ShellKind.POWERSHELL
    return ShellKind.UNKNOWN


def detect_shell(override: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 system: Optional[str] = None) -> ShellKind:
    """检测当前会话的 shell 类型

    优先级：显式指定 > 继承的 $SHELL > 操作系统默认（Windows 为 PowerShell，其余为 bash）。
    """
    if override:
        return parse_shell_name(override)

    if environ is None:
        environ = os.environ
    shell = environ.get("SHELL", "")
    if shell:
        return parse_shell_name(shell)

    if system is None:
        system = platform.system()
    if system == "Windows":
        return ShellKind.POWERSHELL
    return ShellKind.BASH


def target_file(shell: ShellKind, system: str, home: Path) -> Path:
    """shell 启动文件的标准路径"""
    if shell == ShellKind.ZSH:
        return home / ".zshrc"
    if shell == ShellKind.BASH:
        # macOS 的终端默认启动 login shell，只读取 .bash_profile
        if system == "Darwin":
            return home / ".bash_profile"
        return home / ".bashrc"
    if shell == ShellKind.POWERSHELL:
        if system == "Windows":
            return home / "Documents" / "PowerShell" / "Microsoft.PowerShell_profile.ps1"
        return home / ".config" / "powershell" / "Microsoft.PowerShell_profile.ps1"
    raise UnsupportedShell(shell.value)


_POSIX_CODE = r'''# Managed by `cce install`. Delete everything between the markers to uninstall.

__cce_field() {
    awk -v section="providers.$2" -v key="$3" '
        /^[ \t]*\[/ {
            header = $0
            gsub(/[ \t]/, "", header)
            gsub(/"/, "", header)
            gsub(/^\[|\]$/, "", header)
            inside = (header == section)
            next
        }
        inside {
            eq = index($0, "=")
            if (eq == 0) next
            k = substr($0, 1, eq - 1)
            gsub(/[ \t]/, "", k)
            gsub(/"/, "", k)
            if (k != key) next
            v = substr($0, eq + 1)
            sub(/^[ \t]*"/, "", v)
            sub(/"[ \t]*$/, "", v)
            print v
            exit
        }
    ' "$1"
}

# Restore the active provider without starting the cce binary
__cce_autoload() {
    local config current token url model
    config="${CCE_CONFIG_DIR:-$HOME/.cce}/config.toml"
    [ -r "$config" ] || return 0
    current=$(awk -F'"' '/^[ \t]*\[/ { exit } /^[ \t]*current_provider[ \t]*=/ { print $2; exit }' "$config")
    [ -n "$current" ] || return 0
    token=$(__cce_field "$config" "$current" token)
    url=$(__cce_field "$config" "$current" api_url)
    if [ -z "$token" ] || [ -z "$url" ]; then
        return 0
    fi
    model=$(__cce_field "$config" "$current" model)
    export __CCE_TOKEN_VAR__="$token"
    export __CCE_URL_VAR__="$url"
    if [ -n "$model" ]; then
__CCE_MODEL_EXPORTS__
    fi
}

unalias cce 2>/dev/null || true

cce() {
    CCE_WRAPPED=1 command cce "$@"
    local rc=$?
    [ $rc -eq 0 ] || return $rc

    case "$1" in
        use|clear) ;;
        *) return 0 ;;
    esac

    local arg
    for arg in "$@"; do
        case "$arg" in
            -h|--help) return 0 ;;
        esac
    done

    local statements
    statements=$(CCE_SHELL_INTEGRATION=1 command cce "$@") || return $?
    # use only exports what the provider has; drop models left by the previous one
    if [ "$1" = use ]; then
__CCE_MODEL_UNSETS__
    fi
    eval "$statements"
}

__cce_autoload'''

_POWERSHELL_CODE = r'''# Managed by `cce install`. Delete everything between the markers to uninstall.

function __CceField([string[]]$Lines, [string]$Section, [string]$Key) {
    $inside = $false
    foreach ($line in $Lines) {
        if ($line -match '^\s*\[(.*)\]\s*$') {
            $inside = (($Matches[1] -replace '["\s]', '') -eq "providers.$Section")
            continue
        }
        if ($inside -and $line -match ('^\s*"?' + [regex]::Escape($Key) + '"?\s*=\s*"(.*)"\s*$')) {
            return $Matches[1]
        }
    }
    return $null
}

# Restore the active provider without starting the cce binary
function __CceAutoload {
    $configDir = if ($env:CCE_CONFIG_DIR) { $env:CCE_CONFIG_DIR } else { Join-Path $HOME '.cce' }
    $config = Join-Path $configDir 'config.toml'
    if (-not (Test-Path -LiteralPath $config)) { return }
    $lines = Get-Content -LiteralPath $config -Encoding UTF8
    $current = $null
    foreach ($line in $lines) {
        if ($line -match '^\s*\[') { break }
        if ($line -match '^\s*current_provider\s*=\s*"(.*)"\s*$') { $current = $Matches[1]; break }
    }
    if (-not $current) { return }
    $token = __CceField $lines $current 'token'
    $url = __CceField $lines $current 'api_url'
    if (-not $token -or -not $url) { return }
    $model = __CceField $lines $current 'model'
    $env:__CCE_TOKEN_VAR__ = $token
    $env:__CCE_URL_VAR__ = $url
    if ($model) {
__CCE_MODEL_EXPORTS__
    }
}

function cce {
    $cceApp = Get-Command cce -CommandType Application -ErrorAction SilentlyContinue | Select-Object -First 1
    if (-not $cceApp) {
        Write-Error 'cce executable not found on PATH'
        return
    }

    $env:CCE_WRAPPED = '1'
    try {
        & $cceApp @args
        $rc = $LASTEXITCODE
    } finally {
        Remove-Item Env:CCE_WRAPPED -ErrorAction SilentlyContinue
    }
    if ($rc -ne 0) { $global:LASTEXITCODE = $rc; return }

    if ($args.Count -eq 0 -or ($args[0] -ne 'use' -and $args[0] -ne 'clear')) { return }
    if ($args -contains '--help' -or $args -contains '-h') { return }

    $env:CCE_SHELL_INTEGRATION = '1'
    $env:CCE_SHELL_DIALECT = 'powershell'
    try {
        $statements = & $cceApp @args
        $evalRc = $LASTEXITCODE
    } finally {
        Remove-Item Env:CCE_SHELL_INTEGRATION -ErrorAction SilentlyContinue
        Remove-Item Env:CCE_SHELL_DIALECT -ErrorAction SilentlyContinue
    }
    if ($evalRc -ne 0) { $global:LASTEXITCODE = $evalRc; return }
    if ($args[0] -eq 'use') {
__CCE_MODEL_UNSETS__
    }
    if ($statements) {
        Invoke-Expression ($statements -join [Environment]::NewLine)
    }
}

__CceAutoload'''


def _render_template(template: str, model_line: str, unset_line: str) -> str:
    model_exports = "\n".join(model_line.format(var=var) for var in MODEL_VARIABLES)
    model_unsets = "\n".join(unset_line.format(var=var) for var in MODEL_VARIABLES)
    return (template
            .replace("__CCE_TOKEN_VAR__", AUTH_TOKEN_VAR)
            .replace("__CCE_URL_VAR__", BASE_URL_VAR)
            .replace("__CCE_MODEL_EXPORTS__", model_exports)
            .replace("__CCE_MODEL_UNSETS__", model_unsets))


class ShellIntegration:
    def __init__(self, shell: ShellKind, system: Optional[str] = None, home: Optional[Path] = None):
        self.shell = shell
        self.system = system or platform.system()
        self.home = home or Path.home()
        self.marker_start = MARKER_START
        self.marker_end = MARKER_END

    @classmethod
    def detect(cls, override: Optional[str] = None) -> "ShellIntegration":
        return cls(detect_shell(override))

    def get_shell_config_path(self) -> Path:
        return target_file(self.shell, self.system, self.home)

    def get_integration_code(self) -> str:
        """获取要注入的shell集成代码"""
        if self.shell in (ShellKind.BASH, ShellKind.ZSH):
            return _render_template(_POSIX_CODE, '        export {var}="$model"', "        unset {var}")
        if self.shell == ShellKind.POWERSHELL:
            return _render_template(_POWERSHELL_CODE, "        $env:{var} = $model",
                                    "        Remove-Item Env:{var} -ErrorAction SilentlyContinue")
        raise UnsupportedShell(self.shell.value)

    def get_block(self) -> str:
        return f"{self.marker_start}\n{self.get_integration_code()}\n{self.marker_end}"

    def _read(self, config_path: Path) -> str:
        with open(config_path, 'r', encoding='utf-8', newline='') as f:
            return f.read()

    def _find_block(self, content: str, config_path: Path) -> Optional[Tuple[int, int]]:
        start_idx = content.find(self.marker_start)
        if start_idx == -1:
            return None

        end_idx = content.find(self.marker_end, start_idx)
        if end_idx == -1:
            raise ProfileWriteError(config_path, "begin marker found without a matching end marker")

        return start_idx, end_idx + len(self.marker_end)

    def is_installed(self, config_path: Optional[Path] = None) -> bool:
        """检查是否已经安装"""
        config_path = config_path or self.get_shell_config_path()

        if not config_path.exists():
            return False

        try:
            return self.marker_start in self._read(config_path)
        except (OSError, UnicodeDecodeError):
            return False

    def install(self, force: bool = False, config_path: Optional[Path] = None) -> InstallOutcome:
        """安装或更新 shell 集成

        未安装时追加；已安装且内容一致时不写文件；已安装但内容过期时只报告 NEEDS_UPGRADE，
        force 为真时原地替换已有的标记块。
        """
        config_path = config_path or self.get_shell_config_path()
        block = self.get_block()

        try:
            existing_content = self._read(config_path) if config_path.exists() else ""
        except OSError as e:
            raise ProfileWriteError(config_path, e.strerror or str(e)) from e
        except UnicodeDecodeError as e:
            raise ProfileWriteError(config_path, "file is not valid UTF-8") from e

        span = self._find_block(existing_content, config_path)
        if span is None:
            new_content = existing_content
            if new_content and not new_content.endswith("\n"):
                new_content += "\n"
            if new_content:
                new_content += "\n"
            new_content += block + "\n"
            outcome = InstallOutcome.INSTALLED
        else:
            start, end = span
            if not force:
                if existing_content[start:end] == block:
                    return InstallOutcome.ALREADY_INSTALLED
                return InstallOutcome.NEEDS_UPGRADE
            new_content = existing_content[:start] + block + existing_content[end:]
            outcome = InstallOutcome.REPLACED

        self._write(config_path, existing_content, new_content)
        return outcome

    def uninstall(self, config_path: Optional[Path] = None) -> bool:
        """卸载shell集成，返回是否移除了标记块"""
        config_path = config_path or self.get_shell_config_path()

        if not config_path.exists():
            return False

        try:
            content = self._read(config_path)
        except (OSError, UnicodeDecodeError) as e:
            raise ProfileWriteError(config_path, str(e)) from e

        span = self._find_block(content, config_path)
        if span is None:
            return False

        start, end = span
        before, after = content[:start], content[end:]
        if after.startswith("\n"):
            after = after[1:]
        # 去掉安装时补上的空行
        if before.endswith("\n\n"):
            before = before[:-1]

        self._write(config_path, content, before + after)
        return True

    def _write(self, config_path: Path, old_content: str, new_content: str):
        # 配置文件常是指向 dotfiles 仓库的软链接，写入链接目标而不是替换链接本身
        target = config_path.resolve()
        try:
            if old_content:
                backup_path = target.with_name(target.name + '.cce.backup')
                shutil.copy2(target, backup_path)
            atomic_write_text(target, new_content)
        except OSError as e:
            raise ProfileWriteError(config_path, e.strerror or str(e)) from e

    def get_manual_instructions(self) -> str:
        """无法识别 shell 时打印的手动安装说明"""
        posix = ShellIntegration(ShellKind.BASH, self.system, self.home)
        return "\n".join([
            "Add the following block to your shell's startup file, then open a new terminal:",
            "",
            posix.get_block(),
            "",
            "Or evaluate it for the current session only:",
            '  eval "$(cce shellenv --shell bash)"',
        ])
