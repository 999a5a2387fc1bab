import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Optional

import click


_PROVIDER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

_ASCII_FALLBACKS = {
    "✓": "[OK]",
    "✗": "[X]",
    "⚠": "[WARN]",
    "ℹ": "[i]",
    "●": "*",
    "○": "-",
    "→": "->",
}


def is_valid_provider_name(name: str) -> bool:
    """验证服务商名称是否有效

    名称会出现在 TOML 表头里，并被 shell 启动脚本直接解析，所以只允许简单字符。
    """
    if not name or not name.strip():
        return False

    if len(name) > 64:
        return False

    if not _PROVIDER_NAME_PATTERN.match(name):
        return False

    if name.startswith(".") or name.startswith("-"):
        return False

    return True


def mask_sensitive_value(value: str, mask_char: str = "*") -> str:
    """遮盖敏感信息"""
    if len(value) <= 8:
        return mask_char * len(value)

    visible_chars = 4
    return (
        value[:visible_chars]
        + mask_char * (len(value) - visible_chars * 2)
        + value[-visible_chars:]
    )


def colorize(text: str, color: str, bold: bool = False) -> str:
    """为文本添加颜色（仅在支持的终端中）"""
    if not sys.stdout.isatty():
        return text

    return click.style(text, fg=color, bold=bold)


def success_message(text: str) -> str:
    return colorize(f"✓ {text}", "green")


def error_message(text: str) -> str:
    return colorize(f"✗ {text}", "red")


def warning_message(text: str) -> str:
    return colorize(f"⚠ {text}", "yellow")


def info_message(text: str) -> str:
    return colorize(f"ℹ {text}", "blue")


def safe_echo(message: str, **kwargs):
    """在无法编码 Unicode 的终端（如 Windows GBK）下安全输出"""
    try:
        click.echo(message, **kwargs)
    except UnicodeEncodeError:
        for symbol, replacement in _ASCII_FALLBACKS.items():
            message = message.replace(symbol, replacement)
        click.echo(message, **kwargs)


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def atomic_write_text(path: Path, content: str, mode: Optional[int] = None) -> None:
    """原子写入文本文件

    先写入同目录下的临时文件，fsync 后再 rename 覆盖目标文件，读者永远不会看到写了一半的内容。
    mode 为 None 时保留目标文件原有权限；目标不存在时按 umask 使用普通新文件的权限。
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    if mode is None:
        if path.exists():
            mode = path.stat().st_mode & 0o777
        else:
            mode = 0o666 & ~_current_umask()

    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise
