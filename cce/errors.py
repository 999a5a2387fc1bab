from pathlib import Path
from typing import List, Optional


class CceError(Exception):
    """Base class for errors reported to the user with exit code 1."""

    hint: Optional[str] = None


class ConfigCorrupt(CceError):
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        self.hint = f"Delete '{path.parent}' and re-add your providers with 'cce add'."
        super().__init__(f"Config file '{path}' is corrupt: {reason}")


class ProviderNotFound(CceError):
    def __init__(self, name: str, similar: Optional[List[str]] = None):
        self.name = name
        self.similar = similar or []
        if self.similar:
            self.hint = f"Did you mean: {', '.join(self.similar)}?"
        else:
            self.hint = "Use 'cce list' to see configured providers."
        super().__init__(f"Provider '{name}' does not exist")


class InvalidProviderName(CceError):
    def __init__(self, name: str):
        self.name = name
        self.hint = "Names may contain letters, digits, '_', '-' and '.'."
        super().__init__(f"Invalid provider name '{name}'")


class ProfileWriteError(CceError):
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        self.hint = "Add the block printed by 'cce shellenv' to this file manually."
        super().__init__(f"Cannot update '{path}': {reason}")


class UnsupportedShell(CceError):
    def __init__(self, shell_name: str):
        self.shell_name = shell_name
        self.hint = "Supported shells: bash, zsh, powershell. Use --shell to choose one."
        super().__init__(f"Unsupported shell '{shell_name}'")
