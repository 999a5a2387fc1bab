import os
import sys
from typing import Optional

import click

from . import __version__
from .env import EnvManager, RenderMode, VarStatus
from .errors import CceError, UnsupportedShell
from .provider import ProviderManager
from .shell_integration import InstallOutcome, ShellIntegration, ShellKind
from .utils import (
    error_message,
    info_message,
    mask_sensitive_value,
    safe_echo,
    success_message,
    warning_message,
)


def _report_error(e: CceError):
    click.echo(f"Error: {e}", err=True)
    if e.hint:
        click.echo(f"  {e.hint}", err=True)
    sys.exit(1)


def _report_unexpected(e: Exception):
    click.echo(f"Unexpected error: {e}", err=True)
    sys.exit(1)


def _shell_label(shell_name: Optional[str]) -> str:
    return shell_name or os.environ.get("SHELL", "unknown")


@click.group()
@click.version_option(version=__version__, prog_name="cce")
def cli():
    """cce - Claude API 服务商切换工具

    \b
    常用流程: add → use → clear

    \b
    核心命令:
      - add: 添加或覆盖服务商
      - use: 切换服务商（安装 shell 集成后直接在当前终端生效）
      - clear: 清除当前服务商及其环境变量
      - install: 安装 shell 集成
    """
    pass


@cli.command(name="list")
def list_cmd():
    """列出所有服务商"""
    try:
        manager = ProviderManager()
        current = manager.get_current_provider()
        current_name = current.name if current else None

        found = False
        for provider in manager.list_providers():
            if not found:
                safe_echo("Configured providers:")
                safe_echo("")
                found = True

            is_current = provider.name == current_name
            marker = "●" if is_current else "○"
            safe_echo(f"  {marker} {provider.name}")
            safe_echo(f"    API URL: {provider.api_url}")
            safe_echo(f"    Token: {mask_sensitive_value(provider.token)}")
            if provider.model:
                safe_echo(f"    Model: {provider.model}")
            if is_current:
                safe_echo("    (currently active)")
            safe_echo("")

        if not found:
            click.echo("No providers configured. Use 'cce add' to create one.")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
@click.argument('name')
@click.argument('api_url')
@click.argument('token')
@click.option('--model', '-m', help='模型名称，同时用于 opus/sonnet/haiku 默认模型')
def add(name: str, api_url: str, token: str, model: Optional[str]):
    """添加服务商（同名时覆盖）

    使用方式: cce add <name> <api_url> <token> [--model <model>]
    """
    try:
        manager = ProviderManager()
        overwritten = manager.add_provider(name, api_url, token, model)

        if overwritten:
            safe_echo(warning_message(f"Provider '{name}' already existed and was overwritten"))
        safe_echo(success_message(f"Provider '{name}' added successfully"))
        safe_echo(f"  API URL: {api_url}")
        safe_echo(f"  Token: {mask_sensitive_value(token)}")
        if model:
            safe_echo(f"  Model: {model}")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
@click.argument('name')
def delete(name: str):
    """删除服务商"""
    try:
        manager = ProviderManager()
        was_current = manager.store.current_provider == name

        if not manager.remove_provider(name):
            safe_echo(warning_message(f"Provider '{name}' does not exist, nothing to delete"))
            return

        safe_echo(success_message(f"Provider '{name}' deleted"))
        if was_current:
            safe_echo("  It was the active provider; no provider is active now.")
            safe_echo("  Run 'cce clear' to unset its variables in this terminal.")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


def _print_apply_hint(env_manager: EnvManager, command: str):
    if env_manager.is_wrapped():
        return
    safe_echo("")
    safe_echo(info_message("This terminal is unchanged. To apply it here, run:"))
    safe_echo(f'  eval "$(CCE_SHELL_INTEGRATION=1 {command})"')
    safe_echo("  or run 'cce install' once so it applies automatically.")


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def _offer_install():
    """首次体验：交互式终端且未安装集成时询问是否安装"""
    integration = ShellIntegration.detect()
    if integration.shell == ShellKind.UNKNOWN or integration.is_installed():
        return

    if not click.confirm("Shell integration is not installed. Install it now so 'cce use' applies to this terminal?", default=True):
        return

    try:
        integration.install()
        safe_echo(success_message("Shell integration installed"))
        safe_echo(f"  Modified: {integration.get_shell_config_path()}")
        safe_echo("  Open a new terminal or source that file to activate it.")
    except CceError as e:
        click.echo(f"Error: {e}", err=True)


@cli.command()
@click.argument('name')
def use(name: str):
    """切换到指定服务商

    \b
    CCE_SHELL_INTEGRATION=1 时只输出 export 语句，供 shell 集成 eval。
    """
    env_manager = EnvManager()
    try:
        manager = ProviderManager(env_manager=env_manager)
        result = manager.use_provider(name)

        if env_manager.render_mode() == RenderMode.SHELL_EVAL:
            for line in env_manager.export_statements(result.applied):
                click.echo(line)
            return

        provider = result.provider
        if result.already_active:
            safe_echo(info_message(f"Already using provider '{name}'"))
        else:
            safe_echo(success_message(f"Switched to provider '{name}'"))
        safe_echo(f"  API URL: {provider.api_url}")
        if provider.model:
            safe_echo(f"  Model: {provider.model}")

        if not env_manager.is_wrapped() and _is_interactive():
            _offer_install()
        _print_apply_hint(env_manager, f"cce use {name}")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
def clear():
    """清除当前服务商及其环境变量"""
    env_manager = EnvManager()
    try:
        manager = ProviderManager(env_manager=env_manager)
        result = manager.clear_current()

        if env_manager.render_mode() == RenderMode.SHELL_EVAL:
            for line in env_manager.unset_statements(result.cleared):
                click.echo(line)
            return

        if result.provider:
            safe_echo(success_message(f"Cleared provider '{result.provider.name}'"))
        else:
            safe_echo(success_message("No active provider"))
        safe_echo(f"  Variables: {', '.join(result.cleared)}")
        _print_apply_hint(env_manager, "cce clear")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
def current():
    """显示当前服务商"""
    try:
        manager = ProviderManager()
        provider = manager.get_current_provider()

        if not provider:
            click.echo("No active provider. Use 'cce use <name>' to select one.")
            return

        click.echo(f"Current provider: {provider.name}")
        click.echo(f"  API URL: {provider.api_url}")
        click.echo(f"  Token: {mask_sensitive_value(provider.token)}")
        if provider.model:
            click.echo(f"  Model: {provider.model}")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
def check():
    """检查当前终端的环境变量是否与当前服务商一致"""
    try:
        manager = ProviderManager()
        env_manager = manager.env_manager
        report = manager.check_environment()

        safe_echo("Current environment variables:")
        for var in env_manager.clear_variables():
            safe_echo(f"  {var}: {env_manager.display_value(var, env_manager.environ.get(var))}")
        safe_echo("")

        if report.provider is None:
            if report.dangling_name:
                safe_echo(warning_message(f"Active provider '{report.dangling_name}' no longer exists"))
            safe_echo("  Current provider: None selected")
            if manager.store.providers:
                safe_echo("  Suggestion: Use 'cce use <name>' to select a provider")
            else:
                safe_echo("  Suggestion: Use 'cce add' to add a provider")
            return

        safe_echo(f"  Current provider: {report.provider.name}")
        safe_echo(f"  Configured URL: {report.provider.api_url}")

        if report.matches:
            safe_echo(success_message("Environment variables match the active provider"))
            return

        safe_echo(warning_message("Environment variables do not match the active provider"))
        for item in report.variables:
            if item.status == VarStatus.OK:
                continue
            if item.status == VarStatus.MISSING:
                detail = "not set"
            elif item.status == VarStatus.UNEXPECTED:
                detail = "set but the provider has no model"
            else:
                detail = f"expected {env_manager.display_value(item.name, item.expected)}"
            safe_echo(f"    {item.name}: {detail}")
        safe_echo(f"  Suggestion: Run 'cce use {report.provider.name}' to reset")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
@click.option('--force', is_flag=True, help='强制重新安装，替换已有的集成代码')
@click.option('--shell', 'shell_name', help='指定 shell（bash、zsh、powershell），默认自动检测')
def install(force: bool, shell_name: Optional[str]):
    """安装 shell 集成，使 use/clear 直接作用于当前终端"""
    try:
        integration = ShellIntegration.detect(shell_name)

        if integration.shell == ShellKind.UNKNOWN:
            click.echo(f"Error: {UnsupportedShell(_shell_label(shell_name))}", err=True)
            click.echo(integration.get_manual_instructions())
            sys.exit(1)

        config_path = integration.get_shell_config_path()
        outcome = integration.install(force=force, config_path=config_path)

        if outcome == InstallOutcome.ALREADY_INSTALLED:
            safe_echo(success_message(f"cce shell integration is already installed in {config_path}"))
            safe_echo("Use --force to reinstall")
            return

        if outcome == InstallOutcome.NEEDS_UPGRADE:
            safe_echo(warning_message(f"An older cce shell integration is installed in {config_path}"))
            safe_echo("Run 'cce install --force' to upgrade it")
            return

        verb = "reinstalled" if outcome == InstallOutcome.REPLACED else "installed"
        safe_echo(success_message(f"cce shell integration {verb} ({integration.shell.value})"))
        safe_echo(f"Modified: {config_path}")
        safe_echo("\nRun one of the following to activate it:")
        if integration.shell == ShellKind.POWERSHELL:
            safe_echo(f"  . '{config_path}'")
        else:
            safe_echo(f"  source {config_path}")
        safe_echo("  or open a new terminal")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
@click.option('--shell', 'shell_name', help='指定 shell（bash、zsh、powershell），默认自动检测')
def uninstall(shell_name: Optional[str]):
    """卸载shell集成"""
    try:
        integration = ShellIntegration.detect(shell_name)
        if integration.shell == ShellKind.UNKNOWN:
            raise UnsupportedShell(_shell_label(shell_name))
        config_path = integration.get_shell_config_path()

        if not integration.uninstall(config_path=config_path):
            click.echo(f"cce shell integration is not installed in {config_path}")
            return

        safe_echo(success_message(f"cce shell integration removed from {config_path}"))
        safe_echo("Open a new terminal or reload the file to finish")

    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


@cli.command()
@click.option('--shell', 'shell_name', help='指定 shell（bash、zsh、powershell），默认自动检测')
def shellenv(shell_name: Optional[str]):
    """输出 shell 集成代码，可用于 eval "$(cce shellenv)" """
    try:
        integration = ShellIntegration.detect(shell_name)
        if integration.shell == ShellKind.UNKNOWN:
            raise UnsupportedShell(_shell_label(shell_name))
        click.echo(integration.get_integration_code())
    except CceError as e:
        _report_error(e)
    except Exception as e:
        _report_unexpected(e)


def main():
    """主入口点"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(error_message(f"Fatal error: {e}"), err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
