import os
import platform
import sys

import pytest
from click.testing import CliRunner

from cce.cli import cli
from cce.config import ConfigManager, Store
from cce.shell_integration import MARKER_START, ShellKind, target_file


SHELL_EVAL = {"CCE_SHELL_INTEGRATION": "1"}


def _bash_rc(home):
    return target_file(ShellKind.BASH, platform.system(), home)


def _add(runner: CliRunner, name: str, url: str = "https://api.example.com", token: str = "sk-example-token",
         model: str = None) -> None:
    args = ["add", name, url, token]
    if model:
        args += ["--model", model]
    result = runner.invoke(cli, args)
    assert result.exit_code == 0, result.output


def test_add_then_list_masks_token(temp_home):
    runner = CliRunner()
    _add(runner, "demo", token="sk-ant-verysecret-1234")

    result = runner.invoke(cli, ["list"])

    assert result.exit_code == 0, result.output
    assert "demo" in result.stdout
    assert "https://api.example.com" in result.stdout
    assert "sk-ant-verysecret-1234" not in result.stdout
    assert "sk-a**************1234" in result.stdout

    store = ConfigManager().load()
    assert store.providers["demo"].token == "sk-ant-verysecret-1234"


def test_add_short_model_option(temp_home):
    runner = CliRunner()
    result = runner.invoke(cli, ["add", "m", "https://x", "tok", "-m", "claude-x"])
    assert result.exit_code == 0, result.output
    assert ConfigManager().load().providers["m"].model == "claude-x"


def test_add_twice_overwrites(temp_home):
    runner = CliRunner()
    _add(runner, "demo", url="https://old")
    result = runner.invoke(cli, ["add", "demo", "https://new", "tok"])

    assert result.exit_code == 0
    assert "overwritten" in result.output
    assert list(ConfigManager().load().providers) == ["demo"]
    assert runner.invoke(cli, ["list"]).stdout.count("demo") == 1


def test_add_invalid_name_fails(temp_home):
    result = CliRunner().invoke(cli, ["add", "bad name", "https://x", "tok"])
    assert result.exit_code == 1
    assert "Invalid provider name" in result.stderr


def test_list_empty(temp_home):
    result = CliRunner().invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No providers configured" in result.stdout


def test_list_marks_current(temp_home):
    runner = CliRunner()
    _add(runner, "a")
    _add(runner, "b")
    runner.invoke(cli, ["use", "b"])

    out = runner.invoke(cli, ["list"]).stdout
    assert "○ a" in out
    assert "● b" in out
    assert "(currently active)" in out


def test_use_shell_eval_with_model_matches_example(temp_home):
    runner = CliRunner()
    _add(runner, "anthropic", url="A", token="T", model="M")

    result = runner.invoke(cli, ["use", "anthropic"], env=SHELL_EVAL)

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        "export ANTHROPIC_AUTH_TOKEN=T",
        "export ANTHROPIC_BASE_URL=A",
        "export ANTHROPIC_MODEL=M",
        "export ANTHROPIC_DEFAULT_OPUS_MODEL=M",
        "export ANTHROPIC_DEFAULT_SONNET_MODEL=M",
        "export ANTHROPIC_DEFAULT_HAIKU_MODEL=M",
    ]
    assert ConfigManager().load().current_provider == "anthropic"


def test_use_shell_eval_without_model_emits_two_exports(temp_home):
    runner = CliRunner()
    _add(runner, "plain", url="https://plain", token="tok")

    result = runner.invoke(cli, ["use", "plain"], env=SHELL_EVAL)

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [
        "export ANTHROPIC_AUTH_TOKEN=tok",
        "export ANTHROPIC_BASE_URL=https://plain",
    ]


def test_use_shell_eval_powershell_dialect(temp_home):
    runner = CliRunner()
    _add(runner, "plain", url="https://plain", token="tok")

    result = runner.invoke(cli, ["use", "plain"], env={**SHELL_EVAL, "CCE_SHELL_DIALECT": "powershell"})

    assert result.stdout.splitlines() == [
        "$env:ANTHROPIC_AUTH_TOKEN = 'tok'",
        "$env:ANTHROPIC_BASE_URL = 'https://plain'",
    ]


def test_use_display_updates_store_without_exports(temp_home):
    runner = CliRunner()
    _add(runner, "demo", model="claude-x")

    result = runner.invoke(cli, ["use", "demo"])

    assert result.exit_code == 0, result.output
    assert "Switched to provider 'demo'" in result.stdout
    assert "Model: claude-x" in result.stdout
    assert not any(line.startswith("export ") for line in result.stdout.splitlines())
    assert "CCE_SHELL_INTEGRATION=1 cce use demo" in result.stdout
    assert ConfigManager().load().current_provider == "demo"


def test_use_display_under_wrapper_skips_hint(temp_home):
    runner = CliRunner()
    _add(runner, "demo")

    result = runner.invoke(cli, ["use", "demo"], env={"CCE_WRAPPED": "1"})

    assert result.exit_code == 0
    assert "CCE_SHELL_INTEGRATION" not in result.stdout


def test_use_offers_install_on_first_interactive_run(temp_home, monkeypatch):
    import cce.cli as cli_module

    monkeypatch.setattr(cli_module, "_is_interactive", lambda: True)
    runner = CliRunner()
    _add(runner, "demo")

    result = runner.invoke(cli, ["use", "demo"], input="y\n", env={"SHELL": "/bin/bash"})

    assert result.exit_code == 0, result.output
    assert "Shell integration installed" in result.stdout
    assert MARKER_START in _bash_rc(temp_home).read_text(encoding="utf-8")


def test_use_install_offer_can_be_declined(temp_home, monkeypatch):
    import cce.cli as cli_module

    monkeypatch.setattr(cli_module, "_is_interactive", lambda: True)
    runner = CliRunner()
    _add(runner, "demo")

    result = runner.invoke(cli, ["use", "demo"], input="n\n", env={"SHELL": "/bin/bash"})

    assert result.exit_code == 0, result.output
    assert not _bash_rc(temp_home).exists()
    assert "CCE_SHELL_INTEGRATION=1 cce use demo" in result.stdout


def test_use_again_reports_already_active(temp_home):
    runner = CliRunner()
    _add(runner, "demo")
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["use", "demo"])

    assert result.exit_code == 0
    assert "Already using provider 'demo'" in result.stdout


@pytest.mark.parametrize("env", [{}, SHELL_EVAL])
def test_use_unknown_provider_fails_without_stdout(temp_home, env):
    runner = CliRunner()
    _add(runner, "demo")

    result = runner.invoke(cli, ["use", "nope"], env=env)

    assert result.exit_code != 0
    assert result.stdout == ""
    assert "Provider 'nope' does not exist" in result.stderr
    assert ConfigManager().load().current_provider is None


def test_use_unknown_suggests_similar(temp_home):
    runner = CliRunner()
    _add(runner, "anthropic")

    result = runner.invoke(cli, ["use", "anthropik"])

    assert "Did you mean: anthropic?" in result.stderr


@pytest.mark.parametrize("model", [None, "claude-x"])
def test_clear_shell_eval_always_emits_six_unsets(temp_home, model):
    runner = CliRunner()
    _add(runner, "demo", model=model)
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["clear"], env=SHELL_EVAL)

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [
        "unset ANTHROPIC_AUTH_TOKEN",
        "unset ANTHROPIC_BASE_URL",
        "unset ANTHROPIC_MODEL",
        "unset ANTHROPIC_DEFAULT_OPUS_MODEL",
        "unset ANTHROPIC_DEFAULT_SONNET_MODEL",
        "unset ANTHROPIC_DEFAULT_HAIKU_MODEL",
    ]
    assert ConfigManager().load().current_provider is None


def test_clear_display(temp_home):
    runner = CliRunner()
    _add(runner, "demo")
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["clear"])

    assert result.exit_code == 0
    assert "Cleared provider 'demo'" in result.stdout
    assert ConfigManager().load().current_provider is None


def test_delete_current_then_check_reports_no_provider(temp_home):
    runner = CliRunner()
    _add(runner, "demo")
    _add(runner, "other")
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["delete", "demo"])
    assert result.exit_code == 0
    assert "deleted" in result.stdout

    assert ConfigManager().load().current_provider is None
    check = runner.invoke(cli, ["check"])
    assert check.exit_code == 0
    assert "Current provider: None selected" in check.stdout


def test_delete_missing_is_not_an_error(temp_home):
    result = CliRunner().invoke(cli, ["delete", "ghost"])
    assert result.exit_code == 0
    assert "does not exist" in result.output


def test_current(temp_home):
    runner = CliRunner()
    assert "No active provider" in runner.invoke(cli, ["current"]).stdout

    _add(runner, "demo")
    runner.invoke(cli, ["use", "demo"])
    assert "Current provider: demo" in runner.invoke(cli, ["current"]).stdout


def test_check_matching_environment(temp_home):
    runner = CliRunner()
    _add(runner, "demo", url="https://d", token="tok-123456789")
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["check"], env={
        "ANTHROPIC_AUTH_TOKEN": "tok-123456789",
        "ANTHROPIC_BASE_URL": "https://d",
    })

    assert result.exit_code == 0
    assert "Environment variables match the active provider" in result.stdout
    assert "tok-123456789" not in result.stdout


def test_check_mismatch_suggests_use(temp_home):
    runner = CliRunner()
    _add(runner, "demo", url="https://d", token="tok", model="m")
    runner.invoke(cli, ["use", "demo"])

    result = runner.invoke(cli, ["check"], env={"ANTHROPIC_BASE_URL": "https://other"})

    assert result.exit_code == 0
    assert "do not match" in result.stdout
    assert "ANTHROPIC_AUTH_TOKEN: not set" in result.stdout
    assert "ANTHROPIC_BASE_URL: expected https://d" in result.stdout
    assert "Run 'cce use demo' to reset" in result.stdout


def test_check_does_not_modify_store(temp_home):
    runner = CliRunner()
    _add(runner, "demo")
    runner.invoke(cli, ["use", "demo"])
    before = ConfigManager().config_path.read_bytes()

    runner.invoke(cli, ["check"])

    assert ConfigManager().config_path.read_bytes() == before


def test_dangling_current_provider_is_reported(temp_home):
    ConfigManager().save(Store(current_provider="gone"))

    result = CliRunner().invoke(cli, ["check"])

    assert result.exit_code == 0
    assert "Active provider 'gone' no longer exists" in result.stdout


def test_corrupt_config_is_reported(temp_home, config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("not valid toml at all\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["use", "demo"], env=SHELL_EVAL)

    assert result.exit_code == 1
    assert result.stdout == ""
    assert "is corrupt" in result.stderr
    assert "re-add your providers" in result.stderr


@pytest.mark.skipif(sys.platform.startswith("win"), reason="Unix-like shells expected")
def test_install_twice_is_idempotent(temp_home):
    runner = CliRunner()
    rc = _bash_rc(temp_home)
    rc.write_text("# existing\n")

    first = runner.invoke(cli, ["install", "--shell", "bash"])
    assert first.exit_code == 0, first.output
    assert f"Modified: {rc}" in first.stdout
    content = rc.read_bytes()

    second = runner.invoke(cli, ["install", "--shell", "bash"])
    assert second.exit_code == 0
    assert "already installed" in second.stdout
    assert rc.read_bytes() == content


@pytest.mark.skipif(sys.platform.startswith("win"), reason="Unix-like shells expected")
def test_install_force_replaces_once(temp_home):
    runner = CliRunner()
    rc = temp_home / ".zshrc"

    runner.invoke(cli, ["install", "--shell", "zsh"])
    result = runner.invoke(cli, ["install", "--shell", "zsh", "--force"])

    assert result.exit_code == 0
    assert "reinstalled" in result.stdout
    assert rc.read_text().count(MARKER_START) == 1


@pytest.mark.skipif(sys.platform.startswith("win"), reason="Unix-like shells expected")
def test_install_reports_stale_block(temp_home):
    rc = temp_home / ".zshrc"
    rc.write_text(f"{MARKER_START}\nold\n# <<< cce shell integration <<<\n")

    result = CliRunner().invoke(cli, ["install", "--shell", "zsh"])

    assert result.exit_code == 0
    assert "cce install --force" in result.stdout
    assert "old" in rc.read_text()


def test_install_detects_shell_from_environment(temp_home):
    result = CliRunner().invoke(cli, ["install"], env={"SHELL": "/bin/zsh"})
    assert result.exit_code == 0, result.output
    assert (temp_home / ".zshrc").exists()


def test_install_unknown_shell_prints_manual_instructions(temp_home):
    result = CliRunner().invoke(cli, ["install"], env={"SHELL": "/usr/bin/fish"})

    assert result.exit_code == 1
    assert "Unsupported shell '/usr/bin/fish'" in result.stderr
    assert MARKER_START in result.stdout
    assert list(temp_home.iterdir()) == []


@pytest.mark.skipif(sys.platform.startswith("win") or os.geteuid() == 0,
                    reason="POSIX permissions expected, root ignores them")
def test_install_unwritable_profile_reports_path(temp_home):
    temp_home.chmod(0o500)
    try:
        result = CliRunner().invoke(cli, ["install", "--shell", "bash"])
    finally:
        temp_home.chmod(0o700)

    assert result.exit_code == 1
    assert str(_bash_rc(temp_home)) in result.stderr
    assert "cce shellenv" in result.stderr


def test_uninstall(temp_home):
    runner = CliRunner()
    rc = _bash_rc(temp_home)
    rc.write_text("keep me\n")
    runner.invoke(cli, ["install", "--shell", "bash"])

    result = runner.invoke(cli, ["uninstall", "--shell", "bash"])

    assert result.exit_code == 0
    assert "removed" in result.stdout
    assert rc.read_text() == "keep me\n"

    again = runner.invoke(cli, ["uninstall", "--shell", "bash"])
    assert "not installed" in again.stdout


@pytest.mark.parametrize("shell, expected", [
    ("bash", 'cce() {'),
    ("zsh", 'cce() {'),
    ("powershell", 'function cce {'),
])
def test_shellenv(shell, expected):
    result = CliRunner().invoke(cli, ["shellenv", "--shell", shell])
    assert result.exit_code == 0
    assert expected in result.stdout
    assert MARKER_START not in result.stdout


def test_shellenv_unknown_shell():
    result = CliRunner().invoke(cli, ["shellenv", "--shell", "fish"])
    assert result.exit_code == 1
    assert result.stdout == ""
    assert "Unsupported shell 'fish'" in result.stderr


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "cce" in result.stdout
