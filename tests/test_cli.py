import argparse
import json
import pathlib

import pytest

from voidstate import cli
from voidstate.reconciler import ActualState

DATA = pathlib.Path(__file__).parent / "data"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in cli.SETTINGS:
        monkeypatch.delenv(f"VOIDSTATE_{key.upper()}", raising=False)


def run_main(tmp_path: pathlib.Path, *command: str) -> int:
    return cli.main(
        [
            "--config_location",
            str(DATA / "system.conf"),
            "--state_location",
            str(tmp_path / "state"),
            *command,
        ]
    )


class EmptySystem:
    def __init__(self, state, **kwargs):
        self.state = state

    def snapshot(self):
        return ActualState(preserved=self.state.get("pinned") or ())


def test_settings_layering(tmp_path: pathlib.Path, monkeypatch):
    ini = tmp_path / "voidstate.ini"
    ini.write_text(
        "[voidstate]\nconfig_location = /from/ini/system.conf\ntimeout = 30\ndry_run = yes\n",
        encoding="utf-8",
    )
    args = cli.build_parser().parse_args(["--config", str(ini), "--state_location", "/from/cli", "check"])
    monkeypatch.setenv("VOIDSTATE_TIMEOUT", "45")

    settings = cli._resolve_settings(args, cli._load_config(args.config))

    assert settings["config_location"] == "/from/ini/system.conf"
    assert settings["state_location"] == "/from/cli"
    assert settings["definitions"] == "/from/ini/packages"
    assert settings["log_file"] == "/from/cli/voidstate.log"
    assert settings["dry_run"] is True
    assert settings["timeout"] == 45.0


def test_defaults():
    settings = cli._resolve_settings(argparse.Namespace(), {})
    assert settings["config_location"] == cli.DEFAULT_CONFIG_LOCATION
    assert settings["state_location"] == cli.DEFAULT_STATE_LOCATION
    assert settings["definitions"] == "/etc/voidstate/packages"
    assert settings["dry_run"] is False
    assert settings["timeout"] == cli.DEFAULT_TIMEOUT


def test_check_prints_rendered_configuration(tmp_path: pathlib.Path, capsys):
    assert run_main(tmp_path, "check") == 0
    out = capsys.readouterr().out
    assert out.startswith("system = {")
    assert "(voidpackages-repo 'sapein')" in out
    assert "base = [vim, git, openssh];" in out


def test_check_reports_errors(tmp_path: pathlib.Path):
    broken = tmp_path / "broken.conf"
    broken.write_text("x = {", encoding="utf-8")
    code = cli.main(["--config_location", str(broken), "--state_location", str(tmp_path / "state"), "check"])
    assert code == 1


def test_list_pkgs(tmp_path: pathlib.Path, capsys):
    assert run_main(tmp_path, "list-pkgs") == 0
    lines = capsys.readouterr().out.splitlines()
    discord = next(line for line in lines if line.startswith("discord "))
    assert "Discord" in discord and "restricted" in discord
    bash = next(line for line in lines if line.startswith("bash "))
    assert bash.endswith("bashrc,bash_profile")


def test_list_source(tmp_path: pathlib.Path, capsys):
    assert run_main(tmp_path, "list-source") == 0
    out = capsys.readouterr().out
    assert "nonfree" in out
    assert "personal" in out and "(restricted allowed)" in out


def test_pin_and_unpin(tmp_path: pathlib.Path, capsys):
    state_file = tmp_path / "state" / "state.json"
    assert run_main(tmp_path, "pin-pkg", "htop") == 0
    assert json.loads(state_file.read_text(encoding="utf-8"))["pinned"] == ["htop"]
    assert run_main(tmp_path, "unpin-pkg", "htop") == 0
    assert json.loads(state_file.read_text(encoding="utf-8"))["pinned"] == []
    assert run_main(tmp_path, "unpin-pkg", "htop") == 1


def test_freeze_pkgs(tmp_path: pathlib.Path):
    assert run_main(tmp_path, "freeze-pkgs") == 0
    state = json.loads((tmp_path / "state" / "state.json").read_text(encoding="utf-8"))
    assert state["pinned"] == ["Discord", "bash", "git", "openssh", "tmux", "vim-huge"]


def test_plan(tmp_path: pathlib.Path, capsys, monkeypatch):
    monkeypatch.setattr(cli, "XbpsQuery", EmptySystem)
    assert run_main(tmp_path, "plan") == 0
    out = capsys.readouterr().out
    assert "install discord (Discord) from personal" in out
    assert "enable service dhcpcd" in out


def test_dry_run_deploy_leaves_no_state(tmp_path: pathlib.Path, capsys, monkeypatch):
    monkeypatch.setattr(cli, "XbpsQuery", EmptySystem)
    assert run_main(tmp_path, "--dry-run", "deploy") == 0
    assert "install tmux" in capsys.readouterr().out
    assert not (tmp_path / "state" / "state.json").exists()


def test_query_failure_is_reported(tmp_path: pathlib.Path, monkeypatch):
    class Broken(EmptySystem):
        def snapshot(self):
            from voidstate.errors import ExecutionFailure

            raise ExecutionFailure("xbps-query missing")

    monkeypatch.setattr(cli, "XbpsQuery", Broken)
    assert run_main(tmp_path, "plan") == 1


def test_check_reports_unrenderable_values(tmp_path: pathlib.Path):
    conf = tmp_path / "system.conf"
    conf.write_text("""mixed = join ' ' ["it's", '"quoted"'];\n""", encoding="utf-8")
    code = cli.main(["--config_location", str(conf), "--state_location", str(tmp_path / "state"), "check"])
    assert code == 1
