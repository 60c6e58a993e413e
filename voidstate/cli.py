from __future__ import annotations

import argparse
import configparser
import logging
import os
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

from . import state_store
from .errors import VoidStateError
from .executor import XbpsExecutor, apply_plan
from .interpreter import evaluate_file
from .packages import descriptor_summary
from .query import XbpsQuery
from .reconciler import ContentResolver, reconcile
from .registry import load_registry
from .render import render_state

DEFAULT_CONFIG_LOCATION = "/etc/voidstate/system.conf"
DEFAULT_STATE_LOCATION = "/var/lib/voidstate"
DEFAULT_TIMEOUT = 600.0
SETTINGS = ("config_location", "state_location", "definitions", "log_file", "dry_run", "timeout")


def _str_to_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _load_config(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    config = configparser.ConfigParser()
    config.read(path)
    if "voidstate" not in config:
        return {}
    return {key: value for key, value in config["voidstate"].items() if key in SETTINGS}


def _resolve_settings(args: argparse.Namespace, cfg: Dict[str, Any]) -> Dict[str, Any]:
    # config -> CLI -> env (env has highest priority)
    settings: Dict[str, Any] = {key: cfg.get(key) for key in SETTINGS}

    for key in SETTINGS:
        value = getattr(args, key, None)
        if value is not None:
            settings[key] = value

    for key in SETTINGS:
        env_value = os.getenv(f"VOIDSTATE_{key.upper()}")
        if env_value is not None:
            settings[key] = env_value

    settings["config_location"] = settings["config_location"] or DEFAULT_CONFIG_LOCATION
    settings["state_location"] = settings["state_location"] or DEFAULT_STATE_LOCATION
    if not settings["definitions"]:
        settings["definitions"] = str(pathlib.Path(settings["config_location"]).parent / "packages")
    if not settings["log_file"]:
        settings["log_file"] = str(pathlib.Path(settings["state_location"]) / "voidstate.log")

    dry_run = settings.get("dry_run")
    settings["dry_run"] = dry_run if isinstance(dry_run, bool) else _str_to_bool(dry_run, False)
    try:
        settings["timeout"] = float(settings["timeout"]) if settings.get("timeout") is not None else DEFAULT_TIMEOUT
    except ValueError:
        logging.warning("Invalid timeout value %s; using %s", settings["timeout"], DEFAULT_TIMEOUT)
        settings["timeout"] = DEFAULT_TIMEOUT
    return settings


def _setup_logging(log_file: str) -> None:
    log_path = pathlib.Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_handlers: List[logging.Handler] = [logging.FileHandler(log_file, encoding="utf-8")]
    console_handler = logging.StreamHandler()
    # console shows warnings only, stdout is for command output
    console_handler.setLevel(logging.WARNING)
    log_handlers.append(console_handler)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=log_handlers,
    )


class Session:
    """Everything one command needs, loaded on first use."""

    def __init__(self, settings: Dict[str, Any]):
        self.settings = settings
        self.state_file = state_store.state_path(settings["state_location"])
        self._registry = None
        self._desired = None
        self._state: Optional[Dict[str, Any]] = None

    @property
    def registry(self):
        if self._registry is None:
            self._registry = load_registry(self.settings["definitions"], workers=os.cpu_count())
        return self._registry

    @property
    def desired(self):
        if self._desired is None:
            self._desired = evaluate_file(self.settings["config_location"], registry=self.registry)
        return self._desired

    @property
    def state(self) -> Dict[str, Any]:
        if self._state is None:
            self._state = state_store.load_state(self.state_file)
        return self._state

    def save(self) -> None:
        if self.settings["dry_run"]:
            logging.info("Dry run, state not saved")
            return
        state_store.save_state(self.state_file, self.state)

    def content(self) -> ContentResolver:
        return ContentResolver(
            config_dir=pathlib.Path(self.settings["config_location"]).parent,
            checkout_root=pathlib.Path(self.settings["state_location"]) / "repos",
        )

    def plan(self):
        actual = XbpsQuery(self.state, timeout=self.settings["timeout"]).snapshot()
        return reconcile(self.desired, self.registry, actual, content=self.content(), partial=True)


def _cmd_check(session: Session, args: argparse.Namespace) -> int:
    for error in session.registry.errors:
        print(f"warning: {error}")
    print(render_state(session.desired), end="")
    return 0


def _cmd_plan(session: Session, args: argparse.Namespace) -> int:
    plan = session.plan()
    print("\n".join(plan.describe()))
    return 1 if plan.errors else 0


def _cmd_deploy(session: Session, args: argparse.Namespace) -> int:
    plan = session.plan()
    print("\n".join(plan.describe()))
    if plan.is_empty:
        return 1 if plan.errors else 0
    executor = XbpsExecutor(
        session.state,
        content=session.content(),
        checkout_root=pathlib.Path(session.settings["state_location"]) / "repos",
        repositories={repo.key: repo for repo in session.desired.model.repositories()},
        dry_run=session.settings["dry_run"],
        timeout=session.settings["timeout"],
    )
    report = apply_plan(plan, executor)
    for action, failure in report.failed:
        print(f"failed: {action.describe()}: {failure}")
    for action, reason in report.skipped:
        print(f"{reason}: {action.describe()}")
    state_store.record_run(session.state, dict(report.summary(), errors=len(plan.errors)))
    session.save()
    return 0 if report.ok and not plan.errors else 1


def _cmd_list_pkgs(session: Session, args: argparse.Namespace) -> int:
    registry = session.registry
    for symbol in registry.symbols():
        summary = descriptor_summary(registry.lookup(symbol))
        flags = [flag for flag in ("nonfree", "restricted") if summary[flag]]
        slots = ",".join(summary["configuration"])
        line = f"{symbol:<24} {summary['name']:<24} {' '.join(flags):<20} {slots}"
        print(line.rstrip())
    for error in registry.errors:
        print(f"warning: {error}")
    return 0


def _cmd_freeze_pkgs(session: Session, args: argparse.Namespace) -> int:
    names = sorted({ref.external_name for ref in session.desired.packages.values()})
    added = state_store.pin(session.state, *names)
    session.save()
    print(f"Pinned {len(added)} package(s)")
    return 0


def _cmd_pin_pkg(session: Session, args: argparse.Namespace) -> int:
    if state_store.pin(session.state, args.name):
        session.save()
        print(f"Pinned {args.name}")
    else:
        print(f"{args.name} is already pinned")
    return 0


def _cmd_unpin_pkg(session: Session, args: argparse.Namespace) -> int:
    if not state_store.unpin(session.state, args.name):
        print(f"{args.name} is not pinned")
        return 1
    session.save()
    print(f"Unpinned {args.name}")
    return 0


def _cmd_list_source(session: Session, args: argparse.Namespace) -> int:
    for repo in session.desired.model.repositories():
        restricted = " (restricted allowed)" if repo.allow_restricted else ""
        print(f"{repo.key:<20} {repo.kind:<8} {repo}{restricted}")
    return 0


COMMANDS: Dict[str, Callable[[Session, argparse.Namespace], int]] = {
    "check": _cmd_check,
    "plan": _cmd_plan,
    "deploy": _cmd_deploy,
    "list-pkgs": _cmd_list_pkgs,
    "freeze-pkgs": _cmd_freeze_pkgs,
    "pin-pkg": _cmd_pin_pkg,
    "unpin-pkg": _cmd_unpin_pkg,
    "list-source": _cmd_list_source,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voidstate", description="Declarative Void Linux system configuration")
    parser.add_argument("--config", help="Optional config file (ini, section [voidstate])")
    parser.add_argument("--config_location", "--config-location", dest="config_location", help="System configuration file")
    parser.add_argument("--state_location", "--state-location", dest="state_location", help="State directory")
    parser.add_argument("--definitions", help="Package definition directory")
    parser.add_argument("--log-file", dest="log_file", help="Write logs to file (console will show warnings only)")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", default=None, help="Log commands instead of running them")
    parser.add_argument("--timeout", type=float, help="Seconds allowed per package-manager call")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("check", help="Parse and evaluate the configuration")
    sub.add_parser("plan", help="Show the actions a deploy would take")
    sub.add_parser("deploy", help="Bring the system to the configured state")
    sub.add_parser("list-pkgs", help="List known package definitions")
    sub.add_parser("freeze-pkgs", help="Pin every configured package")
    sub.add_parser("pin-pkg", help="Never remove a package").add_argument("name")
    sub.add_parser("unpin-pkg", help="Allow removing a pinned package").add_argument("name")
    sub.add_parser("list-source", help="List configured repositories")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _resolve_settings(args, _load_config(args.config))
    _setup_logging(settings["log_file"])

    session = Session(settings)
    try:
        return COMMANDS[args.command](session, args)
    except VoidStateError as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
