from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from .builtins import VOID_SUBREPOS
from .command import run_cmd
from .reconciler import ActualState

logger = logging.getLogger(__name__)

XBPS_CONF_DIR = "/etc/xbps.d"
SERVICE_DIR = "/var/service"
REPO_CONF_PREFIX = "voidstate-"


def package_name(pkgver: str) -> str:
    """``bash-5.2.21_1`` -> ``bash``."""
    name, sep, version = pkgver.rpartition("-")
    if not sep or not version[:1].isdigit():
        return pkgver
    return name


def parse_package_list(output: str) -> Set[str]:
    names = set()
    for line in output.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == "ii":
            names.add(package_name(fields[1]))
    return names


class XbpsQuery:
    """Reads the live system through xbps, runit and the state store."""

    def __init__(
        self,
        state: Dict[str, Any],
        *,
        xbps_conf_dir: str = XBPS_CONF_DIR,
        service_dir: str = SERVICE_DIR,
        timeout: Optional[float] = None,
        runner: Callable[..., Any] = run_cmd,
    ):
        self.state = state
        self.xbps_conf_dir = Path(xbps_conf_dir)
        self.service_dir = Path(service_dir)
        self.timeout = timeout
        self.runner = runner

    def installed(self) -> Set[str]:
        result = self.runner(["xbps-query", "-l"], timeout=self.timeout)
        return parse_package_list(result.stdout)

    def repositories(self, installed: Set[str]) -> Set[str]:
        enabled = {name for name, package in VOID_SUBREPOS.items() if package in installed}
        if self.xbps_conf_dir.is_dir():
            for conf in self.xbps_conf_dir.glob(f"{REPO_CONF_PREFIX}*.conf"):
                enabled.add(conf.stem[len(REPO_CONF_PREFIX):])
        return enabled

    def services(self) -> Set[str]:
        if not self.service_dir.is_dir():
            return set()
        return {entry.name for entry in self.service_dir.iterdir()}

    def snapshot(self) -> ActualState:
        installed = self.installed()
        actual = ActualState(
            installed=installed,
            repositories=self.repositories(installed),
            config_files=dict(self.state.get("config_files") or {}),
            services=self.services(),
            preserved=self.state.get("pinned") or (),
            owned=self.state.get("installed") or (),
        )
        logger.info(
            "Snapshot: %d installed, %d repositories, %d services",
            len(actual.installed),
            len(actual.repositories),
            len(actual.services),
        )
        return actual
