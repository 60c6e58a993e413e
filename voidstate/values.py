"""Evaluated desired-state values.

Plain Python types stand for the scalar and container cases: ``str``,
``int``/``float``, ``bool``, ``dict`` (ordered, str keys) and ``list``.
The classes below cover the rest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from .packages import PackageDescriptor


@dataclass(frozen=True)
class Symbol:
    """An unbound name used as a value, e.g. ``repository = personal;``."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RepoRef:
    """Handle to a package repository.

    kind is ``github``, ``git`` (both source-package repositories cloned from a
    remote) or ``void`` (an official sub-repository such as nonfree).
    """

    kind: str
    location: str
    branch: Optional[str] = None
    allow_restricted: bool = False
    name: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable identifier used for checkouts and enabled-repository bookkeeping."""
        if self.name:
            return self.name
        return self.location.rstrip("/").split("/")[-1]

    def with_options(self, **changes: Any) -> "RepoRef":
        data = {
            "kind": self.kind,
            "location": self.location,
            "branch": self.branch,
            "allow_restricted": self.allow_restricted,
            "name": self.name,
        }
        data.update(changes)
        return RepoRef(**data)

    def __str__(self) -> str:
        branch = f"@{self.branch}" if self.branch else ""
        return f"{self.location}{branch}"


@dataclass(frozen=True)
class FileSource:
    """Result of ``use_file``: a file taken from the config tree or a repository."""

    path: PurePosixPath
    repository: Optional[RepoRef] = None

    def __str__(self) -> str:
        if self.repository is None:
            return str(self.path)
        return f"{self.repository}:{self.path}"


@dataclass(frozen=True)
class LineInsertion:
    """Result of ``add_lines``: lines that must be present in the target file."""

    lines: Tuple[str, ...]

    @property
    def content(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)

    def __str__(self) -> str:
        return f"<{len(self.lines)} lines>"


@dataclass(frozen=True)
class PackageRef:
    """A package requested in configuration, with per-instance overrides."""

    symbol: str
    overrides: Tuple[Tuple[str, Any], ...] = ()
    descriptor: Optional["PackageDescriptor"] = field(default=None, compare=False)

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self.overrides)

    @property
    def external_name(self) -> str:
        if self.descriptor is None:
            return self.symbol
        return self.descriptor.external_name

    def __str__(self) -> str:
        return self.symbol


Value = Union[str, int, float, bool, Symbol, PurePosixPath, dict, list, PackageRef, RepoRef, FileSource, LineInsertion]


@dataclass
class DesiredState:
    """Outcome of evaluating a configuration file."""

    bindings: Dict[str, Any]
    source: Optional[str] = None

    @property
    def config(self) -> Dict[str, Any]:
        system = self.bindings.get("system")
        if isinstance(system, dict):
            config = system.get("config")
            if isinstance(config, dict):
                return config
        return {}

    @property
    def model(self):
        # imported lazily, system.py depends on this module
        from .system import SystemConfig

        return SystemConfig.from_desired(self)

    @property
    def packages(self) -> Dict[str, PackageRef]:
        return {req.ref.symbol: req.ref for req in self.model.package_requests()}

    @property
    def users(self) -> List[str]:
        return list(self.model.users)

    @property
    def services(self) -> List[str]:
        return list(self.model.services)

    @property
    def repositories(self) -> List[str]:
        return [repo.key for repo in self.model.repositories()]


def type_name(value: Any) -> str:
    """DSL-facing type name for error messages."""
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, (int, float)):
        return "Number"
    if isinstance(value, str):
        return "String"
    if isinstance(value, PurePosixPath):
        return "Path"
    if isinstance(value, Mapping):
        return "Map"
    if isinstance(value, list):
        return "List"
    return type(value).__name__
