"""Typed view of ``system.config``.

The evaluator produces a loose tree of maps and lists; this module checks the
shape the reconciler relies on and turns it into small records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from .builtins import VOID_SUBREPOS, home_dir
from .errors import EvalError
from .values import DesiredState, PackageRef, RepoRef, Symbol, type_name

ROOT_USER = "root"


@dataclass(frozen=True)
class Service:
    name: str
    enabled: bool = True
    downed: bool = False


@dataclass(frozen=True)
class PackageRequest:
    """A package asked for by the system or one user."""

    ref: PackageRef
    owner: str = ROOT_USER
    home: PurePosixPath = PurePosixPath("/root")

    @property
    def symbol(self) -> str:
        return self.ref.symbol

    @property
    def repository(self) -> Optional[str]:
        value = self.ref.options.get("repository")
        return None if value is None else str(value)

    @property
    def config_overrides(self) -> Dict[str, Any]:
        return {key: value for key, value in self.ref.overrides if key != "repository"}


@dataclass
class User:
    name: str
    home: PurePosixPath
    subdirs: List[PurePosixPath] = field(default_factory=list)
    dotfiles: Optional[RepoRef] = None
    packages: List[PackageRef] = field(default_factory=list)


@dataclass
class SystemConfig:
    packages: List[PackageRef] = field(default_factory=list)
    users: Dict[str, User] = field(default_factory=dict)
    services: Dict[str, Service] = field(default_factory=dict)
    source_repositories: Dict[str, RepoRef] = field(default_factory=dict)
    void_repositories: List[RepoRef] = field(default_factory=list)

    def repositories(self) -> List[RepoRef]:
        return list(self.void_repositories) + list(self.source_repositories.values())

    def package_requests(self) -> List[PackageRequest]:
        """System packages first, then each user's, in declaration order.

        A symbol requested twice by the same owner is one request; later
        overrides replace earlier ones key by key.
        """
        merged: Dict[tuple, PackageRequest] = {}
        owners = [(ROOT_USER, home_dir(ROOT_USER), self.packages)]
        owners.extend((user.name, user.home, user.packages) for user in self.users.values())
        for owner, home, refs in owners:
            for ref in refs:
                key = (owner, ref.symbol)
                previous = merged.get(key)
                if previous is not None:
                    overrides = dict(previous.ref.overrides)
                    overrides.update(ref.overrides)
                    ref = PackageRef(ref.symbol, tuple(overrides.items()), ref.descriptor)
                merged[key] = PackageRequest(ref, owner, home)
        return list(merged.values())

    @classmethod
    def from_desired(cls, desired: DesiredState) -> "SystemConfig":
        return _Converter(desired.source).system(desired.config)


class _Converter:
    def __init__(self, source: Optional[str]):
        self.source = source

    def fail(self, where: str, message: str) -> EvalError:
        return EvalError(f"system.config.{where} {message}", symbol=where, source=self.source)

    def system(self, config: Dict[str, Any]) -> SystemConfig:
        return SystemConfig(
            packages=self.packages("packages", config.get("packages", [])),
            users=self.users(config.get("users", {})),
            services=self.services(config.get("services", [])),
            source_repositories=self.source_repositories(config.get("vp_repos", {})),
            void_repositories=self.void_repositories(config.get("void_repos", [])),
        )

    def packages(self, where: str, value: Any) -> List[PackageRef]:
        if not isinstance(value, list) or not all(isinstance(item, PackageRef) for item in value):
            raise self.fail(where, f"must be a list of packages, got {type_name(value)}")
        return list(value)

    def users(self, value: Any) -> Dict[str, User]:
        entries: List[tuple] = []
        if isinstance(value, dict):
            entries = list(value.items())
        elif isinstance(value, list):
            for i, item in enumerate(value):
                if not isinstance(item, dict) or "username" not in item:
                    raise self.fail(f"users[{i}]", "must be a map with a username")
                entries.append((_name(item["username"]), item))
        else:
            raise self.fail("users", f"must be a map of users, got {type_name(value)}")

        users: Dict[str, User] = {}
        for name, spec in entries:
            where = f"users.{name}"
            if not isinstance(spec, dict):
                raise self.fail(where, f"must be a map, got {type_name(spec)}")
            home, subdirs = self.homedir(where, name, spec.get("homedir"))
            dotfiles = spec.get("dotfiles")
            if dotfiles is not None and not isinstance(dotfiles, RepoRef):
                raise self.fail(f"{where}.dotfiles", f"must be a repository, got {type_name(dotfiles)}")
            users[name] = User(
                name=name,
                home=home,
                subdirs=subdirs,
                dotfiles=dotfiles,
                packages=self.packages(f"{where}.packages", spec.get("packages", [])),
            )
        return users

    def homedir(self, where: str, username: str, value: Any):
        if value is None:
            return home_dir(username), []
        if isinstance(value, (str, PurePosixPath)):
            return PurePosixPath(str(value)), []
        if not isinstance(value, dict):
            raise self.fail(f"{where}.homedir", f"is not a valid type ({type_name(value)})")
        location = value.get("location")
        home = home_dir(username) if location is None else PurePosixPath(str(location))
        subdirs = value.get("subdirs", [])
        if not isinstance(subdirs, list) or not all(isinstance(p, PurePosixPath) for p in subdirs):
            raise self.fail(f"{where}.homedir.subdirs", "must be a list of paths")
        return home, list(subdirs)

    def services(self, value: Any) -> Dict[str, Service]:
        if not isinstance(value, list):
            raise self.fail("services", f"must be a list, got {type_name(value)}")
        services: Dict[str, Service] = {}
        for i, item in enumerate(value):
            if isinstance(item, (str, Symbol)):
                service = Service(name=str(item))
            elif isinstance(item, dict):
                if "name" not in item:
                    raise self.fail(f"services[{i}]", "needs a name")
                enabled = item.get("enabled", True)
                downed = item.get("downed", False)
                if not isinstance(enabled, bool) or not isinstance(downed, bool):
                    raise self.fail(f"services[{i}]", "enabled/downed must be true or false")
                service = Service(name=_name(item["name"]), enabled=enabled, downed=downed)
            else:
                raise self.fail(f"services[{i}]", f"is not a valid service ({type_name(item)})")
            services[service.name] = service
        return services

    def source_repositories(self, value: Any) -> Dict[str, RepoRef]:
        if not isinstance(value, dict):
            raise self.fail("vp_repos", f"must be a map, got {type_name(value)}")
        repos: Dict[str, RepoRef] = {}
        for name, spec in value.items():
            where = f"vp_repos.{name}"
            if isinstance(spec, RepoRef):
                spec = {"location": spec}
            if not isinstance(spec, dict):
                raise self.fail(where, f"must be a map, got {type_name(spec)}")
            location = spec.get("location")
            if isinstance(location, str):
                location = RepoRef(kind="git", location=location)
            if not isinstance(location, RepoRef) or location.kind == "void":
                raise self.fail(f"{where}.location", "is not a valid type or was not in the map")
            branch = spec.get("branch")
            allow = spec.get("allow_restricted", False)
            if not isinstance(allow, bool):
                raise self.fail(f"{where}.allow_restricted", "must be true or false")
            repos[name] = location.with_options(
                name=name,
                branch=location.branch or (None if branch is None else _name(branch)),
                allow_restricted=allow,
            )
        return repos

    def void_repositories(self, value: Any) -> List[RepoRef]:
        if not isinstance(value, list):
            raise self.fail("void_repos", f"must be a list, got {type_name(value)}")
        repos: List[RepoRef] = []
        for i, item in enumerate(value):
            if isinstance(item, RepoRef) and item.kind == "void":
                repos.append(item)
                continue
            if not isinstance(item, (str, Symbol)) or str(item) not in VOID_SUBREPOS:
                raise self.fail(f"void_repos[{i}]", f"must be one of {', '.join(VOID_SUBREPOS)}")
            repos.append(RepoRef(kind="void", location=str(item), name=str(item)))
        return repos


def _name(value: Any) -> str:
    if isinstance(value, (str, Symbol)):
        return str(value)
    raise EvalError(f"Expected a name, got {type_name(value)}")
