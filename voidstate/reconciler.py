"""Diff a desired state against a snapshot of the live system.

The result is an :class:`~voidstate.actions.ActionPlan` whose actions are
grouped by kind (see ``ACTION_ORDER``) and keep declaration order inside each
kind. Planning never touches the host; the snapshot is taken once by the
caller and only read here.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Protocol, Set, Union

from .actions import ActionPlan, AddRepo, Configure, DisableService, EnableService, Install, Remove
from .errors import ReconciliationError
from .packages import BUILTIN_CATALOG, ConfigSlot, PackageDescriptor, catalog_lookup
from .system import PackageRequest, SystemConfig
from .values import DesiredState, FileSource, LineInsertion, RepoRef, type_name

logger = logging.getLogger(__name__)

NONFREE_REPOSITORIES = frozenset({"nonfree", "multilib-nonfree"})
# never planned for removal, whoever installed them
ESSENTIAL_PACKAGES = frozenset({"base-system", "xbps", "runit-void"})


@dataclass(frozen=True)
class ActualState:
    installed: FrozenSet[str] = frozenset()
    repositories: FrozenSet[str] = frozenset()
    config_files: Mapping[str, str] = field(default_factory=dict)
    services: FrozenSet[str] = frozenset()
    preserved: FrozenSet[str] = frozenset()
    owned: FrozenSet[str] = frozenset()

    def __post_init__(self):
        for name in ("installed", "repositories", "services", "preserved", "owned"):
            object.__setattr__(self, name, frozenset(getattr(self, name)))
        object.__setattr__(self, "config_files", dict(self.config_files))


class SnapshotProvider(Protocol):
    def snapshot(self) -> ActualState:
        """Query the live system once."""


class ContentResolver:
    """Finds the bytes a configuration source stands for.

    Plain files are looked up relative to the configuration directory, files
    from a repository inside its checkout under ``checkout_root``.
    """

    def __init__(
        self,
        config_dir: Union[str, Path, None] = None,
        checkout_root: Union[str, Path, None] = None,
    ):
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.checkout_root = Path(checkout_root) if checkout_root else None

    def locate(self, source: Any) -> Optional[Path]:
        if isinstance(source, FileSource):
            if source.repository is None:
                return self.config_dir / source.path
            if self.checkout_root is None:
                return None
            return self.checkout_root / source.repository.key / source.path
        if isinstance(source, (str, PurePosixPath)):
            return self.config_dir / str(source)
        return None

    def read(self, source: Any) -> Optional[bytes]:
        if isinstance(source, LineInsertion):
            return source.content.encode("utf-8")
        path = self.locate(source)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()

    def digest(self, source: Any) -> Optional[str]:
        data = self.read(source)
        if data is None:
            return None
        return hashlib.sha256(data).hexdigest()


def expand_home(location: str, home: PurePosixPath) -> str:
    if location == "~":
        return str(home)
    if location.startswith("~/"):
        return str(home / location[2:])
    return location


class _Planner:
    def __init__(self, model: SystemConfig, registry: Any, actual: ActualState, content: ContentResolver):
        self.model = model
        self.registry = registry
        self.actual = actual
        self.content = content
        self.repositories: Dict[str, RepoRef] = {repo.key: repo for repo in model.repositories()}

    def descriptor(self, request: PackageRequest) -> PackageDescriptor:
        if self.registry is not None:
            return self.registry.lookup(request.symbol)
        if request.ref.descriptor is not None:
            return request.ref.descriptor
        return catalog_lookup(BUILTIN_CATALOG, request.symbol)

    def nonfree_available(self) -> bool:
        declared = any(repo.kind == "void" and repo.key in NONFREE_REPOSITORIES for repo in self.repositories.values())
        return declared or bool(NONFREE_REPOSITORIES & self.actual.repositories)

    def source_repository(self, request: PackageRequest, descriptor: PackageDescriptor) -> Optional[str]:
        named = request.repository
        if named is not None and named not in self.repositories:
            raise ReconciliationError(
                f"package `{request.symbol}` asks for repository `{named}`, which is not configured",
                [request.symbol],
            )
        if not descriptor.is_restricted:
            return named
        if named is not None:
            candidates = [self.repositories[named]]
        else:
            candidates = [repo for repo in self.repositories.values() if repo.kind != "void"]
        qualifying = [repo for repo in candidates if repo.allow_restricted]
        if qualifying:
            return qualifying[0].key
        if named is not None:
            message = (
                f"restricted package `{request.symbol}` requires repository `{named}` "
                "to set allow_restricted = true"
            )
        else:
            message = (
                f"restricted package `{request.symbol}` requires a local void-packages repository "
                "with allow_restricted = true and none is configured"
            )
        raise ReconciliationError(message, [request.symbol])

    def configure(self, request: PackageRequest, descriptor: PackageDescriptor) -> List[Configure]:
        actions: List[Configure] = []
        overridden: Set[str] = set()
        for key, source in request.config_overrides.items():
            slot = descriptor.slot(key)
            if slot is None:
                known = ", ".join(descriptor.slot_names) or "none"
                raise ReconciliationError(
                    f"package `{request.symbol}` has no configuration slot `{key}` (known slots: {known})",
                    [request.symbol],
                )
            if not isinstance(source, (FileSource, LineInsertion, PurePosixPath, str)):
                raise ReconciliationError(
                    f"package `{request.symbol}` can not configure `{key}` from a {type_name(source)}",
                    [request.symbol],
                )
            overridden.add(slot.name)
            actions.extend(self.configure_slot(request, slot, source))
        # slots left alone get the template shipped with the definition
        for slot in descriptor.configuration:
            template = descriptor.template(slot)
            if slot.name not in overridden and template is not None:
                actions.extend(self.configure_slot(request, slot, template))
        return actions

    def configure_slot(self, request: PackageRequest, slot: ConfigSlot, source: Any) -> List[Configure]:
        target = expand_home(slot.location, request.home)
        wanted = self.content.digest(source)
        if wanted is not None and self.actual.config_files.get(target) == wanted:
            return []
        return [Configure(request.symbol, slot.name, source, target)]

    def plan(self) -> ActionPlan:
        plan = ActionPlan()
        add_repos = [AddRepo(repo) for key, repo in self.repositories.items() if key not in self.actual.repositories]
        installs: List[Install] = []
        configures: List[Configure] = []
        requested: Set[str] = set()
        nonfree = self.nonfree_available()

        for request in self.model.package_requests():
            descriptor = self.descriptor(request)
            requested.add(descriptor.external_name)
            try:
                repository = self.source_repository(request, descriptor)
                package_configures = self.configure(request, descriptor)
            except ReconciliationError as exc:
                logger.error("%s", exc)
                plan.errors.append(exc)
                continue

            if descriptor.is_nonfree and not nonfree:
                warning = (
                    f"non-free package `{request.symbol}` needs the nonfree repository; "
                    "add nonfree to void_repos"
                )
                if warning not in plan.warnings:
                    logger.warning("%s", warning)
                    plan.warnings.append(warning)

            name = descriptor.external_name
            if name not in self.actual.installed and all(i.name != name for i in installs):
                installs.append(Install(request.symbol, name, repository))
            configures.extend(c for c in package_configures if c not in configures)

        enables = []
        disables = []
        for service in self.model.services.values():
            running = service.name in self.actual.services
            if service.enabled and not running:
                enables.append(EnableService(service.name, service.downed))
            elif not service.enabled and running:
                disables.append(DisableService(service.name))

        # only what we installed ourselves is ours to remove
        removable = (self.actual.installed & self.actual.owned) - requested
        removable -= self.actual.preserved | ESSENTIAL_PACKAGES
        removes = [Remove(name) for name in sorted(removable)]

        plan.actions = [*add_repos, *installs, *configures, *enables, *disables, *removes]
        return plan


def reconcile(
    desired: DesiredState,
    registry: Any = None,
    actual: Optional[ActualState] = None,
    *,
    content: Optional[ContentResolver] = None,
    partial: bool = False,
) -> ActionPlan:
    """Compute the actions that take ``actual`` to ``desired``.

    Packages that can not be planned (a restricted package without a
    qualifying repository, an unknown configuration slot, ...) get no
    actions. Unless ``partial`` is set those problems are raised together as
    one ReconciliationError whose ``plan`` holds everything else.
    """
    if actual is None:
        actual = ActualState()
    if content is None:
        config_dir = Path(desired.source).parent if desired.source else None
        content = ContentResolver(config_dir=config_dir)

    plan = _Planner(desired.model, registry, actual, content).plan()
    logger.info("Planned %d action(s): %s", len(plan), plan.counts())

    if plan.errors and not partial:
        packages = [symbol for error in plan.errors for symbol in error.packages]
        raise ReconciliationError("; ".join(str(error) for error in plan.errors), packages, plan)
    return plan


def simulate(actual: ActualState, plan: ActionPlan, content: ContentResolver) -> ActualState:
    """The snapshot a successful application of ``plan`` would leave behind."""
    installed = set(actual.installed)
    owned = set(actual.owned)
    repositories = set(actual.repositories)
    config_files = dict(actual.config_files)
    services = set(actual.services)
    for action in plan:
        if isinstance(action, AddRepo):
            repositories.add(action.repo.key)
        elif isinstance(action, Install):
            installed.add(action.name)
            owned.add(action.name)
        elif isinstance(action, Configure):
            digest = content.digest(action.source)
            if digest is not None:
                config_files[action.target] = digest
        elif isinstance(action, EnableService):
            services.add(action.name)
        elif isinstance(action, DisableService):
            services.discard(action.name)
        elif isinstance(action, Remove):
            installed.discard(action.package)
            owned.discard(action.package)
    return replace(
        actual,
        installed=frozenset(installed),
        owned=frozenset(owned),
        repositories=frozenset(repositories),
        config_files=config_files,
        services=frozenset(services),
    )
