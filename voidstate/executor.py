"""Apply an action plan to the host.

``apply_plan`` owns ordering and failure bookkeeping; an executor only knows
how to carry out one action. ``XbpsExecutor`` is the implementation for a
Void Linux host (xbps, xbps-src and runit).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple, Union

from .actions import ActionPlan, AddRepo, Configure, DisableService, EnableService, Install, Remove
from .builtins import VOID_SUBREPOS
from .command import run_cmd
from .errors import ExecutionFailure
from .query import REPO_CONF_PREFIX, SERVICE_DIR, XBPS_CONF_DIR
from .reconciler import ContentResolver
from .state_store import forget_install, record_config, record_install
from .values import LineInsertion

logger = logging.getLogger(__name__)

DEPENDENCY_FAILED = "skipped - dependency failed"
SV_DIR = "/etc/sv"
BINPKGS = "hostdir/binpkgs"


class Executor(Protocol):
    def apply(self, action: Any) -> None:
        """Carry out one action or raise ExecutionFailure."""


@dataclass
class ExecutionReport:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[Tuple[Any, ExecutionFailure]] = field(default_factory=list)
    skipped: List[Tuple[Any, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def summary(self) -> Dict[str, int]:
        return {"succeeded": len(self.succeeded), "failed": len(self.failed), "skipped": len(self.skipped)}


def _blocked(action: Any, failed_packages: Set[str], failed_repos: Set[str]) -> bool:
    if isinstance(action, Configure):
        return action.package in failed_packages
    if isinstance(action, Install):
        return action.repository is not None and action.repository in failed_repos
    return False


def _mark_failed(action: Any, failed_packages: Set[str], failed_repos: Set[str]) -> None:
    if isinstance(action, AddRepo):
        failed_repos.add(action.repo.key)
    elif isinstance(action, Install):
        failed_packages.add(action.package)


def _apply_with_retries(action: Any, executor: Executor, retries: int) -> Optional[ExecutionFailure]:
    for attempt in range(retries + 1):
        try:
            executor.apply(action)
            return None
        except ExecutionFailure as exc:
            if exc.action is None:
                exc.action = action
            if exc.retryable and attempt < retries:
                logger.warning("Retrying '%s' after: %s", action.describe(), exc)
                continue
            return exc
    return None


def apply_plan(plan: ActionPlan, executor: Executor, *, retries: int = 1) -> ExecutionReport:
    """Apply ``plan`` in order.

    A failed action does not stop the plan. Actions that depend on it (the
    Configure of a package whose Install failed, an Install from a repository
    that could not be added) are skipped instead of attempted.
    """
    report = ExecutionReport()
    failed_packages: Set[str] = set()
    failed_repos: Set[str] = set()

    for action in plan:
        if _blocked(action, failed_packages, failed_repos):
            logger.warning("Skipping '%s': dependency failed", action.describe())
            report.skipped.append((action, DEPENDENCY_FAILED))
            _mark_failed(action, failed_packages, failed_repos)
            continue
        failure = _apply_with_retries(action, executor, retries)
        if failure is None:
            logger.info("Applied '%s'", action.describe())
            report.succeeded.append(action)
        else:
            logger.error("Failed '%s': %s", action.describe(), failure)
            report.failed.append((action, failure))
            _mark_failed(action, failed_packages, failed_repos)

    logger.info("Plan applied: %s", report.summary())
    return report


class XbpsExecutor:
    def __init__(
        self,
        state: Dict[str, Any],
        *,
        content: ContentResolver,
        checkout_root: Union[str, Path],
        repositories: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
        timeout: Optional[float] = 600,
        xbps_conf_dir: str = XBPS_CONF_DIR,
        service_dir: str = SERVICE_DIR,
        sv_dir: str = SV_DIR,
        runner: Callable[..., Any] = run_cmd,
    ):
        self.state = state
        self.content = content
        self.checkout_root = Path(checkout_root)
        self.repositories = dict(repositories or {})
        self.dry_run = dry_run
        self.timeout = timeout
        self.xbps_conf_dir = Path(xbps_conf_dir)
        self.service_dir = Path(service_dir)
        self.sv_dir = Path(sv_dir)
        self.runner = runner

    def run(self, argv: List[str], cwd: Optional[Path] = None):
        return self.runner(argv, cwd=None if cwd is None else str(cwd), timeout=self.timeout, dry_run=self.dry_run)

    def apply(self, action: Any) -> None:
        handler = getattr(self, f"_{type(action).__name__.lower()}", None)
        if handler is None:
            raise ExecutionFailure(f"Unknown action {action!r}", action=action, kind="unsupported")
        handler(action)

    def _checkout(self, key: str) -> Path:
        return self.checkout_root / key

    def _addrepo(self, action: AddRepo) -> None:
        repo = action.repo
        if repo.kind == "void":
            self.run(["xbps-install", "-Sy", VOID_SUBREPOS[repo.key]])
            return
        checkout = self._checkout(repo.key)
        if (checkout / ".git").is_dir():
            self.run(["git", "-C", str(checkout), "pull", "--ff-only"])
        else:
            argv = ["git", "clone"]
            if repo.branch:
                argv += ["--branch", repo.branch]
            self.run(argv + [repo.location, str(checkout)])
        self.run(["./xbps-src", "binary-bootstrap"], cwd=checkout)
        self._write(
            self.xbps_conf_dir / f"{REPO_CONF_PREFIX}{repo.key}.conf",
            f"repository={checkout / BINPKGS}\n".encode("utf-8"),
        )

    def _install(self, action: Install) -> None:
        repo = self.repositories.get(action.repository) if action.repository else None
        if repo is None or repo.kind == "void":
            self.run(["xbps-install", "-Sy", action.name])
            self._installed(action.name)
            return
        checkout = self._checkout(repo.key)
        try:
            self.run(["./xbps-src", "pkg", action.name], cwd=checkout)
        except ExecutionFailure as exc:
            raise ExecutionFailure(
                f"Building {action.name} in {repo.key} failed: {exc}", action, exc.retryable, kind="build"
            ) from exc
        self.run(["xbps-install", "-y", "--repository", str(checkout / BINPKGS), action.name])
        self._installed(action.name)

    def _configure(self, action: Configure) -> None:
        data = self.content.read(action.source)
        if data is None:
            raise ExecutionFailure(f"Source {action.source} for {action.target} not found", action, kind="configure")
        target = Path(action.target)
        if isinstance(action.source, LineInsertion) and target.is_file():
            current = target.read_text(encoding="utf-8")
            missing = [line for line in action.source.lines if line not in current.splitlines()]
            if current and not current.endswith("\n"):
                current += "\n"
            data = (current + "".join(f"{line}\n" for line in missing)).encode("utf-8")
        self._write(target, data)
        if not self.dry_run:
            record_config(self.state, action.target, self.content.digest(action.source))

    def _enableservice(self, action: EnableService) -> None:
        link = self.service_dir / action.name
        source = self.sv_dir / action.name
        if self.dry_run:
            logger.info("DRY-RUN link %s -> %s", link, source)
            return
        if not source.is_dir():
            raise ExecutionFailure(f"No runit service '{action.name}' in {self.sv_dir}", action, kind="service")
        try:
            if action.downed:
                (source / "down").touch()
            if not link.exists():
                link.symlink_to(source)
        except PermissionError as exc:
            raise ExecutionFailure(f"Can not enable {action.name}: {exc}", action, kind="permission") from exc

    def _disableservice(self, action: DisableService) -> None:
        link = self.service_dir / action.name
        if self.dry_run:
            logger.info("DRY-RUN unlink %s", link)
            return
        try:
            if link.is_symlink() or link.exists():
                link.unlink()
        except PermissionError as exc:
            raise ExecutionFailure(f"Can not disable {action.name}: {exc}", action, kind="permission") from exc

    def _remove(self, action: Remove) -> None:
        self.run(["xbps-remove", "-y", action.package])
        if not self.dry_run:
            forget_install(self.state, action.package)

    def _installed(self, name: str) -> None:
        if not self.dry_run:
            record_install(self.state, name)

    def _write(self, path: Path, data: bytes) -> None:
        if self.dry_run:
            logger.info("DRY-RUN write %s (%d bytes)", path, len(data))
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except PermissionError as exc:
            raise ExecutionFailure(f"Can not write {path}: {exc}", kind="permission") from exc
