from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .errors import ReconciliationError
from .values import RepoRef


@dataclass(frozen=True)
class AddRepo:
    repo: RepoRef

    def describe(self) -> str:
        if self.repo.kind == "void":
            return f"add repository {self.repo.key} (void sub-repository)"
        return f"add repository {self.repo.key} ({self.repo})"


@dataclass(frozen=True)
class Install:
    package: str
    name: str
    repository: Optional[str] = None

    def describe(self) -> str:
        label = self.package if self.name == self.package else f"{self.package} ({self.name})"
        origin = f" from {self.repository}" if self.repository else ""
        return f"install {label}{origin}"


@dataclass(frozen=True)
class Configure:
    package: str
    slot: str
    source: Any
    target: str

    def describe(self) -> str:
        return f"configure {self.package}:{self.slot} -> {self.target} from {self.source}"


@dataclass(frozen=True)
class EnableService:
    name: str
    downed: bool = False

    def describe(self) -> str:
        suffix = " (down)" if self.downed else ""
        return f"enable service {self.name}{suffix}"


@dataclass(frozen=True)
class DisableService:
    name: str

    def describe(self) -> str:
        return f"disable service {self.name}"


@dataclass(frozen=True)
class Remove:
    package: str

    def describe(self) -> str:
        return f"remove {self.package}"


# Position in this tuple is the order actions are applied in.
ACTION_ORDER = (AddRepo, Install, Configure, EnableService, DisableService, Remove)


@dataclass
class ActionPlan:
    actions: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[ReconciliationError] = field(default_factory=list)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def by_kind(self) -> Dict[str, List[Any]]:
        grouped: Dict[str, List[Any]] = {kind.__name__: [] for kind in ACTION_ORDER}
        for action in self.actions:
            grouped[type(action).__name__].append(action)
        return grouped

    def counts(self) -> Dict[str, int]:
        return {kind: len(actions) for kind, actions in self.by_kind().items() if actions}

    def describe(self) -> List[str]:
        if self.is_empty:
            lines = ["Nothing to do."]
        else:
            lines = [f"{i:>3}. {action.describe()}" for i, action in enumerate(self.actions, 1)]
        lines.extend(f"warning: {warning}" for warning in self.warnings)
        lines.extend(f"error: {error}" for error in self.errors)
        return lines
