from __future__ import annotations

from typing import Any, List, Optional, Sequence


class VoidStateError(Exception):
    """Base class for every error raised by voidstate."""


class EvalError(VoidStateError):
    def __init__(
        self,
        message: str,
        symbol: Optional[str] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.symbol = symbol
        self.source = source
        self.line = line
        self.column = column
        where = []
        if source:
            where.append(str(source))
        if line:
            where.append(f"line {line}, col {column}")
        location = f" ({', '.join(where)})" if where else ""
        super().__init__(f"{message}{location}")


class BuiltinArgumentError(EvalError):
    def __init__(
        self,
        function: str,
        signature: str,
        received: Sequence[Any],
        reason: str = "",
        source: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.function = function
        self.signature = signature
        self.received = list(received)
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Bad arguments to builtin '{function}'{detail}; expected {signature}, got {self.received!r}",
            symbol=function,
            source=source,
            line=line,
            column=column,
        )


class ImportCycleError(EvalError):
    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Import cycle detected: " + " -> ".join(self.chain))


class DefinitionFormatError(VoidStateError):
    def __init__(self, message: str, path: Optional[str] = None, symbol: Optional[str] = None):
        self.path = path
        self.symbol = symbol
        prefix = f"{path}: " if path else ""
        super().__init__(f"{prefix}{message}")


class RenderError(VoidStateError, ValueError):
    """A value that has no spelling in the configuration language."""


class ReconciliationError(VoidStateError):
    """Raised when requested packages cannot be planned.

    ``plan`` holds the plan computed for everything else, so callers can still
    show or apply it.
    """

    def __init__(self, message: str, packages: Sequence[str] = (), plan: Any = None):
        self.packages: List[str] = list(packages)
        self.plan = plan
        super().__init__(message)


class ExecutionFailure(VoidStateError):
    def __init__(self, message: str, action: Any = None, retryable: bool = False, kind: str = "command"):
        self.action = action
        self.retryable = retryable
        self.kind = kind
        super().__init__(message)
