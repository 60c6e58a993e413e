from __future__ import annotations

import logging
import posixpath
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import nodes
from .builtins import BUILTINS
from .errors import BuiltinArgumentError, EvalError, ImportCycleError
from .packages import BUILTIN_CATALOG, PackageDescriptor, catalog_lookup
from .parser import parse, parse_script
from .values import DesiredState, PackageRef, Symbol, type_name

logger = logging.getLogger(__name__)

PACKAGES_KEY = "packages"


class ImportResolver(Protocol):
    def resolve(self, path: str, importer: Optional[str]) -> str:
        """Return a canonical key for ``path`` imported from ``importer``."""

    def load(self, key: str) -> List[nodes.Node]:
        """Parse the file behind a key returned by ``resolve``."""


class FileImportResolver:
    """Resolves imports against the file system, relative to the importing file."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root) if root else Path.cwd()

    def resolve(self, path: str, importer: Optional[str]) -> str:
        base = Path(importer).parent if importer else self.root
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = base / candidate
        candidate = candidate.resolve()
        if not candidate.is_file():
            raise EvalError(f"Unresolved import path '{path}'", source=importer)
        return str(candidate)

    def load(self, key: str) -> List[nodes.Node]:
        return parse_script(key)


class MappingImportResolver:
    """Resolves imports from an in-memory mapping of POSIX path -> source text."""

    def __init__(self, files: Mapping[str, str]):
        self.files = dict(files)

    def resolve(self, path: str, importer: Optional[str]) -> str:
        if not posixpath.isabs(path):
            path = posixpath.join(posixpath.dirname(importer or "/"), path)
        key = posixpath.normpath(path)
        if key not in self.files:
            raise EvalError(f"Unresolved import path '{path}'", source=importer)
        return key

    def load(self, key: str) -> List[nodes.Node]:
        return parse(self.files[key], source=key)


class Interpreter:
    """Evaluates parsed statements into a desired-state document.

    The interpreter only knows literals, references, declarations, imports and
    the fixed builtin table, so evaluation always terminates and has no side
    effects on the host.
    """

    def __init__(
        self,
        resolver: Optional[ImportResolver] = None,
        registry: Any = None,
        source: Optional[str] = None,
        scope: Optional[Dict[str, Any]] = None,
        import_stack: Sequence[str] = (),
    ):
        self.resolver = resolver
        self.registry = registry
        self.source = source
        self.scope: Dict[str, Any] = dict(scope) if scope is not None else {"system": {}}
        self.import_stack: List[str] = list(import_stack)
        if source and source not in self.import_stack:
            self.import_stack.append(source)

    def run(self, statements: Sequence[nodes.Node]) -> DesiredState:
        for statement in statements:
            self.evaluate(statement)
        return DesiredState(bindings=dict(self.scope), source=self.source)

    def evaluate(self, node: nodes.Node) -> Any:
        if isinstance(node, nodes.Literal):
            return node.value
        if isinstance(node, nodes.PathLiteral):
            return PurePosixPath(node.path)
        if isinstance(node, nodes.Symbol):
            if node.name in self.scope:
                return self.scope[node.name]
            return Symbol(node.name)
        if isinstance(node, nodes.MapLiteral):
            result: Dict[str, Any] = {}
            for key, value_node in node.entries:
                value = self.evaluate(value_node)
                if key == PACKAGES_KEY:
                    value = self._as_packages(value, value_node)
                result[key] = value
            return result
        if isinstance(node, nodes.ListLiteral):
            return [self.evaluate(item) for item in node.items]
        if isinstance(node, (nodes.MapRef, nodes.ListRef)):
            return self._lookup(node)
        if isinstance(node, nodes.FunctionCall):
            return self._call(node)
        if isinstance(node, nodes.VariableDeclaration):
            value = self.evaluate(node.value)
            if isinstance(node.target, nodes.MapRef) and node.target.field == PACKAGES_KEY:
                value = self._as_packages(value, node.value)
            self._assign(node.target, value)
            return value
        if isinstance(node, nodes.Import):
            self._import(node)
            return None
        raise self._error(f"Can not evaluate {type(node).__name__}", node)

    def _error(self, message: str, node: nodes.Node, symbol: Optional[str] = None) -> EvalError:
        return EvalError(message, symbol=symbol, source=self.source, line=node.line, column=node.column)

    def _lookup(self, node: nodes.Node) -> Any:
        if isinstance(node, nodes.Symbol):
            if node.name not in self.scope:
                raise self._error(f"Undefined symbol '{node.name}'", node, node.name)
            return self.scope[node.name]
        if isinstance(node, nodes.MapRef):
            base = self._lookup(node.base)
            if not isinstance(base, dict):
                raise self._error(
                    f"Can not access field '{node.field}' of {type_name(base)} '{nodes.describe(node.base)}'",
                    node,
                    nodes.describe(node.base),
                )
            if node.field not in base:
                raise self._error(
                    f"Map '{nodes.describe(node.base)}' has no field '{node.field}'", node, nodes.describe(node)
                )
            return base[node.field]
        if isinstance(node, nodes.ListRef):
            base = self._lookup(node.base)
            if not isinstance(base, list):
                raise self._error(
                    f"Can not index {type_name(base)} '{nodes.describe(node.base)}'", node, nodes.describe(node.base)
                )
            if not 0 <= node.index < len(base):
                raise self._error(
                    f"Index {node.index} exceeds bounds of list '{nodes.describe(node.base)}' (length {len(base)})",
                    node,
                    nodes.describe(node),
                )
            return base[node.index]
        raise self._error(f"Invalid reference {type(node).__name__}", node)

    def _call(self, node: nodes.FunctionCall) -> Any:
        builtin = BUILTINS.get(node.name)
        if builtin is not None:
            args = [self.evaluate(arg) for arg in node.args]
            try:
                return builtin(args)
            except BuiltinArgumentError as exc:
                raise BuiltinArgumentError(
                    exc.function,
                    exc.signature,
                    exc.received,
                    exc.reason,
                    source=self.source,
                    line=node.line,
                    column=node.column,
                ) from None
        if node.name in self.scope:
            raise self._error(f"'{node.name}' is a {type_name(self.scope[node.name])}, not a function", node, node.name)
        # `name { ... }` requests a package with per-instance options
        if len(node.args) == 1 and isinstance(node.args[0], nodes.MapLiteral):
            options = self.evaluate(node.args[0])
            return self._package(node.name, tuple(options.items()))
        raise self._error(f"Undefined function '{node.name}'", node, node.name)

    def _package(self, symbol: str, overrides: Tuple[Tuple[str, Any], ...] = ()) -> PackageRef:
        return PackageRef(symbol=symbol, overrides=overrides, descriptor=self._descriptor(symbol))

    def _descriptor(self, symbol: str) -> PackageDescriptor:
        if self.registry is not None:
            return self.registry.lookup(symbol)
        return catalog_lookup(BUILTIN_CATALOG, symbol)

    def _as_packages(self, value: Any, node: nodes.Node) -> List[PackageRef]:
        if not isinstance(value, list):
            raise self._error(f"'{PACKAGES_KEY}' must be a List, got {type_name(value)}", node, PACKAGES_KEY)
        refs: List[PackageRef] = []
        for item in value:
            if isinstance(item, list):
                refs.extend(self._as_packages(item, node))
            elif isinstance(item, PackageRef):
                refs.append(item)
            elif isinstance(item, (Symbol, str)):
                refs.append(self._package(str(item)))
            else:
                raise self._error(f"{type_name(item)} {item!r} is not a package", node, PACKAGES_KEY)
        return refs

    def _assign(self, target: nodes.Node, value: Any) -> None:
        if isinstance(target, nodes.Symbol):
            self.scope[target.name] = value
            return
        steps: List[Tuple[str, Any]] = []
        root = target
        while not isinstance(root, nodes.Symbol):
            if isinstance(root, nodes.MapRef):
                steps.append(("field", root.field))
            elif isinstance(root, nodes.ListRef):
                steps.append(("index", root.index))
            else:
                raise self._error(f"Can not assign to {type(root).__name__}", target)
            root = root.base
        steps.reverse()
        if root.name not in self.scope:
            raise self._error(f"Undefined symbol '{root.name}'", target, root.name)
        self.scope[root.name] = self._set_in(self.scope[root.name], steps, value, target)

    def _set_in(self, container: Any, steps: List[Tuple[str, Any]], value: Any, target: nodes.Node) -> Any:
        # copy-on-write along the path, untouched siblings stay shared
        kind, key = steps[0]
        rest = steps[1:]
        if kind == "field":
            if not isinstance(container, dict):
                raise self._error(f"Can not set field '{key}' on a {type_name(container)}", target, nodes.describe(target))
            updated = dict(container)
            if rest:
                child = container.get(key)
                if child is None:
                    child = {}
                updated[key] = self._set_in(child, rest, value, target)
            else:
                updated[key] = value
            return updated
        if not isinstance(container, list):
            raise self._error(f"Can not index a {type_name(container)}", target, nodes.describe(target))
        if not 0 <= key < len(container):
            raise self._error(
                f"Index {key} exceeds bounds of list (length {len(container)})", target, nodes.describe(target)
            )
        updated_list = list(container)
        updated_list[key] = self._set_in(container[key], rest, value, target) if rest else value
        return updated_list

    def _import(self, node: nodes.Import) -> None:
        if self.resolver is None:
            raise self._error(f"Can not import '{node.path}' without an import resolver", node)
        key = self.resolver.resolve(node.path, self.source)
        if key in self.import_stack:
            raise ImportCycleError(self.import_stack + [key])
        logger.debug("import %s from %s", key, self.source)
        statements = self.resolver.load(key)
        child = Interpreter(
            resolver=self.resolver,
            registry=self.registry,
            source=key,
            scope=self.scope,
            import_stack=self.import_stack + [key],
        )
        child.run(statements)
        self.scope.update(child.scope)


def evaluate(
    statements: Sequence[nodes.Node],
    resolver: Optional[ImportResolver] = None,
    *,
    registry: Any = None,
    source: Optional[str] = None,
) -> DesiredState:
    return Interpreter(resolver=resolver, registry=registry, source=source).run(statements)


def evaluate_file(path, registry: Any = None) -> DesiredState:
    resolved = str(Path(path).resolve())
    statements = parse_script(resolved)
    return evaluate(statements, FileImportResolver(), registry=registry, source=resolved)
