from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .errors import DefinitionFormatError, EvalError
from .interpreter import FileImportResolver, Interpreter
from .packages import BUILTIN_CATALOG, PackageDescriptor, catalog_lookup, compile_descriptor
from .parser import ParseError, parse_script

logger = logging.getLogger(__name__)

DEFINITION_PATTERN = "*.pkg"

UnitResult = Union[PackageDescriptor, DefinitionFormatError]


@dataclass
class Collision:
    symbol: str
    replaced: str
    winner: str


@dataclass
class Registry:
    """Package descriptors from definition units, layered over the builtin catalog."""

    descriptors: Dict[str, PackageDescriptor] = field(default_factory=dict)
    catalog: Mapping[str, PackageDescriptor] = field(default_factory=lambda: BUILTIN_CATALOG)
    errors: List[DefinitionFormatError] = field(default_factory=list)
    collisions: List[Collision] = field(default_factory=list)

    def lookup(self, symbol: str) -> PackageDescriptor:
        descriptor = self.descriptors.get(symbol)
        if descriptor is not None:
            return descriptor
        return catalog_lookup(self.catalog, symbol)

    def get(self, symbol: str) -> Optional[PackageDescriptor]:
        return self.descriptors.get(symbol) or self.catalog.get(symbol)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.descriptors or symbol in self.catalog

    def symbols(self) -> List[str]:
        return sorted(set(self.descriptors) | set(self.catalog))

    def merged(self) -> Dict[str, PackageDescriptor]:
        merged = dict(self.catalog)
        merged.update(self.descriptors)
        return merged

    def add(self, descriptor: PackageDescriptor) -> None:
        previous = self.descriptors.get(descriptor.symbol)
        if previous is not None:
            collision = Collision(descriptor.symbol, previous.origin, descriptor.origin)
            self.collisions.append(collision)
            logger.warning(
                "Package '%s' is defined by both %s and %s; using %s",
                descriptor.symbol,
                collision.replaced,
                collision.winner,
                collision.winner,
            )
        self.descriptors[descriptor.symbol] = descriptor


def compile_unit(path: Union[str, Path]) -> PackageDescriptor:
    """Evaluate one definition unit in an isolated scope and compile its binding."""
    path = Path(path).resolve()
    try:
        statements = parse_script(path)
        state = Interpreter(resolver=FileImportResolver(), source=str(path)).run(statements)
    except (ParseError, EvalError) as exc:
        raise DefinitionFormatError(f"can not evaluate definition: {exc}", str(path)) from exc

    bindings = dict(state.bindings)
    system = bindings.pop("system", {})
    if system:
        raise DefinitionFormatError("definition units may not set 'system'", str(path))
    if len(bindings) != 1:
        raise DefinitionFormatError(
            f"expected exactly one top-level binding, found {len(bindings)} ({', '.join(bindings) or 'none'})",
            str(path),
        )
    ((symbol, definition),) = bindings.items()
    return compile_descriptor(symbol, definition, path=str(path))


def _compile_or_error(path: Path) -> UnitResult:
    try:
        return compile_unit(path)
    except DefinitionFormatError as exc:
        return exc


def definition_files(directory: Union[str, Path], pattern: str = DEFINITION_PATTERN) -> List[Path]:
    return sorted(p for p in Path(directory).glob(pattern) if p.is_file())


def load_registry(
    directory: Union[str, Path, None],
    *,
    catalog: Mapping[str, PackageDescriptor] = BUILTIN_CATALOG,
    workers: Optional[int] = None,
    pattern: str = DEFINITION_PATTERN,
) -> Registry:
    """Load every definition unit in ``directory``.

    Units are merged in sorted file-name order, so when two units bind the same
    symbol the later file wins. A malformed unit is reported and skipped.
    """
    registry = Registry(catalog=catalog)
    if directory is None:
        return registry
    if not Path(directory).is_dir():
        logger.warning("Package definition directory %s does not exist", directory)
        return registry

    paths = definition_files(directory, pattern)
    results: Iterable[UnitResult]
    if workers and workers > 1 and len(paths) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(_compile_or_error, paths))
    else:
        results = [_compile_or_error(p) for p in paths]

    for path, result in zip(paths, results):
        if isinstance(result, DefinitionFormatError):
            registry.errors.append(result)
            logger.warning("Skipping package definition: %s", result)
            continue
        logger.info("Loaded package definition %s from %s", result.symbol, path.name)
        registry.add(result)
    return registry


def registry_from_descriptors(
    descriptors: Iterable[PackageDescriptor], catalog: Mapping[str, PackageDescriptor] = BUILTIN_CATALOG
) -> Registry:
    registry = Registry(catalog=catalog)
    for descriptor in descriptors:
        registry.add(descriptor)
    return registry
