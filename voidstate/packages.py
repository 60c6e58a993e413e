from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import DefinitionFormatError

DEFAULT_SLOT = "config"
SLOT_KEYS = frozenset({"location", "template_location"})
DESCRIPTOR_KEYS = frozenset({"name", "is_nonfree", "is_restricted", "configuration"})


@dataclass(frozen=True)
class ConfigSlot:
    name: str
    location: str
    template_location: Optional[str] = None


@dataclass(frozen=True)
class PackageDescriptor:
    """Compiled metadata for one package symbol."""

    symbol: str
    external_name: str
    is_nonfree: bool = False
    is_restricted: bool = False
    configuration: Tuple[ConfigSlot, ...] = ()
    origin: str = field(default="catalog", compare=False)
    # directory of the definition file, templates are relative to it
    base: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def slot_names(self) -> List[str]:
        return [slot.name for slot in self.configuration]

    def slot(self, name: str) -> Optional[ConfigSlot]:
        for slot in self.configuration:
            if slot.name == name:
                return slot
        # a lone slot is the package's default configuration
        if name == DEFAULT_SLOT and len(self.configuration) == 1:
            return self.configuration[0]
        return None

    def template(self, slot: ConfigSlot) -> Optional[PurePosixPath]:
        if slot.template_location is None:
            return None
        template = PurePosixPath(slot.template_location)
        if self.base is None or template.is_absolute():
            return template
        return PurePosixPath(self.base) / template


def default_descriptor(symbol: str) -> PackageDescriptor:
    """Descriptor for an ordinary package nobody described."""
    return PackageDescriptor(symbol=symbol, external_name=symbol, origin="default")


def _ordinary(*names: str) -> Mapping[str, PackageDescriptor]:
    return MappingProxyType({name: PackageDescriptor(symbol=name, external_name=name) for name in names})


# Hand-maintained defaults. Anything needing configuration slots or flags
# belongs in a definition unit instead.
BUILTIN_CATALOG: Mapping[str, PackageDescriptor] = _ordinary(
    "base-system",
    "bash",
    "curl",
    "dhcpcd",
    "git",
    "htop",
    "openssh",
    "runit-void",
    "socat",
    "sudo",
    "tmux",
    "vim",
    "wget",
    "xbps",
    "xtools",
)


def _text(value: Any, what: str, path: Optional[str], symbol: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, PurePosixPath):
        return str(value)
    raise DefinitionFormatError(f"{symbol}: {what} must be a string or path, got {type(value).__name__}", path, symbol)


def _flag(definition: Mapping[str, Any], key: str, path: Optional[str], symbol: str) -> bool:
    value = definition.get(key, False)
    if not isinstance(value, bool):
        raise DefinitionFormatError(f"{symbol}: {key} must be true or false", path, symbol)
    return value


def _slot(name: str, spec: Mapping[str, Any], path: Optional[str], symbol: str) -> ConfigSlot:
    unknown = set(spec) - SLOT_KEYS
    if unknown:
        raise DefinitionFormatError(
            f"{symbol}: configuration slot '{name}' has unknown keys {sorted(unknown)}", path, symbol
        )
    if "location" not in spec:
        raise DefinitionFormatError(f"{symbol}: configuration slot '{name}' needs a location", path, symbol)
    template = spec.get("template_location")
    return ConfigSlot(
        name=name,
        location=_text(spec["location"], f"{name}.location", path, symbol),
        template_location=None if template is None else _text(template, f"{name}.template_location", path, symbol),
    )


def compile_configuration(
    symbol: str, configuration: Any, path: Optional[str] = None
) -> Tuple[ConfigSlot, ...]:
    if not isinstance(configuration, dict):
        raise DefinitionFormatError(f"{symbol}: configuration must be a map", path, symbol)
    if SLOT_KEYS & set(configuration):
        return (_slot(DEFAULT_SLOT, configuration, path, symbol),)
    slots: List[ConfigSlot] = []
    for name, spec in configuration.items():
        if not isinstance(spec, dict):
            raise DefinitionFormatError(f"{symbol}: configuration slot '{name}' must be a map", path, symbol)
        slots.append(_slot(name, spec, path, symbol))
    return tuple(slots)


def compile_descriptor(
    symbol: str, definition: Any, path: Optional[str] = None, origin: str = "definition"
) -> PackageDescriptor:
    """Turn the map bound by a definition unit into a descriptor."""
    if not isinstance(definition, dict):
        raise DefinitionFormatError(
            f"{symbol} must be bound to a map, got {type(definition).__name__}", path, symbol
        )
    unknown = set(definition) - DESCRIPTOR_KEYS
    if unknown:
        raise DefinitionFormatError(f"{symbol}: unknown keys {sorted(unknown)}", path, symbol)

    external_name = symbol
    if "name" in definition:
        external_name = _text(definition["name"], "name", path, symbol)

    configuration: Tuple[ConfigSlot, ...] = ()
    if "configuration" in definition:
        configuration = compile_configuration(symbol, definition["configuration"], path)

    return PackageDescriptor(
        symbol=symbol,
        external_name=external_name,
        is_nonfree=_flag(definition, "is_nonfree", path, symbol),
        is_restricted=_flag(definition, "is_restricted", path, symbol),
        configuration=configuration,
        origin=origin if path is None else str(path),
        base=None if path is None else str(PurePosixPath(path).parent),
    )


def catalog_lookup(catalog: Mapping[str, PackageDescriptor], symbol: str) -> PackageDescriptor:
    return catalog.get(symbol) or default_descriptor(symbol)


def descriptor_summary(descriptor: PackageDescriptor) -> Dict[str, Any]:
    """Plain-data form used by ``list-pkgs``."""
    return {
        "symbol": descriptor.symbol,
        "name": descriptor.external_name,
        "nonfree": descriptor.is_nonfree,
        "restricted": descriptor.is_restricted,
        "configuration": {slot.name: slot.location for slot in descriptor.configuration},
        "origin": descriptor.origin,
    }
