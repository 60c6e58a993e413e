"""Render evaluated values back into configuration-language text.

Parsing and evaluating the output of :func:`render` gives back an equal
value. Values the language can not spell (negative numbers, strings holding
both quote characters, ...) raise RenderError.
"""

from __future__ import annotations

import math
from decimal import Decimal
from pathlib import PurePosixPath
from typing import Any, List, Mapping

from .builtins import VOID_PACKAGES_REPO_NAME
from .errors import RenderError
from .parser import KEYWORDS, PATH_BREAK, SYMBOL_PATTERN
from .values import DesiredState, FileSource, LineInsertion, PackageRef, RepoRef, Symbol

INDENT = "  "
GITHUB = "https://github.com/"


def _quote(text: str) -> str:
    if "'" not in text:
        return f"'{text}'"
    if '"' not in text:
        return f'"{text}"'
    raise RenderError(f"Can not render a string containing both quote characters: {text!r}")


def _number(value: Any) -> str:
    if value < 0:
        raise RenderError(f"Can not render negative number {value}")
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        raise RenderError(f"Can not render {value}")
    # the lexer has no exponent form
    text = format(Decimal(repr(value)), "f")
    return text if "." in text else text + ".0"


def _name(name: str) -> str:
    if name in KEYWORDS or not SYMBOL_PATTERN.fullmatch(name):
        raise RenderError(f"'{name}' is not a valid symbol")
    return name


def _path(path: PurePosixPath) -> str:
    text = str(path)
    if path.is_absolute():
        prefix, rest = "/", text[1:]
    else:
        prefix, rest = "./", "" if text == "." else text
    if any(ch in PATH_BREAK or ch in "'\"" for ch in rest):
        return prefix + _quote(rest)
    return prefix + rest


def _repo(repo: RepoRef) -> str:
    if repo.kind == "void":
        return f"(void-repo {_quote(repo.location)})"
    branch = f" {_quote(repo.branch)}" if repo.branch else ""
    if repo.kind == "github" and repo.location.startswith(GITHUB):
        parts = repo.location[len(GITHUB):].split("/")
        if len(parts) == 2:
            user, name = parts
            if name == VOID_PACKAGES_REPO_NAME:
                return f"(voidpackages-repo {_quote(user)}{branch})"
            return f"(github-repo {_quote(user)} {_quote(name)}{branch})"
    return f"(git-repo {_quote(repo.location)}{branch})"


def _map(entries: Mapping[str, Any], depth: int) -> str:
    if not entries:
        return "{}"
    pad = INDENT * (depth + 1)
    lines = [f"{pad}{_name(key)} = {render(value, depth + 1)};" for key, value in entries.items()]
    return "{\n" + "\n".join(lines) + "\n" + INDENT * depth + "}"


def render(value: Any, depth: int = 0) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _number(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, Symbol):
        return _name(value.name)
    if isinstance(value, PurePosixPath):
        return _path(value)
    if isinstance(value, dict):
        return _map(value, depth)
    if isinstance(value, list):
        return "[" + ", ".join(render(item, depth) for item in value) + "]"
    if isinstance(value, RepoRef):
        return _repo(value)
    if isinstance(value, FileSource):
        repo = f" {_repo(value.repository)}" if value.repository is not None else ""
        return f"(use_file {_path(value.path)}{repo})"
    if isinstance(value, LineInsertion):
        return f"(add_lines {render(list(value.lines), depth)})"
    if isinstance(value, PackageRef):
        if not value.overrides:
            return _name(value.symbol)
        return f"{_name(value.symbol)} {_map(dict(value.overrides), depth)}"
    raise RenderError(f"Can not render {type(value).__name__}")


def render_state(state: DesiredState) -> str:
    """One top-level declaration per binding."""
    lines: List[str] = []
    for name, value in state.bindings.items():
        if name == "system" and not value:
            continue
        lines.append(f"{_name(name)} = {render(value)};")
    return "\n".join(lines) + "\n"
