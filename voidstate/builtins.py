"""Fixed table of functions callable from configuration files.

There is no way to define functions in the language itself; a call either
names an entry of ``BUILTINS`` or, inside a ``packages`` list, a package.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional

from .errors import BuiltinArgumentError
from .values import FileSource, LineInsertion, RepoRef, Symbol

VOID_PACKAGES_REPO_NAME = "void-packages"

# Official sub-repositories and the package that enables each of them.
VOID_SUBREPOS = {
    "nonfree": "void-repo-nonfree",
    "multilib": "void-repo-multilib",
    "multilib-nonfree": "void-repo-multilib-nonfree",
    "debug": "void-repo-debug",
}


@dataclass(frozen=True)
class Builtin:
    name: str
    signature: str
    handler: Callable[["Builtin", List[Any]], Any]

    def __call__(self, args: List[Any]) -> Any:
        return self.handler(self, args)

    def fail(self, args: List[Any], reason: str = "") -> BuiltinArgumentError:
        return BuiltinArgumentError(self.name, self.signature, args, reason)


def _arity(fn: Builtin, args: List[Any], minimum: int, maximum: int) -> None:
    if not minimum <= len(args) <= maximum:
        expected = str(minimum) if minimum == maximum else f"{minimum}-{maximum}"
        raise fn.fail(args, f"takes {expected} argument(s), {len(args)} given")


def _text(fn: Builtin, args: List[Any], index: int) -> str:
    value = args[index]
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, str):
        return value
    raise fn.fail(args, f"argument {index + 1} must be a string")


def _optional_text(fn: Builtin, args: List[Any], index: int) -> Optional[str]:
    if len(args) <= index:
        return None
    return _text(fn, args, index)


def _path(fn: Builtin, args: List[Any], index: int) -> PurePosixPath:
    value = args[index]
    if isinstance(value, PurePosixPath):
        return value
    if isinstance(value, (str, Symbol)):
        return PurePosixPath(str(value))
    raise fn.fail(args, f"argument {index + 1} must be a path")


def as_text(value: Any) -> Optional[str]:
    """Text form of a scalar value, or None when the value has none."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float, Symbol, PurePosixPath)):
        return str(value)
    return None


def github_repo(fn: Builtin, args: List[Any]) -> RepoRef:
    _arity(fn, args, 2, 3)
    user = _text(fn, args, 0)
    repo = _text(fn, args, 1)
    return RepoRef(kind="github", location=f"https://github.com/{user}/{repo}", branch=_optional_text(fn, args, 2))


def voidpackages_repo(fn: Builtin, args: List[Any]) -> RepoRef:
    _arity(fn, args, 1, 2)
    user = _text(fn, args, 0)
    return RepoRef(
        kind="github",
        location=f"https://github.com/{user}/{VOID_PACKAGES_REPO_NAME}",
        branch=_optional_text(fn, args, 1),
    )


def git_repo(fn: Builtin, args: List[Any]) -> RepoRef:
    _arity(fn, args, 1, 2)
    return RepoRef(kind="git", location=_text(fn, args, 0), branch=_optional_text(fn, args, 1))


def void_repo(fn: Builtin, args: List[Any]) -> RepoRef:
    _arity(fn, args, 1, 1)
    name = _text(fn, args, 0)
    if name not in VOID_SUBREPOS:
        raise fn.fail(args, f"unknown repository '{name}', expected one of {', '.join(VOID_SUBREPOS)}")
    return RepoRef(kind="void", location=name, name=name)


def home_dir(user: str) -> PurePosixPath:
    if user == "root":
        return PurePosixPath("/root")
    return PurePosixPath("/home") / user


def home(fn: Builtin, args: List[Any]) -> PurePosixPath:
    _arity(fn, args, 1, 2)
    base = home_dir(_text(fn, args, 0))
    if len(args) == 1:
        return base
    sub = _path(fn, args, 1)
    if sub.is_absolute():
        raise fn.fail(args, "argument 2 must be a relative path")
    return base / sub


def join(fn: Builtin, args: List[Any]) -> str:
    _arity(fn, args, 2, 2)
    separator = _text(fn, args, 0)
    items = args[1]
    if not isinstance(items, list):
        raise fn.fail(args, "argument 2 must be a list")
    parts = []
    for item in items:
        text = as_text(item)
        if text is None:
            raise fn.fail(args, f"can not join a {type(item).__name__}")
        parts.append(text)
    return separator.join(parts)


def replace(fn: Builtin, args: List[Any]) -> str:
    _arity(fn, args, 3, 3)
    original = _text(fn, args, 0)
    replacement = _text(fn, args, 1)
    text = _text(fn, args, 2)
    return text.replace(original, replacement)


def add_lines(fn: Builtin, args: List[Any]) -> LineInsertion:
    _arity(fn, args, 1, 1)
    lines = args[0]
    if not isinstance(lines, list):
        raise fn.fail(args, "argument 1 must be a list of strings")
    out = []
    for line in lines:
        text = as_text(line)
        if text is None or isinstance(line, bool):
            raise fn.fail(args, "argument 1 must be a list of strings")
        out.append(text)
    return LineInsertion(tuple(out))


def use_file(fn: Builtin, args: List[Any]) -> FileSource:
    _arity(fn, args, 1, 2)
    path = _path(fn, args, 0)
    repository = None
    if len(args) == 2:
        repository = args[1]
        if not isinstance(repository, RepoRef):
            raise fn.fail(args, "argument 2 must be a repository reference")
    return FileSource(path=path, repository=repository)


def _table(*entries: Builtin, aliases: Optional[Dict[str, str]] = None) -> Dict[str, Builtin]:
    table = {entry.name: entry for entry in entries}
    for alias, target in (aliases or {}).items():
        entry = table[target]
        table[alias] = Builtin(alias, entry.signature.replace(target, alias, 1), entry.handler)
    return table


BUILTINS: Dict[str, Builtin] = _table(
    Builtin("github-repo", "github-repo user repo [branch]", github_repo),
    Builtin("voidpackages-repo", "voidpackages-repo user [branch]", voidpackages_repo),
    Builtin("git-repo", "git-repo url [branch]", git_repo),
    Builtin("void-repo", "void-repo name", void_repo),
    Builtin("home", "home user [relative-path]", home),
    Builtin("join", "join separator list", join),
    Builtin("replace", "replace old new text", replace),
    Builtin("add_lines", "add_lines [line, ...]", add_lines),
    Builtin("use_file", "use_file path [repository]", use_file),
    aliases={"gh-r": "github-repo", "vp-r": "voidpackages-repo", "git-r": "git-repo"},
)
