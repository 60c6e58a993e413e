from pathlib import PurePosixPath

import pytest

from voidstate import parser
from voidstate.builtins import BUILTINS
from voidstate.errors import BuiltinArgumentError
from voidstate.interpreter import evaluate
from voidstate.values import FileSource, LineInsertion, RepoRef, Symbol


def value_of(expression: str):
    return evaluate(parser.parse(f"x = {expression}")).bindings["x"]


def test_repository_constructors():
    assert value_of("github-repo 'sapein' 'dotfiles'") == RepoRef("github", "https://github.com/sapein/dotfiles")
    assert value_of("gh-r sapein dotfiles 'main'") == RepoRef(
        "github", "https://github.com/sapein/dotfiles", branch="main"
    )
    assert value_of("vp-r 'sapein'") == RepoRef("github", "https://github.com/sapein/void-packages")
    assert value_of("git-r 'https://git.example.org/pkgs'") == RepoRef("git", "https://git.example.org/pkgs")
    assert value_of("void-repo nonfree") == RepoRef("void", "nonfree", name="nonfree")


def test_repo_key():
    assert value_of("vp-r 'sapein'").key == "void-packages"
    assert value_of("git-r 'https://git.example.org/pkgs/'").key == "pkgs"


def test_unknown_void_repo_fails():
    with pytest.raises(BuiltinArgumentError) as err:
        value_of("void-repo 'extras'")
    assert "unknown repository" in err.value.reason


def test_home():
    assert value_of("home sapein") == PurePosixPath("/home/sapein")
    assert value_of("home root") == PurePosixPath("/root")
    assert value_of("home sapein ./.config/i3") == PurePosixPath("/home/sapein/.config/i3")
    with pytest.raises(BuiltinArgumentError):
        value_of("home sapein /etc")


def test_join_and_replace():
    assert value_of("join ', ' [a, 'b', 1, true]") == "a, b, 1, true"
    assert value_of("replace 'USER' 'sapein' '/home/USER/bin'") == "/home/sapein/bin"
    with pytest.raises(BuiltinArgumentError):
        value_of("join ',' 'abc'")
    with pytest.raises(BuiltinArgumentError):
        value_of("join ',' [{}]")


def test_add_lines():
    lines = value_of("add_lines ['Section \"Device\"', 'EndSection']")
    assert lines == LineInsertion(('Section "Device"', "EndSection"))
    assert lines.content == 'Section "Device"\nEndSection\n'
    with pytest.raises(BuiltinArgumentError):
        value_of("add_lines 'one line'")


def test_use_file():
    assert value_of("use_file ./i3/config") == FileSource(PurePosixPath("i3/config"))
    source = value_of("use_file ./i3/config (gh-r 'sapein' 'dotfiles')")
    assert source.repository == RepoRef("github", "https://github.com/sapein/dotfiles")
    with pytest.raises(BuiltinArgumentError) as err:
        value_of("use_file ./i3/config 'dotfiles'")
    assert err.value.function == "use_file"


def test_arity_is_checked():
    with pytest.raises(BuiltinArgumentError) as err:
        value_of("replace 'a' 'b'")
    assert err.value.signature == "replace old new text"
    assert "3 argument(s), 2 given" in err.value.reason


def test_symbols_are_accepted_as_text():
    assert BUILTINS["join"]([Symbol("-"), [Symbol("a"), Symbol("b")]]) == "a-b"


def test_aliases_report_their_own_name():
    assert BUILTINS["vp-r"].signature == "vp-r user [branch]"
    with pytest.raises(BuiltinArgumentError) as err:
        value_of("vp-r 'a' 'b' 'c'")
    assert err.value.function == "vp-r"


def test_table_is_closed():
    assert set(BUILTINS) == {
        "github-repo",
        "gh-r",
        "voidpackages-repo",
        "vp-r",
        "git-repo",
        "git-r",
        "void-repo",
        "home",
        "join",
        "replace",
        "add_lines",
        "use_file",
    }
