import pathlib
from pathlib import PurePosixPath

import pytest

from voidstate import parser
from voidstate.errors import RenderError, VoidStateError
from voidstate.interpreter import evaluate, evaluate_file
from voidstate.registry import load_registry
from voidstate.render import render, render_state
from voidstate.values import RepoRef, Symbol


def load_data(name: str) -> pathlib.Path:
    return pathlib.Path(__file__).parent / "data" / name


def reparse(text: str):
    return evaluate(parser.parse(text)).bindings


def test_scalars():
    assert render("it's") == '"it\'s"'
    assert render(True) == "true"
    assert render(3) == "3"
    assert render(2.5) == "2.5"
    assert render(Symbol("sshd")) == "sshd"
    assert render(PurePosixPath("/etc/rc.conf")) == "/etc/rc.conf"
    assert render(PurePosixPath("bash/bashrc")) == "./bash/bashrc"
    assert render(PurePosixPath("my dir/file")) == "./'my dir/file'"


def test_repositories():
    assert render(RepoRef("github", "https://github.com/sapein/void-packages", "personal")) == (
        "(voidpackages-repo 'sapein' 'personal')"
    )
    assert render(RepoRef("github", "https://github.com/sapein/dotfiles")) == "(github-repo 'sapein' 'dotfiles')"
    assert render(RepoRef("git", "https://example.org/x")) == "(git-repo 'https://example.org/x')"
    assert render(RepoRef("void", "nonfree", name="nonfree")) == "(void-repo 'nonfree')"


def test_rendered_text_evaluates_to_same_value():
    text = """
    conf = {
        name = 'quote"d';
        count = 2;
        ratio = 0.5;
        flags = [true, false];
        where = [/etc, ./rel, ./'with space'];
        repo = gh-r 'sapein' 'dotfiles' 'main';
        lines = add_lines ['a', "b'c"];
        file = use_file ./i3/config (vp-r 'sapein');
        nested = { empty = {}; list = [[], [atom]]; };
        packages = [tmux, bash { bashrc = use_file ./rc; }];
    };
    """
    original = reparse(text)
    assert reparse(render_state(evaluate(parser.parse(text)))) == original
    assert reparse(f"conf = {render(original['conf'])}") == original


def test_system_config_round_trip():
    registry = load_registry(load_data("packages"))
    state = evaluate_file(load_data("system.conf"), registry=registry)
    again = evaluate(parser.parse(render_state(state)), registry=registry)
    assert again.bindings == state.bindings


def test_unrenderable_values():
    with pytest.raises(ValueError):
        render("both ' and \"")
    with pytest.raises(ValueError):
        render(-1)
    with pytest.raises(ValueError):
        render({"not a symbol": 1})
    with pytest.raises(ValueError):
        render(object())
    with pytest.raises(RenderError):
        render(float("inf"))


def test_render_errors_are_voidstate_errors():
    with pytest.raises(VoidStateError):
        render("both ' and \"")


def test_floats_render_without_exponent():
    assert render(0.00001) == "0.00001"
    assert render(1e16) == "10000000000000000.0"
    text = "small = 0.00001; large = 10000000000000000.0;"
    original = reparse(text)
    assert (original["small"], original["large"]) == (1e-05, 1e16)
    assert reparse(render_state(evaluate(parser.parse(text)))) == original
