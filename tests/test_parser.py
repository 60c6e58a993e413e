import pathlib

import pytest

from voidstate import parser
from voidstate.nodes import (
    FunctionCall,
    Import,
    ListLiteral,
    ListRef,
    Literal,
    MapLiteral,
    MapRef,
    PathLiteral,
    Symbol,
    VariableDeclaration,
)


def load_data(name: str) -> pathlib.Path:
    return pathlib.Path(__file__).parent / "data" / name


def test_parse_system_config_script():
    statements = parser.parse_script(load_data("system.conf"))
    assert statements[0] == Import("./common.conf")
    decl = statements[1]
    assert isinstance(decl, VariableDeclaration)
    assert decl.target == MapRef(Symbol("system"), "config")
    assert decl.value.keys() == ["void_repos", "vp_repos", "services", "packages", "users"]


def test_tokens_and_literals():
    statements = parser.parse("a = 'one'; b = \"two\"; c = 3; d = 1.5; e = true; f = false")
    values = [stmt.value for stmt in statements]
    assert values == [Literal("one"), Literal("two"), Literal(3), Literal(1.5), Literal(True), Literal(False)]


def test_strings_may_span_lines_without_escapes():
    (stmt,) = parser.parse("a = 'first\nsecond \\n'")
    assert stmt.value == Literal("first\nsecond \\n")


def test_comments_are_discarded():
    statements = parser.parse("# heading\na = 1 # trailing\n# end\n")
    assert statements == [VariableDeclaration(Symbol("a"), Literal(1))]


def test_paths():
    statements = parser.parse("a = /etc/xbps.d; b = ./bash/bashrc; c = ../up; d = ./'my dir'/file")
    assert [stmt.value for stmt in statements] == [
        PathLiteral("/etc/xbps.d"),
        PathLiteral("./bash/bashrc"),
        PathLiteral("../up"),
        PathLiteral("./my dir/file"),
    ]
    assert statements[0].value.is_absolute()
    assert not statements[1].value.is_absolute()


def test_map_and_list_literals():
    (stmt,) = parser.parse("x = { a = 1; b = [1, 2, 3,]; c = {}; }")
    assert stmt.value == MapLiteral(
        [
            ("a", Literal(1)),
            ("b", ListLiteral([Literal(1), Literal(2), Literal(3)])),
            ("c", MapLiteral([])),
        ]
    )


def test_map_entries_may_be_separated_by_commas():
    (stmt,) = parser.parse("x = { a = 1, b = 2 }")
    assert stmt.value.keys() == ["a", "b"]


def test_function_call_arguments():
    (stmt,) = parser.parse("r = gh-r 'sapein' dotfiles ./x (vp-r 'me')")
    assert stmt.value == FunctionCall(
        "gh-r",
        [Literal("sapein"), Symbol("dotfiles"), PathLiteral("./x"), FunctionCall("vp-r", [Literal("me")])],
    )


def test_call_arguments_stop_at_end_of_line():
    statements = parser.parse("a = home sapein\nb = 2")
    assert statements[0].value == FunctionCall("home", [Symbol("sapein")])
    assert statements[1] == VariableDeclaration(Symbol("b"), Literal(2))


def test_call_with_map_argument_spanning_lines():
    (stmt,) = parser.parse("p = [bash {\n  bashrc = ./rc;\n}, tmux]")
    assert stmt.value == ListLiteral(
        [FunctionCall("bash", [MapLiteral([("bashrc", PathLiteral("./rc"))])]), Symbol("tmux")]
    )


def test_references():
    statements = parser.parse("a = b.c.d; e = f[2]; g = h[0].name; i = j [0]")
    assert statements[0].value == MapRef(MapRef(Symbol("b"), "c"), "d")
    assert statements[1].value == ListRef(Symbol("f"), 2)
    assert statements[2].value == MapRef(ListRef(Symbol("h"), 0), "name")
    # a space before the bracket makes it an argument, not an index
    assert statements[3].value == FunctionCall("j", [ListLiteral([Literal(0)])])


def test_declaration_targets():
    statements = parser.parse("system.config.users = {}; l[1] = 2")
    assert statements[0].target == MapRef(MapRef(Symbol("system"), "config"), "users")
    assert statements[1].target == ListRef(Symbol("l"), 1)


def test_parenthesized_expression():
    (stmt,) = parser.parse("a = (join ',' [x, y])")
    assert stmt.value == FunctionCall("join", [Literal(","), ListLiteral([Symbol("x"), Symbol("y")])])


def test_import_statement():
    statements = parser.parse("import ./other.conf\nimport '/etc/void.conf'")
    assert statements == [Import("./other.conf"), Import("/etc/void.conf")]


def test_symbols_with_hyphens():
    (stmt,) = parser.parse("x = base-system")
    assert stmt.value == Symbol("base-system")


def test_duplicate_map_key_fails():
    with pytest.raises(parser.ParseError) as err:
        parser.parse("x = {\n  a = 1;\n  a = 2;\n}")
    assert err.value.line == 3
    assert err.value.column == 3
    assert "a" in str(err.value)


def test_unterminated_string_fails():
    with pytest.raises(parser.ParseError) as err:
        parser.parse("x = 'open")
    assert err.value.line == 1
    assert err.value.column == 5


def test_unexpected_character_fails():
    with pytest.raises(parser.ParseError) as err:
        parser.parse("x = 1\ny = @")
    assert (err.value.line, err.value.column) == (2, 5)
    assert err.value.token == "@"


def test_non_integer_index_fails():
    with pytest.raises(parser.ParseError):
        parser.parse("x = l[1.5]")


def test_number_field_access_fails():
    with pytest.raises(parser.ParseError):
        parser.parse("x = m.0")


def test_map_key_must_be_symbol():
    with pytest.raises(parser.ParseError):
        parser.parse("x = { 'a' = 1 }")


def test_unclosed_map_fails():
    with pytest.raises(parser.ParseError):
        parser.parse("x = { a = 1;")


def test_trailing_tokens_on_same_line_fail():
    with pytest.raises(parser.ParseError):
        parser.parse("x = 'a' 'b'")


def test_parse_error_names_source(tmp_path: pathlib.Path):
    bad = tmp_path / "bad.conf"
    bad.write_text("x = {", encoding="utf-8")
    with pytest.raises(parser.ParseError) as err:
        parser.parse_script(bad)
    assert str(bad) in str(err.value)
