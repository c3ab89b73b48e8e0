import time

from secscan.extractors import extract, extract_file
from secscan.filekinds import detect_kind
from secscan.units import UnitKind
from secscan.utils.code import identifiers

PYTHON_SOURCE = '''"""Module docstring with password = "hunter2secret"."""
import os

API = "value"  # password = "in-a-comment"


def handler(event):
    return 1
    print("never runs")


if False:
    os.system("rm -rf /tmp/cache")
'''


def _units(units, kind):
    return [unit for unit in units if unit.kind == kind]


def _line(units, number):
    return next(unit for unit in _units(units, UnitKind.LINE) if unit.span.line == number)


def test_detect_kind_by_name_extension_and_content():
    assert detect_kind("src/app.py") == "python"
    assert detect_kind("requirements-dev.txt") == "requirements"
    assert detect_kind("web/package.json") == "npm-manifest"
    assert detect_kind(".env.local") == "env"
    assert detect_kind("lib/Query.SQLRPGLE") == "rpg"
    assert detect_kind("bin/tool", "#!/usr/bin/env python3\n") == "python"
    assert detect_kind("page", "<?php echo 1;") == "php"
    assert detect_kind("blob") == "unknown"


def test_every_file_has_a_file_unit():
    units = extract("notes/todo.txt", "remember the milk\n")

    assert units[0].kind == UnitKind.FILE
    assert units[0].text == "notes/todo.txt"
    assert [unit.text for unit in _units(units, UnitKind.LINE)] == ["remember the milk"]


def test_python_comments_are_blanked_with_columns_kept():
    units = extract("app.py", PYTHON_SOURCE)
    line = _line(units, 4)

    assert "comment" not in line.text
    assert line.text == 'API = "value"'
    assert "in-a-comment" in line.source
    assert line.span.column == 1


def test_python_docstrings_are_documentation():
    units = extract("app.py", PYTHON_SOURCE)

    assert _line(units, 1).in_doc_block
    assert not _line(units, 4).in_doc_block
    docstring = next(unit for unit in _units(units, UnitKind.LITERAL) if unit.span.line == 1)
    assert docstring.in_doc_block


def test_python_literals_carry_assigned_names():
    units = extract("app.py", PYTHON_SOURCE)

    literal = next(unit for unit in _units(units, UnitKind.LITERAL) if unit.text == "value")
    assert literal.name == "API"
    assert literal.source == '"value"'
    assert (literal.span.line, literal.span.column, literal.span.end_column) == (4, 7, 14)


def test_python_dead_code_is_unreachable():
    units = extract("app.py", PYTHON_SOURCE)
    calls = {unit.name: unit for unit in _units(units, UnitKind.CALL)}

    assert calls["print"].unreachable
    assert calls["print"].function == "handler"
    assert calls["os.system"].unreachable
    assert not _line(units, 8).unreachable


def test_python_route_parameters_and_bindings():
    source = (
        "@app.route('/items/<item_id>')\n"
        "def show(item_id):\n"
        "    query = 'SELECT * FROM items WHERE id = ' + item_id\n"
        "    query += ' LIMIT 1'\n"
        "    run(query)\n"
    )
    units = extract("views.py", source)
    call = next(unit for unit in _units(units, UnitKind.CALL) if unit.name == "run")

    assert call.external_names == frozenset({"item_id"})
    assert call.arguments == ("query",)
    assert call.binding("query") == "'SELECT * FROM items WHERE id = ' + item_id + ' LIMIT 1'"


def test_identifiers_include_interpolated_names():
    names = identifiers('f"SELECT * FROM t WHERE name = {name}" + other.attr')

    assert "name" in names
    assert "other" in names
    assert "attr" not in names


def test_clike_comments_calls_bindings_and_dead_branches():
    source = (
        '// token = "not-real"\n'
        "function load(req) {\n"
        "  const id = req.query.id;\n"
        '  db.query("SELECT * FROM t WHERE id = " + id);\n'
        "  if (false) { eval(id); }\n"
        "}\n"
    )
    units = extract("server.js", source)
    calls = {unit.name: unit for unit in _units(units, UnitKind.CALL)}

    assert all(unit.span.line != 1 for unit in _units(units, UnitKind.LINE))
    assert all(unit.span.line != 1 for unit in _units(units, UnitKind.LITERAL))
    assert calls["db.query"].function == "load"
    assert calls["db.query"].arguments == ('"SELECT * FROM t WHERE id = " + id',)
    assert calls["db.query"].binding("id") == "req.query.id"
    assert calls["eval"].unreachable
    assert not calls["db.query"].unreachable


def test_requirements_pins_become_dependency_units():
    units = extract("requirements.txt", "Flask==2.0.1  # web\nrequests>=2\n")
    dependencies = _units(units, UnitKind.DEPENDENCY)

    assert [(unit.name, unit.version, unit.ecosystem, unit.span.line) for unit in dependencies] == [
        ("flask", "2.0.1", "pypi", 1)
    ]
    assert len(_units(units, UnitKind.LINE)) == 2


def test_package_json_dependencies_become_dependency_units():
    content = '{\n  "name": "web",\n  "dependencies": {\n    "lodash": "^4.17.20",\n    "local": "file:../x"\n  }\n}\n'
    units = extract("package.json", content)
    dependencies = _units(units, UnitKind.DEPENDENCY)

    assert [(unit.name, unit.version, unit.ecosystem, unit.span.line) for unit in dependencies] == [
        ("lodash", "4.17.20", "npm", 4)
    ]


def test_markdown_lines_are_documentation():
    units = extract("README.md", "# Setup\n\npassword = 'hunter22'\n")

    assert [unit.in_doc_block for unit in _units(units, UnitKind.LINE)] == [True, True]


def test_parse_failures_fall_back_to_raw_lines():
    extraction = extract_file("broken.py", "def broken(:\n    password = 'hunter22'\n")

    assert extraction.file_kind == "python"
    assert "cannot parse python source" in extraction.degraded
    assert [unit.source for unit in _units(extraction.units, UnitKind.LINE)] == [
        "def broken(:",
        "    password = 'hunter22'",
    ]


def test_invalid_package_json_is_degraded():
    extraction = extract_file("package.json", "{not json")

    assert extraction.degraded.startswith("invalid package.json")
    assert _units(extraction.units, UnitKind.DEPENDENCY) == []


def test_unterminated_block_comment_is_degraded():
    extraction = extract_file("app.js", "let a = 1;\n/* never closed\n")

    assert "unterminated block comment" in extraction.degraded
    assert len(_units(extraction.units, UnitKind.LINE)) == 2


def test_python_call_text_handles_unicode_and_multiline_calls():
    source = 'greet("héllo wörld", name)\nsend(\n    "ünïcode",\n    to=user,\n)\n'

    calls = _units(extract("app.py", source), UnitKind.CALL)

    assert [(unit.name, unit.text) for unit in calls] == [
        ("greet", 'greet("héllo wörld", name)'),
        ("send", 'send(\n    "ünïcode",\n    to=user,\n)'),
    ]
    assert calls[0].arguments == ('"héllo wörld"', "name")
    assert calls[1].arguments == ('"ünïcode"', "to=user")
    assert (calls[0].span.column, calls[0].span.end_column) == (1, 27)


def test_python_extraction_scales_linearly_with_file_size():
    source = "v0 = 1\n" + "".join(f"v{i} = v{i - 1} + a + b + c\n" for i in range(1, 4000))

    started = time.perf_counter()
    units = extract("generated.py", source)
    elapsed = time.perf_counter() - started

    assert len(_units(units, UnitKind.LINE)) == 4000
    assert _line(units, 4000).bindings == (("v3998", "v3997 + a + b + c"),)
    assert elapsed < 5


def test_deeply_nested_python_falls_back_to_raw_lines():
    source = "x = " + " + ".join(["a"] * 3000) + "\npassword = 'hunter2hunter2'\n"

    extraction = extract_file("gen.py", source)

    assert "nested too deeply" in extraction.degraded
    assert len(_units(extraction.units, UnitKind.LINE)) == 2
