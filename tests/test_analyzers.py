import asyncio

import pytest

from fixbot.analyzers import (
    BlackFormatter,
    DEFAULT_CONFIDENCE,
    PYFLAKES_CONFIDENCE,
    PyflakesLinter,
    SourceSyntaxError,
    VetChecker,
    decode_source,
    parse_vet_output,
)
from tests.fakes import BROKEN, FORMATTED, NEEDS_FORMAT, NO_VET


def test_black_formats_source():
    assert BlackFormatter().format(NEEDS_FORMAT) == FORMATTED


def test_black_leaves_formatted_source_alone():
    assert BlackFormatter().format(FORMATTED) == FORMATTED


def test_black_reports_syntax_error_location():
    with pytest.raises(SourceSyntaxError) as excinfo:
        BlackFormatter().format(BROKEN)

    [diagnostic] = excinfo.value.diagnostics
    assert diagnostic.line == 1


def test_black_rejects_undecodable_source():
    with pytest.raises(SourceSyntaxError):
        BlackFormatter().format(b"x = '\xff'\n")


def test_pyflakes_reports_undefined_name_with_full_confidence():
    diagnostics = PyflakesLinter().lint("m.py", b"def f():\n    return missing\n")

    [diagnostic] = diagnostics
    assert diagnostic.line == 2
    assert "missing" in diagnostic.message
    assert diagnostic.confidence == 1.0


def test_pyflakes_star_import_is_low_confidence():
    diagnostics = PyflakesLinter().lint("m.py", b"from os import *\nprint(path)\n")

    assert diagnostics
    assert all(d.confidence < DEFAULT_CONFIDENCE for d in diagnostics)


def test_pyflakes_clean_source_has_no_diagnostics():
    assert PyflakesLinter().lint("m.py", FORMATTED) == []


def test_confidence_map_values_are_probabilities():
    assert all(0.0 <= value <= 1.0 for value in PYFLAKES_CONFIDENCE.values())


def test_parse_vet_output_keeps_scratch_lines_only():
    output = "\n".join(
        [
            "/tmp/fixbot-vet1/x.py:3: error: Incompatible types in assignment",
            "/tmp/fixbot-vet1/x.py:notaline: error: ignored",
            "/tmp/other.py:4: error: some other file",
            "/tmp/fixbot-vet1/x.py:12: note: See docs",
            "Found 1 error in 1 file",
        ]
    )

    diagnostics = parse_vet_output(output, "/tmp/fixbot-vet1/x.py")

    assert [(d.line, d.message) for d in diagnostics] == [
        (3, "error: Incompatible types in assignment"),
        (12, "note: See docs"),
    ]


def test_parse_vet_output_handles_empty_output():
    assert parse_vet_output("", "/tmp/x.py") == []


def test_locate_missing_binary_returns_none():
    assert VetChecker.locate(NO_VET) is None


def test_check_with_unlaunchable_binary_reports_nothing(tmp_path):
    checker = VetChecker(str(tmp_path / NO_VET), scratch_dir=str(tmp_path))

    assert asyncio.run(checker.check("m.py", FORMATTED)) == []


def test_black_keeps_byte_order_mark():
    assert BlackFormatter().format(b"\xef\xbb\xbfx=1\n") == b"\xef\xbb\xbfx = 1\n"


def test_black_honours_coding_cookie():
    source = b"# -*- coding: latin-1 -*-\nx='\xe9'\n"

    assert BlackFormatter().format(source) == b'# -*- coding: latin-1 -*-\nx = "\xe9"\n'


def test_black_keeps_crlf_line_endings():
    assert BlackFormatter().format(b"x=1\r\n") == b"x = 1\r\n"


def test_pyflakes_reads_byte_order_mark_source():
    assert PyflakesLinter().lint("m.py", b"\xef\xbb\xbfx = 1\n") == []


def test_decode_source_reports_unknown_coding():
    with pytest.raises(SourceSyntaxError):
        decode_source(b"# -*- coding: no-such-codec -*-\nx = 1\n")
