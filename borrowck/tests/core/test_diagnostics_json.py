# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Diagnostic rendering: structured JSON and spans carried from the listing."""

import json

from borrowck.core.diagnostics import (
	USE_STATE_KINDS,
	Diagnostic,
	DiagnosticKind,
	Location,
	MalformedProgram,
	RelatedLocation,
)
from borrowck.core.span import Span
from borrowck.test_helpers import check_source


def test_to_json_shape():
	diag = Diagnostic(
		message="use of moved value `x`",
		kind=DiagnosticKind.USE_AFTER_MOVE,
		subject="x",
		location=Location("main", "entry", 4),
		related=[RelatedLocation(Location("main", "entry", 3), "value moved here", Span(line=6, column=5))],
		span=Span(file="a.bc", line=7, column=5),
	)
	out = diag.to_json()
	assert out["kind"] == "UseAfterMove"
	assert out["phase"] == "borrowcheck"
	assert out["subject"] == "x"
	assert out["location"] == {"function": "main", "block": "entry", "index": 4}
	assert (out["file"], out["line"], out["column"]) == ("a.bc", 7, 5)
	assert out["related"] == [
		{
			"message": "value moved here",
			"location": {"function": "main", "block": "entry", "index": 3},
			"line": 6,
			"column": 5,
		}
	]
	json.dumps(out)


def test_missing_span_is_normalized():
	diag = Diagnostic(message="m", kind=DiagnosticKind.INVALID_COPY, span=None)  # type: ignore[arg-type]
	assert diag.span == Span()
	assert diag.to_json()["line"] is None
	assert diag.code == "InvalidCopy"


def test_malformed_program_converts_to_a_single_diagnostic():
	err = MalformedProgram("reference to undeclared binding 'q'", location=Location("f", "entry", 0))
	diag = err.to_diagnostic()
	assert diag.kind is DiagnosticKind.MALFORMED_PROGRAM
	assert diag.location == Location("f", "entry", 0)
	assert diag.message == "reference to undeclared binding 'q'"


def test_use_state_kinds():
	assert DiagnosticKind.USE_AFTER_MOVE in USE_STATE_KINDS
	assert DiagnosticKind.CONFLICTING_BORROW not in USE_STATE_KINDS


def test_location_ordering_and_rendering():
	assert Location("f", "a", 1) < Location("f", "a", 2)
	assert str(Location("f", "entry", 0)) == "f:entry[0]"
	assert Span(file="x.bc", line=3, column=9).render() == "x.bc:3:9"
	assert Span().render() == "<input>:?:?"


def test_listing_spans_reach_diagnostics():
	src = """fn main() {
  entry:
    declare x: String;
    declare y: String;
    init x;
    move y <- x;
    use x;
    return;
}
"""
	res = check_source(src)["main"]
	diag = res.diagnostics[0]
	assert diag.span.line == 7
	assert diag.span.column == 5
