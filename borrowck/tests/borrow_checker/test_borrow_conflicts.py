# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Exclusivity, move/write while borrowed and mutability checks."""

import pytest

from borrowck.borrow_checker import FlowState, Loan, OwnershipState
from borrowck.conflicts import Violation, check_borrow
from borrowck.core.diagnostics import DiagnosticKind, Location
from borrowck.program import LoanKind
from borrowck.test_helpers import check_source, kinds


def _body(ops: str, decl: str = "declare mut x: String;") -> str:
	return f"""
fn main() {{
  entry:
    {decl}
    init x;
    {ops}
    return;
}}
"""


@pytest.mark.parametrize(
	"ops, expected",
	[
		("r1 = borrow x; r2 = borrow x; r3 = borrow x; use r1; use r2; use r3;", []),
		("r1 = borrow x; r2 = borrow mut x; use r1;", ["ConflictingBorrow"]),
		("r1 = borrow mut x; r2 = borrow x; use r1;", ["ConflictingBorrow"]),
		("r1 = borrow mut x; r2 = borrow mut x; use r1; use r2;", ["ConflictingBorrow"]),
		("r1 = borrow mut x; use r1; r2 = borrow mut x; use r2;", []),
	],
)
def test_borrow_sequences_are_homogeneous_or_single_exclusive(ops, expected):
	res = check_source(_body(ops))["main"]
	assert kinds(res) == expected


def test_conflict_names_first_borrow_and_its_later_use():
	res = check_source(_body("r1 = borrow mut x; r2 = borrow x; use r1;"))["main"]
	diag = res.diagnostics[0]
	assert diag.subject == "x"
	assert diag.location == Location("main", "entry", 3)
	assert [rel.location for rel in diag.related] == [
		Location("main", "entry", 2),
		Location("main", "entry", 4),
	]
	assert "later used" in diag.related[1].message


def test_move_while_borrowed():
	src = _body("r = borrow x; declare y: String; move y <- x; use r;", decl="declare x: String;")
	res = check_source(src)["main"]
	assert kinds(res) == ["MoveWhileBorrowed"]


def test_write_while_borrowed():
	src = _body("r = borrow x; write x; use r;", decl="declare mut x: Int;")
	assert kinds(check_source(src)["main"]) == ["WriteWhileBorrowed"]


def test_write_after_last_use_of_borrow_is_fine():
	src = _body("r = borrow x; use r; write x;", decl="declare mut x: Int;")
	assert kinds(check_source(src)["main"]) == []


def test_write_through_exclusive_reference_is_allowed():
	src = _body("r = borrow mut x; write r; use x;", decl="declare mut x: Int;")
	assert kinds(check_source(src)["main"]) == []


def test_write_through_shared_reference_is_rejected():
	src = _body("r = borrow x; write r;", decl="declare x: Int;")
	assert kinds(check_source(src)["main"]) == ["ImmutableWrite"]


@pytest.mark.parametrize("ops", ["write x;", "init x;", "r = borrow mut x; use r;"])
def test_immutable_binding_rejects_writes_and_mutable_borrows(ops):
	res = check_source(_body(ops, decl="declare x: Int;"))["main"]
	assert kinds(res) == ["ImmutableWrite"]


def test_borrow_of_moved_value():
	src = _body("declare y: String; move y <- x; r = borrow x; use r;", decl="declare x: String;")
	assert kinds(check_source(src)["main"]) == ["UseAfterMove"]


def _state_with(*loans: Loan) -> FlowState:
	state = FlowState(states={"x": OwnershipState.OWNED})
	state.loans |= set(loans)
	return state


def test_check_borrow_shared_coexists_with_shared():
	state = _state_with(Loan("x", LoanKind.SHARED, "r1", Location("f", "b", 0)))
	got = check_borrow(state, "x", LoanKind.SHARED, ref="r2", origin=Location("f", "b", 1))
	assert isinstance(got, Loan)
	assert got.ref == "r2" and got.kind is LoanKind.SHARED


def test_check_borrow_exclusive_conflicts_with_shared():
	state = _state_with(Loan("x", LoanKind.SHARED, "r1", Location("f", "b", 0)))
	got = check_borrow(state, "x", LoanKind.EXCLUSIVE, ref="r2", origin=Location("f", "b", 1))
	assert isinstance(got, Violation)
	assert got.kind is DiagnosticKind.CONFLICTING_BORROW
	assert got.related[0].location == Location("f", "b", 0)


def test_check_borrow_redefining_the_same_reference_does_not_conflict():
	state = _state_with(Loan("x", LoanKind.EXCLUSIVE, "r1", Location("f", "b", 0)))
	got = check_borrow(state, "x", LoanKind.EXCLUSIVE, ref="r1", origin=Location("f", "b", 1))
	assert isinstance(got, Loan)


def test_check_borrow_temporaries_conflict_with_each_other():
	state = _state_with(Loan("x", LoanKind.EXCLUSIVE, None, Location("f", "b", 0), temporary=True))
	got = check_borrow(state, "x", LoanKind.SHARED, ref=None, origin=Location("f", "b", 0), temporary=True)
	assert isinstance(got, Violation)


@pytest.mark.parametrize(
	"state, kind",
	[
		(OwnershipState.MOVED, DiagnosticKind.USE_AFTER_MOVE),
		(OwnershipState.UNINITIALIZED, DiagnosticKind.USE_OF_UNINITIALIZED),
		(OwnershipState.DROPPED, DiagnosticKind.USE_AFTER_DROP),
	],
)
def test_check_borrow_requires_owned(state, kind):
	flow = FlowState(states={"x": state})
	got = check_borrow(flow, "x", LoanKind.SHARED, ref="r", origin=Location("f", "b", 0))
	assert isinstance(got, Violation)
	assert got.kind is kind


def test_check_borrow_exclusive_of_immutable_binding():
	got = check_borrow(_state_with(), "x", LoanKind.EXCLUSIVE, ref="r", origin=Location("f", "b", 0), mutable=False)
	assert isinstance(got, Violation)
	assert got.kind is DiagnosticKind.IMMUTABLE_WRITE


@pytest.mark.parametrize(
	"ops",
	[
		"r = borrow mut x; use x; write r;",
		"r = borrow mut x; declare y: Int; copy y <- x; write r;",
	],
)
def test_owner_cannot_be_read_while_exclusively_borrowed(ops):
	res = check_source(_body(ops, decl="declare mut x: Int;"))["main"]
	assert kinds(res) == ["ConflictingBorrow"]
	diag = res.diagnostics[0]
	assert diag.subject == "x"
	assert diag.related[0].location == Location("main", "entry", 2)
	assert "later used" in diag.related[1].message


def test_move_while_exclusively_borrowed_is_still_a_move_error():
	src = _body("r = borrow mut x; declare y: String; move y <- x; write r;")
	assert kinds(check_source(src)["main"]) == ["MoveWhileBorrowed"]
