# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""End-to-end ownership scenarios built directly from program-representation objects."""

from borrowck.borrow_checker_pass import BorrowChecker
from borrowck.core.diagnostics import DiagnosticKind, Location
from borrowck.core.types_core import TypeTable
from borrowck.program import (
	Binding,
	Borrow,
	Branch,
	Copy,
	Declare,
	FnSignature,
	Function,
	InitAssign,
	Jump,
	LoanKind,
	Move,
	Param,
	Return,
	ScopeEnd,
	UseRef,
)
from borrowck.validate import normalize_function


def _table():
	table = TypeTable()
	return table, table.ensure_string(), table.ensure_int()


def test_move_then_use_reports_single_use_after_move():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", string))
	fn.add_binding(Binding("y", string))
	fn.add_block(
		"entry",
		[Declare("x"), Declare("y"), InitAssign("x"), Move("y", "x"), UseRef("x")],
		Return(),
	)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert len(res.diagnostics) == 1
	diag = res.diagnostics[0]
	assert diag.kind is DiagnosticKind.USE_AFTER_MOVE
	assert diag.subject == "x"
	assert diag.location == Location("main", "entry", 4)
	assert not res.accepted


def test_two_shared_borrows_read_both_is_accepted():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", string))
	fn.add_block(
		"entry",
		[
			Declare("x"),
			InitAssign("x"),
			Borrow("x", LoanKind.SHARED, "r1"),
			Borrow("x", LoanKind.SHARED, "r2"),
			UseRef("r1"),
			UseRef("r2"),
		],
		Return(),
	)
	normalize_function(fn, table)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert res.diagnostics == []
	assert res.accepted


def test_exclusive_borrow_while_shared_is_active_conflicts():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", string, mutable=True))
	fn.add_block(
		"entry",
		[
			Declare("x"),
			InitAssign("x"),
			Borrow("x", LoanKind.SHARED, "r1"),
			Borrow("x", LoanKind.EXCLUSIVE, "r2"),
		],
		Return(),
	)
	normalize_function(fn, table)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.CONFLICTING_BORROW]
	diag = res.diagnostics[0]
	assert diag.location == Location("main", "entry", 3)
	assert diag.related[0].location == Location("main", "entry", 2)


def test_reference_used_after_inner_scope_ends_dangles():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_scope("inner")
	fn.add_binding(Binding("x", string, "inner"))
	fn.add_block(
		"entry",
		[
			Declare("x"),
			InitAssign("x"),
			Borrow("x", LoanKind.SHARED, "r"),
			ScopeEnd("inner"),
			UseRef("r"),
		],
		Return(),
	)
	normalize_function(fn, table)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.DANGLING_REFERENCE]
	diag = res.diagnostics[0]
	assert diag.subject == "r"
	assert diag.location == Location("main", "entry", 3)
	related = [rel.location for rel in diag.related]
	assert related == [Location("main", "entry", 2), Location("main", "entry", 4)]


def test_copy_of_scalar_leaves_both_usable():
	table, _, int_ty = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", int_ty))
	fn.add_binding(Binding("y", int_ty))
	fn.add_block(
		"entry",
		[Declare("x"), InitAssign("x"), Copy("y", "x"), UseRef("x"), UseRef("y")],
		Return(),
	)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert res.diagnostics == []


def test_move_on_one_branch_is_seen_at_the_join():
	table, string, _ = _table()
	bool_ty = table.ensure_bool()
	fn = Function(FnSignature("main", [Param("c", bool_ty)]))
	fn.add_binding(Binding("x", string))
	fn.add_binding(Binding("y", string))
	fn.add_block("entry", [Declare("x"), InitAssign("x")], Branch("a", "b", cond="c"))
	fn.add_block("a", [Declare("y"), Move("y", "x")], Jump("join"))
	fn.add_block("b", [], Jump("join"))
	fn.add_block("join", [UseRef("x")], Return())
	res = BorrowChecker(type_table=table).check_function(fn)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.USE_AFTER_MOVE]
	assert res.diagnostics[0].location == Location("main", "join", 0)


def test_use_after_move_is_reported_until_reinitialized():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", string, mutable=True))
	fn.add_binding(Binding("y", string))
	fn.add_block(
		"entry",
		[Declare("x"), InitAssign("x"), Declare("y"), Move("y", "x"), InitAssign("x"), UseRef("x")],
		Return(),
	)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert res.diagnostics == []


def test_copy_source_and_dest_stay_owned():
	table, _, int_ty = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", int_ty))
	fn.add_binding(Binding("y", int_ty))
	fn.add_block("entry", [Declare("x"), InitAssign("x"), Copy("y", "x")], Return())
	analysis = BorrowChecker(type_table=table).analyze(fn)
	out = analysis.out_states["entry"]
	assert out.state_of("x").value == "Owned"
	assert out.state_of("y").value == "Owned"


def test_copy_of_owning_type_is_invalid():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_binding(Binding("x", string))
	fn.add_binding(Binding("y", string))
	fn.add_block("entry", [Declare("x"), InitAssign("x"), Copy("y", "x")], Return())
	res = BorrowChecker(type_table=table).check_function(fn)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.INVALID_COPY]


def test_use_of_uninitialized_and_after_drop():
	table, string, _ = _table()
	fn = Function(FnSignature("main"))
	fn.add_scope("inner")
	fn.add_binding(Binding("u", string))
	fn.add_binding(Binding("x", string, "inner"))
	fn.add_block(
		"entry",
		[Declare("u"), UseRef("u"), Declare("x"), InitAssign("x"), ScopeEnd("inner"), UseRef("x")],
		Return(),
	)
	res = BorrowChecker(type_table=table).check_function(fn)
	assert [d.kind for d in res.diagnostics] == [
		DiagnosticKind.USE_OF_UNINITIALIZED,
		DiagnosticKind.USE_AFTER_DROP,
	]
