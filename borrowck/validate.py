# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Structural validation of the program representation.

The borrow checker assumes a well-formed input: every name an operation
mentions is in the binding table, every jump target exists, every block ends
in a terminator, scopes form a tree, calls target a known signature with the
right arity. Violations are not ownership errors; they raise
`MalformedProgram`, which halts analysis of that one function.

`normalize_function` is the only mutating step: it registers the reference
bindings that `Borrow` operations introduce implicitly (in the root scope,
typed as a reference of the requested kind to the borrowed binding's type).
"""

from __future__ import annotations

from typing import Mapping, Optional

from borrowck.core.diagnostics import Location, MalformedProgram
from borrowck.core.span import Span
from borrowck.core.types_core import STATIC_LIFETIME, TypeKind, TypeTable
from borrowck.program import (
	OPS,
	ROOT_SCOPE,
	TERMINATORS,
	Binding,
	Borrow,
	Branch,
	Call,
	Copy,
	Declare,
	FnSignature,
	Function,
	InitAssign,
	LoanKind,
	Move,
	Op,
	Return,
	ScopeEnd,
	UseRef,
	WriteThrough,
)


def normalize_function(fn: Function, type_table: TypeTable) -> None:
	"""Register implicitly declared reference bindings introduced by `Borrow`."""
	for _label, _idx, op in fn.iter_ops():
		if not isinstance(op, Borrow) or op.ref in fn.bindings:
			continue
		src = fn.bindings.get(op.binding)
		if src is None:
			# Left for validate_function to report.
			continue
		ref_ty = type_table.new_ref(src.ty, is_mut=op.kind is LoanKind.EXCLUSIVE)
		fn.add_binding(Binding(op.ref, ref_ty, ROOT_SCOPE, mutable=False, span=op.span))


def validate_signature(sig: FnSignature, type_table: TypeTable) -> None:
	"""Check lifetime names used by a signature are declared and the return lifetime is expressible."""
	declared = set(sig.lifetimes)
	for long, short in sig.outlives:
		for name in (long, short):
			if name != STATIC_LIFETIME and name not in declared:
				raise MalformedProgram(f"outlives bound on undeclared lifetime {name} in '{sig.name}'", span=sig.span)
	param_lifetimes = set()
	seen = set()
	for param in sig.params:
		if param.name in seen:
			raise MalformedProgram(f"duplicate parameter '{param.name}' in '{sig.name}'", span=sig.span)
		seen.add(param.name)
		lt = _ref_lifetime(type_table, param.ty)
		if lt is None:
			continue
		if lt != STATIC_LIFETIME and lt not in declared:
			raise MalformedProgram(f"parameter '{param.name}' uses undeclared lifetime {lt}", span=sig.span)
		param_lifetimes.add(lt)
	if sig.return_type is not None:
		ret_lt = _ref_lifetime(type_table, sig.return_type)
		if ret_lt is not None and ret_lt != STATIC_LIFETIME and ret_lt not in param_lifetimes:
			raise MalformedProgram(
				f"return lifetime {ret_lt} of '{sig.name}' is not one of its parameter lifetimes",
				span=sig.span,
			)


def validate_function(
	fn: Function,
	type_table: TypeTable,
	signatures: Optional[Mapping[str, FnSignature]] = None,
) -> None:
	"""Raise MalformedProgram on the first structural problem found in `fn`."""
	validate_signature(fn.signature, type_table)
	if not fn.blocks:
		raise MalformedProgram(f"function '{fn.name}' has no blocks", span=fn.signature.span)
	entry = fn.entry_label
	if entry not in fn.blocks:
		raise MalformedProgram(f"entry block '{entry}' of '{fn.name}' does not exist", span=fn.signature.span)

	for scope in fn.scopes.values():
		if scope.parent is None:
			if scope.id != ROOT_SCOPE:
				raise MalformedProgram(f"scope '{scope.id}' has no parent")
			continue
		if scope.parent not in fn.scopes:
			raise MalformedProgram(f"scope '{scope.id}' has unknown parent '{scope.parent}'")
		# Walk to the root; a walk longer than the scope count is a cycle.
		cur: Optional[str] = scope.id
		steps = 0
		while cur is not None:
			steps += 1
			if steps > len(fn.scopes):
				raise MalformedProgram(f"scope '{scope.id}' is part of a parent cycle")
			cur = fn.scopes[cur].parent

	for binding in fn.bindings.values():
		if binding.scope not in fn.scopes:
			raise MalformedProgram(
				f"binding '{binding.name}' declared in unknown scope '{binding.scope}'",
				span=binding.span,
			)

	for label, blk in fn.blocks.items():
		for idx, op in enumerate(blk.ops):
			loc = Location(fn.name, label, idx)
			if not isinstance(op, OPS):
				raise MalformedProgram(f"unsupported operation {type(op).__name__}", location=loc)
			_validate_op(fn, type_table, signatures or {}, op, loc)
		term = blk.terminator
		loc = Location(fn.name, label, len(blk.ops))
		if term is None:
			raise MalformedProgram(f"block '{label}' has no terminator", location=loc)
		if not isinstance(term, TERMINATORS):
			raise MalformedProgram(f"unsupported terminator {type(term).__name__}", location=loc)
		for target in term.targets:
			if target not in fn.blocks:
				raise MalformedProgram(f"block '{label}' jumps to unknown block '{target}'", location=loc, span=term.span)
		if isinstance(term, Branch) and term.cond is not None:
			_require(fn, term.cond, loc, term.span)
		elif isinstance(term, Return) and term.value is not None:
			_require(fn, term.value, loc, term.span)


def _validate_op(
	fn: Function,
	type_table: TypeTable,
	signatures: Mapping[str, FnSignature],
	op: Op,
	loc: Location,
) -> None:
	if isinstance(op, Declare):
		_require(fn, op.binding, loc, op.span)
	elif isinstance(op, InitAssign):
		_require(fn, op.binding, loc, op.span)
		if op.source is not None:
			_require(fn, op.source, loc, op.span)
	elif isinstance(op, (Move, Copy)):
		_require(fn, op.dest, loc, op.span)
		_require(fn, op.source, loc, op.span)
	elif isinstance(op, Borrow):
		_require(fn, op.binding, loc, op.span)
		ref = _require(fn, op.ref, loc, op.span)
		if not type_table.get(ref.ty).is_ref:
			raise MalformedProgram(f"borrow result '{op.ref}' is not reference-typed", location=loc, span=op.span)
	elif isinstance(op, UseRef):
		_require(fn, op.ref, loc, op.span)
	elif isinstance(op, WriteThrough):
		_require(fn, op.target, loc, op.span)
		if op.value is not None:
			_require(fn, op.value, loc, op.span)
	elif isinstance(op, Call):
		sig = signatures.get(op.function)
		if sig is None:
			raise MalformedProgram(f"call to unknown function '{op.function}'", location=loc, span=op.span)
		if len(op.args) != len(sig.params):
			raise MalformedProgram(
				f"call to '{op.function}' passes {len(op.args)} argument(s), expected {len(sig.params)}",
				location=loc,
				span=op.span,
			)
		for arg in op.args:
			_require(fn, arg, loc, op.span)
		if op.dest is not None:
			_require(fn, op.dest, loc, op.span)
		for lt, names in op.lifetime_bindings:
			if lt not in sig.lifetimes:
				raise MalformedProgram(f"'{op.function}' has no lifetime parameter {lt}", location=loc, span=op.span)
			for name in names:
				if name not in op.args:
					raise MalformedProgram(
						f"lifetime {lt} bound to '{name}', which is not an argument of the call",
						location=loc,
						span=op.span,
					)
	elif isinstance(op, ScopeEnd):
		if op.scope not in fn.scopes:
			raise MalformedProgram(f"end of unknown scope '{op.scope}'", location=loc, span=op.span)


def _require(fn: Function, name: str, loc: Location, span: Span) -> Binding:
	binding = fn.bindings.get(name)
	if binding is None:
		raise MalformedProgram(f"reference to undeclared binding '{name}'", location=loc, span=span)
	return binding


def _ref_lifetime(type_table: TypeTable, ty: int) -> Optional[str]:
	td = type_table.get(ty)
	if td.kind is not TypeKind.REF:
		return None
	return td.lifetime


__all__ = ["normalize_function", "validate_function", "validate_signature"]
