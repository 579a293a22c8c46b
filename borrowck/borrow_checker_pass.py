#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow-check pass: forward dataflow over each function's CFG.

Scope:
- Tracks per-binding ownership states (Uninitialized/Owned/Moved/Dropped) and
  flags use-after-move, use of uninitialized and use-after-drop.
- Treats by-value uses of owning types as moves, of duplicable types as reads.
- Tracks explicit borrows as loans held by reference bindings, with
  shared-vs-exclusive conflicts, move/write while borrowed, and loan
  lifetimes from the region policy (last use by default, lexical optionally).
- Reports dangling references at scope exit and at return, and checks a
  returned reference's lifetime against the signature.
- Auto-borrows owned call arguments passed to reference parameters for the
  duration of the call.

The fixed point runs first without reporting; diagnostics come from a single
pass over the converged block in-states, so revisiting a block never
duplicates them.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

from borrowck.borrow_checker import FlowState, Loan, OwnershipState, Resource, merge_flow_states
from borrowck.conflicts import Violation, loan_related
from borrowck.core.diagnostics import (
	USE_STATE_KINDS,
	Diagnostic,
	DiagnosticKind,
	Location,
	MalformedProgram,
)
from borrowck.core.span import Span
from borrowck.core.types_core import TypeKind, TypeTable
from borrowck.lifetimes import (
	Lifetime,
	LifetimeOrder,
	is_ref_type,
	param_lifetime,
	ref_lifetime_name,
	render_lifetime,
	required_return_lifetime,
)
from borrowck.program import (
	TERMINATORS,
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
	Terminator,
	UseRef,
	WriteThrough,
)
from borrowck.regions import RegionInfo, RegionPolicy, compute_regions
from borrowck.state_tracker import StateTracker
from borrowck.type_classifier import TypeClassifier
from borrowck.validate import validate_function

logger = logging.getLogger(__name__)


@dataclass
class FunctionResult:
	"""Verdict for one function: accepted iff there are no diagnostics."""

	name: str
	diagnostics: List[Diagnostic] = field(default_factory=list)
	iterations: int = 0

	@property
	def accepted(self) -> bool:
		return not self.diagnostics


@dataclass
class Analysis:
	"""Converged dataflow facts for one function (reachable blocks only)."""

	function: Function
	order: List[str]
	in_states: Dict[str, FlowState]
	out_states: Dict[str, FlowState]
	regions: RegionInfo
	iterations: int


@dataclass
class BorrowChecker:
	"""
	Ownership and borrow verification of program-representation functions.

	Inputs:
	- type_table: types of bindings and signatures.
	- classifier: copy-vs-move decisions (built from type_table when omitted).
	- signatures: callable signatures by name; when omitted a function may
	  only call itself.
	"""

	type_table: TypeTable
	classifier: Optional[TypeClassifier] = None
	region_policy: RegionPolicy = RegionPolicy.LAST_USE
	enable_auto_borrow: bool = True
	signatures: Optional[Mapping[str, FnSignature]] = None

	def __post_init__(self) -> None:
		if self.classifier is None:
			self.classifier = TypeClassifier(self.type_table)

	def _signatures_for(self, fn: Function) -> Mapping[str, FnSignature]:
		if self.signatures is not None:
			return self.signatures
		return {fn.name: fn.signature}

	def check_function(self, fn: Function) -> FunctionResult:
		"""Verify `fn`; a malformed function yields a single MalformedProgram diagnostic."""
		try:
			analysis = self.analyze(fn)
		except MalformedProgram as err:
			logger.debug("%s: malformed: %s", fn.name, err)
			return FunctionResult(fn.name, [err.to_diagnostic()], 0)
		diagnostics = self._report(analysis)
		logger.debug(
			"%s: %s after %d block visit(s), %d diagnostic(s)",
			fn.name,
			"accepted" if not diagnostics else "rejected",
			analysis.iterations,
			len(diagnostics),
		)
		return FunctionResult(fn.name, diagnostics, analysis.iterations)

	def analyze(self, fn: Function) -> Analysis:
		"""
		Validate `fn` and run the forward fixed point; no diagnostics are produced here.

		`fn` is read only. Reference bindings that a `Borrow` declares implicitly
		must already be registered (`normalize_function`, which the listing
		parser and `verify_program` run); otherwise `fn` is malformed.
		"""
		validate_function(fn, self.type_table, self._signatures_for(fn))
		order = reverse_postorder(fn)
		rpo_index = {label: i for i, label in enumerate(order)}
		regions = compute_regions(fn, self.type_table, self.region_policy)

		entry = order[0]
		in_states: Dict[str, FlowState] = {entry: self._entry_state(fn, regions)}
		out_states: Dict[str, FlowState] = {}
		worklist: List[Tuple[int, str]] = [(0, entry)]
		queued: Set[str] = {entry}
		iterations = 0
		while worklist:
			_, label = heapq.heappop(worklist)
			queued.discard(label)
			iterations += 1
			out_state = self._transfer_block(fn, label, in_states[label], regions, None)
			out_states[label] = out_state
			for succ in fn.successors(label):
				incoming = self._on_entry(out_state, succ, regions)
				prev = in_states.get(succ)
				merged = incoming if prev is None else merge_flow_states(prev, incoming)
				if prev is None or merged != prev:
					in_states[succ] = merged
					if succ not in queued:
						heapq.heappush(worklist, (rpo_index[succ], succ))
						queued.add(succ)
		logger.debug("%s: fixed point after %d block visit(s) over %d block(s)", fn.name, iterations, len(order))
		return Analysis(fn, order, in_states, out_states, regions, iterations)

	def _entry_state(self, fn: Function, regions: RegionInfo) -> FlowState:
		state = FlowState()
		for param in fn.signature.params:
			state.states[param.name] = OwnershipState.OWNED
			lt = param_lifetime(self.type_table, param)
			if lt is not None:
				state.provenance[param.name] = lt
			elif not self.classifier.is_duplicable(param.ty):
				state.resources[param.name] = frozenset({Resource(Location(fn.name, "<param>", fn.params.index(param.name)))})
		return state

	def _on_entry(self, out_state: FlowState, succ: str, regions: RegionInfo) -> FlowState:
		state = out_state.copy()
		state.loans = {ln for ln in state.loans if regions.keeps_loan_on_entry(ln.ref, succ)}
		return state

	def _report(self, analysis: Analysis) -> List[Diagnostic]:
		diagnostics: List[Diagnostic] = []
		for label in analysis.order:
			self._transfer_block(
				analysis.function,
				label,
				analysis.in_states[label],
				analysis.regions,
				diagnostics,
			)
		return diagnostics

	def _transfer_block(
		self,
		fn: Function,
		label: str,
		in_state: FlowState,
		regions: RegionInfo,
		sink: Optional[List[Diagnostic]],
	) -> FlowState:
		"""
		Apply every op and the terminator of block `label` to a copy of `in_state`.

		Violations are turned into diagnostics only when `sink` is given.
		"""
		state = in_state.copy()
		tracker = StateTracker(fn, state, type_table=self.type_table, classifier=self.classifier, regions=regions)
		blk = fn.blocks[label]
		suppressed: Set[str] = set()

		def emit(violations: List[Violation], loc: Location, span: Span) -> None:
			if sink is None:
				return
			for v in violations:
				if v.kind in USE_STATE_KINDS:
					# Same-block cascade: one state error per binding.
					if v.subject in suppressed:
						continue
					suppressed.add(v.subject)
				sink.append(
					Diagnostic(
						message=v.message,
						kind=v.kind,
						subject=v.subject,
						location=loc,
						related=list(v.related),
						span=span,
					)
				)

		for idx, op in enumerate(blk.ops):
			loc = Location(fn.name, label, idx)
			tracker.at(loc, op.span)
			emit(self._apply_op(fn, tracker, op), loc, op.span)
			defined = _defined_by(op)
			if defined is not None and state.state_of(defined) not in (OwnershipState.MOVED, OwnershipState.DROPPED):
				# A fresh value: later misuse is a new error, not a cascade.
				suppressed.discard(defined)
			state.loans = {ln for ln in state.loans if regions.keeps_loan_after(ln.ref, label, idx)}

		term = blk.terminator
		loc = Location(fn.name, label, len(blk.ops))
		tracker.at(loc, term.span if term is not None else None)
		emit(self._apply_terminator(fn, tracker, term), loc, tracker.span)
		state.loans = {ln for ln in state.loans if regions.keeps_loan_after(ln.ref, label, len(blk.ops))}
		return state

	def _apply_op(self, fn: Function, tracker: StateTracker, op: Op) -> List[Violation]:
		out: List[Violation] = []
		if isinstance(op, Declare):
			tracker.declare(op.binding)
		elif isinstance(op, InitAssign):
			out.extend(tracker.assign(op.binding, op.source))
		elif isinstance(op, Move):
			out.extend(tracker.assign(op.dest, op.source))
		elif isinstance(op, Copy):
			out.extend(tracker.copy(op.dest, op.source))
		elif isinstance(op, Borrow):
			_maybe(out, tracker.borrow(op.binding, op.kind, op.ref))
		elif isinstance(op, UseRef):
			_maybe(out, tracker.read(op.ref))
		elif isinstance(op, WriteThrough):
			if op.value is not None:
				_maybe(out, tracker.consume(op.value))
			_maybe(out, tracker.write_through(op.target))
		elif isinstance(op, Call):
			out.extend(self._apply_call(fn, tracker, op))
		elif isinstance(op, ScopeEnd):
			out.extend(tracker.drop_scope(op.scope))
		else:
			raise MalformedProgram(f"unsupported operation {type(op).__name__}", location=tracker.location)
		return out

	def _apply_call(self, fn: Function, tracker: StateTracker, op: Call) -> List[Violation]:
		sig = self._signatures_for(fn)[op.function]
		state = tracker.state
		out: List[Violation] = []
		temporaries: Dict[str, Loan] = {}
		reborrows: Set[Loan] = set()
		for arg, param in zip(op.args, sig.params):
			param_td = self.type_table.get(param.ty)
			if param_td.kind is TypeKind.REF:
				if tracker.is_ref(arg):
					bad = tracker.read(arg)
					if bad is not None:
						out.append(bad)
						continue
					exclusive = tracker.is_exclusive_ref(arg)
					if param_td.ref_mut and not exclusive:
						out.append(
							Violation(
								DiagnosticKind.IMMUTABLE_WRITE,
								arg,
								f"`{arg}` is a shared reference but `{op.function}` expects a mutable one",
							)
						)
						continue
					kind = LoanKind.EXCLUSIVE if param_td.ref_mut else LoanKind.SHARED
					result = tracker.reborrow_temporary(arg, kind)
					if isinstance(result, Violation):
						out.append(result)
					else:
						reborrows.add(result)
					continue
				if self.enable_auto_borrow:
					kind = LoanKind.EXCLUSIVE if param_td.ref_mut else LoanKind.SHARED
					result = tracker.borrow_temporary(arg, kind)
					if isinstance(result, Violation):
						out.append(result)
					else:
						temporaries[arg] = result
					continue
			_maybe(out, tracker.consume(arg))

		inherited: Set[Loan] = set()
		provenance: Lifetime = frozenset()
		if op.dest is not None and tracker.is_ref(op.dest):
			for arg in bound_return_args(self.type_table, sig, op):
				if arg in temporaries:
					inherited.add(temporaries[arg].retarget(op.dest))
				elif tracker.is_ref(arg):
					inherited |= {ln.retarget(op.dest) for ln in state.loans_held_by(arg)}
					provenance = provenance | state.provenance.get(arg, frozenset())
		state.loans -= set(temporaries.values()) | reborrows

		if op.dest is not None:
			_maybe(out, tracker.reinitialize(op.dest))
			if tracker.is_ref(op.dest) and state.state_of(op.dest) is OwnershipState.OWNED:
				state.loans |= inherited
				state.provenance[op.dest] = provenance
		return out

	def _apply_terminator(self, fn: Function, tracker: StateTracker, term: Optional[Terminator]) -> List[Violation]:
		out: List[Violation] = []
		if isinstance(term, Branch) and term.cond is not None:
			_maybe(out, tracker.read(term.cond))
		elif isinstance(term, Return) and term.value is not None:
			out.extend(self._check_return(fn, tracker, term.value))
		elif not isinstance(term, TERMINATORS):
			raise MalformedProgram("block has no terminator", location=tracker.location)
		return out

	def _check_return(self, fn: Function, tracker: StateTracker, value: str) -> List[Violation]:
		if not tracker.is_ref(value):
			bad = tracker.consume(value)
			return [bad] if bad is not None else []
		bad = tracker.read(value, "return")
		if bad is not None:
			return [bad]
		state = tracker.state
		local = sorted(
			(ln for ln in state.loans_held_by(value) if not tracker.is_ref(ln.place)),
			key=lambda ln: ln.origin,
		)
		if local:
			return [
				Violation(
					DiagnosticKind.DANGLING_REFERENCE,
					value,
					f"cannot return `{value}`, which references local binding `{local[0].place}`",
					loan_related(local[0]),
				)
			]
		required = required_return_lifetime(self.type_table, fn.signature)
		if required is None:
			return []
		order = LifetimeOrder.for_signature(self.type_table, fn.signature)
		actual = order.normalize(state.provenance.get(value, frozenset()))
		if not order.satisfies(actual, required):
			return [
				Violation(
					DiagnosticKind.LIFETIME_MISMATCH,
					value,
					f"returned reference `{value}` is valid for {render_lifetime(actual)}"
					f" but `{fn.name}` promises {render_lifetime(order.normalize(required))}",
				)
			]
		return []


def _defined_by(op: Op) -> Optional[str]:
	"""Binding an operation (re)defines, if any."""
	if isinstance(op, (Declare, InitAssign)):
		return op.binding
	if isinstance(op, (Move, Copy)):
		return op.dest
	if isinstance(op, Borrow):
		return op.ref
	if isinstance(op, Call):
		return op.dest
	return None


def _maybe(out: List[Violation], v: Optional[Violation]) -> None:
	if v is not None:
		out.append(v)


def bound_return_args(type_table: TypeTable, sig: FnSignature, op: Call) -> List[str]:
	"""
	Arguments a call's reference result may borrow from.

	Explicit `lifetime_bindings` for the return lifetime win; otherwise every
	argument whose parameter carries the return lifetime, or, for an
	unannotated reference return, every reference parameter (elision).
	A `'static` return borrows from nothing.
	"""
	if not is_ref_type(type_table, sig.return_type):
		return []
	ret_lt = ref_lifetime_name(type_table, sig.return_type)
	explicit = op.bound_to(ret_lt) if ret_lt is not None else None
	if explicit is not None:
		return list(explicit)
	out: List[str] = []
	for arg, param in zip(op.args, sig.params):
		lt = param_lifetime(type_table, param)
		if lt is None:
			continue
		if ret_lt is None:
			out.append(arg)
		elif lt == frozenset({ret_lt}):
			out.append(arg)
	return out


def reverse_postorder(fn: Function) -> List[str]:
	"""Blocks reachable from the entry, in reverse post-order."""
	entry = fn.entry_label
	if entry is None:
		return []
	seen: Set[str] = {entry}
	post: List[str] = []
	stack: List[Tuple[str, int]] = [(entry, 0)]
	while stack:
		label, i = stack[-1]
		succs = fn.successors(label)
		if i < len(succs):
			stack[-1] = (label, i + 1)
			nxt = succs[i]
			if nxt not in seen:
				seen.add(nxt)
				stack.append((nxt, 0))
			continue
		stack.pop()
		post.append(label)
	post.reverse()
	return post


__all__ = [
	"BorrowChecker",
	"FunctionResult",
	"Analysis",
	"bound_return_args",
	"reverse_postorder",
]
