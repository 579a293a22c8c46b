# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Ownership state tracking for one function.

`StateTracker` applies the effect of elementary accesses (read, write,
move-out, borrow, (re)initialization, copy, scope exit) to a `FlowState`.
Each access returns the `Violation` it detected, or None; the tracker never
raises for program errors and always leaves the state in the shape the
access implies so analysis can continue past a reported violation.

The tracker is positioned on a program point with `at()` so loans and
resource identities it creates carry their origin.
"""

from __future__ import annotations

from typing import List, Optional, Set, Tuple, Union

from borrowck.borrow_checker import FlowState, Loan, OwnershipState
from borrowck.conflicts import Violation, check_borrow, loan_related, state_violation
from borrowck.core.diagnostics import DiagnosticKind, Location
from borrowck.core.span import Span
from borrowck.core.types_core import TypeKind, TypeTable
from borrowck.program import Binding, Function, LoanKind
from borrowck.regions import RegionInfo
from borrowck.type_classifier import TypeClassifier


class StateTracker:
	def __init__(
		self,
		fn: Function,
		state: FlowState,
		*,
		type_table: TypeTable,
		classifier: TypeClassifier,
		regions: Optional[RegionInfo] = None,
	) -> None:
		self.fn = fn
		self.state = state
		self.type_table = type_table
		self.classifier = classifier
		self.regions = regions
		self.location = Location(fn.name, fn.entry_label or "", 0)
		self.span = Span()

	def at(self, location: Location, span: Optional[Span] = None) -> "StateTracker":
		self.location = location
		self.span = span or Span()
		return self

	# Binding facts

	def binding(self, name: str) -> Binding:
		return self.fn.bindings[name]

	def is_ref(self, name: str) -> bool:
		return self.type_table.get(self.binding(name).ty).kind is TypeKind.REF

	def is_exclusive_ref(self, name: str) -> bool:
		td = self.type_table.get(self.binding(name).ty)
		return td.kind is TypeKind.REF and bool(td.ref_mut)

	def is_duplicable(self, name: str) -> bool:
		return self.classifier.is_duplicable(self.binding(name).ty)

	def tracks_resource(self, name: str) -> bool:
		return not self.is_ref(name) and not self.is_duplicable(name)

	def next_use(self, ref: str) -> Optional[Tuple[Location, Span]]:
		if self.regions is None:
			return None
		return self.regions.next_use(ref, self.location.block, self.location.index)

	def _ref_live_after(self, ref: str) -> bool:
		if self.regions is None:
			return True
		return self.regions.is_live_after(ref, self.location.block, self.location.index)

	# Accesses

	def declare(self, name: str) -> None:
		"""A binding comes (back) into existence, UNINITIALIZED."""
		self.state.states[name] = OwnershipState.UNINITIALIZED
		self.state.kill_loans_held_by([name])
		self.state.provenance.pop(name, None)
		self.state.resources.pop(name, None)

	def read(self, name: str, action: str = "use") -> Optional[Violation]:
		"""Read of an initialized binding; an exclusive loan on it shuts out every other access."""
		bad = state_violation(name, self.state.state_of(name), action)
		if bad is not None:
			return bad
		exclusive = sorted(
			(ln for ln in self.state.loans_on(name) if ln.kind is LoanKind.EXCLUSIVE),
			key=lambda ln: ln.origin,
		)
		if exclusive:
			return Violation(
				DiagnosticKind.CONFLICTING_BORROW,
				name,
				f"cannot {action} `{name}` because it is borrowed as mutable",
				loan_related(exclusive[0], self.next_use),
			)
		return None

	def write(self, name: str) -> Optional[Violation]:
		"""Direct write to an initialized owner."""
		bad = state_violation(name, self.state.state_of(name), "assignment")
		if bad is not None:
			return bad
		if not self.binding(name).mutable:
			return Violation(
				DiagnosticKind.IMMUTABLE_WRITE,
				name,
				f"cannot assign twice to immutable binding `{name}`",
			)
		blocking = sorted(self.state.loans_on(name), key=lambda ln: ln.origin)
		if blocking:
			return Violation(
				DiagnosticKind.WRITE_WHILE_BORROWED,
				name,
				f"cannot assign to `{name}` because it is borrowed",
				loan_related(blocking[0], self.next_use),
			)
		if self.tracks_resource(name):
			self._mint(name)
		return None

	def write_through(self, target: str) -> Optional[Violation]:
		"""`*target = ...` when `target` is a reference, a direct owner write otherwise."""
		if not self.is_ref(target):
			return self.write(target)
		bad = self.read(target, "write through")
		if bad is not None:
			return bad
		if not self.is_exclusive_ref(target):
			return Violation(
				DiagnosticKind.IMMUTABLE_WRITE,
				target,
				f"cannot write through `{target}`, which is a shared reference",
			)
		return None

	def move_out(self, name: str) -> Optional[Violation]:
		"""Transfer ownership out of `name`; a plain read for duplicable types."""
		if self.is_duplicable(name):
			return self.read(name)
		bad = state_violation(name, self.state.state_of(name), "move")
		if bad is not None:
			return bad
		self.state.states[name] = OwnershipState.MOVED
		blocking = sorted(self.state.loans_on(name), key=lambda ln: ln.origin)
		if blocking:
			return Violation(
				DiagnosticKind.MOVE_WHILE_BORROWED,
				name,
				f"cannot move out of `{name}` because it is borrowed",
				loan_related(blocking[0], self.next_use),
			)
		return None

	def consume(self, name: str) -> Optional[Violation]:
		"""Use `name` as a value: moved when owning, read when duplicable."""
		return self.move_out(name)

	def borrow(self, name: str, kind: LoanKind, ref: str) -> Optional[Violation]:
		"""`ref = &name` / `ref = &mut name`; the loan is held by `ref`."""
		result = check_borrow(
			self.state,
			name,
			kind,
			ref=ref,
			origin=self.location,
			mutable=self.binding(name).mutable,
			next_use=self.next_use,
			origin_span=self.span,
		)
		# The reference is defined either way so its later uses do not cascade.
		inherited = self.state.loans_held_by(name) if self.is_ref(name) else set()
		provenance = self.state.provenance.get(name, frozenset()) if self.is_ref(name) else frozenset()
		self._define_ref(ref)
		if isinstance(result, Violation):
			return result
		self.state.loans.add(result)
		# Reborrowing through a reference keeps the original referents borrowed too.
		self.state.loans |= {ln.retarget(ref) for ln in inherited}
		self.state.provenance[ref] = provenance
		return None

	def borrow_temporary(self, name: str, kind: LoanKind) -> Union[Loan, Violation]:
		"""Auto-borrow of a call argument; the caller removes the loan when the call returns."""
		result = check_borrow(
			self.state,
			name,
			kind,
			ref=None,
			origin=self.location,
			mutable=self.binding(name).mutable,
			temporary=True,
			next_use=self.next_use,
			origin_span=self.span,
		)
		if isinstance(result, Loan):
			self.state.loans.add(result)
		return result

	def reborrow_temporary(self, ref: str, kind: LoanKind) -> Union[Loan, Violation]:
		"""
		A reference argument lent on to a call for its duration. The loan sits
		on the reference binding, so one call cannot take two exclusive (or an
		exclusive and a shared) reborrows through the same reference.
		"""
		result = check_borrow(
			self.state,
			ref,
			kind,
			ref=None,
			origin=self.location,
			temporary=True,
			next_use=self.next_use,
			origin_span=self.span,
		)
		if isinstance(result, Loan):
			self.state.loans.add(result)
		return result

	def reinitialize(self, name: str) -> Optional[Violation]:
		"""
		`name = <value>`: initializes UNINITIALIZED or MOVED bindings, overwrites
		OWNED ones (subject to mutability and outstanding loans).
		"""
		current = self.state.state_of(name)
		if current is OwnershipState.DROPPED:
			return state_violation(name, current, "assignment")
		if current is OwnershipState.OWNED:
			bad = self.write(name)
			if bad is not None:
				return bad
		if self.is_ref(name):
			self._define_ref(name)
			self.state.provenance[name] = frozenset()
		else:
			self.state.states[name] = OwnershipState.OWNED
			# An overwrite already got its new resource from write().
			if current is not OwnershipState.OWNED and self.tracks_resource(name):
				self._mint(name)
		return None

	def transfer(self, dest: str, source: str, moved: bool) -> None:
		"""Carry reference facts (loans, provenance) or resource identity from `source` to `dest`."""
		if self.is_ref(source):
			held = self.state.loans_held_by(source)
			if moved:
				self.state.kill_loans_held_by([source])
			if self.is_ref(dest):
				self.state.loans |= {ln.retarget(dest) for ln in held}
				self.state.provenance[dest] = self.state.provenance.get(source, frozenset())
			return
		if self.tracks_resource(source) and self.tracks_resource(dest):
			res = self.state.resources.get(source)
			if moved:
				self.state.resources.pop(source, None)
			if res is not None:
				self.state.resources[dest] = res

	def assign(self, dest: str, source: Optional[str]) -> List[Violation]:
		"""`dest = source` with move-or-copy semantics decided by the source type."""
		out: List[Violation] = []
		moved = False
		if source is not None:
			moved = not self.is_duplicable(source)
			before = self.state.state_of(source)
			bad = self.consume(source)
			if bad is not None:
				out.append(bad)
			if before is not OwnershipState.OWNED:
				source = None
		bad = self.reinitialize(dest)
		if bad is not None:
			out.append(bad)
		elif source is not None:
			self.transfer(dest, source, moved)
		return out

	def copy(self, dest: str, source: str) -> List[Violation]:
		"""`dest = copy source`; only duplicable types may be copied."""
		out: List[Violation] = []
		if not self.is_duplicable(source):
			out.append(
				Violation(
					DiagnosticKind.INVALID_COPY,
					source,
					f"cannot copy `{source}` of owning type {self.type_table.display(self.binding(source).ty)}",
				)
			)
		bad = self.read(source, "copy")
		if bad is not None:
			out.append(bad)
		bad = self.reinitialize(dest)
		if bad is not None:
			out.append(bad)
		elif self.state.state_of(source) is OwnershipState.OWNED:
			self.transfer(dest, source, moved=False)
			if self.tracks_resource(dest):
				# An invalid copy still yields a distinct value.
				self._mint(dest)
		return out

	def drop_scope(self, scope: str) -> List[Violation]:
		"""
		End of `scope`: every binding declared in it (or a nested scope) is
		dropped. Loans on dropped bindings end here; a loan whose reference
		outlives the scope and is used afterwards is a dangling reference.
		"""
		scopes = set(self.fn.scope_descendants(scope))
		dropped: Set[str] = {name for name, b in self.fn.bindings.items() if b.scope in scopes}
		out: List[Violation] = []
		for loan in sorted(self.state.loans, key=lambda ln: (ln.origin, ln.ref or "")):
			if loan.place not in dropped:
				continue
			if loan.ref is not None and loan.ref not in dropped and self._ref_live_after(loan.ref):
				out.append(
					Violation(
						DiagnosticKind.DANGLING_REFERENCE,
						loan.ref,
						f"`{loan.place}` does not live long enough: dropped here while still borrowed by `{loan.ref}`",
						loan_related(loan, self.next_use),
					)
				)
		self.state.loans = {ln for ln in self.state.loans if ln.place not in dropped and ln.ref not in dropped}
		for name in dropped:
			self.state.states[name] = OwnershipState.DROPPED
			self.state.provenance.pop(name, None)
			self.state.resources.pop(name, None)
		return out

	def _mint(self, name: str) -> None:
		self.state.mint(name, self.location, len(self.fn.bindings))

	def _define_ref(self, ref: str) -> None:
		self.state.kill_loans_held_by([ref])
		self.state.states[ref] = OwnershipState.OWNED
		self.state.provenance.pop(ref, None)


__all__ = ["StateTracker"]
