# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow conflict detection.

Enforces the exclusivity rule on every borrow request: for one binding the
set of simultaneously active loans is empty, any number of shared loans, or
exactly one exclusive loan. A request that would break this is a
ConflictingBorrow carrying the earlier loan's creation site and, when the
region analysis knows one, the later use that keeps that loan alive.

Requests against a binding that is not OWNED report the state error instead
(a moved value cannot be borrowed at all).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from borrowck.borrow_checker import FlowState, Loan, OwnershipState
from borrowck.core.diagnostics import DiagnosticKind, Location, RelatedLocation
from borrowck.core.span import Span
from borrowck.program import LoanKind

# Maps a reference name to the next use keeping it alive, if any.
NextUse = Callable[[str], Optional[Tuple[Location, Span]]]


@dataclass(frozen=True)
class Violation:
	"""A rule violation detected by the tracker; the driver turns it into a Diagnostic."""

	kind: DiagnosticKind
	subject: str
	message: str
	related: Tuple[RelatedLocation, ...] = ()


def state_violation(binding: str, state: OwnershipState, action: str) -> Optional[Violation]:
	"""The use-state violation for `action` on a binding in `state` (None when OWNED)."""
	if state is OwnershipState.OWNED:
		return None
	if state is OwnershipState.MOVED:
		return Violation(DiagnosticKind.USE_AFTER_MOVE, binding, f"{action} of moved value `{binding}`")
	if state is OwnershipState.DROPPED:
		return Violation(
			DiagnosticKind.USE_AFTER_DROP,
			binding,
			f"{action} of `{binding}` after the end of its scope",
		)
	return Violation(
		DiagnosticKind.USE_OF_UNINITIALIZED,
		binding,
		f"{action} of possibly-uninitialized `{binding}`",
	)


def loan_related(loan: Loan, next_use: Optional[NextUse] = None) -> Tuple[RelatedLocation, ...]:
	"""Related locations for a blocking loan: where it was taken and where it is used next."""
	what = "shared" if loan.kind is LoanKind.SHARED else "exclusive"
	out: List[RelatedLocation] = [
		RelatedLocation(loan.origin, f"{what} borrow of `{loan.place}` occurs here", loan.origin_span)
	]
	if next_use is not None and loan.ref is not None:
		hit = next_use(loan.ref)
		if hit is not None:
			loc, span = hit
			out.append(RelatedLocation(loc, f"borrow later used here, by `{loan.ref}`", span))
	return tuple(out)


def _sort_key(loan: Loan) -> Tuple[Location, str]:
	return loan.origin, loan.ref or ""


def blocking_loans(state: FlowState, binding: str, kind: LoanKind, ref: Optional[str] = None) -> List[Loan]:
	"""Active loans on `binding` incompatible with a new loan of `kind` held by `ref`."""
	out = []
	for ln in state.loans_on(binding):
		if ref is not None and ln.ref == ref:
			# Redefinition of `ref` replaces its own loan.
			continue
		if kind is LoanKind.EXCLUSIVE or ln.kind is LoanKind.EXCLUSIVE:
			out.append(ln)
	return sorted(out, key=_sort_key)


def check_borrow(
	state: FlowState,
	binding: str,
	kind: LoanKind,
	*,
	ref: Optional[str],
	origin: Location,
	mutable: bool = True,
	temporary: bool = False,
	next_use: Optional[NextUse] = None,
	origin_span: Optional[Span] = None,
) -> Union[Loan, Violation]:
	"""
	Validate a borrow request against the current state.

	Returns the new Loan on success (the caller adds it to the state) or the
	Violation that forbids it.
	"""
	action = "mutable borrow" if kind is LoanKind.EXCLUSIVE else "borrow"
	bad_state = state_violation(binding, state.state_of(binding), action)
	if bad_state is not None:
		return bad_state
	if kind is LoanKind.EXCLUSIVE and not mutable:
		return Violation(
			DiagnosticKind.IMMUTABLE_WRITE,
			binding,
			f"cannot borrow `{binding}` as mutable, as it is not declared as mutable",
		)
	blocking = blocking_loans(state, binding, kind, ref)
	if blocking:
		first = blocking[0]
		held = "mutable" if first.kind is LoanKind.EXCLUSIVE else "immutable"
		wanted = "mutable" if kind is LoanKind.EXCLUSIVE else "immutable"
		return Violation(
			DiagnosticKind.CONFLICTING_BORROW,
			binding,
			f"cannot borrow `{binding}` as {wanted} because it is also borrowed as {held}",
			loan_related(first, next_use),
		)
	return Loan(
		place=binding,
		kind=kind,
		ref=ref,
		origin=origin,
		temporary=temporary,
		origin_span=origin_span or Span(),
	)


__all__ = [
	"Violation",
	"NextUse",
	"state_violation",
	"loan_related",
	"blocking_loans",
	"check_borrow",
]
