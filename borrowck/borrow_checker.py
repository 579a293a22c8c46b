#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow-checker scaffolding: the per-binding ownership lattice and the
dataflow state flowed across the CFG.

This models the "what" of each program point and intentionally avoids policy
(no diagnostics here). It answers:
  * What ownership state does a binding have on entry to a block, given the
    states along every incoming edge?
  * Which loans are active, and which resource identity each owner holds?

Loans and resources are recorded by value (binding names and program
locations), not by pointers between objects, so a FlowState can be copied
and merged cheaply during the fixed point.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Set

from borrowck.core.diagnostics import Location
from borrowck.core.span import Span
from borrowck.program import LoanKind


class OwnershipState(Enum):
	"""Ownership state of a binding at a program point."""

	UNINITIALIZED = "Uninitialized"
	OWNED = "Owned"
	MOVED = "Moved"
	DROPPED = "Dropped"


# Meet order: the lower state wins when paths disagree. OWNED is the only
# state that permits use, so any disagreement yields a non-usable state.
_MEET_RANK = {
	OwnershipState.OWNED: 3,
	OwnershipState.UNINITIALIZED: 2,
	OwnershipState.MOVED: 1,
	OwnershipState.DROPPED: 0,
}


def merge_ownership_state(a: OwnershipState, b: OwnershipState) -> OwnershipState:
	"""
	Meet operation for ownership states used in dataflow joins.

	Agreeing paths keep their state. Otherwise the lower of the two in
	OWNED > UNINITIALIZED > MOVED > DROPPED is taken: OWNED on one path and
	MOVED on another merges to MOVED, OWNED vs never-initialized merges to
	UNINITIALIZED (maybe-uninitialized is reported as such).
	"""
	if a is b:
		return a
	return a if _MEET_RANK[a] < _MEET_RANK[b] else b


@dataclass(frozen=True)
class Loan:
	"""
	An active borrow of `place` held by reference binding `ref`.

	`origin` is the program point of the Borrow (or the call that auto-borrowed
	it); clones made when a reference is copied keep the original origin.
	Temporary loans (call auto-borrows) end when the call returns.
	"""

	place: str
	kind: LoanKind
	ref: Optional[str]
	origin: Location
	temporary: bool = False
	origin_span: Span = field(default_factory=Span, compare=False)

	def retarget(self, ref: Optional[str]) -> "Loan":
		return Loan(self.place, self.kind, ref, self.origin, False, self.origin_span)


@dataclass(frozen=True, order=True)
class Resource:
	"""
	Identity of an owned resource.

	`origin` is the program point that created it. A point inside a loop
	creates a new resource on every pass; `generation` counts the newer
	resources the same point created since this one (0 is the newest),
	saturating at a per-function limit so the fixed point stays finite.
	"""

	origin: Location
	generation: int = 0

	def aged(self, limit: int) -> "Resource":
		return Resource(self.origin, min(self.generation + 1, limit))


@dataclass
class FlowState:
	"""
	Dataflow state at a CFG point.

	- states: binding -> ownership state (missing means UNINITIALIZED)
	- loans: active loans
	- provenance: reference binding -> signature lifetime parameters it may
	  derive from (a conjunction; empty means no parameter constraint)
	- resources: owning binding -> identities (creation sites) of the resources
	  it may hold
	"""

	states: Dict[str, OwnershipState] = field(default_factory=dict)
	loans: Set[Loan] = field(default_factory=set)
	provenance: Dict[str, FrozenSet[str]] = field(default_factory=dict)
	resources: Dict[str, FrozenSet[Resource]] = field(default_factory=dict)

	def copy(self) -> "FlowState":
		return FlowState(
			states=dict(self.states),
			loans=set(self.loans),
			provenance=dict(self.provenance),
			resources=dict(self.resources),
		)

	def state_of(self, binding: str) -> OwnershipState:
		return self.states.get(binding, OwnershipState.UNINITIALIZED)

	def loans_on(self, binding: str) -> Set[Loan]:
		return {ln for ln in self.loans if ln.place == binding}

	def loans_held_by(self, ref: str) -> Set[Loan]:
		return {ln for ln in self.loans if ln.ref == ref}

	def kill_loans_held_by(self, refs: Iterable[str]) -> None:
		dead = set(refs)
		self.loans = {ln for ln in self.loans if ln.ref not in dead}

	def owners_of(self, resource: Resource) -> Set[str]:
		"""Bindings currently OWNED that may hold `resource`."""
		return {
			name
			for name, res in self.resources.items()
			if resource in res and self.state_of(name) is OwnershipState.OWNED
		}

	def mint(self, owner: str, origin: Location, limit: int) -> Resource:
		"""
		`owner` now holds a resource created at `origin`. Resources an earlier
		pass created there, wherever they went, are one generation older.
		"""
		for name, res in list(self.resources.items()):
			if any(r.origin == origin for r in res):
				self.resources[name] = frozenset(r.aged(limit) if r.origin == origin else r for r in res)
		fresh = Resource(origin)
		self.resources[owner] = frozenset({fresh})
		return fresh


def merge_flow_states(a: FlowState, b: FlowState) -> FlowState:
	"""
	Join two flow states at a control-flow merge.

	Binding states meet per binding (a binding missing on one side is
	UNINITIALIZED there). Loans, provenance and resources are may-information
	and merge by union: a loan live on any incoming path is live after the join,
	and a reference that may come from either of two parameters is only valid
	while both are.
	"""
	states: Dict[str, OwnershipState] = {}
	for name in set(a.states) | set(b.states):
		states[name] = merge_ownership_state(a.state_of(name), b.state_of(name))
	provenance = dict(a.provenance)
	for ref, lts in b.provenance.items():
		provenance[ref] = provenance.get(ref, frozenset()) | lts
	resources = dict(a.resources)
	for name, res in b.resources.items():
		resources[name] = resources.get(name, frozenset()) | res
	return FlowState(states=states, loans=a.loans | b.loans, provenance=provenance, resources=resources)


__all__ = [
	"OwnershipState",
	"merge_ownership_state",
	"Loan",
	"Resource",
	"FlowState",
	"merge_flow_states",
]
