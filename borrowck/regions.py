# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Region analysis for reference bindings.

A loan is held by a reference binding; how long the loan stays alive is the
region policy:

- LAST_USE (NLL-lite): the loan is alive from its `Borrow` until the last use
  of its reference, computed by a backward liveness fixed point over the CFG.
  A reference that is never used anywhere keeps its loan until the end of the
  reference's (or the borrowed binding's) scope.
- LEXICAL: the loan is alive until the `ScopeEnd` of its reference's scope or
  of the borrowed binding's scope, whichever comes first.

Both policies share the liveness facts: a `ScopeEnd` that drops a borrowed
binding while the reference is still live afterwards is a dangling reference,
and the next use of a reference after a program point is the witness attached
to diagnostics ("borrow later used here").
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from borrowck.core.diagnostics import Location
from borrowck.core.span import Span
from borrowck.core.types_core import TypeTable
from borrowck.program import (
	Borrow,
	Branch,
	Call,
	Copy,
	Declare,
	Function,
	InitAssign,
	Move,
	Op,
	Return,
	Terminator,
	UseRef,
	WriteThrough,
)


class RegionPolicy(Enum):
	"""How long a loan stays alive."""

	LAST_USE = "last-use"
	LEXICAL = "lexical"


def op_ref_uses(op: Op) -> Tuple[str, ...]:
	"""Binding names an operation reads (callers filter to reference bindings)."""
	if isinstance(op, InitAssign):
		return (op.source,) if op.source is not None else ()
	if isinstance(op, (Move, Copy)):
		return (op.source,)
	if isinstance(op, Borrow):
		return (op.binding,)
	if isinstance(op, UseRef):
		return (op.ref,)
	if isinstance(op, WriteThrough):
		return (op.target,) if op.value is None else (op.target, op.value)
	if isinstance(op, Call):
		return tuple(op.args)
	return ()


def op_ref_defs(op: Op) -> Tuple[str, ...]:
	"""Binding names an operation (re)defines."""
	if isinstance(op, Declare):
		return (op.binding,)
	if isinstance(op, InitAssign):
		return (op.binding,)
	if isinstance(op, (Move, Copy)):
		return (op.dest,)
	if isinstance(op, Borrow):
		return (op.ref,)
	if isinstance(op, Call) and op.dest is not None:
		return (op.dest,)
	return ()


def terminator_uses(term: Optional[Terminator]) -> Tuple[str, ...]:
	if isinstance(term, Branch) and term.cond is not None:
		return (term.cond,)
	if isinstance(term, Return) and term.value is not None:
		return (term.value,)
	return ()


@dataclass
class RegionInfo:
	"""
	Liveness facts for the reference bindings of one function.

	`live_after[label][i]` is the set of references live right after op `i`;
	index `len(ops)` is the block's live-out set. `witness_in` maps a block to
	the first use reachable from its entry for each reference live there.
	"""

	function: str
	policy: RegionPolicy
	refs: FrozenSet[str]
	live_in: Dict[str, Set[str]] = field(default_factory=dict)
	live_out: Dict[str, Set[str]] = field(default_factory=dict)
	live_after: Dict[str, List[Set[str]]] = field(default_factory=dict)
	unused_refs: Set[str] = field(default_factory=set)
	use_sites: Dict[str, List[Tuple[Location, Span]]] = field(default_factory=dict)
	witness_in: Dict[str, Dict[str, Tuple[Location, Span]]] = field(default_factory=dict)
	borrow_regions: Dict[Location, FrozenSet[str]] = field(default_factory=dict)
	_block_uses: Dict[str, List[Tuple[int, str, Span]]] = field(default_factory=dict, repr=False)
	_succs: Dict[str, Tuple[str, ...]] = field(default_factory=dict, repr=False)

	def is_live_after(self, ref: str, label: str, index: int) -> bool:
		after = self.live_after.get(label)
		if after is None or index >= len(after):
			return False
		return ref in after[index]

	def is_live_in(self, ref: str, label: str) -> bool:
		return ref in self.live_in.get(label, set())

	def keeps_loan_after(self, ref: Optional[str], label: str, index: int) -> bool:
		"""Whether a loan held by `ref` survives past point (label, index)."""
		if ref is None or self.policy is RegionPolicy.LEXICAL or ref not in self.refs:
			return True
		if ref in self.unused_refs:
			return True
		return self.is_live_after(ref, label, index)

	def keeps_loan_on_entry(self, ref: Optional[str], label: str) -> bool:
		if ref is None or self.policy is RegionPolicy.LEXICAL or ref not in self.refs:
			return True
		if ref in self.unused_refs:
			return True
		return self.is_live_in(ref, label)

	def next_use(self, ref: str, label: str, index: int) -> Optional[Tuple[Location, Span]]:
		"""First use of `ref` strictly after point (label, index), if it is live there."""
		if not self.is_live_after(ref, label, index):
			return None
		for use_idx, name, span in self._block_uses.get(label, []):
			if use_idx > index and name == ref:
				return Location(self.function, label, use_idx), span
		return self._witness_from_successors(ref, label)

	def _witness_from_successors(self, ref: str, label: str) -> Optional[Tuple[Location, Span]]:
		for succ in self._succs.get(label, ()):
			hit = self.witness_in.get(succ, {}).get(ref)
			if hit is not None:
				return hit
		return None


def compute_regions(
	fn: Function,
	type_table: TypeTable,
	policy: RegionPolicy = RegionPolicy.LAST_USE,
) -> RegionInfo:
	"""Backward liveness of reference bindings over `fn`'s CFG."""
	refs = frozenset(name for name, b in fn.bindings.items() if type_table.get(b.ty).is_ref)
	info = RegionInfo(function=fn.name, policy=policy, refs=refs)
	labels = list(fn.blocks)
	succs: Dict[str, Tuple[str, ...]] = {label: fn.successors(label) for label in labels}
	info._succs = succs

	uses_op: Dict[str, List[Set[str]]] = {}
	defs_op: Dict[str, List[Set[str]]] = {}
	uses_term: Dict[str, Set[str]] = {}
	use_blk: Dict[str, Set[str]] = {}
	def_blk: Dict[str, Set[str]] = {}
	borrow_sites: List[Tuple[Location, str]] = []

	for label in labels:
		blk = fn.blocks[label]
		per_uses: List[Set[str]] = []
		per_defs: List[Set[str]] = []
		block_uses: List[Tuple[int, str, Span]] = []
		for idx, op in enumerate(blk.ops):
			u = {n for n in op_ref_uses(op) if n in refs}
			d = {n for n in op_ref_defs(op) if n in refs}
			per_uses.append(u)
			per_defs.append(d)
			for name in sorted(u):
				block_uses.append((idx, name, op.span))
				info.use_sites.setdefault(name, []).append((Location(fn.name, label, idx), op.span))
			if isinstance(op, Borrow):
				borrow_sites.append((Location(fn.name, label, idx), op.ref))
		t_uses = {n for n in terminator_uses(blk.terminator) if n in refs}
		term_span = blk.terminator.span if blk.terminator is not None else Span()
		for name in sorted(t_uses):
			block_uses.append((len(blk.ops), name, term_span))
			info.use_sites.setdefault(name, []).append((Location(fn.name, label, len(blk.ops)), term_span))
		uses_op[label] = per_uses
		defs_op[label] = per_defs
		uses_term[label] = t_uses
		info._block_uses[label] = block_uses

		# Upward-exposed uses and block defs, scanning backwards.
		exposed: Set[str] = set(t_uses)
		defined: Set[str] = set()
		for idx in range(len(blk.ops) - 1, -1, -1):
			exposed = (exposed - per_defs[idx]) | per_uses[idx]
			defined |= per_defs[idx]
		use_blk[label] = exposed
		def_blk[label] = defined

	live_in: Dict[str, Set[str]] = {label: set() for label in labels}
	live_out: Dict[str, Set[str]] = {label: set() for label in labels}
	changed = True
	while changed:
		changed = False
		for label in reversed(labels):
			out_set: Set[str] = set()
			for succ in succs[label]:
				out_set |= live_in[succ]
			in_set = use_blk[label] | (out_set - def_blk[label])
			if out_set != live_out[label] or in_set != live_in[label]:
				live_out[label] = out_set
				live_in[label] = in_set
				changed = True
	info.live_in = live_in
	info.live_out = live_out

	for label in labels:
		n = len(fn.blocks[label].ops)
		live_after: List[Set[str]] = [set() for _ in range(n + 1)]
		live = set(live_out[label])
		live_after[n] = set(live)
		live |= uses_term[label]
		for idx in range(n - 1, -1, -1):
			live_after[idx] = set(live)
			live = (live - defs_op[label][idx]) | uses_op[label][idx]
		info.live_after[label] = live_after

	info.unused_refs = {r for r in refs if r not in info.use_sites}

	witness_in: Dict[str, Dict[str, Tuple[Location, Span]]] = {label: {} for label in labels}
	changed = True
	while changed:
		changed = False
		for label in reversed(labels):
			new_map: Dict[str, Tuple[Location, Span]] = {}
			for ref in live_in[label]:
				local = _first_use_before_def(info._block_uses[label], defs_op[label], ref)
				if local is not None:
					idx, span = local
					new_map[ref] = (Location(fn.name, label, idx), span)
					continue
				for succ in succs[label]:
					hit = witness_in[succ].get(ref)
					if hit is not None:
						new_map[ref] = hit
						break
			if new_map != witness_in[label]:
				witness_in[label] = new_map
				changed = True
	info.witness_in = witness_in

	for origin, ref in borrow_sites:
		region = {label for label in labels if ref in live_in[label]}
		region.add(origin.block)
		info.borrow_regions[origin] = frozenset(region)

	return info


def _first_use_before_def(
	block_uses: List[Tuple[int, str, Span]],
	defs: List[Set[str]],
	ref: str,
) -> Optional[Tuple[int, Span]]:
	for idx, name, span in block_uses:
		if name != ref:
			continue
		# A redefinition earlier in the block hides this use from the entry.
		if any(ref in defs[i] for i in range(min(idx, len(defs)))):
			return None
		return idx, span
	return None


__all__ = [
	"RegionPolicy",
	"RegionInfo",
	"compute_regions",
	"op_ref_uses",
	"op_ref_defs",
	"terminator_uses",
]
