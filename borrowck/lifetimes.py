# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lifetime parameters as partially ordered abstract regions.

Lifetimes are not timestamps. A signature declares named parameters (`'a`)
and outlives bounds (`'b: 'a`, "'b lives at least as long as 'a"); the bounds
generate a partial order whose top is `'static`.

A reference's lifetime is a *conjunction* of parameters: the reference is
valid only while every one of them is. `frozenset()` is the empty conjunction,
i.e. `'static`. The meet of two lifetimes (the region in which both hold) is
the union of their conjunctions, reduced by dropping any parameter that
outlives another member (it adds no constraint).

Unannotated reference parameters get an anonymous parameter `'_<param>`,
incomparable to every other parameter.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Optional, Set, Tuple

from borrowck.core.types_core import STATIC_LIFETIME, TypeId, TypeKind, TypeTable
from borrowck.program import FnSignature, Param

Lifetime = FrozenSet[str]

STATIC: Lifetime = frozenset()


def anonymous_lifetime(param: str) -> str:
	return f"'_{param}"


def ref_lifetime_name(type_table: TypeTable, ty: Optional[TypeId]) -> Optional[str]:
	"""Lifetime tag of a reference type (None for non-references and unannotated references)."""
	if ty is None:
		return None
	td = type_table.get(ty)
	if td.kind is not TypeKind.REF:
		return None
	return td.lifetime


def is_ref_type(type_table: TypeTable, ty: Optional[TypeId]) -> bool:
	return ty is not None and type_table.get(ty).kind is TypeKind.REF


def param_lifetime(type_table: TypeTable, param: Param) -> Optional[Lifetime]:
	"""
	Lifetime carried by a reference parameter (None for by-value parameters).
	"""
	if not is_ref_type(type_table, param.ty):
		return None
	name = ref_lifetime_name(type_table, param.ty)
	if name == STATIC_LIFETIME:
		return STATIC
	return frozenset({name or anonymous_lifetime(param.name)})


def required_return_lifetime(type_table: TypeTable, sig: FnSignature) -> Optional[Lifetime]:
	"""
	Lifetime the returned reference must outlive, or None when the function
	does not return a reference.

	An unannotated reference return borrows from the single reference
	parameter (elision); with zero or several reference parameters the
	requirement is the meet of all of them.
	"""
	if not is_ref_type(type_table, sig.return_type):
		return None
	name = ref_lifetime_name(type_table, sig.return_type)
	if name == STATIC_LIFETIME:
		return STATIC
	if name is not None:
		return frozenset({name})
	out: Set[str] = set()
	for param in sig.params:
		lt = param_lifetime(type_table, param)
		if lt is not None:
			out |= lt
	return frozenset(out)


class LifetimeOrder:
	"""Outlives relation over a signature's lifetime parameters (reflexive, transitive)."""

	def __init__(
		self,
		params: Iterable[str] = (),
		outlives: Iterable[Tuple[str, str]] = (),
		static_like: Iterable[str] = (),
	) -> None:
		self.params: Set[str] = set(params)
		# Parameters bounded by `'p: 'static` are as long as 'static.
		self._static_like: Set[str] = set(static_like)
		self._longer: Dict[str, Set[str]] = {p: {p} for p in self.params}
		edges = list(outlives)
		for long, short in edges:
			self.params.update((long, short))
			self._longer.setdefault(long, {long})
			self._longer.setdefault(short, {short})
		changed = True
		while changed:
			changed = False
			for long, short in edges:
				# Everything that outlives `long` also outlives `short`.
				before = len(self._longer[short])
				self._longer[short] |= self._longer[long]
				if len(self._longer[short]) != before:
					changed = True

	@classmethod
	def for_signature(cls, type_table: TypeTable, sig: FnSignature) -> "LifetimeOrder":
		params = set(sig.lifetimes)
		for param in sig.params:
			lt = param_lifetime(type_table, param)
			if lt:
				params |= lt
		outlives = [(l, s) for (l, s) in sig.outlives if STATIC_LIFETIME not in (l, s)]
		static_like = [l for (l, s) in sig.outlives if s == STATIC_LIFETIME]
		return cls(params, outlives, static_like)

	def outlives(self, long: str, short: str) -> bool:
		"""True when `long` is known to live at least as long as `short`."""
		if long == short or long == STATIC_LIFETIME or long in self._static_like:
			return True
		return long in self._longer.get(short, set())

	def normalize(self, lt: Lifetime) -> Lifetime:
		"""Drop members that outlive another member; 'static-like members add nothing."""
		members = [m for m in lt if m != STATIC_LIFETIME and m not in self._static_like]
		keep = set(members)
		for m in members:
			for other in members:
				if other != m and other in keep and m in keep and self.outlives(m, other) and not self.outlives(other, m):
					keep.discard(m)
					break
		return frozenset(keep)

	def meet(self, a: Lifetime, b: Lifetime) -> Lifetime:
		"""Greatest lower bound: valid only while both `a` and `b` are."""
		return self.normalize(a | b)

	def satisfies(self, actual: Lifetime, required: Lifetime) -> bool:
		"""
		True when a reference valid for `actual` outlives `required`.

		Each parameter the reference depends on must outlive some member of the
		required conjunction (the required region ends when its shortest member
		does). `'static` (empty) is only satisfied by `'static`.
		"""
		actual = self.normalize(actual)
		required = self.normalize(required)
		if not required:
			return not actual
		return all(any(self.outlives(p, r) for r in required) for p in actual)


def render_lifetime(lt: Lifetime) -> str:
	if not lt:
		return STATIC_LIFETIME
	return " + ".join(sorted(lt))


__all__ = [
	"Lifetime",
	"STATIC",
	"anonymous_lifetime",
	"ref_lifetime_name",
	"is_ref_type",
	"param_lifetime",
	"required_return_lifetime",
	"LifetimeOrder",
	"render_lifetime",
]
