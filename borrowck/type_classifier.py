# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Copy-vs-move classification of value types.

A type is DUPLICABLE when assignment may bitwise-copy it without transferring
ownership, OWNING when it holds a resource that must have a single releaser:

- scalars and shared references are duplicable;
- exclusive references, String, growable arrays and Unknown are owning;
- a struct is duplicable iff it declares no finalizer and every member is
  duplicable. A finalizer always forces OWNING (running it twice would be a
  double release). A struct that contains itself is OWNING;
- a variant is duplicable iff every payload of every arm is duplicable, and
  OWNING when it contains itself.

The classifier memoizes per TypeId. Analysis only reads the cache: callers
that verify functions in parallel call `prime()` first; lazy population from
a single thread is guarded by a lock.
"""

from __future__ import annotations

import threading
from enum import Enum, auto
from typing import Dict, Set

from borrowck.core.types_core import TypeId, TypeKind, TypeTable


class Copyability(Enum):
	DUPLICABLE = auto()
	OWNING = auto()


class TypeClassifier:
	"""Memoizing `classify(type) -> Copyability`."""

	def __init__(self, type_table: TypeTable) -> None:
		self.type_table = type_table
		self._cache: Dict[TypeId, Copyability] = {}
		self._lock = threading.Lock()

	def classify(self, ty: TypeId) -> Copyability:
		cached = self._cache.get(ty)
		if cached is not None:
			return cached
		with self._lock:
			return self._classify_locked(ty, set())

	def is_duplicable(self, ty: TypeId) -> bool:
		return self.classify(ty) is Copyability.DUPLICABLE

	def prime(self) -> "TypeClassifier":
		"""Classify every type currently in the table so later lookups never write."""
		for ty in self.type_table.type_ids():
			self.classify(ty)
		return self

	def __getstate__(self) -> Dict[str, object]:
		# Locks do not pickle; worker processes get a fresh one.
		return {"type_table": self.type_table, "_cache": dict(self._cache)}

	def __setstate__(self, state: Dict[str, object]) -> None:
		self.__dict__.update(state)
		self._lock = threading.Lock()

	def _classify_locked(self, ty: TypeId, in_progress: Set[TypeId]) -> Copyability:
		cached = self._cache.get(ty)
		if cached is not None:
			return cached
		if ty in in_progress:
			# Recursive containment needs an indirection that owns its target.
			return Copyability.OWNING
		td = self.type_table.get(ty)
		if td.kind is TypeKind.SCALAR:
			result = Copyability.DUPLICABLE
		elif td.kind is TypeKind.REF:
			result = Copyability.OWNING if td.ref_mut else Copyability.DUPLICABLE
		elif td.kind in (TypeKind.STRUCT, TypeKind.VARIANT):
			if td.has_finalizer:
				result = Copyability.OWNING
			else:
				in_progress.add(ty)
				result = Copyability.DUPLICABLE
				for member in td.param_types:
					if self._classify_locked(member, in_progress) is Copyability.OWNING:
						result = Copyability.OWNING
						break
				in_progress.discard(ty)
		else:
			result = Copyability.OWNING
		self._cache[ty] = result
		return result


__all__ = ["Copyability", "TypeClassifier"]
