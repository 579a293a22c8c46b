# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal type core shared by the program representation and the classifier.

TypeIds are opaque ints indexing into a TypeTable. TypeKind keeps the universe
small: scalars, strings, user structs (with an optional finalizer), tagged
variants whose arms carry payloads, growable arrays, references
(shared/exclusive, optionally tagged with a lifetime parameter) and an
Unknown fallback. The table knows nothing about copy vs move;
that decision lives in `borrowck.type_classifier`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Tuple


TypeId = int  # opaque handle into the TypeTable

STATIC_LIFETIME = "'static"


class TypeKind(Enum):
	"""Kinds of types understood by the type core."""

	SCALAR = auto()
	STRING = auto()
	STRUCT = auto()
	VARIANT = auto()
	ARRAY = auto()
	REF = auto()
	UNKNOWN = auto()


@dataclass(frozen=True)
class TypeDef:
	"""Definition of a type stored in the TypeTable."""

	kind: TypeKind
	name: str
	param_types: Tuple[TypeId, ...] = ()  # VARIANT: every arm's payload, flattened
	ref_mut: bool | None = None  # only meaningful for TypeKind.REF
	lifetime: Optional[str] = None  # only meaningful for TypeKind.REF
	field_names: Tuple[str, ...] = ()  # STRUCT members or VARIANT arms
	has_finalizer: bool = False  # STRUCT declares a custom release hook
	arm_payloads: Tuple[Tuple[TypeId, ...], ...] = ()  # VARIANT payloads per arm, parallel to field_names

	@property
	def is_ref(self) -> bool:
		return self.kind is TypeKind.REF


class TypeTable:
	"""
	Simple type table that owns TypeIds.

	Scalars/strings/unknown are interned by name, references by
	(inner, mutability, lifetime), arrays by element type. Structs and
	variants are registered by name first and defined afterwards so members
	may refer to types declared later (or to the type itself).
	"""

	def __init__(self) -> None:
		self._defs: Dict[TypeId, TypeDef] = {}
		self._next_id: TypeId = 1  # reserve 0 for "invalid"
		self._by_name: Dict[str, TypeId] = {}
		self._ref_cache: Dict[Tuple[TypeId, bool, Optional[str]], TypeId] = {}
		self._array_cache: Dict[TypeId, TypeId] = {}

	def new_scalar(self, name: str) -> TypeId:
		"""Register (or return) a named scalar type such as Int or Bool."""
		return self._named(TypeKind.SCALAR, name)

	def ensure_int(self) -> TypeId:
		return self.new_scalar("Int")

	def ensure_bool(self) -> TypeId:
		return self.new_scalar("Bool")

	def ensure_string(self) -> TypeId:
		"""Return the heap-owning String type."""
		return self._named(TypeKind.STRING, "String")

	def ensure_unknown(self) -> TypeId:
		return self._named(TypeKind.UNKNOWN, "Unknown")

	def ensure_ref(self, inner: TypeId, lifetime: Optional[str] = None) -> TypeId:
		"""Return a stable shared reference TypeId to `inner`."""
		return self.new_ref(inner, is_mut=False, lifetime=lifetime)

	def ensure_ref_mut(self, inner: TypeId, lifetime: Optional[str] = None) -> TypeId:
		"""Return a stable exclusive reference TypeId to `inner`."""
		return self.new_ref(inner, is_mut=True, lifetime=lifetime)

	def new_ref(self, inner: TypeId, is_mut: bool, lifetime: Optional[str] = None) -> TypeId:
		key = (inner, is_mut, lifetime)
		if key not in self._ref_cache:
			name = "RefMut" if is_mut else "Ref"
			self._ref_cache[key] = self._add(
				TypeDef(kind=TypeKind.REF, name=name, param_types=(inner,), ref_mut=is_mut, lifetime=lifetime)
			)
		return self._ref_cache[key]

	def new_array(self, elem: TypeId) -> TypeId:
		"""Register a growable Array<elem> type (heap storage, always owning)."""
		if elem not in self._array_cache:
			self._array_cache[elem] = self._add(TypeDef(kind=TypeKind.ARRAY, name="Array", param_types=(elem,)))
		return self._array_cache[elem]

	def declare_struct(self, name: str) -> TypeId:
		"""Reserve a TypeId for a struct; members are attached by `define_struct`."""
		existing = self._by_name.get(name)
		if existing is not None:
			if self._defs[existing].kind is not TypeKind.STRUCT:
				raise ValueError(f"type name '{name}' already used by a non-struct type")
			return existing
		return self._named(TypeKind.STRUCT, name)

	def define_struct(
		self,
		name: str,
		fields: List[Tuple[str, TypeId]],
		*,
		has_finalizer: bool = False,
	) -> TypeId:
		"""Declare (if needed) and define a struct's members and finalizer flag."""
		ty = self.declare_struct(name)
		self._defs[ty] = TypeDef(
			kind=TypeKind.STRUCT,
			name=name,
			param_types=tuple(t for _, t in fields),
			field_names=tuple(n for n, _ in fields),
			has_finalizer=has_finalizer,
		)
		return ty

	def declare_variant(self, name: str) -> TypeId:
		"""Reserve a TypeId for a variant; arms are attached by `define_variant`."""
		return self._named(TypeKind.VARIANT, name)

	def define_variant(self, name: str, arms: List[Tuple[str, List[TypeId]]]) -> TypeId:
		"""Declare (if needed) and define a variant's arms; an arm may carry no payload."""
		ty = self.declare_variant(name)
		payloads = tuple(tuple(p) for _, p in arms)
		self._defs[ty] = TypeDef(
			kind=TypeKind.VARIANT,
			name=name,
			param_types=tuple(t for p in payloads for t in p),
			field_names=tuple(n for n, _ in arms),
			arm_payloads=payloads,
		)
		return ty

	def lookup(self, name: str) -> Optional[TypeId]:
		"""Find a named (scalar/string/struct/variant/unknown) type."""
		return self._by_name.get(name)

	def get(self, ty: TypeId) -> TypeDef:
		"""Fetch the TypeDef for a given TypeId."""
		return self._defs[ty]

	def type_ids(self) -> Iterator[TypeId]:
		return iter(list(self._defs.keys()))

	def display(self, ty: TypeId) -> str:
		"""Human-readable spelling used in diagnostics and tests."""
		td = self._defs[ty]
		if td.kind is TypeKind.REF:
			lt = f"{td.lifetime} " if td.lifetime else ""
			mut = "mut " if td.ref_mut else ""
			return f"&{lt}{mut}{self.display(td.param_types[0])}"
		if td.kind is TypeKind.ARRAY:
			return f"[{self.display(td.param_types[0])}]"
		return td.name

	def _named(self, kind: TypeKind, name: str) -> TypeId:
		existing = self._by_name.get(name)
		if existing is not None:
			if self._defs[existing].kind is not kind:
				raise ValueError(f"type name '{name}' already registered as {self._defs[existing].kind.name}")
			return existing
		ty = self._add(TypeDef(kind=kind, name=name))
		self._by_name[name] = ty
		return ty

	def _add(self, td: TypeDef) -> TypeId:
		ty_id = self._next_id
		self._next_id += 1
		self._defs[ty_id] = td
		return ty_id


__all__ = ["TypeId", "TypeKind", "TypeDef", "TypeTable", "STATIC_LIFETIME"]
