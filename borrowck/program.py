# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program representation consumed by the borrow checker.

Pipeline placement:
  front end (textual listing in `borrowck.parser`, or any host producing these
  dataclasses directly) → this representation → `borrowck.validate` →
  `borrowck.borrow_checker_pass`.

A function is a CFG of basic blocks; each block is an ordered list of
elementary ownership operations followed by a single terminator. There are no
semantics baked in here; it is just a typed description of bindings, scopes,
operations and control flow. Operations and terminators are closed sets:
validation rejects anything outside `OPS` / `TERMINATORS`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from borrowck.core.span import Span
from borrowck.core.types_core import TypeId, TypeTable

ROOT_SCOPE = "fn"


class LoanKind(Enum):
	"""Kinds of borrows."""

	SHARED = auto()
	EXCLUSIVE = auto()


@dataclass(frozen=True)
class Binding:
	"""A named storage location within a function scope."""

	name: str
	ty: TypeId
	scope: str = ROOT_SCOPE
	mutable: bool = False
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Scope:
	"""Lexical extent; `parent` is None only for the function root scope."""

	id: str
	parent: Optional[str] = None


# Operations


class Op:
	"""Base class for elementary operations (non-terminators)."""

	span: Span


@dataclass(frozen=True)
class Declare(Op):
	"""Binding comes into existence, UNINITIALIZED (type/scope live in the binding table)."""

	binding: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class InitAssign(Op):
	"""
	binding = source

	`source` is another binding (moved or copied per its type) or None for a
	constant. Initializes, re-initializes or overwrites `binding`.
	"""

	binding: str
	source: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Move(Op):
	"""dest = source, transferring ownership (a copy when the type is duplicable)."""

	dest: str
	source: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Copy(Op):
	"""dest = bitwise copy of source; only valid for duplicable types."""

	dest: str
	source: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Borrow(Op):
	"""ref = &binding / &mut binding"""

	binding: str
	kind: LoanKind
	ref: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class UseRef(Op):
	"""Read of a reference (or of a plain binding)."""

	ref: str
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class WriteThrough(Op):
	"""
	*target = value (target is a reference) or target = value (owner write).

	`value` is a binding (moved or copied per its type) or None for a constant.
	"""

	target: str
	value: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Call(Op):
	"""
	[dest =] function(args...)

	`lifetime_bindings` pairs a callee lifetime parameter with the argument
	names bound to it; entries missing here are derived from the callee
	signature. A mapping is accepted and stored as pairs so the op stays
	hashable.
	"""

	function: str
	args: Tuple[str, ...] = ()
	lifetime_bindings: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
	dest: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)

	def __post_init__(self) -> None:
		object.__setattr__(self, "args", tuple(self.args))
		pairs = self.lifetime_bindings.items() if isinstance(self.lifetime_bindings, Mapping) else self.lifetime_bindings
		object.__setattr__(self, "lifetime_bindings", tuple((lt, tuple(names)) for lt, names in pairs))

	def bound_to(self, lifetime: str) -> Optional[Tuple[str, ...]]:
		"""Arguments explicitly bound to `lifetime`, or None when it is not bound here."""
		for lt, names in self.lifetime_bindings:
			if lt == lifetime:
				return names
		return None


@dataclass(frozen=True)
class ScopeEnd(Op):
	"""End of a lexical scope: bindings declared in it (and nested scopes) are dropped."""

	scope: str
	span: Span = field(default_factory=Span, compare=False)


OPS = (Declare, InitAssign, Move, Copy, Borrow, UseRef, WriteThrough, Call, ScopeEnd)


# Terminators


class Terminator:
	"""Base class for block terminators."""

	span: Span

	@property
	def targets(self) -> Tuple[str, ...]:
		return ()


@dataclass(frozen=True)
class Jump(Terminator):
	"""Unconditional branch to another basic block."""

	target: str
	span: Span = field(default_factory=Span, compare=False)

	@property
	def targets(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class Branch(Terminator):
	"""Conditional branch to then/else blocks; `cond` is an optional binding read."""

	then_target: str
	else_target: str
	cond: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)

	@property
	def targets(self) -> Tuple[str, ...]:
		return (self.then_target, self.else_target)


@dataclass(frozen=True)
class Return(Terminator):
	"""Function return with an optional value (binding or reference)."""

	value: Optional[str] = None
	span: Span = field(default_factory=Span, compare=False)


TERMINATORS = (Jump, Branch, Return)


# Containers


@dataclass
class BasicBlock:
	"""
	Basic block: a list of operations followed by a single terminator.

	No control flow leaves this block except via the terminator.
	"""

	label: str
	ops: List[Op] = field(default_factory=list)
	terminator: Optional[Terminator] = None


@dataclass(frozen=True)
class Param:
	"""Function parameter; reference lifetimes live on the parameter type."""

	name: str
	ty: TypeId
	mutable: bool = False


@dataclass
class FnSignature:
	"""
	Parameter types (each possibly a reference tagged with a lifetime parameter)
	and a return type. `outlives` holds declared `'long: 'short` bounds as
	(long, short) pairs.
	"""

	name: str
	params: List[Param] = field(default_factory=list)
	return_type: Optional[TypeId] = None
	lifetimes: List[str] = field(default_factory=list)
	outlives: List[Tuple[str, str]] = field(default_factory=list)
	span: Span = field(default_factory=Span)


@dataclass
class Function:
	"""
	Function body: binding table, scope tree and CFG.

	Parameters are registered as bindings of the root scope on construction.
	`entry` defaults to the first block.
	"""

	signature: FnSignature
	bindings: Dict[str, Binding] = field(default_factory=dict)
	scopes: Dict[str, Scope] = field(default_factory=dict)
	blocks: Dict[str, BasicBlock] = field(default_factory=dict)
	entry: Optional[str] = None

	def __post_init__(self) -> None:
		self.scopes.setdefault(ROOT_SCOPE, Scope(ROOT_SCOPE, None))
		for param in self.signature.params:
			self.bindings.setdefault(
				param.name,
				Binding(param.name, param.ty, ROOT_SCOPE, param.mutable, self.signature.span),
			)

	@property
	def name(self) -> str:
		return self.signature.name

	@property
	def params(self) -> List[str]:
		return [p.name for p in self.signature.params]

	@property
	def entry_label(self) -> Optional[str]:
		if self.entry is not None:
			return self.entry
		return next(iter(self.blocks), None)

	def add_scope(self, scope_id: str, parent: str = ROOT_SCOPE) -> Scope:
		scope = Scope(scope_id, parent)
		self.scopes[scope_id] = scope
		return scope

	def add_binding(self, binding: Binding) -> Binding:
		self.bindings[binding.name] = binding
		return binding

	def add_block(self, label: str, ops: Optional[List[Op]] = None, terminator: Optional[Terminator] = None) -> BasicBlock:
		blk = BasicBlock(label, list(ops or []), terminator)
		self.blocks[label] = blk
		return blk

	def successors(self, label: str) -> Tuple[str, ...]:
		term = self.blocks[label].terminator
		return term.targets if term is not None else ()

	def scope_descendants(self, scope_id: str) -> List[str]:
		"""`scope_id` plus every scope nested (transitively) inside it."""
		out = [scope_id]
		idx = 0
		while idx < len(out):
			cur = out[idx]
			out.extend(s.id for s in self.scopes.values() if s.parent == cur and s.id not in out)
			idx += 1
		return out

	def iter_ops(self) -> Iterator[Tuple[str, int, Op]]:
		for label, blk in self.blocks.items():
			for idx, op in enumerate(blk.ops):
				yield label, idx, op


@dataclass
class Program:
	"""Mapping from function name to body, plus callee-only (extern) signatures."""

	type_table: TypeTable
	functions: Dict[str, Function] = field(default_factory=dict)
	externs: Dict[str, FnSignature] = field(default_factory=dict)

	def add_function(self, fn: Function) -> Function:
		self.functions[fn.name] = fn
		return fn

	def signatures(self) -> Dict[str, FnSignature]:
		"""All callable signatures by name (bodies win over externs)."""
		sigs = dict(self.externs)
		sigs.update({name: fn.signature for name, fn in self.functions.items()})
		return sigs


__all__ = [
	"ROOT_SCOPE",
	"LoanKind",
	"Binding",
	"Scope",
	"Op",
	"Declare",
	"InitAssign",
	"Move",
	"Copy",
	"Borrow",
	"UseRef",
	"WriteThrough",
	"Call",
	"ScopeEnd",
	"OPS",
	"Terminator",
	"Jump",
	"Branch",
	"Return",
	"TERMINATORS",
	"BasicBlock",
	"Param",
	"FnSignature",
	"Function",
	"Program",
]
