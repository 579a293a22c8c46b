# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lark front end for the textual program listing.

The listing spells out the program representation directly (struct and
variant types, extern signatures, functions as scopes plus labelled blocks of
elementary operations); the builder below turns the parse tree into `borrowck.program`
objects, registering the reference bindings that borrows introduce. It does
not check ownership or even that every name is declared: that is left to
validation so a malformed listing surfaces as a MalformedProgram diagnostic
for the one function involved.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from borrowck.core.span import Span
from borrowck.core.types_core import STATIC_LIFETIME, TypeId, TypeTable
from borrowck.program import (
	ROOT_SCOPE,
	Binding,
	Borrow,
	Branch,
	Call,
	Copy,
	Declare,
	FnSignature,
	Function,
	InitAssign,
	Jump,
	LoanKind,
	Move,
	Op,
	Param,
	Program,
	Return,
	ScopeEnd,
	Terminator,
	UseRef,
	WriteThrough,
)
from borrowck.validate import normalize_function

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="program",
	propagate_positions=True,
	maybe_placeholders=False,
)

_SCALARS = ("Int", "Bool", "Float", "Char", "Byte")


class ProgramParseError(ValueError):
	"""
	Error raised for a listing that does not parse or does not describe a
	coherent program (unknown type names, duplicate definitions).

	Carries a best-effort `span` so the host can print `file:line:col`.
	"""

	def __init__(self, message: str, *, span: Optional[Span] = None) -> None:
		super().__init__(message)
		self.span = span or Span()


def parse_program(source: str, filename: Optional[str] = None) -> Program:
	"""Parse a listing into a Program (types, extern signatures, functions)."""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as err:
		span = Span(
			file=filename,
			line=getattr(err, "line", None),
			column=getattr(err, "column", None),
		)
		raise ProgramParseError(_describe(err), span=span) from err
	return _Builder(filename).build(tree)


def parse_file(path: str | Path) -> Program:
	p = Path(path)
	return parse_program(p.read_text(), filename=str(p))


def _describe(err: UnexpectedInput) -> str:
	token = getattr(err, "token", None)
	if token is not None:
		if token.type == "$END":
			return "unexpected end of input"
		return f"unexpected token {str(token)!r}"
	char = getattr(err, "char", None)
	if char is not None:
		return f"unexpected character {char!r}"
	return "syntax error"


def _name(node: Tree) -> str:
	data = node.data
	return data.value if isinstance(data, Token) else str(data)


def _tokens(node: Tree, kind: str) -> List[Token]:
	return [c for c in node.children if isinstance(c, Token) and c.type == kind]


def _subtrees(node: Tree) -> List[Tree]:
	return [c for c in node.children if isinstance(c, Tree)]


def _has(node: Tree, kind: str) -> bool:
	return any(isinstance(c, Token) and c.type == kind for c in node.children)


class _Builder:
	def __init__(self, filename: Optional[str]) -> None:
		self.filename = filename
		self.type_table = TypeTable()
		self.program = Program(self.type_table)

	def span(self, node: Tree | Token) -> Span:
		if isinstance(node, Token):
			return Span.from_meta(node, self.filename)
		return Span.from_meta(node.meta, self.filename)

	def build(self, tree: Tree) -> Program:
		items = _subtrees(tree)
		# Type names first so members and signatures may refer to any of them.
		for item in items:
			kind = _name(item)
			if kind in ("struct_def", "variant_def"):
				name = _tokens(item, "NAME")[0]
				if self.type_table.lookup(str(name)) is not None:
					raise ProgramParseError(f"duplicate type '{name}'", span=self.span(name))
				if kind == "struct_def":
					self.type_table.declare_struct(str(name))
				else:
					self.type_table.declare_variant(str(name))
		for item in items:
			kind = _name(item)
			if kind == "struct_def":
				self._build_struct(item)
			elif kind == "variant_def":
				self._build_variant(item)
		for item in items:
			kind = _name(item)
			if kind == "extern_def":
				sig = self._build_signature(_subtrees(item)[0])
				self._check_unique(sig)
				self.program.externs[sig.name] = sig
			elif kind == "fn_def":
				fn = self._build_function(item)
				self._check_unique(fn.signature)
				normalize_function(fn, self.type_table)
				self.program.add_function(fn)
		return self.program

	def _check_unique(self, sig: FnSignature) -> None:
		if sig.name in self.program.functions or sig.name in self.program.externs:
			raise ProgramParseError(f"duplicate function '{sig.name}'", span=sig.span)

	# Types

	def _build_struct(self, node: Tree) -> None:
		name = str(_tokens(node, "NAME")[0])
		fields: List[Tuple[str, TypeId]] = []
		for fld in _subtrees(node):
			fname = _tokens(fld, "NAME")[0]
			if any(f == str(fname) for f, _ in fields):
				raise ProgramParseError(f"duplicate member '{fname}' in struct '{name}'", span=self.span(fname))
			fields.append((str(fname), self._build_type(_subtrees(fld)[0])))
		self.type_table.define_struct(name, fields, has_finalizer=_has(node, "DROP"))

	def _build_variant(self, node: Tree) -> None:
		name = str(_tokens(node, "NAME")[0])
		arms: List[Tuple[str, List[TypeId]]] = []
		for arm in _subtrees(node):
			aname = _tokens(arm, "NAME")[0]
			if any(a == str(aname) for a, _ in arms):
				raise ProgramParseError(f"duplicate arm '{aname}' in variant '{name}'", span=self.span(aname))
			arms.append((str(aname), [self._build_type(t) for t in _subtrees(arm)]))
		self.type_table.define_variant(name, arms)

	def _build_type(self, node: Tree) -> TypeId:
		kind = _name(node)
		if kind == "named_type":
			tok = _tokens(node, "NAME")[0]
			name = str(tok)
			if name == "String":
				return self.type_table.ensure_string()
			if name == "Unknown":
				return self.type_table.ensure_unknown()
			if name in _SCALARS:
				return self.type_table.new_scalar(name)
			ty = self.type_table.lookup(name)
			if ty is None:
				raise ProgramParseError(f"unknown type '{name}'", span=self.span(tok))
			return ty
		if kind == "array_type":
			return self.type_table.new_array(self._build_type(_subtrees(node)[0]))
		if kind == "ref_type":
			lifetimes = _tokens(node, "LIFETIME")
			inner = self._build_type(_subtrees(node)[0])
			return self.type_table.new_ref(
				inner,
				is_mut=_has(node, "MUT"),
				lifetime=str(lifetimes[0]) if lifetimes else None,
			)
		raise ProgramParseError(f"unsupported type syntax {kind}", span=self.span(node))

	# Signatures and bodies

	def _build_signature(self, node: Tree) -> FnSignature:
		name = str(_tokens(node, "NAME")[0])
		lifetimes: List[str] = []
		outlives: List[Tuple[str, str]] = []
		params: List[Param] = []
		return_type: Optional[TypeId] = None
		for child in _subtrees(node):
			kind = _name(child)
			if kind == "generics":
				for lp in _subtrees(child):
					names = [str(t) for t in _tokens(lp, "LIFETIME")]
					if names[0] == STATIC_LIFETIME:
						raise ProgramParseError("'static cannot be declared as a lifetime parameter", span=self.span(lp))
					lifetimes.append(names[0])
					outlives.extend((names[0], bound) for bound in names[1:])
			elif kind == "param":
				pname = str(_tokens(child, "NAME")[0])
				params.append(Param(pname, self._build_type(_subtrees(child)[0]), mutable=_has(child, "MUT")))
			elif kind == "ret":
				return_type = self._build_type(_subtrees(child)[0])
		return FnSignature(
			name=name,
			params=params,
			return_type=return_type,
			lifetimes=lifetimes,
			outlives=outlives,
			span=self.span(node),
		)

	def _build_function(self, node: Tree) -> Function:
		children = _subtrees(node)
		fn = Function(self._build_signature(children[0]))
		for child in children[1:]:
			if _name(child) == "scope_decl":
				names = [str(t) for t in _tokens(child, "NAME")]
				if names[0] in fn.scopes:
					raise ProgramParseError(f"duplicate scope '{names[0]}'", span=self.span(child))
				fn.add_scope(names[0], names[1] if len(names) > 1 else ROOT_SCOPE)
		for child in children[1:]:
			if _name(child) == "block":
				label = str(_tokens(child, "NAME")[0])
				if label in fn.blocks:
					raise ProgramParseError(f"duplicate block label '{label}'", span=self.span(child))
				ops: List[Op] = []
				term: Optional[Terminator] = None
				for stmt in _subtrees(child):
					if _name(stmt).endswith("_term"):
						term = self._build_terminator(stmt)
					else:
						ops.append(self._build_op(fn, stmt))
				fn.add_block(label, ops, term)
		return fn

	def _build_op(self, fn: Function, node: Tree) -> Op:
		kind = _name(node)
		names = [str(t) for t in _tokens(node, "NAME")]
		span = self.span(node)
		if kind == "declare_op":
			ty = self._build_type(_subtrees(node)[0])
			scope = names[1] if len(names) > 1 else ROOT_SCOPE
			binding = Binding(names[0], ty, scope, mutable=_has(node, "MUT"), span=span)
			existing = fn.bindings.get(names[0])
			if existing is not None and existing != binding:
				raise ProgramParseError(f"conflicting declarations of '{names[0]}'", span=span)
			fn.add_binding(binding)
			return Declare(names[0], span=span)
		if kind == "init_op":
			return InitAssign(names[0], names[1] if len(names) > 1 else None, span=span)
		if kind == "move_op":
			return Move(names[0], names[1], span=span)
		if kind == "copy_op":
			return Copy(names[0], names[1], span=span)
		if kind == "borrow_op":
			loan = LoanKind.EXCLUSIVE if _has(node, "MUT") else LoanKind.SHARED
			return Borrow(names[1], loan, names[0], span=span)
		if kind == "use_op":
			return UseRef(names[0], span=span)
		if kind == "write_op":
			return WriteThrough(names[0], names[1] if len(names) > 1 else None, span=span)
		if kind in ("call_op", "call_dest_op"):
			dest = names[0] if kind == "call_dest_op" else None
			callee = names[1] if kind == "call_dest_op" else names[0]
			args: Tuple[str, ...] = ()
			bindings: Dict[str, Tuple[str, ...]] = {}
			for sub in _subtrees(node):
				if _name(sub) == "call_args":
					args = tuple(str(t) for t in _tokens(sub, "NAME"))
				elif _name(sub) == "with_clause":
					for lb in _subtrees(sub):
						lt = str(_tokens(lb, "LIFETIME")[0])
						bindings[lt] = bindings.get(lt, ()) + tuple(str(t) for t in _tokens(lb, "NAME"))
			return Call(callee, args, bindings, dest, span=span)
		if kind == "end_op":
			return ScopeEnd(names[0], span=span)
		raise ProgramParseError(f"unsupported operation {kind}", span=span)

	def _build_terminator(self, node: Tree) -> Terminator:
		kind = _name(node)
		names = [str(t) for t in _tokens(node, "NAME")]
		span = self.span(node)
		if kind == "jump_term":
			return Jump(names[0], span=span)
		if kind == "branch_cond_term":
			return Branch(names[1], names[2], cond=names[0], span=span)
		if kind == "branch_term":
			return Branch(names[0], names[1], span=span)
		if kind == "return_term":
			return Return(names[0] if names else None, span=span)
		raise ProgramParseError(f"unsupported terminator {kind}", span=span)


__all__ = ["ProgramParseError", "parse_program", "parse_file"]
