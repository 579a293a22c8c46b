# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the verification passes.

A diagnostic names the offending binding (or reference), the program point
of the operation that violated a rule, and any related program points (the
borrow that is still live, the later use keeping it live, the earlier move).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .span import Span


class DiagnosticKind(Enum):
	"""Diagnostic taxonomy; the value is the user-facing kind name."""

	USE_AFTER_MOVE = "UseAfterMove"
	USE_OF_UNINITIALIZED = "UseOfUninitialized"
	USE_AFTER_DROP = "UseAfterDrop"
	CONFLICTING_BORROW = "ConflictingBorrow"
	MOVE_WHILE_BORROWED = "MoveWhileBorrowed"
	WRITE_WHILE_BORROWED = "WriteWhileBorrowed"
	DANGLING_REFERENCE = "DanglingReference"
	LIFETIME_MISMATCH = "LifetimeMismatch"
	IMMUTABLE_WRITE = "ImmutableWrite"
	INVALID_COPY = "InvalidCopy"
	MALFORMED_PROGRAM = "MalformedProgram"


# Kinds that report an access to a binding in a non-OWNED state. These are the
# ones subject to same-block cascade suppression.
USE_STATE_KINDS = frozenset(
	{
		DiagnosticKind.USE_AFTER_MOVE,
		DiagnosticKind.USE_OF_UNINITIALIZED,
		DiagnosticKind.USE_AFTER_DROP,
	}
)


@dataclass(frozen=True, order=True)
class Location:
	"""
	A program point: op `index` inside `block` of `function`.

	The block terminator sits at index `len(block.ops)`.
	"""

	function: str
	block: str
	index: int

	def __str__(self) -> str:
		return f"{self.function}:{self.block}[{self.index}]"


@dataclass(frozen=True)
class RelatedLocation:
	"""Secondary program point attached to a diagnostic."""

	location: Location
	message: str
	span: Span = field(default_factory=Span)


@dataclass
class Diagnostic:
	"""Represents one ownership/borrowing violation."""

	message: str
	kind: DiagnosticKind
	subject: Optional[str] = None  # offending binding or reference name
	location: Optional[Location] = None
	related: List[RelatedLocation] = field(default_factory=list)
	severity: str = "error"
	phase: str = "borrowcheck"
	span: Span = field(default_factory=Span)

	def __post_init__(self) -> None:
		# Normalize missing spans to the sentinel Span() so downstream tooling
		# can rely on a structured object instead of None.
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def code(self) -> str:
		return self.kind.value

	def to_json(self) -> Dict[str, Any]:
		"""Render to a structured JSON-friendly dict."""
		return {
			"kind": self.kind.value,
			"message": self.message,
			"severity": self.severity,
			"phase": self.phase,
			"subject": self.subject,
			"location": _location_json(self.location),
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"related": [
				{
					"message": rel.message,
					"location": _location_json(rel.location),
					"line": rel.span.line,
					"column": rel.span.column,
				}
				for rel in self.related
			],
		}


def _location_json(loc: Optional[Location]) -> Optional[Dict[str, Any]]:
	if loc is None:
		return None
	return {"function": loc.function, "block": loc.block, "index": loc.index}


class MalformedProgram(ValueError):
	"""
	Fatal structural error in the input representation (undeclared binding,
	unknown block label, missing terminator, ...).

	Halts analysis of the offending function only; the driver converts it into
	a single MALFORMED_PROGRAM diagnostic.
	"""

	def __init__(self, message: str, *, location: Optional[Location] = None, span: Optional[Span] = None) -> None:
		super().__init__(message)
		self.location = location
		self.span = span or Span()

	def to_diagnostic(self) -> Diagnostic:
		return Diagnostic(
			message=str(self),
			kind=DiagnosticKind.MALFORMED_PROGRAM,
			location=self.location,
			span=self.span,
		)


__all__ = [
	"DiagnosticKind",
	"USE_STATE_KINDS",
	"Location",
	"RelatedLocation",
	"Diagnostic",
	"MalformedProgram",
]
