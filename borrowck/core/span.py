# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source span representation used by operations and diagnostics.

Programs built directly from IR dataclasses carry the sentinel `Span()`; the
textual listing front end fills in file/line/column from lark token metadata.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None

	@classmethod
	def from_meta(cls, meta: Any, file: Optional[str] = None) -> "Span":
		"""
		Construct a Span from a lark `Meta`/`Token` (or anything exposing
		`line`/`column`/`end_line`/`end_column`).

		Empty metas (lark sets `meta.empty` for rules that matched nothing)
		yield the sentinel span.
		"""
		if meta is None or getattr(meta, "empty", False):
			return cls(file=file)
		if isinstance(meta, cls):
			return meta
		return cls(
			file=file,
			line=getattr(meta, "line", None),
			column=getattr(meta, "column", None),
			end_line=getattr(meta, "end_line", None),
			end_column=getattr(meta, "end_column", None),
		)

	def is_known(self) -> bool:
		return self.line is not None

	def render(self) -> str:
		"""`file:line:col` with `?` for unknown parts."""
		file = self.file or "<input>"
		line = self.line if self.line is not None else "?"
		col = self.column if self.column is not None else "?"
		return f"{file}:{line}:{col}"


__all__ = ["Span"]
