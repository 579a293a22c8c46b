"""
borrowck.core: shared core types/diagnostics used across the passes.

Modules:
  - span: source spans for operations and diagnostics
  - diagnostics: Diagnostic, DiagnosticKind, Location, MalformedProgram
  - types_core: TypeId/TypeTable primitives
"""

__all__ = [
	"span",
	"diagnostics",
	"types_core",
]
