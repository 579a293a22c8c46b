# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Command-line host: parse program listings and borrow-check every function.

    python -m borrowck FILE... [--json] [--jobs N] [--lexical-regions] [--no-auto-borrow] [-v]

Human-readable diagnostics go to stderr as `file:line:col: error: message`
followed by `note:` lines for related locations. With --json a single payload
`{exit_code, functions: [...]}` is printed to stdout instead. The exit code is
1 when any listing fails to parse or any function is rejected.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from borrowck.batch import verify_program
from borrowck.core.diagnostics import Diagnostic
from borrowck.parser import ProgramParseError, parse_file
from borrowck.regions import RegionPolicy

logger = logging.getLogger(__name__)


def _diag_to_json(diag: Diagnostic, source: Path) -> Dict[str, Any]:
	"""Render a Diagnostic to a structured JSON-friendly dict."""
	out = diag.to_json()
	if out.get("file") is None:
		out["file"] = str(source)
	return out


def _print_diag(diag: Diagnostic, source: Path) -> None:
	file = diag.span.file or str(source)
	line = diag.span.line if diag.span.line is not None else "?"
	column = diag.span.column if diag.span.column is not None else "?"
	where = f" [{diag.location}]" if diag.location is not None else ""
	print(f"{file}:{line}:{column}: {diag.severity}: {diag.code}: {diag.message}{where}", file=sys.stderr)
	for rel in diag.related:
		rline = rel.span.line if rel.span.line is not None else "?"
		rcol = rel.span.column if rel.span.column is not None else "?"
		print(f"{file}:{rline}:{rcol}: note: {rel.message} [{rel.location}]", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
	"""
	Parse each listing, verify its functions and report.

	Returns the process exit code (0 when every function of every file is
	accepted).
	"""
	parser = argparse.ArgumentParser(prog="borrowck", description="Ownership and borrow checker for program listings")
	parser.add_argument("source", type=Path, nargs="+", help="Path(s) to program listing file(s)")
	parser.add_argument(
		"--json",
		action="store_true",
		help="Emit results as JSON (exit_code plus per-function diagnostics)",
	)
	parser.add_argument(
		"-j",
		"--jobs",
		type=int,
		default=1,
		help="Verify functions on this many worker processes (default: 1)",
	)
	parser.add_argument(
		"--lexical-regions",
		action="store_true",
		help="Keep loans alive until scope end instead of the last use of the reference",
	)
	parser.add_argument(
		"--no-auto-borrow",
		dest="auto_borrow",
		action="store_false",
		default=True,
		help="Pass owned arguments to reference parameters by value instead of borrowing them",
	)
	parser.add_argument("-v", "--verbose", action="store_true", help="Log analysis progress to stderr")
	args = parser.parse_args(argv)

	if args.verbose:
		logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

	policy = RegionPolicy.LEXICAL if args.lexical_regions else RegionPolicy.LAST_USE
	exit_code = 0
	functions: List[Dict[str, Any]] = []
	for source in args.source:
		try:
			program = parse_file(source)
		except OSError as err:
			exit_code = 1
			msg = f"cannot read {source}: {err.strerror or err}"
			if args.json:
				functions.append({"file": str(source), "function": None, "accepted": False, "diagnostics": [
					{"phase": "parser", "kind": None, "message": msg, "severity": "error", "file": str(source)}
				]})
			else:
				print(f"{source}: error: {msg}", file=sys.stderr)
			continue
		except ProgramParseError as err:
			exit_code = 1
			if args.json:
				functions.append({"file": str(source), "function": None, "accepted": False, "diagnostics": [
					{
						"phase": "parser",
						"kind": None,
						"message": str(err),
						"severity": "error",
						"file": err.span.file or str(source),
						"line": err.span.line,
						"column": err.span.column,
					}
				]})
			else:
				print(f"{err.span.render()}: error: {err}", file=sys.stderr)
			continue

		logger.debug("%s: %d function(s), %d extern(s)", source, len(program.functions), len(program.externs))
		report = verify_program(
			program,
			jobs=args.jobs,
			region_policy=policy,
			enable_auto_borrow=args.auto_borrow,
		)
		if not report.accepted:
			exit_code = 1
		for result in report.results:
			if args.json:
				functions.append(
					{
						"file": str(source),
						"function": result.name,
						"accepted": result.accepted,
						"diagnostics": [_diag_to_json(d, source) for d in result.diagnostics],
					}
				)
			else:
				for d in result.diagnostics:
					_print_diag(d, source)

	if args.json:
		print(json.dumps({"exit_code": exit_code, "functions": functions}))
	return exit_code


__all__ = ["main"]
