# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Whole-program verification.

Functions are verified independently: nothing a function's analysis computes
is visible to another, so with `jobs > 1` they are spread over a process
pool. Normalization (implicit reference bindings) and classifier priming
happen up front in the parent, so workers only read the type table and the
classifier cache they receive.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from borrowck.borrow_checker_pass import BorrowChecker, FunctionResult
from borrowck.core.diagnostics import Diagnostic
from borrowck.core.types_core import TypeTable
from borrowck.program import FnSignature, Function, Program
from borrowck.regions import RegionPolicy
from borrowck.type_classifier import TypeClassifier
from borrowck.validate import normalize_function

logger = logging.getLogger(__name__)


@dataclass
class ProgramReport:
	"""Per-function results in program order."""

	results: List[FunctionResult] = field(default_factory=list)

	@property
	def accepted(self) -> bool:
		return all(r.accepted for r in self.results)

	@property
	def diagnostics(self) -> List[Diagnostic]:
		return [d for r in self.results for d in r.diagnostics]

	def by_name(self) -> Dict[str, FunctionResult]:
		return {r.name: r for r in self.results}


# Worker entry point (top-level so the pool can pickle it).
def _verify_one(
	args: Tuple[Function, TypeTable, TypeClassifier, Mapping[str, FnSignature], RegionPolicy, bool],
) -> FunctionResult:
	fn, type_table, classifier, signatures, policy, auto_borrow = args
	checker = BorrowChecker(
		type_table=type_table,
		classifier=classifier,
		region_policy=policy,
		enable_auto_borrow=auto_borrow,
		signatures=signatures,
	)
	return checker.check_function(fn)


def verify_program(
	program: Program,
	*,
	jobs: int = 1,
	region_policy: RegionPolicy = RegionPolicy.LAST_USE,
	enable_auto_borrow: bool = True,
) -> ProgramReport:
	"""Verify every function of `program`; `jobs > 1` uses a process pool."""
	for fn in program.functions.values():
		normalize_function(fn, program.type_table)
	classifier = TypeClassifier(program.type_table).prime()
	signatures = program.signatures()
	work = [
		(fn, program.type_table, classifier, signatures, region_policy, enable_auto_borrow)
		for fn in program.functions.values()
	]
	if jobs <= 1 or len(work) <= 1:
		results = [_verify_one(item) for item in work]
	else:
		logger.debug("verifying %d function(s) on %d worker(s)", len(work), jobs)
		with ProcessPoolExecutor(max_workers=jobs) as pool:
			results = list(pool.map(_verify_one, work))
	report = ProgramReport(results)
	logger.debug(
		"%d function(s) verified, %d rejected",
		len(results),
		sum(1 for r in results if not r.accepted),
	)
	return report


__all__ = ["ProgramReport", "verify_program"]
