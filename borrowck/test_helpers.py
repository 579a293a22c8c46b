# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared helpers for tests that verify textual listings.
"""

from __future__ import annotations

from typing import Dict, List

from borrowck.batch import verify_program
from borrowck.borrow_checker_pass import FunctionResult
from borrowck.parser import parse_program
from borrowck.regions import RegionPolicy


def check_source(
	source: str,
	*,
	policy: RegionPolicy = RegionPolicy.LAST_USE,
	auto_borrow: bool = True,
) -> Dict[str, FunctionResult]:
	"""Parse `source` and verify every function; results keyed by function name."""
	program = parse_program(source)
	report = verify_program(program, region_policy=policy, enable_auto_borrow=auto_borrow)
	return report.by_name()


def kinds(result: FunctionResult) -> List[str]:
	return [d.kind.value for d in result.diagnostics]
