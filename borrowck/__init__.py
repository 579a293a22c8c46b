# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Ownership and borrow verification for a small program representation.

Entry points:
  - borrowck.borrow_checker_pass.BorrowChecker: verify one function
  - borrowck.batch.verify_program: verify every function of a Program
  - borrowck.parser.parse_program: build a Program from a textual listing
"""

__all__ = [
	"batch",
	"borrow_checker",
	"borrow_checker_pass",
	"conflicts",
	"lifetimes",
	"program",
	"regions",
	"state_tracker",
	"type_classifier",
	"validate",
]
