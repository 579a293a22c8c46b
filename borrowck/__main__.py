# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
CLI entrypoint for `python -m borrowck`.
"""

from .borrowck import main

if __name__ == "__main__":
	import sys
	sys.exit(main())
