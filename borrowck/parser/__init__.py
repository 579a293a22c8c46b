"""
Textual program listing front end (Lark grammar + tree builder).
"""

from .parser import ProgramParseError, parse_file, parse_program

__all__ = ["ProgramParseError", "parse_file", "parse_program"]
