"""Utility helpers for the scanner."""

from .fileio import read_source, read_yaml_file
from .code import identifiers, is_plain_literal, split_top_level, strip_keyword

__all__ = [
    "read_source",
    "read_yaml_file",
    "identifiers",
    "is_plain_literal",
    "split_top_level",
    "strip_keyword",
]
