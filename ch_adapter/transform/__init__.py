"""Attribute mapping and normalization engines."""

from .mapping import map_attributes
from .normalization import normalize_attributes
from .rules import Ruleset, load_ruleset, parse_ruleset

__all__ = [
    "map_attributes",
    "normalize_attributes",
    "Ruleset",
    "load_ruleset",
    "parse_ruleset",
]
