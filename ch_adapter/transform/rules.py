"""
Rule document loading for :mod:`ch_adapter.transform.mapping` and
:mod:`ch_adapter.transform.normalization`.

Rule documents are YAML. Regular expressions may be written with the
``!regexp`` tag or as ``/pattern/flags`` strings, and are compiled on load.
Symbol-style names (``:trip_ticket``) are accepted and read as plain names.
"""

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

from config.settings import ConfigurationError

logger = logging.getLogger(__name__)

_SLASH_PATTERN = re.compile(r"^/(.+)/([imx]*)$", re.DOTALL)
_SYMBOL_NAME = re.compile(r"^:[A-Za-z_][A-Za-z0-9_]*$")
_FLAGS = {"i": re.IGNORECASE, "m": re.DOTALL, "x": re.VERBOSE}


def compile_pattern(text: str) -> re.Pattern:
    """Compile ``/pattern/flags`` or a bare pattern string."""
    match = _SLASH_PATTERN.match(text)
    if not match:
        return re.compile(text)
    flags = 0
    for flag in match.group(2):
        flags |= _FLAGS[flag]
    return re.compile(match.group(1), flags)


class RuleLoader(yaml.SafeLoader):
    """SafeLoader that understands regular expression tags."""


def _construct_regexp(loader: RuleLoader, node: yaml.Node) -> re.Pattern:
    return compile_pattern(loader.construct_scalar(node))


RuleLoader.add_constructor("!regexp", _construct_regexp)
RuleLoader.add_constructor("!ruby/regexp", _construct_regexp)


def _prepare(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {_prepare_key(key): _prepare(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_prepare(item) for item in value]
    if isinstance(value, str):
        if _SLASH_PATTERN.match(value):
            return compile_pattern(value)
        if _SYMBOL_NAME.match(value):
            return value[1:]
    return value


def _prepare_key(key: Any) -> Any:
    if isinstance(key, str) and _SYMBOL_NAME.match(key):
        return key[1:]
    return key


class Ruleset(Mapping):
    """
    Read-only view of a loaded rule document.

    Passed explicitly into every engine call; nothing registers rules
    globally.
    """

    def __init__(self, rules: Optional[Mapping] = None, source: Optional[Path] = None):
        self._rules = dict(rules or {})
        self.source = source

    def __getitem__(self, key: str) -> Any:
        return self._rules[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def attribute_names(self, sub: Optional[str] = None) -> list[str]:
        """
        Names of the attributes a (sub-)ruleset has rules for.

        Args:
            sub: Sub-ruleset name, or None for the top level

        Returns:
            List of attribute names (empty if the sub-ruleset is missing)
        """
        rules = self._rules if sub is None else self._rules.get(sub)
        if not isinstance(rules, Mapping):
            return []
        return [str(name) for name in rules if name != "__accept_unmapped__"]

    def __repr__(self) -> str:
        return f"Ruleset(source={self.source}, sections={list(self._rules)})"


def parse_ruleset(text: str, source: Optional[Path] = None) -> Ruleset:
    """
    Parse a YAML rule document.

    Raises:
        ConfigurationError: If the document is not valid YAML or not a mapping
    """
    try:
        document = yaml.load(text, Loader=RuleLoader)
    except (yaml.YAMLError, re.error) as e:
        raise ConfigurationError(f"Invalid rule document {source or '<string>'}: {e}") from e

    if document is None:
        document = {}
    if not isinstance(document, Mapping):
        raise ConfigurationError(f"Rule document {source or '<string>'} must be a mapping")

    return Ruleset(_prepare(document), source=source)


def load_ruleset(path: Optional[Path]) -> Ruleset:
    """
    Load a rule document from disk.

    Args:
        path: YAML file, or None for an empty ruleset

    Returns:
        Loaded Ruleset

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    if path is None:
        return Ruleset()

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Rule document {path} does not exist")

    logger.info(f"Loading rule document {path}")
    return parse_ruleset(path.read_text(encoding="utf-8"), source=path)
