"""
Post-mapping value normalization.

A normalization ruleset is keyed by attribute name (the mapped name, since
normalization runs after mapping). Each rule is either a mapping

    mobility_needs:
      normalizations:
        wheelchair: ['wheel chair', !regexp 'wheel\\s*chair']
        scooter: ['mobility scooter', !regexp 'scooter']
      output_attribute: mobility_requirement
      unmatched_action: [append, notes, 'See notes field']

or the compact list form ``[normalizations, output_attribute, unmatched_action]``.

A match set value is a string (case-insensitive), a compiled pattern,
None (matches a missing value) or a list of those. An input that already
equals a canonical key matches it directly.

Unmatched actions:
    accept (default)                 - keep the original value
    ignore                           - drop the attribute
    [append, notes_field, placeholder?] - append "<name>: <value>" to notes_field
    [replace, target, replacement?]  - write replacement (or the value) to target
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Optional

from config.settings import ConfigurationError

from .mapping import select_rules
from .values import canonicalize, is_present, new_container

logger = logging.getLogger(__name__)

_NO_MATCH = object()


def normalize_attributes(
    input_record: Optional[Mapping],
    ruleset: Mapping,
    sub: Optional[str] = None,
    seed: Optional[Mapping] = None,
):
    """
    Normalize attribute values according to a ruleset.

    Attributes without a rule pass through unchanged.

    Args:
        input_record: Attributes to normalize
        ruleset: Normalization ruleset (or a document of sub-rulesets)
        sub: Name of the sub-ruleset to apply
        seed: Existing output to build on, e.g. a mapping result

    Returns:
        Case-insensitive output container

    Raises:
        ConfigurationError: If a rule is malformed
    """
    rules = select_rules(ruleset, sub)
    output = new_container(seed)

    remaining = dict(rules)

    for name, value in canonicalize(input_record or {}).items():
        rule = remaining.pop(name, None)
        _normalize_value(output, rule, name, value)

    for name, rule in remaining.items():
        _normalize_value(output, rule, str(name), None)

    return output


def _normalize_value(output, rule: Any, name: str, value: Any) -> None:
    if rule is None:
        output[name] = value
    elif isinstance(rule, Mapping):
        _process_rule(
            output,
            name,
            value,
            rule.get("normalizations"),
            rule.get("output_attribute"),
            rule.get("unmatched_action"),
        )
    elif isinstance(rule, (list, tuple)) and len(rule) <= 3:
        _process_rule(output, name, value, *rule)
    else:
        raise ConfigurationError(f"Invalid normalization rule for '{name}': {rule!r}")


def _process_rule(
    output,
    name: str,
    value: Any,
    normalizations: Any = None,
    output_attribute: Any = None,
    unmatched_action: Any = None,
) -> None:
    target = str(output_attribute) if is_present(output_attribute) else name

    canonical = _normalized_value(name, value, normalizations)
    if canonical is not _NO_MATCH:
        output[target] = canonical
        return

    _handle_unmatched(output, name, value, target, unmatched_action)


def _normalized_value(name: str, value: Any, normalizations: Any) -> Any:
    """Return the first canonical value whose match set accepts ``value``."""
    if normalizations is None:
        return _NO_MATCH
    if not isinstance(normalizations, Mapping):
        raise ConfigurationError(f"Normalizations for '{name}' must be a mapping, got {normalizations!r}")

    for canonical, match_set in normalizations.items():
        if canonical == value and type(canonical) is type(value):
            return canonical
        if isinstance(match_set, (list, tuple)):
            if any(_matches(name, entry, value, in_list=True) for entry in match_set):
                return canonical
        elif _matches(name, match_set, value):
            return canonical
    return _NO_MATCH


def _matches(name: str, entry: Any, value: Any, in_list: bool = False) -> bool:
    if entry is None:
        return value is None
    if isinstance(entry, str):
        return value is not None and str(value).lower() == entry.lower()
    if isinstance(entry, re.Pattern):
        return value is not None and entry.search(str(value)) is not None
    if in_list:
        raise ConfigurationError(f"Normalization match set for '{name}' contains invalid entry: {entry!r}")
    raise ConfigurationError(f"Normalization rule for '{name}' has invalid match set: {entry!r}")


def _handle_unmatched(output, name: str, value: Any, target: str, action: Any) -> None:
    if action is None or action == "" or action == "accept":
        output[target] = value
        return

    # A seeded output may already hold the raw value under target
    output.pop(target, None)
    if action == "ignore":
        logger.debug(f"Dropping unmatched value for {name}")
        return

    if _valid_action(action, "append"):
        _append_note(output, str(action[1]), name, value)
        if len(action) > 2 and is_present(action[2]):
            output[target] = action[2]
    elif _valid_action(action, "replace"):
        replacement = action[2] if len(action) > 2 else None
        output[str(action[1])] = value if replacement is None else replacement
    else:
        raise ConfigurationError(f"Normalization rule for '{name}' has invalid unmatched_action: {action!r}")


def _valid_action(action: Any, verb: str) -> bool:
    return (
        isinstance(action, (list, tuple))
        and len(action) in (2, 3)
        and action[0] == verb
        and isinstance(action[1], str)
        and is_present(action[1])
    )


def _append_note(output, notes_field: str, name: str, value: Any) -> None:
    entry = f"{name}: {'' if value is None else value}"
    existing = output.get(notes_field)
    output[notes_field] = f"{existing}\n{entry}" if is_present(existing) else entry
