"""
Declarative attribute mapping.

A mapping ruleset is keyed by input attribute name. Each value says what
happens to that attribute on the way to the output record:

    customer_id: origin_customer_id                  # rename
    requested_pickup_time: true                      # copy unchanged
    customer_home_city: [customer_address_attributes, city]
    fare: [trip_result_attributes]                   # nested, keeps input name
    customer_middle_name: {truncate: [customer_middle_initial, 1]}
    home_phone: {prepend: [[customer_address_attributes, phone_number], ' ']}
    phone_ext: {append: [[customer_address_attributes, phone_number], ' ']}
    phone_plus_ext: {split: [' ', phone_number, extension]}
    phone_number: {and: [day_phone, evening_phone]}
    evening_phone: {or: phone_number}
    phone: {match: [!regexp '\\d{3}-\\d{4}', number, !regexp 'x\\d+$', ext]}
    internal_id: {key_values: [customer_identifiers, ',', rc_customer_id]}
    customer_identifiers: {key_value_merge: [customer_internal_id, ',']}
    assistance_needs: {list: [customer_mobility_factors, '|']}
    customer_mobility_factors: {list_merge: [assistance_needs, '|']}
    status: {ignore: true}

The special ``__accept_unmapped__`` key decides what happens to inputs
without a rule: true / "true" / absent passes them through under the same
name, anything else drops them.

Every ruleset key is evaluated once even when the input lacks it, with an
input value of None.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Callable, Optional

from config.settings import ConfigurationError

from .values import canonicalize, new_container

logger = logging.getLogger(__name__)

ACCEPT_UNMAPPED_KEY = "__accept_unmapped__"

Pattern = re.Pattern


def map_attributes(
    input_record: Optional[Mapping],
    ruleset: Mapping,
    sub: Optional[str] = None,
    seed: Optional[Mapping] = None,
):
    """
    Map an input record to an output record according to a ruleset.

    Args:
        input_record: Flat or nested input attributes
        ruleset: Mapping ruleset (or a document of sub-rulesets)
        sub: Name of the sub-ruleset to apply; a missing sub-ruleset
            applies no rules
        seed: Existing output to build on

    Returns:
        Case-insensitive output container

    Raises:
        ConfigurationError: If a rule is malformed
    """
    rules = canonicalize(select_rules(ruleset, sub))
    accept_unmapped = _accepts_unmapped(rules.get(ACCEPT_UNMAPPED_KEY))
    output = new_container(seed)

    remaining = {name: rule for name, rule in rules.items() if name != ACCEPT_UNMAPPED_KEY}

    for name, value in canonicalize(input_record or {}).items():
        rule = remaining.pop(name, None)
        _apply_rule(output, rule, name, value, accept_unmapped)

    for name, rule in remaining.items():
        _apply_rule(output, rule, name, None, accept_unmapped)

    return output


def select_rules(ruleset: Optional[Mapping], sub: Optional[str] = None) -> Mapping:
    """Resolve the sub-ruleset to apply."""
    if ruleset is None:
        return {}
    if sub is None:
        return ruleset
    rules = ruleset.get(sub)
    if rules is None:
        return {}
    if not isinstance(rules, Mapping):
        raise ConfigurationError(f"Ruleset section '{sub}' must be a mapping, got {rules!r}")
    return rules


def _accepts_unmapped(flag: Any) -> bool:
    return flag is None or flag is True or flag == "true"


# ============================================================================
# Rule dispatch
# ============================================================================

def _apply_rule(output, rule: Any, name: str, value: Any, accept_unmapped: bool) -> None:
    if rule is None:
        if accept_unmapped:
            _assign(output, name, name, value)
    elif rule is True or rule == "true":
        _assign(output, name, name, value)
    elif isinstance(rule, str):
        _assign(output, rule, name, value)
    elif isinstance(rule, list):
        if not _valid_nested_attribute(rule):
            raise ConfigurationError(f"Invalid nested attribute mapping for '{name}': {rule!r}")
        _assign(output, rule, name, value)
    elif isinstance(rule, Mapping):
        for command, args in rule.items():
            _apply_command(output, str(command), args, name, value)
    else:
        raise ConfigurationError(f"Invalid mapping for '{name}': {rule!r}")


def _apply_command(output, command: str, args: Any, name: str, value: Any) -> None:
    validator, handler = _COMMANDS.get(command, (None, None))
    if handler is None:
        raise ConfigurationError(f"Invalid transformation '{command}' for '{name}'")
    if validator is not None and not validator(args):
        raise ConfigurationError(f"Invalid {command.upper()} arguments for '{name}': {args!r}")
    handler(output, args, name, value)


def _truncate(output, args, name, value):
    target, length = args
    if value is not None:
        value = str(value)[:length]
    _assign(output, target, name, value)


def _prepend(output, args, name, value):
    separator = args[1] if len(args) > 1 else None

    def combine(previous):
        if value is None:
            return previous
        use_separator = bool(separator) and previous is not None and not str(previous).startswith(separator)
        return f"{value}{separator if use_separator else ''}{'' if previous is None else previous}"

    _assign(output, args[0], name, value, combine)


def _append(output, args, name, value):
    separator = args[1] if len(args) > 1 else None

    def combine(previous):
        if value is None:
            return previous
        use_separator = bool(separator) and previous is not None and not str(previous).endswith(separator)
        return f"{'' if previous is None else previous}{separator if use_separator else ''}{value}"

    _assign(output, args[0], name, value, combine)


def _split(output, args, name, value):
    pattern, targets = args[0], args[1:]
    if value is None:
        return
    pieces = [piece.strip() for piece in split_text(str(value), pattern)]
    for index, target in enumerate(targets):
        _assign(output, target, name, pieces[index] if index < len(pieces) else None)


def _and(output, args, name, value):
    for target in args:
        _assign(output, target, name, value)


def _or(output, args, name, value):
    def combine(previous):
        if previous is None or previous is False:
            return value
        return previous

    _assign(output, args, name, value, combine)


def _match(output, args, name, value):
    if value is None:
        return
    text = str(value)
    for index in range(0, len(args), 2):
        if index + 1 >= len(args):
            break
        found = args[index].search(text)
        if found:
            _assign(output, args[index + 1], name, found.group(0))


def _key_values(output, args, name, value):
    target = args[0]
    separator = (args[1] if len(args) > 1 else None) or ","
    default_key = (args[2] if len(args) > 2 else None) or "value"
    if value is None:
        return

    pairs = {}
    for piece in split_text(str(value), separator):
        piece = piece.strip()
        if not piece:
            continue
        key, found, item = piece.partition(":")
        if found:
            pairs[key.strip()] = item.strip()
        else:
            pairs[str(default_key)] = piece

    def combine(previous):
        merged = new_container(previous if isinstance(previous, Mapping) else None)
        merged.update(pairs)
        return merged

    _assign(output, target, name, pairs, combine)


def _key_value_merge(output, args, name, value):
    separator = (args[1] if len(args) > 1 else None) or ","
    if isinstance(value, Mapping):
        value = separator.join(f"{key}:{item}" for key, item in value.items())
    _assign(output, args[0], name, value)


def _list(output, args, name, value):
    separator = (args[1] if len(args) > 1 else None) or ","
    if value is None:
        return
    _assign(output, args[0], name, [piece.strip() for piece in split_text(str(value), separator)])


def _list_merge(output, args, name, value):
    separator = (args[1] if len(args) > 1 else None) or ","
    if isinstance(value, list):
        value = separator.join("" if item is None else str(item) for item in value)
    _assign(output, args[0], name, value)


def _ignore(output, args, name, value):
    logger.debug(f"Ignoring attribute {name}")


def split_text(text: str, pattern: Any) -> list[str]:
    """
    Split text on a literal separator or compiled pattern.

    A single space splits on runs of whitespace. Trailing empty pieces
    are dropped.
    """
    if isinstance(pattern, Pattern):
        pieces = pattern.split(text)
    elif pattern == " ":
        pieces = text.split()
    else:
        pieces = text.split(pattern)
    while pieces and pieces[-1] == "":
        pieces.pop()
    return pieces


# ============================================================================
# Output assignment
# ============================================================================

def _assign(
    output,
    target: Any,
    name: str,
    value: Any,
    combine: Optional[Callable[[Any], Any]] = None,
) -> None:
    """
    Write a value to a top-level or nested output attribute.

    ``combine`` receives the value currently at the target and returns the
    value to store. Top-level assignment is unconditional; a nested path is
    only written (and its containers only created) when the result is
    non-empty.
    """
    if not _valid_attribute(target):
        raise ConfigurationError(f"Invalid mapping target for '{name}': {target!r}")

    if isinstance(target, str):
        result = _clean(combine(output.get(target)) if combine else value)
        output[target] = result
        return

    parents, leaf = _path_segments(target, name)

    container = output
    for segment in parents:
        container = container.get(segment) if isinstance(container, Mapping) else None
    previous = container.get(leaf) if isinstance(container, Mapping) else None

    result = _clean(combine(previous) if combine else value)
    if result is None or str(result) == "":
        return

    container = output
    for segment in parents:
        if not isinstance(container.get(segment), Mapping):
            container[segment] = new_container()
        container = container[segment]
    container[leaf] = result


def _path_segments(path: list, name: str) -> tuple[list[str], str]:
    """Expand ``[a]``, ``[a, b]`` and ``[a, [b, c]]`` into parent keys and a leaf key."""
    segments = []
    while True:
        head = path[0]
        tail = path[1] if len(path) > 1 else None
        segments.append(head)
        if tail is None:
            segments.append(name)
            break
        if isinstance(tail, str):
            segments.append(tail)
            break
        path = tail
    return segments[:-1], segments[-1]


def _clean(result: Any) -> Any:
    return result.strip() if isinstance(result, str) else result


# ============================================================================
# Argument validation
# ============================================================================

def _valid_attribute_name(arg: Any) -> bool:
    return isinstance(arg, str) and len(arg) > 0


def _valid_nested_attribute(arg: Any) -> bool:
    while True:
        if not (isinstance(arg, list) and len(arg) in (1, 2) and _valid_attribute_name(arg[0])):
            return False
        if len(arg) == 1 or arg[1] is None or _valid_attribute_name(arg[1]):
            return True
        arg = arg[1]


def _valid_attribute(arg: Any) -> bool:
    return _valid_attribute_name(arg) or _valid_nested_attribute(arg)


def _optional_separator(args: list, index: int = 1) -> bool:
    return len(args) <= index or args[index] is None or isinstance(args[index], str)


def _valid_truncate(args) -> bool:
    return (
        isinstance(args, list) and len(args) == 2 and _valid_attribute(args[0])
        and isinstance(args[1], int) and not isinstance(args[1], bool)
    )


def _valid_prepend(args) -> bool:
    return isinstance(args, list) and len(args) in (1, 2) and _valid_attribute(args[0])


def _valid_split(args) -> bool:
    return (
        isinstance(args, list) and len(args) > 1
        and isinstance(args[0], (str, Pattern))
        and all(_valid_attribute(arg) for arg in args[1:])
    )


def _valid_and(args) -> bool:
    return isinstance(args, list) and len(args) > 0 and all(_valid_attribute(arg) for arg in args)


def _valid_match(args) -> bool:
    return (
        isinstance(args, list) and len(args) > 0
        and all(
            isinstance(arg, Pattern) if index % 2 == 0 else _valid_attribute(arg)
            for index, arg in enumerate(args)
        )
    )


def _valid_key_values(args) -> bool:
    return (
        isinstance(args, list) and len(args) > 0 and _valid_attribute(args[0])
        and _optional_separator(args)
        and (len(args) <= 2 or args[2] is None or isinstance(args[2], str))
    )


def _valid_merge(args) -> bool:
    return (
        isinstance(args, list) and len(args) in (1, 2) and _valid_attribute(args[0])
        and _optional_separator(args)
    )


def _valid_list(args) -> bool:
    return isinstance(args, list) and len(args) > 0 and _valid_attribute(args[0]) and _optional_separator(args)


_COMMANDS = {
    "truncate": (_valid_truncate, _truncate),
    "prepend": (_valid_prepend, _prepend),
    "append": (_valid_prepend, _append),
    "split": (_valid_split, _split),
    "and": (_valid_and, _and),
    "or": (_valid_attribute, _or),
    "match": (_valid_match, _match),
    "key_values": (_valid_key_values, _key_values),
    "key_value_merge": (_valid_merge, _key_value_merge),
    "list": (_valid_list, _list),
    "list_merge": (_valid_merge, _list_merge),
    "ignore": (None, _ignore),
}
