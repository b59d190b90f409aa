"""
Row helpers shared by the CSV processors.

Import helpers reshape flat CSV rows into the nested structure the
Clearinghouse API accepts; export helpers flatten API records back into
CSV columns.
"""

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Iterable, Optional

from ..transform.values import is_present

NESTED_OBJECT_PREFIXES = (
    "customer_address",
    "pick_up_location",
    "drop_off_location",
    "trip_result",
)

LOCATION_OBJECTS = ("customer_address", "pick_up_location", "drop_off_location")

ARRAY_ATTRIBUTES = (
    "customer_eligibility_factors",
    "customer_mobility_factors",
    "customer_service_animals",
    "trip_funders",
)

HSTORE_ATTRIBUTES = ("customer_identifiers",)

DATE_SUFFIXES = ("date", "time", "at", "on", "dob")

# Groups flattened as parent_child columns on export; "address" sits under "originator"
FLATTENED_GROUPS = ("customer_address", "pick_up_location", "drop_off_location", "originator", "address")

_POSITION = re.compile(r"^\s*([\d.\-]+)[^\d-]+([\d.\-]+)\s*$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(.*)$", re.DOTALL)


# ============================================================
# Import helpers
# ============================================================

def nested_object_to_hash(row: dict, prefix: str) -> dict:
    """
    Remove every ``<prefix>_*`` column from a row and return them unprefixed.

    {"trip_result_outcome": "Completed"} with prefix "trip_result" gives
    {"outcome": "Completed"}. Columns ending in ``_attributes`` stay put.
    """
    full_prefix = f"{prefix}_"
    nested = {}
    for key in list(row):
        if key.startswith(full_prefix) and not key.endswith("_attributes"):
            nested[key[len(full_prefix):]] = row.pop(key)
    return nested


def merge_hash_into_row(row: dict, attribute_name: str, values: dict) -> None:
    """Merge values into a nested map on the row, keeping keys already there."""
    if not is_present(values):
        return
    if not isinstance(row.get(attribute_name), Mapping):
        row[attribute_name] = {}
    else:
        row[attribute_name] = dict(row[attribute_name])
    row[attribute_name].update(values)


def normalize_location_coordinates(location: dict) -> None:
    """
    Rewrite accepted coordinate formats as WKT ``POINT(lon lat)``.

    Accepted: separate ``lat`` and ``lon``; ``position`` as "lon lat" with
    any punctuation other than a dash between them; ``position`` already
    in WKT, which is kept.
    """
    lat = location.pop("lat", None)
    lon = location.pop("lon", None)
    position = location.pop("position", None)

    new_position = position
    if is_present(lon) and is_present(lat):
        new_position = f"POINT({lon} {lat})"
    elif is_present(position):
        match = _POSITION.match(str(position))
        if match:
            new_position = f"POINT({match.group(1)} {match.group(2)})"

    if new_position:
        location["position"] = new_position


def handle_nested_objects(row: dict) -> dict:
    """Move prefixed columns into ``<object>_attributes`` maps."""
    for prefix in NESTED_OBJECT_PREFIXES:
        nested = nested_object_to_hash(row, prefix)
        if prefix in LOCATION_OBJECTS:
            normalize_location_coordinates(nested)
        merge_hash_into_row(row, f"{prefix}_attributes", nested)
    return row


def handle_array_and_hstore_attributes(row: dict) -> dict:
    """
    Collapse numbered columns into lists and maps.

    ``trip_funders_1``, ``trip_funders_2`` ... become ``trip_funders``;
    ``customer_identifiers_1_key`` / ``customer_identifiers_1_value`` ...
    become a ``customer_identifiers`` map. Collection stops at the first
    missing or blank column.
    """
    for name in ARRAY_ATTRIBUTES:
        index = 1
        while is_present(row.get(f"{name}_{index}")):
            if not isinstance(row.get(name), list):
                row[name] = []
            row[name].append(row.pop(f"{name}_{index}"))
            index += 1
        if isinstance(row.get(name), list):
            row[name] = [item for item in row[name] if item is not None]

    for name in HSTORE_ATTRIBUTES:
        index = 1
        while True:
            key_column = f"{name}_{index}_key"
            value_column = f"{name}_{index}_value"
            if key_column not in row or value_column not in row or not is_present(row[key_column]):
                break
            if not isinstance(row.get(name), Mapping):
                row[name] = {}
            row[name][row.pop(key_column)] = row.pop(value_column)
            index += 1

    return row


def handle_date_conversions(row: dict) -> bool:
    """
    Rewrite US-style dates to ISO on date-like columns.

    Columns ending in _date, _time, _at, _on or _dob holding
    ``mm/dd/yyyy[rest]`` become ``yyyy-mm-dd[rest]``.

    Returns:
        True if any value was rewritten
    """
    changed = False
    for key, value in row.items():
        _, separator, suffix = key.rpartition("_")
        if not separator or suffix not in DATE_SUFFIXES or not isinstance(value, str):
            continue
        match = _US_DATE.match(value)
        if match:
            month, day, year, rest = match.groups()
            row[key] = f"{year}-{int(month):02d}-{int(day):02d}{rest}"
            changed = True
    return changed


# ============================================================
# Export helpers
# ============================================================

def timestamp_string(now: Optional[datetime] = None) -> str:
    """Timestamp used in export file names."""
    return (now or datetime.utcnow()).strftime("%Y-%m-%d.%H%M%S")


def flatten_hash(data: Mapping, except_keys: Optional[Iterable[str]] = None, prepend_name: Optional[str] = None) -> dict:
    """
    Flatten a Clearinghouse record to a single level.

    - known groups (customer_address, originator, ...) recurse as
      ``parent_child`` columns
    - any other map becomes ``key_N_key`` / ``key_N_value`` pairs
    - lists become ``key_N`` columns
    - keys in except_keys are left as they are

    Records from the API are at most a few levels deep, so the recursion
    is limited to the known groups.
    """
    except_keys = {str(key) for key in (except_keys or ())}
    flat = {}
    for key, value in data.items():
        new_key = f"{prepend_name}_{key}" if prepend_name else str(key)

        if str(key) in except_keys or not isinstance(value, (Mapping, list, tuple)):
            flat[new_key] = value
        elif isinstance(value, Mapping):
            if str(key) in FLATTENED_GROUPS:
                flat.update(flatten_hash(value, except_keys, new_key))
            else:
                for index, (item_key, item_value) in enumerate(value.items(), start=1):
                    flat[f"{new_key}_{index}_key"] = item_key
                    flat[f"{new_key}_{index}_value"] = item_value
        else:
            for index, item in enumerate(value, start=1):
                flat[f"{new_key}_{index}"] = item
    return flat
