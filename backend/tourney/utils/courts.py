"""
Canonical parser for tournament court names.

Handles both string ("1,5,6") and list (["1","5","6"]) inputs so we never
silently corrupt labels (e.g. list("1,5,6") -> ['1', ',', '5', ...]).
"""
from typing import List, Optional, Union

DEFAULT_COURTS = ["SRC-1", "SRC-2", "SRC-3", "VC-1", "VC-2"]


def parse_court_names(court_names: Optional[Union[str, List[str]]]) -> List[str]:
    """
    Normalize court_names to a list of unique, non-empty strings.

    - None or "" -> []
    - String (e.g. "1,5,6") -> split on commas, strip whitespace, drop empties -> ["1","5","6"]
    - List (e.g. ["1","5","6"]) -> coerce each to str(x).strip(), drop empties
    - Duplicates keep their first position
    """
    if court_names is None:
        return []
    if isinstance(court_names, str):
        raw = court_names.split(",")
    elif isinstance(court_names, (list, tuple)):
        raw = [str(x) for x in court_names]
    else:
        return []
    labels: List[str] = []
    for value in raw:
        value = value.strip()
        if value and value not in labels:
            labels.append(value)
    return labels


def active_courts(court_names: Optional[Union[str, List[str]]]) -> List[str]:
    """Configured courts, falling back to the default venue layout."""
    return parse_court_names(court_names) or list(DEFAULT_COURTS)


def home_court_for_index(courts: List[str], index: int) -> Optional[str]:
    """Home court for the index-th pool of a stage, cycling through the courts."""
    if not courts:
        return None
    return courts[index % len(courts)]
