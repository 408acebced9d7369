"""
Neutral Query Criteria

Backend-independent description of a search: field values are scalars,
compiled patterns or ranges. Each backend translates the normalized
criteria produced here into its own operator vocabulary.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from .errors import InvalidCriteriaError

_RANGE_KEYS = {
    "gt": "greater_than",
    "lt": "less_than",
    "greater_than": "greater_than",
    "less_than": "less_than",
    "greaterThan": "greater_than",
    "lessThan": "less_than",
}


@dataclass(frozen=True)
class Range:
    """
    Two-sided comparison on a single field.

    A bound that is not truthy is treated as absent, so ``Range(0, 10)``
    only constrains the upper side.
    """
    greater_than: Any = None
    less_than: Any = None

    @property
    def has_lower(self) -> bool:
        return bool(self.greater_than)

    @property
    def has_upper(self) -> bool:
        return bool(self.less_than)

    @property
    def is_empty(self) -> bool:
        return not (self.has_lower or self.has_upper)

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> 'Range':
        """Build a range from ``{"gt": .., "lt": ..}`` style mappings"""
        bounds: Dict[str, Any] = {}
        for key, bound in value.items():
            if key not in _RANGE_KEYS:
                raise InvalidCriteriaError(
                    f"Unsupported range key '{key}', expected one of {sorted(_RANGE_KEYS)}"
                )
            bounds[_RANGE_KEYS[key]] = bound
        return cls(**bounds)


SearchValue = Union[str, int, float, bool, re.Pattern, Range, Mapping[str, Any], None]
SearchCriteria = Mapping[str, SearchValue]
SortSpecification = Mapping[str, Union[int, float]]


def iter_criteria(search: Optional[SearchCriteria]) -> Iterator[Tuple[str, Any]]:
    """
    Yield ``(field, value)`` pairs in insertion order.

    Fields mapped to ``None`` are dropped and mapping values are converted to
    :class:`Range`; everything else is a scalar or pattern and passes through.
    """
    if not search:
        return
    for field, value in search.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            value = Range.from_mapping(value)
        yield field, value


def is_pattern(value: Any) -> bool:
    return isinstance(value, re.Pattern)


def is_ascending(direction: Union[int, float]) -> bool:
    """Positive directions sort ascending, zero and negatives descending"""
    return direction > 0
