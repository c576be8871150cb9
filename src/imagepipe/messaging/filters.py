"""
Subscription filter predicates.

A filter decides from message attributes alone whether a subscriber gets a
copy of a published message. ``None`` as a filter means "deliver everything".
"""

from typing import Iterable, Mapping, Optional, Protocol, Sequence


class FilterPolicy(Protocol):
    """Predicate over message attributes."""

    def matches(self, attributes: Mapping[str, str]) -> bool:
        ...


class AllowListFilter:
    """Match when ``attributes[attribute]`` is exactly one of ``allowlist``."""

    def __init__(self, attribute: str, allowlist: Iterable[str]):
        self.attribute = attribute
        self.allowlist = frozenset(allowlist)

    def matches(self, attributes: Mapping[str, str]) -> bool:
        value = attributes.get(self.attribute)
        return value is not None and value in self.allowlist

    def __repr__(self) -> str:
        return f"AllowListFilter({self.attribute!r}, {sorted(self.allowlist)!r})"


class AllOf:
    """Match when every wrapped filter matches."""

    def __init__(self, *filters: FilterPolicy):
        self.filters: Sequence[FilterPolicy] = filters

    def matches(self, attributes: Mapping[str, str]) -> bool:
        return all(f.matches(attributes) for f in self.filters)

    def __repr__(self) -> str:
        return f"AllOf({', '.join(repr(f) for f in self.filters)})"


def filter_from_policy(policy: Mapping[str, Iterable[str]]) -> FilterPolicy:
    """Build a predicate from a filter policy mapping.

    Example:
        >>> filter_from_policy({"comment_type": ["Caption"]}).matches({"comment_type": "Caption"})
        True
    """
    filters = [AllowListFilter(name, allowlist) for name, allowlist in policy.items()]
    if len(filters) == 1:
        return filters[0]
    return AllOf(*filters)


def accepts(filter_policy: Optional[FilterPolicy], attributes: Mapping[str, str]) -> bool:
    """Evaluate an optional filter; no filter accepts every message."""
    if filter_policy is None:
        return True
    return filter_policy.matches(attributes)
