"""Single source of truth for "awaiting attention" order statuses."""

from typing import Any, FrozenSet, Iterable


def normalize_status(value: Any) -> str:
    """Lower-case, trim and collapse inner whitespace. Non-strings become ``""``."""
    if not isinstance(value, str):
        return ""
    return " ".join(value.split()).lower()


class AwaitingAttentionFilter:
    """Case-insensitive membership test for statuses that still need an operator.

    A status qualifies when it equals one of ``exact_statuses`` or contains
    one of ``substring_statuses`` (so ``"Pending Payment"`` matches
    ``"pending"``). Both the change feed and the catch-up query use the same
    instance.
    """

    def __init__(self, exact_statuses: Iterable[str], substring_statuses: Iterable[str] = ()):
        self.exact: FrozenSet[str] = frozenset(
            s for s in (normalize_status(v) for v in exact_statuses) if s
        )
        self.substrings: FrozenSet[str] = frozenset(
            s for s in (normalize_status(v) for v in substring_statuses) if s
        )

    def matches(self, status: Any) -> bool:
        normalized = normalize_status(status)
        if not normalized:
            return False
        if normalized in self.exact:
            return True
        return any(token in normalized for token in self.substrings)

    __call__ = matches

    def __repr__(self) -> str:
        return f"AwaitingAttentionFilter(exact={sorted(self.exact)}, substrings={sorted(self.substrings)})"
