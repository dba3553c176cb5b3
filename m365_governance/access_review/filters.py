"""
Typed OData predicates and the server-side group query builder.

Literal values are always quoted by the predicate objects, so caller input
(prefixes, group IDs) never reaches the query text unescaped. The only free-form
text is the operator-supplied base filter, carried verbatim as RawFilter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..config import GROUP_SELECT_FIELDS, ConfigError, GroupFilterConfig


def quote(value: str) -> str:
    """Render an OData string literal."""
    return "'" + value.replace("'", "''") + "'"


class ODataExpr:
    """Base class for filter expressions."""

    def render(self) -> str:
        raise NotImplementedError

    def is_empty(self) -> bool:
        return False

    def uses_negation(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class RawFilter(ODataExpr):
    text: str

    def render(self) -> str:
        return f"({self.text.strip()})"

    def is_empty(self) -> bool:
        return not self.text.strip()

    def uses_negation(self) -> bool:
        # Operator-supplied text may use 'not' / 'ne' as well
        lowered = f" {self.text.lower()} "
        return any(op in lowered for op in (" not ", "not(", " ne "))


@dataclass(frozen=True)
class StartsWith(ODataExpr):
    field: str
    value: str

    def render(self) -> str:
        return f"startsWith({self.field},{quote(self.value)})"


@dataclass(frozen=True)
class Equals(ODataExpr):
    field: str
    value: str

    def render(self) -> str:
        return f"{self.field} eq {quote(self.value)}"


@dataclass(frozen=True)
class Not(ODataExpr):
    expr: ODataExpr

    def render(self) -> str:
        return f"not({self.expr.render()})"

    def is_empty(self) -> bool:
        return self.expr.is_empty()

    def uses_negation(self) -> bool:
        return True


@dataclass(frozen=True)
class _Junction(ODataExpr):
    parts: tuple[ODataExpr, ...]
    operator = ""

    def _active(self) -> list[ODataExpr]:
        return [p for p in self.parts if not p.is_empty()]

    def render(self) -> str:
        active = self._active()
        if len(active) == 1:
            return active[0].render()
        return "(" + f" {self.operator} ".join(p.render() for p in active) + ")"

    def is_empty(self) -> bool:
        return not self._active()

    def uses_negation(self) -> bool:
        return any(p.uses_negation() for p in self._active())


class AllOf(_Junction):
    operator = "and"

    def __init__(self, parts: Sequence[ODataExpr]):
        super().__init__(tuple(parts))


class AnyOf(_Junction):
    operator = "or"

    def __init__(self, parts: Sequence[ODataExpr]):
        super().__init__(tuple(parts))


@dataclass(frozen=True)
class GroupQuery:
    """A fully composed /groups query."""
    filter: Optional[ODataExpr]
    orderby: Optional[str]
    expand: Optional[str]
    advanced: bool

    def to_params(self) -> dict:
        params = {"$select": GROUP_SELECT_FIELDS}
        if self.filter is not None:
            params["$filter"] = self.filter.render()
        if self.orderby:
            params["$orderby"] = self.orderby
        if self.expand:
            params["$expand"] = self.expand
        return params


class GroupQueryBuilder:
    """Composes the server-side half of group resolution."""

    def __init__(self, config: GroupFilterConfig):
        self.config = config

    def build_filter(self) -> Optional[ODataExpr]:
        cfg = self.config
        if cfg.group_id:
            # Single-group override: exactly this group, no other filters
            return Equals("id", cfg.group_id)

        parts: list[ODataExpr] = [
            RawFilter(cfg.base_filter or ""),
            AnyOf([StartsWith("mailNickname", p) for p in cfg.include_prefixes]),
        ]
        # Advanced queries (needed for not()) can't be combined with $expand
        if not cfg.expand_owners:
            parts.append(
                AllOf([Not(StartsWith("mailNickname", p)) for p in cfg.exclude_prefixes])
            )
        expr = AllOf(parts)
        return None if expr.is_empty() else expr

    def build(self) -> GroupQuery:
        expr = self.build_filter()
        expanding = self.config.expand_owners
        orderby = None if expanding else "displayName"
        negated = expr is not None and expr.uses_negation()
        if negated and expanding:
            raise ConfigError(
                "The base filter uses negation, which needs an advanced query; "
                "advanced queries cannot expand owners. Drop --expand-owners or the negation."
            )
        advanced = negated or (expr is not None and orderby is not None)
        return GroupQuery(
            filter=expr,
            orderby=orderby,
            expand="owners($select=id)" if expanding else None,
            advanced=advanced,
        )
