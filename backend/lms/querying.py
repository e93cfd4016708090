"""Search, filter and pagination helpers shared by every list endpoint.

The helpers are storage-agnostic: `build_where_conditions` produces an
immutable `ConditionTree`, `resolve_pagination` turns page/limit/sort
parameters into skip/take/order_by, and `execute_query` runs a caller's
list and count callbacks against the same tree. Compiling a tree into
SQL lives with the repositories.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
DEFAULT_SORT_BY = "createdAt"
DEFAULT_SORT_ORDER = "desc"
SORT_ORDERS = ("asc", "desc")


@dataclass(frozen=True)
class SearchClause:
    """Case-insensitive substring match of `term` against any of `fields`."""
    term: str
    fields: Tuple[str, ...]

    def to_dict(self) -> List[dict]:
        return [{f: {"contains": self.term, "mode": "insensitive"}} for f in self.fields]


@dataclass(frozen=True)
class RangeBound:
    min: Optional[Any] = None
    max: Optional[Any] = None

    @property
    def is_open(self) -> bool:
        return self.min is None and self.max is None

    def to_dict(self) -> dict:
        out = {}
        if self.min is not None:
            out["gte"] = self.min
        if self.max is not None:
            out["lte"] = self.max
        return out


@dataclass(frozen=True)
class ConditionTree:
    """AND of an optional search disjunction, equality and range clauses.

    An empty tree matches every row.
    """
    search: Optional[SearchClause] = None
    exact: Mapping[str, Any] = field(default_factory=dict)
    ranges: Mapping[str, RangeBound] = field(default_factory=dict)

    def __post_init__(self):
        overlap = set(self.exact) & set(self.ranges)
        if overlap:
            raise ValueError(f"fields used as both exact and range filters: {sorted(overlap)}")
        object.__setattr__(self, "exact", MappingProxyType(dict(self.exact)))
        object.__setattr__(self, "ranges", MappingProxyType(dict(self.ranges)))

    @property
    def is_empty(self) -> bool:
        return self.search is None and not self.exact and not self.ranges

    def to_dict(self) -> dict:
        out: dict = {}
        if self.search is not None:
            out["OR"] = self.search.to_dict()
        out.update(self.exact)
        for name, bound in self.ranges.items():
            out[name] = bound.to_dict()
        return out


def build_search_condition(search_term: Optional[str], fields: Sequence[str]) -> Optional[SearchClause]:
    if not search_term or not fields:
        return None
    return SearchClause(term=search_term, fields=tuple(fields))


def build_exact_match_conditions(exact_match_fields: Optional[Mapping[str, str]], filters: Mapping[str, Any]) -> dict:
    """Map `filter_key -> db_field` pairs to equality clauses.

    Keys whose filter value is missing or None are left out rather than
    compared against None.
    """
    conditions = {}
    for filter_key, db_field in (exact_match_fields or {}).items():
        value = filters.get(filter_key)
        if value is not None:
            conditions[db_field] = value
    return conditions


def build_range_condition(min_value: Optional[Any], max_value: Optional[Any]) -> Optional[RangeBound]:
    bound = RangeBound(min=min_value, max=max_value)
    if bound.is_open:
        return None
    return bound


def build_where_conditions(
    *,
    search_term: Optional[str] = None,
    search_fields: Sequence[str] = (),
    exact_match_fields: Optional[Mapping[str, str]] = None,
    range_fields: Optional[Mapping[str, Tuple[Optional[Any], Optional[Any]]]] = None,
    filters: Optional[Mapping[str, Any]] = None,
) -> ConditionTree:
    """Build the condition tree for a list query.

    `range_fields` maps a db field to a `(min, max)` pair; a field with
    neither bound set produces no clause.
    """
    ranges = {}
    for db_field, (min_value, max_value) in (range_fields or {}).items():
        bound = build_range_condition(min_value, max_value)
        if bound is not None:
            ranges[db_field] = bound
    return ConditionTree(
        search=build_search_condition(search_term, search_fields),
        exact=build_exact_match_conditions(exact_match_fields, filters or {}),
        ranges=ranges,
    )


@dataclass(frozen=True)
class PaginationSpec:
    page: Optional[int] = None
    limit: Optional[int] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None


@dataclass(frozen=True)
class PaginationParams:
    page: int
    limit: int
    order_by: Tuple[str, str]

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def take(self) -> int:
        return self.limit


def resolve_pagination(spec: Optional[PaginationSpec] = None) -> PaginationParams:
    """Apply per-field defaults and validate the pagination request.

    No upper bound is placed on `limit` here; the HTTP layer caps it.
    """
    spec = spec or PaginationSpec()
    page = DEFAULT_PAGE if spec.page is None else spec.page
    limit = DEFAULT_LIMIT if spec.limit is None else spec.limit
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be >= 1")
    sort_order = (spec.sort_order or DEFAULT_SORT_ORDER).lower()
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"sort order must be one of {SORT_ORDERS}")
    return PaginationParams(page=page, limit=limit, order_by=(spec.sort_by or DEFAULT_SORT_BY, sort_order))


@dataclass
class QueryResult(Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int


ListFn = Callable[[ConditionTree, int, int, Tuple[str, str]], List[Any]]
CountFn = Callable[[ConditionTree], int]


def execute_query(
    list_fn: ListFn,
    count_fn: CountFn,
    where: ConditionTree,
    pagination: Optional[PaginationSpec] = None,
) -> QueryResult:
    """Run the page query and the count query concurrently.

    Both callbacks receive the same `where` tree so `total` always counts
    the full set the page was cut from. A failure in either call is
    re-raised as is.
    """
    params = resolve_pagination(pagination)
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="lms-query") as pool:
        rows = pool.submit(list_fn, where, params.skip, params.take, params.order_by)
        count = pool.submit(count_fn, where)
        data = rows.result()
        total = count.result()
    return QueryResult(data=list(data), total=total, page=params.page, limit=params.limit)
