"""
Query-string translation

Turns request query parameters into a ``TranslatedQuery``: filter conditions,
sort order, field projection and a page window. The translator performs no
I/O and knows nothing about table schemas; binding the result to a table is
done by ``tourbook.db.crud.apply_query``.

    translated = (
        QueryTranslator(request.query_params)
        .filter()
        .sort()
        .limit_fields()
        .paginate()
        .query
    )
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from tourbook.core.errors import AppError

RESERVED_PARAMS = ("page", "sort", "limit", "fields")
COMPARISON_OPERATORS = ("gte", "gt", "lte", "lt")
INTERNAL_FIELDS = ("version",)
DEFAULT_SORT = "-created_at"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100
# OFFSET and LIMIT are bound as signed 64-bit integers
MAX_WINDOW = 2 ** 63 - 1

_BRACKET_KEY = re.compile(r"^(?P<field>[^\[\]]+)\[(?P<op>[^\[\]]*)\]$")

ParamValue = Union[str, List[str], Mapping[str, Any]]


class QueryError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 400)


@dataclass(frozen=True)
class FilterCondition:
    field: str
    op: str  # eq, in, gte, gt, lte, lt
    value: Any


@dataclass
class TranslatedQuery:
    filters: List[FilterCondition] = field(default_factory=list)
    order: List[Tuple[str, str]] = field(default_factory=list)
    fields: Optional[List[str]] = None
    page: int = DEFAULT_PAGE
    skip: int = 0
    limit: int = DEFAULT_LIMIT


def normalize_params(params: Any) -> Dict[str, ParamValue]:
    """Collapse repeated query keys into lists; accepts mappings and QueryParams."""
    if params is None:
        return {}
    if hasattr(params, "multi_items"):
        items = params.multi_items()
    elif isinstance(params, Mapping):
        items = list(params.items())
    else:
        items = list(params)

    normalized: Dict[str, ParamValue] = {}
    for key, value in items:
        if key in normalized:
            existing = normalized[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                normalized[key] = [existing, value]
        elif isinstance(value, tuple):
            normalized[key] = list(value)
        else:
            normalized[key] = value
    return normalized


def _last(value: ParamValue) -> Any:
    # repeated control params keep the last value
    if isinstance(value, list):
        return value[-1] if value else None
    return value


def _as_number(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def _split_csv(value: Any) -> List[str]:
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _positive_int(name: str, raw: Any) -> int:
    try:
        number = int(str(raw).strip())
    except (TypeError, ValueError):
        raise QueryError(f"Invalid {name}: {raw!r}. Must be a positive integer.")
    if number < 1:
        raise QueryError(f"Invalid {name}: {raw!r}. Must be a positive integer.")
    return number


class QueryTranslator:
    """Fluent builder; each stage consumes and returns the in-progress query."""

    def __init__(
        self,
        params: Any,
        default_sort: str = DEFAULT_SORT,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: Optional[int] = None,
    ):
        self.params = normalize_params(params)
        self.default_sort = default_sort
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.query = TranslatedQuery()

    def filter(self) -> "QueryTranslator":
        for key, value in self.params.items():
            if key in RESERVED_PARAMS:
                continue
            match = _BRACKET_KEY.match(key)
            if match:
                self._add_comparison(match.group("field"), match.group("op"), value)
            elif isinstance(value, Mapping):
                for op, operand in value.items():
                    self._add_comparison(key, op, operand)
            elif isinstance(value, list):
                self.query.filters.append(FilterCondition(key, "in", list(value)))
            else:
                self.query.filters.append(FilterCondition(key, "eq", value))
        return self

    def _add_comparison(self, field_name: str, op: str, value: Any) -> None:
        if op not in COMPARISON_OPERATORS:
            raise QueryError(f"Unsupported filter operator: {op!r}")
        self.query.filters.append(FilterCondition(field_name, op, _as_number(_last(value))))

    def sort(self) -> "QueryTranslator":
        raw = _last(self.params.get("sort")) or self.default_sort
        order = []
        for name in _split_csv(raw):
            if name.startswith("-"):
                order.append((name[1:], "desc"))
            else:
                order.append((name.lstrip("+"), "asc"))
        self.query.order = order
        return self

    def limit_fields(self) -> "QueryTranslator":
        raw = _last(self.params.get("fields"))
        if raw:
            self.query.fields = _split_csv(raw)
        else:
            self.query.fields = None
        return self

    def paginate(self) -> "QueryTranslator":
        page_raw = _last(self.params.get("page"))
        limit_raw = _last(self.params.get("limit"))
        page = DEFAULT_PAGE if page_raw in (None, "") else _positive_int("page", page_raw)
        limit = self.default_limit if limit_raw in (None, "") else _positive_int("limit", limit_raw)
        if self.max_limit:
            limit = min(limit, self.max_limit)
        if limit > MAX_WINDOW:
            raise QueryError(f"Invalid limit: {limit_raw!r}. Limit is out of range.")
        skip = (page - 1) * limit
        if skip > MAX_WINDOW:
            raise QueryError(f"Invalid page: {page_raw!r}. Page is out of range.")
        self.query.page = page
        self.query.limit = limit
        self.query.skip = skip
        return self

    def translate(self) -> TranslatedQuery:
        return self.filter().sort().limit_fields().paginate().query
