"""Query construction shared by every paginated list endpoint.

``build_page`` turns raw query parameters plus a visibility filter into a
``FetchPlan``; ``run_page`` executes it against a SQLAlchemy query and
returns the rows together with the total needed for page metadata.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query

from policy import Visibility

DEFAULT_LIMIT = 10
COMMENT_LIMIT = 20
MAX_LIMIT = 100


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass(frozen=True)
class PageParams:
    page: int = 1
    limit: int = DEFAULT_LIMIT
    search: Optional[str] = None
    tag: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_query(cls, page: Any = None, limit: Any = None, search: Optional[str] = None,
                   tag: Optional[str] = None, role: Optional[str] = None,
                   default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT):
        """Coerce untrusted query values; bad numbers fall back to the defaults"""
        return cls(
            page=_positive_int(page, 1),
            limit=min(_positive_int(limit, default_limit), max_limit),
            search=(search or "").strip() or None,
            tag=(tag or "").strip() or None,
            role=(role or "").strip() or None,
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class ListSpec:
    """How one entity is searched, filtered and ordered.

    ``flag_column`` and ``owner_column`` are used to apply a ``Visibility``;
    ``tag_filter`` builds the membership predicate for a tag name.
    """
    model: Any
    search_columns: Sequence[Any] = ()
    order_by: Sequence[Any] = ()
    flag_column: Any = None
    owner_column: Any = None
    role_column: Any = None
    role_values: Sequence[str] = ()
    tag_filter: Optional[Callable[[str], Any]] = None


@dataclass
class FetchPlan:
    predicate: Any
    offset: int
    limit: int
    order: List[Any]
    page: int


def visibility_predicate(visibility: Optional[Visibility], spec: ListSpec):
    """Predicate narrowing rows to what the visibility allows (None = no narrowing)"""
    if visibility is None or visibility.unrestricted:
        return None
    flagged = spec.flag_column.is_(True)
    if visibility.or_owner_id is not None:
        return or_(flagged, spec.owner_column == visibility.or_owner_id)
    return flagged


def build_page(params: PageParams, spec: ListSpec,
               visibility: Optional[Visibility] = None,
               extra: Sequence[Any] = ()) -> FetchPlan:
    """Combine search, tag, role, visibility and caller filters with AND"""
    clauses: List[Any] = list(extra)

    if params.search and spec.search_columns:
        clauses.append(or_(*[column.icontains(params.search, autoescape=True)
                             for column in spec.search_columns]))
    if params.tag and spec.tag_filter is not None:
        clauses.append(spec.tag_filter(params.tag))
    if params.role and spec.role_column is not None and params.role in spec.role_values:
        clauses.append(spec.role_column == params.role)

    visible = visibility_predicate(visibility, spec)
    if visible is not None:
        clauses.append(visible)

    predicate = and_(*clauses) if clauses else None
    return FetchPlan(predicate=predicate,
                     offset=params.offset,
                     limit=params.limit,
                     order=list(spec.order_by),
                     page=params.page)


def pagination_meta(total: int, page: int, limit: int, returned: int) -> Dict[str, Any]:
    offset = (page - 1) * limit
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "total_items": total,
        "limit": limit,
        "has_next": offset + returned < total,
        "has_prev": page > 1,
    }


@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int
    extras: Dict[str, Any] = field(default_factory=dict)

    def pagination(self) -> Dict[str, Any]:
        return pagination_meta(self.total, self.page, self.limit, len(self.items))


def run_page(query: Query, plan: FetchPlan) -> Page:
    """Count and fetch with the same predicate.

    The count and the page are separate statements, so under concurrent
    writes the total can come from a slightly different snapshot.
    """
    if plan.predicate is not None:
        query = query.filter(plan.predicate)
    total = query.order_by(None).count()
    items = query.order_by(*plan.order).offset(plan.offset).limit(plan.limit).all()
    return Page(items=items, total=total, page=plan.page, limit=plan.limit)
