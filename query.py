"""
List queries shared by the countries, companies and people endpoints.

A ``ResourceSpec`` names what a resource allows (filters, sort fields, search
fields, populated references). ``build_list_query`` turns raw query-string
values into a ``ListQuery`` and ``run_list`` executes it and shapes the
paginated envelope.

Paging is stable: ``_id`` is always the last sort key, so walking every page
returns each matching record exactly once when nothing is written meanwhile.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from database import Database, to_dict
from errors import ValidationError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 200
MAX_SEARCH_LENGTH = 100
# largest skip the server accepts (int64)
MAX_SKIP = 2 ** 63 - 1

# filter kinds
EXACT = "exact"
REFERENCE = "reference"
BOOLEAN = "boolean"


@dataclass(frozen=True)
class Reference:
    """A stored ObjectId field replaced by a reduced view of the target record."""
    field: str
    collection: str
    projection: Tuple[str, ...]


@dataclass(frozen=True)
class ResourceSpec:
    collection: str
    default_sort: str
    sort_fields: Tuple[str, ...]
    search_fields: Tuple[str, ...]
    filters: Dict[str, str] = field(default_factory=dict)
    references: Tuple[Reference, ...] = ()
    # adds derived fields (counts, full names) to serialized rows
    decorate: Optional[Callable[[Database, List[Dict[str, Any]]], None]] = None


@dataclass
class ListQuery:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str = "name"
    sort_order: int = ASCENDING
    search: Optional[str] = None
    filters: Dict[str, Any] = field(default_factory=dict)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def sort(self) -> List[Tuple[str, int]]:
        return [(self.sort_by, self.sort_order), ("_id", ASCENDING)]

    def mongo_filter(self, spec: ResourceSpec) -> Dict[str, Any]:
        filt: Dict[str, Any] = dict(self.filters)
        if self.search:
            filt["$or"] = search_clause(spec.search_fields, self.search)
        return filt


def _positive_int(value: Any) -> Optional[int]:
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def parse_page(value: Any) -> int:
    return _positive_int(value) or DEFAULT_PAGE


def parse_limit(value: Any) -> int:
    """Oversized limits are clamped to MAX_LIMIT."""
    return min(_positive_int(value) or DEFAULT_LIMIT, MAX_LIMIT)


def normalize_search(value: Any) -> Optional[str]:
    """Cut search text to its first 100 characters; blank means no search."""
    if not isinstance(value, str):
        return None
    term = value[:MAX_SEARCH_LENGTH]
    if not term.strip():
        return None
    return term


def escape_search(term: str) -> str:
    return re.escape(term)


def search_clause(fields: Tuple[str, ...], term: str) -> List[Dict[str, Any]]:
    # a regex on an array field matches when any element matches
    pattern = escape_search(term)
    return [{f: {"$regex": pattern, "$options": "i"}} for f in fields]


def parse_filter(name: str, kind: str, raw: Any) -> Any:
    """Return the store value for one filter, or None when it does not apply."""
    if raw is None:
        return None
    raw = str(raw).strip()
    if not raw:
        return None
    if kind == REFERENCE:
        if not ObjectId.is_valid(raw):
            raise ValidationError(f"Invalid {name} id")
        return ObjectId(raw)
    if kind == BOOLEAN:
        lowered = raw.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        return None
    return raw


def build_list_query(spec: ResourceSpec, params: Mapping[str, Any]) -> ListQuery:
    sort_by = params.get("sortBy")
    if sort_by not in spec.sort_fields:
        sort_by = spec.default_sort
    sort_order = DESCENDING if str(params.get("sortOrder", "")).lower() == "desc" else ASCENDING

    filters: Dict[str, Any] = {}
    for name, kind in spec.filters.items():
        value = parse_filter(name, kind, params.get(name))
        if value is not None:
            filters[name] = value

    return ListQuery(
        page=parse_page(params.get("page")),
        limit=parse_limit(params.get("limit")),
        sort_by=sort_by,
        sort_order=sort_order,
        search=normalize_search(params.get("search")),
        filters=filters,
    )


def populate(db: Database, docs: List[Dict[str, Any]], references: Tuple[Reference, ...]) -> None:
    """Replace reference ids in ``docs`` with reduced views, in place.

    A reference that no longer resolves becomes None.
    """
    for ref in references:
        ids = {d.get(ref.field) for d in docs if isinstance(d.get(ref.field), ObjectId)}
        if not ids:
            continue
        projection = {p: 1 for p in ref.projection}
        targets = {
            t["_id"]: t for t in db[ref.collection].find({"_id": {"$in": list(ids)}}, projection)
        }
        for d in docs:
            value = d.get(ref.field)
            if isinstance(value, ObjectId):
                d[ref.field] = targets.get(value)


def serialize(db: Database, spec: ResourceSpec, docs: List[Dict[str, Any]], references=None) -> List[Dict[str, Any]]:
    populate(db, docs, spec.references if references is None else references)
    rows = [to_dict(d) for d in docs]
    if spec.decorate:
        spec.decorate(db, rows)
    return rows


def pagination(total: int, query: ListQuery) -> Dict[str, int]:
    return {
        "total": total,
        "totalPages": math.ceil(total / query.limit),
        "currentPage": query.page,
        "pageSize": query.limit,
    }


def run_list(db: Database, spec: ResourceSpec, params: Mapping[str, Any]) -> Dict[str, Any]:
    query = build_list_query(spec, params)
    filt = query.mongo_filter(spec)
    collection = db[spec.collection]

    total = collection.count_documents(filt)
    if query.skip > MAX_SKIP or query.skip >= total:
        docs = []
    else:
        docs = list(collection.find(filt).sort(query.sort()).skip(query.skip).limit(query.limit))
    data = serialize(db, spec, docs)

    return {
        "success": True,
        "count": len(data),
        "pagination": pagination(total, query),
        "data": data,
    }
