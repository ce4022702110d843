"""
Query construction for collection listings.

Query-string options arrive as loosely structured values (JSON for where,
sort and select; integers for skip and limit; a flag for count). Parsing is
permissive: an option that does not have the expected shape is treated as
absent, and a where/sort/select that cannot be compiled against the
collection falls back to match-all / default order / all fields.
"""
import logging
import operator
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Select, and_, asc, desc, exists, false, func, not_, or_, select, true

from app.utils.dates import to_storage
from app.utils.sanitization import parse_int_param, parse_json_param

logger = logging.getLogger(__name__)


class MalformedQuery(ValueError):
    """Raised while compiling an option that does not fit the collection."""


# ── Collections ─────────────────────────────────────────

@dataclass(frozen=True)
class SetField:
    """A list-valued field kept in a side table (one row per element)."""
    model: type
    owner: Any      # side-table column holding the owning document id
    value: Any      # side-table column holding the element
    key: Any        # owning model's id column


@dataclass(frozen=True)
class Collection:
    name: str
    model: type
    fields: dict[str, Any]
    set_fields: dict[str, SetField] = field(default_factory=dict)
    # Fields holding object ids; compared case-insensitively like path ids
    id_fields: frozenset = frozenset()

    @property
    def default_order(self):
        return self.model.seq

    def column_key(self, name: str) -> str:
        """Model attribute name for an external field name."""
        try:
            return self.fields[name].key
        except KeyError:
            raise MalformedQuery(f"unknown field {name!r} on {self.name}") from None


# ── Options ─────────────────────────────────────────────

class QueryOptions(BaseModel):
    where: dict[str, Any] | None = None
    sort: dict[str, Any] | None = None
    select: dict[str, Any] | str | None = None
    skip: int | None = None
    limit: int | None = None
    count: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "QueryOptions":
        where = parse_json_param(params.get("where"))
        sort = parse_json_param(params.get("sort"))
        projection = parse_json_param(params.get("select") or params.get("filter"))
        skip = parse_int_param(params.get("skip"))
        limit = parse_int_param(params.get("limit"))

        return cls(
            where=where if isinstance(where, dict) else None,
            sort=sort if isinstance(sort, dict) else None,
            select=projection if isinstance(projection, (dict, str)) else None,
            skip=skip if skip is not None and skip >= 0 else None,
            limit=limit if limit is not None and limit >= 0 else None,
            count=str(params.get("count")).lower() == "true",
        )


# ── where ───────────────────────────────────────────────

_COMPARISONS = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}
_adapters: dict[type, TypeAdapter] = {}


def _coerce(column, value, lower=False):
    python_type = column.type.python_type
    if value is None or isinstance(value, (dict, list)):
        raise MalformedQuery(f"cannot compare {column.key} with {value!r}")
    adapter = _adapters.setdefault(python_type, TypeAdapter(python_type))
    try:
        coerced = adapter.validate_python(value)
    except PydanticValidationError as exc:
        raise MalformedQuery(f"bad value for {column.key}: {value!r}") from exc
    if isinstance(coerced, datetime):
        coerced = to_storage(coerced)
    elif lower and isinstance(coerced, str):
        coerced = coerced.lower()
    return coerced


def _is_operator_dict(value) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith("$") for k in value)


def _field_clause(column, value, lower=False):
    if not _is_operator_dict(value):
        return column == _coerce(column, value, lower)

    clauses = []
    for op, operand in value.items():
        if op in _COMPARISONS:
            clauses.append(_COMPARISONS[op](column, _coerce(column, operand, lower)))
        elif op in ("$in", "$nin"):
            if not isinstance(operand, list):
                raise MalformedQuery(f"{op} expects a list")
            values = [_coerce(column, v, lower) for v in operand]
            clauses.append(column.in_(values) if op == "$in" else column.not_in(values))
        else:
            raise MalformedQuery(f"unsupported operator {op}")
    return and_(*clauses)


def _set_clause(set_field: SetField, value):
    def contains(values):
        if not values:
            return false()
        return exists().where(
            set_field.owner == set_field.key,
            set_field.value.in_([_coerce(set_field.value, v, lower=True) for v in values]),
        )

    if not _is_operator_dict(value):
        return contains([value])

    clauses = []
    for op, operand in value.items():
        if op in ("$eq", "$ne"):
            clause = contains([operand])
            clauses.append(clause if op == "$eq" else not_(clause))
        elif op in ("$in", "$nin"):
            if not isinstance(operand, list):
                raise MalformedQuery(f"{op} expects a list")
            clause = contains(operand)
            clauses.append(clause if op == "$in" else not_(clause))
        else:
            raise MalformedQuery(f"unsupported operator {op} on a list field")
    return and_(*clauses)


def compile_where(collection: Collection, where: dict):
    """Translate a filter document into a SQL clause. Raises MalformedQuery."""
    if not isinstance(where, dict):
        raise MalformedQuery("where must be an object")

    clauses = []
    for key, value in where.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(value, list) or not value:
                raise MalformedQuery(f"{key} expects a non-empty list")
            parts = [compile_where(collection, part) for part in value]
            if key == "$and":
                clauses.append(and_(*parts))
            elif key == "$or":
                clauses.append(or_(*parts))
            else:
                clauses.append(not_(or_(*parts)))
        elif key in collection.set_fields:
            clauses.append(_set_clause(collection.set_fields[key], value))
        elif key in collection.fields:
            clauses.append(_field_clause(collection.fields[key], value, key in collection.id_fields))
        else:
            raise MalformedQuery(f"unknown field {key!r} on {collection.name}")
    return and_(true(), *clauses)


# ── sort ────────────────────────────────────────────────

_DIRECTIONS = {
    1: asc, -1: desc,
    "asc": asc, "ascending": asc,
    "desc": desc, "descending": desc,
}


def compile_sort(collection: Collection, sort: dict) -> list:
    order = []
    for name, direction in sort.items():
        if name not in collection.fields or isinstance(direction, bool):
            raise MalformedQuery(f"cannot sort {collection.name} by {name!r}")
        if isinstance(direction, str):
            direction = direction.lower()
        elif isinstance(direction, float) and direction.is_integer():
            direction = int(direction)
        try:
            order.append(_DIRECTIONS[direction](collection.fields[name]))
        except (KeyError, TypeError):
            raise MalformedQuery(f"bad sort direction {direction!r}") from None
    # Insertion order breaks ties so pagination is stable
    order.append(collection.default_order)
    return order


# ── select ──────────────────────────────────────────────

@dataclass(frozen=True)
class Projection:
    include: frozenset | None
    exclude: frozenset

    def apply(self, document: dict) -> dict:
        if self.include is not None:
            return {k: v for k, v in document.items() if k in self.include and k not in self.exclude}
        return {k: v for k, v in document.items() if k not in self.exclude}


def compile_projection(fields) -> Projection | None:
    if isinstance(fields, str):
        tokens = fields.split()
        fields = {t.lstrip("-+"): 0 if t.startswith("-") else 1 for t in tokens if t.lstrip("-+")}
    if not isinstance(fields, dict):
        raise MalformedQuery("select must be an object or a field list")
    if not fields:
        return None

    include, exclude = set(), set()
    for name, flag in fields.items():
        if not isinstance(flag, (bool, int, float)):
            raise MalformedQuery(f"bad projection flag for {name!r}")
        (include if flag else exclude).add(name)

    if include and exclude - {"_id"}:
        raise MalformedQuery("cannot mix inclusion and exclusion")
    if include:
        # _id rides along unless explicitly excluded
        return Projection(include=frozenset(include | {"_id"}), exclude=frozenset(exclude))
    return Projection(include=None, exclude=frozenset(exclude))


# ── Plans ───────────────────────────────────────────────

@dataclass
class QueryPlan:
    statement: Select
    count: bool = False
    projection: Projection | None = None

    def project(self, document: dict) -> dict:
        return self.projection.apply(document) if self.projection else document


class QueryBuilder:
    """Builds a bound statement for one collection from QueryOptions."""

    def __init__(self, collection: Collection, default_limit: int | None = None):
        self.collection = collection
        self.default_limit = default_limit

    def build(self, options: QueryOptions) -> QueryPlan:
        model = self.collection.model
        clause = self.where(options.where)

        if options.count:
            statement = select(func.count()).select_from(model).where(clause)
            return QueryPlan(statement=statement, count=True)

        statement = (
            select(model)
            .where(clause)
            .order_by(*self.order(options.sort))
            .execution_options(populate_existing=True)
        )
        if options.skip:
            statement = statement.offset(options.skip)
        limit = options.limit if options.limit is not None else self.default_limit
        # limit 0 means no limit
        if limit:
            statement = statement.limit(limit)

        return QueryPlan(statement=statement, projection=self.projection(options.select))

    def where(self, where: dict | None):
        if not where:
            return true()
        try:
            return compile_where(self.collection, where)
        except MalformedQuery as exc:
            logger.debug("Ignoring where on %s: %s", self.collection.name, exc)
            return true()

    def order(self, sort: dict | None) -> list:
        if sort:
            try:
                return compile_sort(self.collection, sort)
            except MalformedQuery as exc:
                logger.debug("Ignoring sort on %s: %s", self.collection.name, exc)
        return [self.collection.default_order]

    @staticmethod
    def projection(fields) -> Projection | None:
        if fields is None:
            return None
        try:
            return compile_projection(fields)
        except MalformedQuery as exc:
            logger.debug("Ignoring select: %s", exc)
            return None
