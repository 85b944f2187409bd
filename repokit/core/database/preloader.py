"""Association preloading with per-contract custom resolvers.

A contract's ``preloads()`` maps association names to resolvers. Requested
keys with a resolver are handled by it; every other key falls through to
SQLAlchemy's ``selectinload``:

    entities, remaining = await resolve(actors, ["memberships", "identities"], ActorQuery.preloads())
    actors = await load(session, Actor, entities, remaining)

Resolver kinds:
    fn(entities) -> entities     enriches entities itself (may be async)
    select(...)                  restricts the association with its WHERE clause
    fn() -> select(...)          same, built lazily
"""

from __future__ import annotations

import inspect
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, select, tuple_
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import RelationshipProperty, selectinload

from repokit.core.database.exceptions import QueryContractError
from repokit.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm.strategy_options import _AbstractLoad

    from repokit.core.database.query import PreloadResolver

lazy_logger = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class Preload:
    """A preload left for the default mechanism, optionally restricted by a query."""

    key: str
    query: Select[Any] | None = None


def _arity(fun: Any) -> int:
    return len(inspect.signature(fun).parameters)


async def resolve(
    entities: Sequence[Any],
    requested: Iterable[str],
    resolvers: Mapping[str, PreloadResolver],
) -> tuple[list[Any], list[Preload]]:
    """Run custom resolvers and return the preloads left for ``load()``."""
    entities = list(entities)
    remaining: list[Preload] = []
    custom: list[str] = []

    for key in requested:
        resolver = resolvers.get(key)
        if resolver is None:
            remaining.append(Preload(key))
        elif isinstance(resolver, Select):
            remaining.append(Preload(key, resolver))
        elif _arity(resolver) == 0:
            remaining.append(Preload(key, resolver()))
        else:
            result = resolver(entities)
            if inspect.isawaitable(result):
                result = await result
            entities = list(result)
            custom.append(key)

    lazy_logger.debug(
        lambda: f"preload: custom={custom}, default={[preload.key for preload in remaining]}"
    )
    return entities, remaining


def loader_options(model: type, preloads: Iterable[Preload]) -> list[_AbstractLoad]:
    """Build ``selectinload`` options; dotted keys load nested associations.

    Raises:
        QueryContractError: If a key does not name a relationship
    """
    options = []
    for preload in preloads:
        parts = preload.key.split(".")
        current = model
        option = None
        for index, part in enumerate(parts):
            attr = getattr(current, part, None)
            prop = getattr(attr, "property", None)
            if not isinstance(prop, RelationshipProperty):
                raise QueryContractError(model, f"{preload.key!r} is not an association")

            last = index == len(parts) - 1
            if last and preload.query is not None and preload.query.whereclause is not None:
                attr = attr.and_(preload.query.whereclause)

            option = selectinload(attr) if option is None else option.selectinload(attr)
            current = prop.mapper.class_
        options.append(option)
    return options


async def load(
    session: AsyncSession,
    model: type,
    entities: Sequence[Any],
    preloads: Sequence[Preload],
) -> list[Any]:
    """Load the remaining preloads onto ``entities`` with one query.

    The entities are refreshed in place through the identity map.
    """
    entities = list(entities)
    if not entities or not preloads:
        return entities

    mapper = sa_inspect(model)
    primary_key = mapper.primary_key
    keys = [mapper.get_property_by_column(column).key for column in primary_key]
    if len(keys) == 1:
        condition = primary_key[0].in_([getattr(entity, keys[0]) for entity in entities])
    else:
        condition = tuple_(*primary_key).in_(
            [tuple(getattr(entity, key) for key in keys) for entity in entities]
        )

    statement = (
        select(model)
        .where(condition)
        .options(*loader_options(model, preloads))
        .execution_options(populate_existing=True)
    )
    await session.execute(statement)
    return entities


__all__ = ["Preload", "load", "loader_options", "resolve"]
