"""Generic repository for contract-driven reads and locked updates.

Provides keyset-paginated listing, single-row fetches, changeset-based
inserts/updates and the fetch-lock-update primitive, with explicit session
passing. For anything else, use the session directly; this is a
convenience, not a cage.

Example:
    from repokit import Repo

    actors = Repo(Actor, ActorQuery)

    page = await actors.list(session, select(Actor), limit=20, preload=["memberships"])
    for actor in page.items:
        ...
    next_page = await actors.list(session, select(Actor), cursor=page.metadata.next_cursor)

    actor = await actors.fetch_and_update(
        session,
        select(Actor).where(Actor.id == actor_id),
        with_=lambda actor: Changeset.cast(actor, attrs, ["name"]).validate_required("name"),
        after_commit=[broadcast_actor_updated],
    )

Transactions: ``fetch_and_update`` runs in its own transaction and commits it.
A transaction the session autobegan for earlier reads is committed first.
With ``nested=True`` the work runs in a savepoint of the caller's
transaction instead, and committing stays the caller's job.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, NamedTuple

from sqlalchemy.exc import MultipleResultsFound, SQLAlchemyError

from repokit.core.changeset import Changeset
from repokit.core.database.exceptions import (
    AfterCommitError,
    ChangesetInvalidError,
    ChangesetRejectedError,
    MultipleResultsFoundError,
    NotFoundError,
    StorageError,
)
from repokit.core.database.filters import apply_filters
from repokit.core.database.preloader import load, resolve
from repokit.core.database.query import get_preloads
from repokit.core.pagination.paginator import Paginator
from repokit.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Mapping

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from repokit.core.database.query import ContractRegistry, QueryContract
    from repokit.core.pagination.schemas import PageMetadata

type ChangesetFunction[T] = Callable[[T], Changeset | Any | Awaitable[Changeset | Any]]
type AfterCommit[T] = Callable[[T], Any] | Callable[[T, Changeset], Any]


class Page[T](NamedTuple):
    """One page of results plus navigation metadata."""

    items: list[T]
    metadata: PageMetadata


class Peek[T](NamedTuple):
    """Preview of an association: total count and the first few items."""

    count: int
    items: list[T]


def _arity(fun: Any) -> int:
    return len(inspect.signature(fun).parameters)


class Repo[T]:
    """Repository bound to one model and its query contract.

    Provides:
        - fetch(session, statement) -> T (raises NotFoundError)
        - fetch_or_none(session, statement) -> T | None
        - list(session, statement, limit, cursor, filters) -> Page[T]
        - fetch_and_update(session, statement, with_=...) -> T
        - insert(session, changeset) / update(session, changeset) -> T
        - preload(session, entities, keys) -> list[T]
        - peek(session, statement, entities) / peek_counts(session, statement, ids)

    Every failure is a ``RepositoryError`` subclass; raw SQLAlchemy errors
    surface as ``StorageError`` and are never retried.
    """

    __slots__ = ("_lazy", "_logger", "contract", "model", "paginator")

    def __init__(
        self,
        model: type[T],
        contract: type[QueryContract],
        *,
        paginator: Paginator | None = None,
    ) -> None:
        """Initialize repository.

        Args:
            model: SQLAlchemy model class
            contract: Query contract for the model
            paginator: Paginator carrying pagination settings and the cursor key
        """
        self.model = model
        self.contract = contract
        self.paginator = paginator or Paginator()
        # Standard logger for INFO/WARNING/ERROR
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        # Lazy logger for DEBUG (zero overhead when DEBUG disabled)
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    @classmethod
    def from_registry(
        cls,
        model: type[T],
        registry: ContractRegistry,
        *,
        paginator: Paginator | None = None,
    ) -> Repo[T]:
        return cls(model, registry.resolve(model), paginator=paginator)

    @staticmethod
    @asynccontextmanager
    async def transaction(session: AsyncSession, *, nested: bool = False) -> AsyncIterator[None]:
        """Open a transaction that commits on exit, or a savepoint when ``nested``.

        Without ``nested``, a transaction left open by earlier reads on the
        session (autobegin) is committed before the new one starts.
        """
        if nested:
            async with session.begin_nested():
                yield
        else:
            if session.in_transaction():
                await session.commit()
            async with session.begin():
                yield

    def _storage_error(self, operation: str, exc: SQLAlchemyError) -> StorageError:
        self._logger.error(
            "Storage failure",
            exc_info=exc,
            extra={"entity": self.model.__name__, "operation": operation},
        )
        return StorageError(operation, exc)

    # Reads

    async def fetch_or_none(
        self,
        session: AsyncSession,
        statement: Select[Any],
        *,
        preload: Iterable[str] = (),
    ) -> T | None:
        """Fetch at most one row.

        Raises:
            MultipleResultsFoundError: If the statement matched several rows
            StorageError: On database failure
        """
        try:
            result = await session.execute(statement)
            try:
                entity = result.scalar_one_or_none()
            except MultipleResultsFound:
                raise MultipleResultsFoundError(self.model.__name__, str(statement)) from None

            self._lazy.debug(
                lambda: f"db.fetch: {self.model.__name__} -> {'found' if entity is not None else 'not found'}"
            )
            if entity is None:
                return None
            [entity] = await self.preload(session, [entity], preload)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.fetch", exc) from exc
        return entity

    async def fetch(
        self,
        session: AsyncSession,
        statement: Select[Any],
        *,
        preload: Iterable[str] = (),
    ) -> T:
        """Fetch exactly one row.

        Raises:
            NotFoundError: If no row matched
        """
        entity = await self.fetch_or_none(session, statement, preload=preload)
        if entity is None:
            self._logger.info(
                "Entity not found",
                extra={"entity": self.model.__name__, "operation": "db.fetch"},
            )
            raise NotFoundError(self.model.__name__)
        return entity

    async def list(
        self,
        session: AsyncSession,
        statement: Select[Any],
        *,
        limit: int | None = None,
        cursor: str | None = None,
        preload: Iterable[str] = (),
        filters: Mapping[str, Any] | None = None,
    ) -> Page[T]:
        """List one keyset-paginated page.

        Pages are read outside any explicit transaction; adjacent pages may
        reflect different snapshots but never skip or repeat rows.

        Raises:
            InvalidCursorError: If ``cursor`` is malformed or tampered with
            InvalidFilterError: For an unknown filter or a bad filter value
            StorageError: On database failure
        """
        params = self.paginator.init(self.contract, limit=limit, cursor=cursor)
        statement = apply_filters(statement, self.contract, filters)

        try:
            result = await session.execute(self.paginator.query(statement, params))
            rows = result.scalars().all()
            items, metadata = self.paginator.metadata(rows, params)
            items = await self.preload(session, items, preload)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.list", exc) from exc

        self._lazy.debug(
            lambda: f"db.list: {self.model.__name__}(limit={params.limit}) -> {len(items)} items, "
            f"previous={metadata.has_previous}, next={metadata.has_next}"
        )
        return Page(items, metadata)

    async def preload(
        self,
        session: AsyncSession,
        entities: Sequence[T],
        preload: Iterable[str],
    ) -> list[T]:
        """Resolve requested associations through the contract's resolvers."""
        keys = list(preload)
        if not keys or not entities:
            return list(entities)
        entities, remaining = await resolve(entities, keys, get_preloads(self.contract))
        return await load(session, self.model, entities, remaining)

    async def peek(
        self,
        session: AsyncSession,
        statement: Select[Any],
        entities: Iterable[T],
    ) -> dict[Any, Peek[Any]]:
        """Preview an association for each entity.

        ``statement`` must return rows with ``id``, ``count`` and ``item``
        columns: the owner id, the owner's total association count and one
        previewed item.
        """
        ids = dict.fromkeys(entity.id for entity in entities)  # type: ignore[attr-defined]
        preview: dict[Any, Peek[Any]] = {entity_id: Peek(0, []) for entity_id in ids}

        try:
            result = await session.execute(statement)
            for row in result.mappings():
                current = preview.get(row["id"])
                items = current.items if current is not None else []
                items.append(row["item"])
                preview[row["id"]] = Peek(row["count"], items)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.peek", exc) from exc
        return preview

    async def peek_counts(
        self,
        session: AsyncSession,
        statement: Select[Any],
        ids: Iterable[Any],
    ) -> dict[Any, int]:
        """Like ``peek()`` but only counts; rows need ``id`` and ``count``."""
        counts = dict.fromkeys(ids, 0)
        try:
            result = await session.execute(statement)
            for row in result.mappings():
                counts[row["id"]] = row["count"]
        except SQLAlchemyError as exc:
            raise self._storage_error("db.peek_counts", exc) from exc
        return counts

    # Writes

    def _prepared(self, changeset: Changeset, action: str) -> Changeset:
        changeset = changeset.with_action(action)
        if changeset.valid:
            changeset = changeset.run_prepare()
        if not changeset.valid:
            self._logger.info(
                "Changeset is invalid",
                extra={
                    "entity": self.model.__name__,
                    "operation": f"db.{action}",
                    "fields": sorted(changeset.errors_by_field()),
                },
            )
            raise ChangesetInvalidError(changeset)
        return changeset

    async def insert(self, session: AsyncSession, changeset: Changeset) -> T:
        """Insert a new row from a valid changeset.

        The changeset data is either a transient model instance or a mapping
        of defaults; pending changes are applied on top.

        Raises:
            ChangesetInvalidError: If the changeset is invalid
            StorageError: On database failure
        """
        changeset = self._prepared(changeset, "insert")
        data = changeset.data
        if isinstance(data, self.model):
            entity = data
            for field, value in changeset.changes.items():
                setattr(entity, field, value)
        else:
            entity = self.model(**{**dict(data or {}), **changeset.changes})

        try:
            async with session.begin_nested():
                session.add(entity)
                await session.flush()
            await session.refresh(entity)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.insert", exc) from exc

        self._lazy.debug(lambda: f"db.insert: {self.model.__name__}(id={getattr(entity, 'id', None)})")
        return entity

    async def update(self, session: AsyncSession, changeset: Changeset) -> T:
        """Write a valid changeset to its persistent entity inside a savepoint.

        Prepare hooks (for example embed flattening) run first; nothing is
        written when the changeset is invalid.

        Raises:
            ChangesetInvalidError: If the changeset is invalid
            StorageError: On database failure
        """
        changeset = self._prepared(changeset, "update")
        entity = changeset.data

        try:
            async with session.begin_nested():
                for field, value in changeset.changes.items():
                    setattr(entity, field, value)
                await session.flush()
            await session.refresh(entity)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.update", exc) from exc

        self._lazy.debug(
            lambda: f"db.update: {self.model.__name__}(id={getattr(entity, 'id', None)}) "
            f"fields={sorted(changeset.changes)}"
        )
        return entity

    async def fetch_and_update(
        self,
        session: AsyncSession,
        statement: Select[Any],
        *,
        with_: ChangesetFunction[T],
        preload: Iterable[str] = (),
        after_commit: AfterCommit[T] | Sequence[AfterCommit[T]] = (),
        nested: bool = False,
    ) -> T:
        """Fetch one row under a row lock, update it and commit.

        Steps: lock the row (``SELECT ... FOR UPDATE``), build a changeset
        with ``with_(entity)``, write it, commit, run ``after_commit``
        callbacks outside the transaction, then resolve ``preload``.
        Concurrent calls on the same row are serialized by the lock.

        With ``nested=True`` the update runs in a savepoint of the caller's
        transaction and is only durable once the caller commits; callbacks
        then run after the savepoint is released. Otherwise the update is
        committed before any callback runs and no transaction is left open.

        Raises:
            NotFoundError: If no row matched; nothing is written
            MultipleResultsFoundError: If several rows matched
            ChangesetInvalidError: If the changeset is invalid; rolled back
            ChangesetRejectedError: If ``with_`` returned something other
                than a changeset; rolled back
            StorageError: On database failure; rolled back
            AfterCommitError: If a callback failed; the update stays committed
        """
        callbacks = [after_commit] if callable(after_commit) else list(after_commit)

        try:
            async with self.transaction(session, nested=nested):
                result = await session.execute(statement.with_for_update())
                try:
                    entity = result.scalar_one_or_none()
                except MultipleResultsFound:
                    raise MultipleResultsFoundError(self.model.__name__, str(statement)) from None

                if entity is None:
                    self._logger.info(
                        "Entity not found",
                        extra={"entity": self.model.__name__, "operation": "db.fetch_and_update"},
                    )
                    raise NotFoundError(self.model.__name__)

                changeset = with_(entity)
                if inspect.isawaitable(changeset):
                    changeset = await changeset
                if not isinstance(changeset, Changeset):
                    self._logger.info(
                        "Changeset function rejected the update",
                        extra={"entity": self.model.__name__, "operation": "db.fetch_and_update"},
                    )
                    raise ChangesetRejectedError(changeset)

                entity = await self.update(session, changeset)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.fetch_and_update", exc) from exc

        await self._run_after_commit(entity, changeset, callbacks)

        keys = list(preload)
        if not keys:
            return entity
        try:
            if nested:
                [entity] = await self.preload(session, [entity], keys)
            else:
                async with self.transaction(session):
                    [entity] = await self.preload(session, [entity], keys)
        except SQLAlchemyError as exc:
            raise self._storage_error("db.preload", exc) from exc
        return entity

    async def _run_after_commit(
        self, entity: T, changeset: Changeset, callbacks: Sequence[AfterCommit[T]]
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(entity, changeset) if _arity(callback) == 2 else callback(entity)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._logger.exception(
                    "After-commit callback failed",
                    extra={
                        "entity": self.model.__name__,
                        "callback": getattr(callback, "__qualname__", repr(callback)),
                    },
                )
                raise AfterCommitError(entity, callback) from exc


__all__ = ["AfterCommit", "ChangesetFunction", "Page", "Peek", "Repo"]
