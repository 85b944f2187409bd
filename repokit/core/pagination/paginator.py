"""Keyset paginator.

The paginator seeks directly to the boundary row instead of using OFFSET,
so pages stay stable when rows are inserted or deleted before the current
position. It works in three steps around a caller-executed query:

    params = paginator.init(ActorQuery, limit=20, cursor=token)
    stmt = paginator.query(select(Actor), params)
    rows = (await session.execute(stmt)).scalars().all()
    rows, metadata = paginator.metadata(rows, params)

How the seek condition is built:
    For ORDER BY inserted_at ASC, id ASC with an "after" cursor at (t1, id1):
    WHERE inserted_at > t1 OR (inserted_at = t1 AND id > id1)

One extra (sentinel) row is fetched to learn whether more rows exist in
the direction just travelled without issuing a count query. "Before"
pages are read in inverted order and reversed back in ``metadata()``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, and_, or_

from repokit.core.database.exceptions import InvalidCursorError
from repokit.core.database.query import CursorField, SortDirection, fetch_cursor_fields
from repokit.core.pagination.cursor import CursorCodec, CursorDirection
from repokit.core.pagination.schemas import PageMetadata, PaginationParams
from repokit.core.settings import get_pagination_settings
from repokit.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.sql.elements import ColumnElement

    from repokit.core.database.query import QueryContract
    from repokit.core.pagination.cursor import Cursor
    from repokit.core.settings.pagination import PaginationSettings

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


def _compare(
    field: CursorField, direction: CursorDirection, value: Any
) -> ColumnElement[bool]:
    column = field.column
    ascending = field.sort is SortDirection.ASC
    if (direction is CursorDirection.AFTER) == ascending:
        return column > value
    return column < value


def seek_condition(
    cursor_fields: Sequence[CursorField], cursor: Cursor
) -> ColumnElement[bool]:
    """Build the strict lexicographic boundary predicate, right to left."""
    pairs = list(zip(cursor_fields, cursor.values, strict=True))
    last_field, last_value = pairs[-1]
    predicate = _compare(last_field, cursor.direction, last_value)

    for field, value in reversed(pairs[:-1]):
        predicate = or_(
            _compare(field, cursor.direction, value),
            and_(field.column == value, predicate),
        )
    return predicate


class Paginator:
    """Build keyset-paginated statements and derive page metadata.

    Args:
        settings: Pagination settings; defaults to the cached environment settings
        codec: Cursor codec; defaults to one keyed with ``settings.cursor_secret``
    """

    __slots__ = ("codec", "settings")

    def __init__(
        self,
        settings: PaginationSettings | None = None,
        codec: CursorCodec | None = None,
    ) -> None:
        self.settings = settings or get_pagination_settings()
        self.codec = codec or CursorCodec(self.settings.cursor_secret.get_secret_value())
        if codec is None and self.settings.uses_default_secret:
            logger.warning(
                "Pagination cursor secret is not configured; cursors can be forged",
                extra={"setting": "PAGINATION_CURSOR_SECRET"},
            )

    def init(
        self,
        contract: type[QueryContract],
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> PaginationParams:
        """Validate page input against a contract.

        The limit is clamped, never rejected. A cursor that does not decode,
        or whose value count does not match the contract's ordering, fails
        closed.

        Raises:
            InvalidCursorError: If the cursor is invalid for this contract
            QueryContractError: If the contract's ordering is unusable
        """
        cursor_fields = fetch_cursor_fields(contract)
        effective_limit = self.settings.clamp_limit(limit)

        decoded = None
        if cursor is not None:
            try:
                decoded = self.codec.decode(cursor)
            except InvalidCursorError as exc:
                logger.info(
                    "Rejected pagination cursor",
                    extra={"contract": contract.__name__, "reason": exc.reason},
                )
                raise
            if len(decoded.values) != len(cursor_fields):
                logger.info(
                    "Rejected pagination cursor",
                    extra={"contract": contract.__name__, "reason": "field count mismatch"},
                )
                raise InvalidCursorError("field count mismatch")

        return PaginationParams(
            contract=contract,
            cursor_fields=cursor_fields,
            limit=effective_limit,
            cursor=decoded,
        )

    def query(self, statement: Select[Any], params: PaginationParams) -> Select[Any]:
        """Apply ordering, the seek condition and the sentinel limit.

        Any ordering already present on ``statement`` is replaced; the
        contract's ordering is the only one keyset pagination can honour.
        """
        backwards = params.cursor is not None and params.cursor.direction is CursorDirection.BEFORE

        statement = statement.order_by(None)
        for field in params.cursor_fields:
            sort = field.sort.reversed() if backwards else field.sort
            column = field.column
            statement = statement.order_by(column.asc() if sort is SortDirection.ASC else column.desc())

        if params.cursor is not None:
            statement = statement.where(seek_condition(params.cursor_fields, params.cursor))

        return statement.limit(params.limit + 1)

    def metadata(
        self, rows: Sequence[Any], params: PaginationParams
    ) -> tuple[list[Any], PageMetadata]:
        """Trim the sentinel row and attribute previous/next cursors."""
        rows = list(rows)
        if not rows:
            return rows, PageMetadata(limit=params.limit)

        has_more = len(rows) > params.limit
        if has_more:
            rows = rows[: params.limit]

        fields = params.cursor_fields
        direction = params.cursor.direction if params.cursor is not None else None
        previous_cursor = next_cursor = None

        if direction is CursorDirection.BEFORE:
            rows.reverse()
            if has_more:
                previous_cursor = self.encode_cursor(CursorDirection.BEFORE, fields, rows[0])
            next_cursor = self.encode_cursor(CursorDirection.AFTER, fields, rows[-1])
        elif direction is CursorDirection.AFTER:
            previous_cursor = self.encode_cursor(CursorDirection.BEFORE, fields, rows[0])
            if has_more:
                next_cursor = self.encode_cursor(CursorDirection.AFTER, fields, rows[-1])
        elif has_more:
            next_cursor = self.encode_cursor(CursorDirection.AFTER, fields, rows[-1])

        lazy_logger.debug(
            lambda: f"page: {len(rows)} rows of {params.contract.__name__}, "
            f"direction={direction}, has_more={has_more}"
        )
        return rows, PageMetadata(
            previous_cursor=previous_cursor,
            next_cursor=next_cursor,
            limit=params.limit,
        )

    def encode_cursor(
        self,
        direction: CursorDirection,
        cursor_fields: Sequence[CursorField],
        row: Any,
    ) -> str:
        """Encode a boundary row's ordering values."""
        return self.codec.encode(direction, [getattr(row, field.field) for field in cursor_fields])

    def empty_metadata(self) -> PageMetadata:
        return PageMetadata(limit=self.settings.default_limit)


__all__ = ["Paginator", "seek_condition"]
