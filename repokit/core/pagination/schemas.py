"""Pagination parameter and metadata schemas.

``PaginationParams`` is the validated input of one page request: the
contract's ordering, a clamped limit and an optional decoded cursor.
``PageMetadata`` is returned alongside every page so clients can request
the neighbouring pages by passing one of its cursors back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from repokit.core.database.query import CursorField, QueryContract
    from repokit.core.pagination.cursor import Cursor


class PageMetadata(BaseModel):
    """Navigation metadata for one page.

    Attributes:
        previous_cursor: Token for the page before this one, if any
        next_cursor: Token for the page after this one, if any
        limit: Effective page size after clamping
    """

    previous_cursor: str | None = Field(
        default=None,
        description="Cursor of the previous page",
    )
    next_cursor: str | None = Field(
        default=None,
        description="Cursor of the next page",
    )
    limit: int = Field(ge=1, description="Page size")

    model_config = {"frozen": True}

    @property
    def has_previous(self) -> bool:
        return self.previous_cursor is not None

    @property
    def has_next(self) -> bool:
        return self.next_cursor is not None


@dataclass(frozen=True, slots=True)
class PaginationParams:
    """Validated pagination input produced by ``Paginator.init()``."""

    contract: type[QueryContract]
    cursor_fields: tuple[CursorField, ...]
    limit: int
    cursor: Cursor | None = None


__all__ = ["PageMetadata", "PaginationParams"]
