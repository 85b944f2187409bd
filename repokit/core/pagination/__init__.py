"""Keyset (cursor) pagination.

Pagination is stable under concurrent inserts and deletes because each page
seeks past the boundary row's ordering values instead of skipping N rows.
Cursors are opaque, tamper-evident base64url tokens that clients pass back
unchanged:

    paginator = Paginator(get_pagination_settings())
    params = paginator.init(ActorQuery, limit=50, cursor=request_cursor)
    rows = (await session.execute(paginator.query(select(Actor), params))).scalars().all()
    rows, metadata = paginator.metadata(rows, params)
"""

from repokit.core.pagination.cursor import Cursor, CursorCodec, CursorDirection
from repokit.core.pagination.paginator import Paginator, seek_condition
from repokit.core.pagination.schemas import PageMetadata, PaginationParams

__all__ = [
    "Cursor",
    "CursorCodec",
    "CursorDirection",
    "PageMetadata",
    "PaginationParams",
    "Paginator",
    "seek_condition",
]
