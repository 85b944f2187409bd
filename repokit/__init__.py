"""repokit: a generic relational data-access layer.

Keyset pagination, validated changesets with polymorphic embeds, and a
transactional fetch-lock-update primitive on top of async SQLAlchemy.
"""

from repokit.core.database import (
    ContractRegistry,
    CursorField,
    Filter,
    QueryContract,
    Range,
    RepositoryError,
    by_range,
)
from repokit.core.changeset import Changeset, EmbeddedSchema, PolymorphicEmbed, cast_polymorphic_embed
from repokit.core.database.repository import Page, Peek, Repo
from repokit.core.pagination import CursorCodec, CursorDirection, PageMetadata, Paginator

__version__ = "0.1.0"

__all__ = [
    "Changeset",
    "ContractRegistry",
    "CursorCodec",
    "CursorDirection",
    "CursorField",
    "EmbeddedSchema",
    "Filter",
    "Page",
    "PageMetadata",
    "Paginator",
    "Peek",
    "PolymorphicEmbed",
    "QueryContract",
    "Range",
    "Repo",
    "RepositoryError",
    "by_range",
    "cast_polymorphic_embed",
]
