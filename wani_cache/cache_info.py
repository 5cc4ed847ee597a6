"""Per resource-class freshness watermarks (ETag, Last-Modified, updated-after)."""
from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import Connection, delete, select
from sqlalchemy.dialects.sqlite import insert

from .db import CacheInfoRow
from .errors import DecodeError
from .resources import format_optional_timestamp, parse_optional_timestamp

logger = logging.getLogger(__name__)

_table = CacheInfoRow.__table__


class ResourceClass(enum.IntEnum):
    """The fixed set of tracked resource classes; values are cache_info keys."""
    SUBJECTS = 0
    ASSIGNMENTS = 1
    USER = 2


@dataclass(frozen=True)
class CacheInfo:
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    updated_after: Optional[datetime.datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.etag is None and self.last_modified is None and self.updated_after is None


EMPTY = CacheInfo()


def seed(conn: Connection) -> None:
    """Make sure every resource class has a row. Existing watermarks are kept."""
    stmt = insert(_table).on_conflict_do_nothing(index_elements=[_table.c.id])
    conn.execute(stmt, [{"id": int(rc)} for rc in ResourceClass])


def get_all(conn: Connection, ignore_cache: bool = False) -> Dict[ResourceClass, CacheInfo]:
    """Stored watermarks by class, or ``{}`` when the caller wants a full refresh.

    Ignoring the cache never touches the stored rows, so a later normal sync
    resumes from the last watermark that was genuinely advanced.
    """
    if ignore_cache:
        return {}
    infos: Dict[ResourceClass, CacheInfo] = {}
    rows = conn.execute(select(_table.c.id, _table.c.etag, _table.c.last_modified, _table.c.updated_after))
    for row in rows:
        try:
            resource_class = ResourceClass(row[0])
        except ValueError:
            logger.warning("Ignoring cache_info row for unknown resource class %s", row[0])
            continue
        try:
            updated_after = parse_optional_timestamp(row[3])
        except ValueError as e:
            raise DecodeError(str(e), table="cache_info", row_id=row[0], column="updated_after") from e
        infos[resource_class] = CacheInfo(etag=row[1], last_modified=row[2], updated_after=updated_after)
    return infos


def advance(conn: Connection, resource_class: ResourceClass, etag: Optional[str] = None,
            last_modified: Optional[str] = None,
            updated_after: Optional[datetime.datetime] = None) -> CacheInfo:
    """Upsert the watermark for one class. Only ResourceClass members are accepted."""
    if not isinstance(resource_class, ResourceClass):
        raise TypeError(f"not a ResourceClass: {resource_class!r}")
    values = {
        "etag": etag,
        "last_modified": last_modified,
        "updated_after": format_optional_timestamp(updated_after),
    }
    stmt = insert(_table).values(id=int(resource_class), **values)
    stmt = stmt.on_conflict_do_update(index_elements=[_table.c.id], set_=values)
    conn.execute(stmt)
    logger.debug("Advanced %s watermark: etag=%s last_modified=%s updated_after=%s",
                 resource_class.name, etag, last_modified, values["updated_after"])
    return CacheInfo(etag=etag, last_modified=last_modified, updated_after=updated_after)


def reset(conn: Connection) -> None:
    """Explicit cache reset: drop every watermark, then re-seed empty rows."""
    conn.execute(delete(_table))
    seed(conn)
