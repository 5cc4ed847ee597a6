"""Incremental sync of the cache against the API.

One resource class at a time: build a conditional request from the stored
watermark, drain every page of the response, write each page in its own
transaction and advance the watermark inside the last page's transaction.
A class that fails part-way keeps its old watermark, so the next run picks up
from the same point; rows already committed are replayed harmlessly because
every write is an upsert keyed on the natural id.
"""
from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Connection
from sqlalchemy.exc import SQLAlchemyError

from . import cache_info
from .cache_info import CacheInfo, ResourceClass
from .client import HttpError, NotModified, Page, RateLimited, Unauthorized, WaniClient
from .codec import write_records
from .db import transaction
from .errors import (
    AuthError, DecodeError, HttpStatusError, RateLimitError, StoreError, TransportError,
)
from .resources import Collection, UnknownResource, decode_resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPolicy:
    """Which conditional request a resource class makes."""
    resource_class: ResourceClass
    endpoint: str
    use_etag: bool = False
    use_updated_after: bool = False
    use_if_modified_since: bool = False

    def request_args(self, info: CacheInfo) -> Dict[str, Any]:
        args: Dict[str, Any] = {}
        if self.use_etag and info.etag:
            args["etag"] = info.etag
        if self.use_updated_after and info.updated_after is not None:
            args["updated_after"] = info.updated_after
        if self.use_if_modified_since and info.last_modified:
            args["if_modified_since"] = info.last_modified
        return args


# Subjects are large and rarely change, so they also send the ETag.
POLICIES: Dict[ResourceClass, SyncPolicy] = {
    ResourceClass.SUBJECTS: SyncPolicy(ResourceClass.SUBJECTS, "subjects", use_etag=True, use_updated_after=True),
    ResourceClass.ASSIGNMENTS: SyncPolicy(ResourceClass.ASSIGNMENTS, "assignments", use_updated_after=True),
    ResourceClass.USER: SyncPolicy(ResourceClass.USER, "user", use_if_modified_since=True),
}


class Outcome(enum.Enum):
    UPDATED = "updated"
    NOT_MODIFIED = "not modified"
    INCOMPLETE = "incomplete"  # written, but some records failed to decode
    RATE_LIMITED = "rate limited"
    FAILED = "failed"


@dataclass
class ClassResult:
    resource_class: ResourceClass
    outcome: Outcome
    written: int = 0
    pages: int = 0
    decode_failures: int = 0
    error: Optional[str] = None

    @property
    def advanced(self) -> bool:
        return self.outcome is Outcome.UPDATED


@dataclass
class SyncReport:
    results: Dict[ResourceClass, ClassResult] = field(default_factory=dict)
    # Watermarks after the pass, threaded back to the caller.
    watermarks: Dict[ResourceClass, CacheInfo] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.outcome in (Outcome.UPDATED, Outcome.NOT_MODIFIED) for r in self.results.values())

    @property
    def written(self) -> int:
        return sum(r.written for r in self.results.values())


def _decode_page(page: Page) -> Tuple[List[Any], int]:
    """Records to store from one page, plus the number of items that failed to decode."""
    resource = decode_resource(page.body)
    if isinstance(resource, Collection):
        for failure in resource.failures:
            logger.warning("Could not decode record from %s: %s", page.url, failure)
        items: Iterable[Any] = resource.data
        failures = len(resource.failures)
    else:
        items = [resource]
        failures = 0
    records = []
    for item in items:
        if isinstance(item, UnknownResource):
            logger.debug("Ignoring %s resource %s", item.object, item.id)
            continue
        records.append(item)
    return records, failures


def sync_class(conn: Connection, client: WaniClient, resource_class: ResourceClass,
               info: CacheInfo = cache_info.EMPTY,
               now: Optional[datetime.datetime] = None) -> Tuple[ClassResult, CacheInfo]:
    """Sync one resource class starting from ``info``.

    Returns the class result and the watermark to carry forward (``info``
    itself unless the class was fully applied). AuthError and StoreError
    propagate; every other failure is folded into the result.
    """
    policy = POLICIES[resource_class]
    request_time = now or datetime.datetime.now(datetime.UTC)
    result = ClassResult(resource_class, Outcome.FAILED)
    url: Optional[str] = policy.endpoint
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    new_info = info

    try:
        while url:
            first = result.pages == 0
            fetched = client.conditional_get(url, **policy.request_args(info)) if first else client.conditional_get(url)

            if isinstance(fetched, NotModified):
                if not first:
                    raise HttpStatusError(304, url)
                logger.info("%s: not modified", resource_class.name)
                result.outcome = Outcome.NOT_MODIFIED
                return result, info
            if isinstance(fetched, Unauthorized):
                raise AuthError("HTTP 401: Unauthorized. Make sure your WaniKani token is correct and hasn't expired.")
            if isinstance(fetched, RateLimited):
                raise RateLimitError("WaniKani API rate limit exceeded.", fetched.rate_limit)
            if isinstance(fetched, HttpError):
                raise HttpStatusError(fetched.status, fetched.url)

            if first:
                etag, last_modified = fetched.etag, fetched.last_modified
            records, failures = _decode_page(fetched)
            result.decode_failures += failures
            last_page = fetched.next_url is None

            with transaction(conn):
                result.written += write_records(conn, records)
                if last_page and result.decode_failures == 0:
                    new_info = cache_info.advance(conn, resource_class, etag, last_modified, request_time)
            result.pages += 1
            logger.debug("%s: page %d stored (%d records)", resource_class.name, result.pages, len(records))
            url = fetched.next_url
    except RateLimitError as e:
        result.outcome = Outcome.RATE_LIMITED
        result.error = str(e)
        reset = f" (resets at {e.rate_limit.reset})" if e.rate_limit else ""
        logger.warning("%s: rate limited after %d page(s), will retry next run%s",
                       resource_class.name, result.pages, reset)
        return result, info
    except (TransportError, HttpStatusError, DecodeError) as e:
        result.outcome = Outcome.FAILED
        result.error = str(e)
        logger.error("%s: sync failed after %d page(s): %s", resource_class.name, result.pages, e)
        return result, info
    except SQLAlchemyError as e:
        raise StoreError(f"{resource_class.name}: storage failure: {e}") from e

    if result.decode_failures:
        result.outcome = Outcome.INCOMPLETE
        result.error = f"{result.decode_failures} record(s) could not be decoded"
        logger.warning("%s: %s; watermark left unchanged", resource_class.name, result.error)
    else:
        result.outcome = Outcome.UPDATED
        logger.info("%s: %d record(s) updated over %d page(s)", resource_class.name, result.written, result.pages)
    return result, new_info


def sync_all(conn: Connection, client: WaniClient, ignore_cache: bool = False,
             classes: Optional[Iterable[ResourceClass]] = None,
             now: Optional[datetime.datetime] = None) -> SyncReport:
    """Sync every resource class (or ``classes``) in turn.

    A class failing never stops the others, except for AuthError (the token
    is bad for all of them) and StoreError (the cache file itself is broken).
    """
    try:
        with transaction(conn):
            watermarks = cache_info.get_all(conn, ignore_cache=ignore_cache)
    except SQLAlchemyError as e:
        raise StoreError(f"could not read cache_info: {e}") from e

    report = SyncReport(watermarks=dict(watermarks))
    for resource_class in classes or list(ResourceClass):
        result, info = sync_class(conn, client, resource_class,
                                  watermarks.get(resource_class, cache_info.EMPTY), now=now)
        report.results[resource_class] = result
        if result.advanced:
            report.watermarks[resource_class] = info
    return report
