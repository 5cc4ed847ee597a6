"""Blocking HTTP access to the WaniKani v2 API."""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urljoin

import requests

from .errors import AuthError, DecodeError, HttpStatusError, RateLimitError, TransportError
from .resources import (
    Assignment, RateLimit, Report, Review, ServerReview, decode_resource, format_timestamp,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.wanikani.com/v2/"
API_REVISION = "20170710"
DEFAULT_TIMEOUT = 30.0


@dataclass
class NotModified:
    """304: what we hold is current."""


@dataclass
class Page:
    body: Dict[str, Any]
    url: str
    next_url: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    rate_limit: Optional[RateLimit] = None


@dataclass
class Unauthorized:
    """401: the token is missing, wrong or expired."""


@dataclass
class RateLimited:
    rate_limit: Optional[RateLimit] = None


@dataclass
class HttpError:
    status: int
    url: str = ""


FetchResult = Union[NotModified, Page, Unauthorized, RateLimited, HttpError]


@dataclass
class SubmissionResult:
    review_id: int
    available_at: datetime.datetime
    assignment: Optional[Assignment] = None


class WaniClient:
    """Thin wrapper around a ``requests.Session`` carrying the token and API revision."""

    def __init__(self, token: str, api_base: str = API_BASE, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        self.api_base = api_base if api_base.endswith("/") else api_base + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Wanikani-Revision": API_REVISION,
        })

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return urljoin(self.api_base, endpoint.lstrip("/"))

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Error with request to {url}: {e}") from e

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise DecodeError(f"Error parsing HTTP {response.status_code} response: {e}") from e
        if not isinstance(body, dict):
            raise DecodeError(f"Expected a JSON object in HTTP {response.status_code} response")
        return body

    def conditional_get(self, endpoint: str, etag: Optional[str] = None,
                        updated_after: Optional[datetime.datetime] = None,
                        if_modified_since: Optional[str] = None,
                        params: Optional[Dict[str, Any]] = None) -> FetchResult:
        """GET with the conditional headers/params that are set.

        Raises TransportError when no response was obtained at all.
        """
        url = self.url_for(endpoint)
        headers: Dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if if_modified_since:
            headers["If-Modified-Since"] = if_modified_since
        query = dict(params or {})
        if updated_after is not None:
            query["updated_after"] = format_timestamp(updated_after)

        logger.debug("GET %s headers=%s params=%s", url, sorted(headers), query)
        response = self._request("GET", url, headers=headers, params=query or None)
        status = response.status_code
        rate_limit = RateLimit.from_headers(response.headers)

        if status == 304:
            return NotModified()
        if status == 401:
            return Unauthorized()
        if status == 429:
            return RateLimited(rate_limit)
        if status != 200:
            return HttpError(status, url)

        body = self._json(response)
        pages = body.get("pages") or {}
        return Page(
            body=body,
            url=url,
            next_url=pages.get("next_url") if isinstance(pages, dict) else None,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
            rate_limit=rate_limit,
        )

    def submit_review(self, review: Review) -> SubmissionResult:
        """POST a pending review; returns the server id and next availability."""
        url = self.url_for("reviews")
        response = self._request("POST", url, json=review.submission_body())
        status = response.status_code
        if status == 401:
            raise AuthError("HTTP 401: Unauthorized. Make sure your WaniKani token is correct and hasn't expired.")
        if status == 429:
            raise RateLimitError("WaniKani API rate limit exceeded.", RateLimit.from_headers(response.headers))
        if status not in (200, 201):
            raise HttpStatusError(status, url)

        body = self._json(response)
        server_review = decode_resource(body)
        if not isinstance(server_review, ServerReview):
            raise DecodeError("review submission did not return a review", object=body.get("object"))

        assignment = None
        updated = (body.get("resources_updated") or {}).get("assignment")
        if updated:
            decoded = decode_resource(updated)
            if isinstance(decoded, Assignment):
                assignment = decoded
        # Burned items have no next review; fall back to when the server recorded it.
        available_at = assignment.available_at if assignment and assignment.available_at else server_review.created_at
        return SubmissionResult(review_id=server_review.id, available_at=available_at, assignment=assignment)

    def summary(self) -> Report:
        """Live /summary report."""
        result = self.conditional_get("summary")
        if isinstance(result, Unauthorized):
            raise AuthError("HTTP 401: Unauthorized. Make sure your WaniKani token is correct and hasn't expired.")
        if isinstance(result, RateLimited):
            raise RateLimitError("WaniKani API rate limit exceeded.", result.rate_limit)
        if isinstance(result, HttpError):
            raise HttpStatusError(result.status, result.url)
        if not isinstance(result, Page):
            raise HttpStatusError(304, self.url_for("summary"))
        report = decode_resource(result.body)
        if not isinstance(report, Report):
            raise DecodeError("summary did not return a report", object=result.body.get("object"))
        return report
