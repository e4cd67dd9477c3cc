"""Jira API client wrapper (REST v3 changelog + enhanced search pagination)."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import deque
from typing import Any, Protocol

from jira import JIRA

from .config import (
    CHANGELOG_MAX_PAGES,
    CHANGELOG_PAGE_SIZE,
    JIRA_FETCH_BASE_FIELDS,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from .mappers import map_issue_summaries
from .models import IssueSummary


class JiraSourceError(RuntimeError):
    """Raised when Jira answers with an error or an unusable payload."""


class ChangelogSource(Protocol):
    def fetch_changelog(self, issue_key: str) -> list[dict[str, Any]]: ...

    def list_cycle_issues(self, project_key: str) -> list[IssueSummary]: ...


class RateLimiter:
    """Sliding-window limiter: at most ``max_requests`` per ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        *,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = threading.Lock()

    def wait_if_needed(self) -> float:
        """Block until a request slot is free; returns the seconds waited."""
        waited = 0.0
        with self._lock:
            now = self._clock()
            while self._requests and now - self._requests[0] >= self.window_seconds:
                self._requests.popleft()
            if len(self._requests) >= self.max_requests:
                waited = self.window_seconds - (now - self._requests[0])
                if waited > 0:
                    self._sleep(waited)
                    now = self._clock()
                self._requests.popleft()
            self._requests.append(now)
        return max(waited, 0.0)


class JiraAPI:
    def __init__(self, server: str, email: str, token: str, *, rate_limiter: RateLimiter | None = None):
        self.server = server.rstrip("/")
        self.client = JIRA(basic_auth=(email, token), options={"server": self.server, "rest_api_version": "3"})
        self.rate_limiter = rate_limiter or RateLimiter()
        # Simple in-memory cache: {(hash): (timestamp, data)}
        self._cache: dict[str, tuple[float, list]] = {}
        self._cache_ttl = 300.0  # seconds

    def clear_cache(self) -> None:
        """Reset the in-memory search cache."""
        cache = getattr(self, "_cache", None)
        if isinstance(cache, dict):
            cache.clear()

    def _cache_key(self, jql: str, fields, expand, page_size: int) -> str:
        payload = {
            "jql": jql,
            "fields": fields,
            "expand": expand,
            "page_size": page_size,
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()

    def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        session = getattr(self.client, "_session", None)
        if session is None:
            raise JiraSourceError("JIRA session unavailable")
        self.rate_limiter.wait_if_needed()
        resp = session.get(url, params=params)
        if resp.status_code >= 400:
            raise JiraSourceError(f"Jira request failed {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    def search_enhanced(
        self,
        jql: str,
        fields: list[str] | None = None,
        expand: list[str] | None = None,
        page_size: int = 200,
    ) -> list[dict[str, Any]]:
        url = f"{self.server}/rest/api/3/search/jql"
        # Cache check
        key = self._cache_key(jql, fields, expand, page_size)
        now = time.time()
        cached = self._cache.get(key)
        if cached and (now - cached[0]) < self._cache_ttl:
            return cached[1]
        params = {"jql": jql, "maxResults": page_size}
        if fields:
            params["fields"] = ",".join(fields)
        if expand:
            params["expand"] = ",".join(expand)
        out: list[dict[str, Any]] = []
        token = None
        while True:
            qp = dict(params)
            if token:
                qp["nextPageToken"] = token
            data = self._get(url, qp)
            out.extend(data.get("issues", []))
            token = data.get("nextPageToken")
            if not token or data.get("isLast") is True:
                break
        # Store in cache
        self._cache[key] = (now, out)
        return out

    def list_cycle_issues(self, project_key: str) -> list[IssueSummary]:
        """All project issues (Done included) for cycle analysis, deduplicated by key."""
        raw = self.search_enhanced(
            f"project = {project_key} ORDER BY key ASC",
            fields=list(JIRA_FETCH_BASE_FIELDS),
        )
        return map_issue_summaries(raw)

    def fetch_changelog(self, issue_key: str) -> list[dict[str, Any]]:
        """Every changelog entry of ``issue_key`` via the paginated changelog endpoint."""
        url = f"{self.server}/rest/api/3/issue/{issue_key}/changelog"
        histories: list[dict[str, Any]] = []
        start_at = 0
        for _ in range(CHANGELOG_MAX_PAGES):
            data = self._get(url, {"startAt": start_at, "maxResults": CHANGELOG_PAGE_SIZE})
            values = data.get("values")
            if not isinstance(values, list):
                break
            histories.extend(values)
            if data.get("isLast") is True or len(values) < CHANGELOG_PAGE_SIZE:
                break
            start_at += CHANGELOG_PAGE_SIZE
        return histories

