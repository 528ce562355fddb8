"""Shared fixtures for crawler tests: temporary databases and a fake publisher."""

from __future__ import annotations

import json
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Mapping, Optional, Union

import httpx
import pytest

from SchedulingLinks.Crawler.database import CrawlerDatabase
from SchedulingLinks.Crawler.fetcher import ResourceFetcher
from SchedulingLinks.Crawler.ledger import CrawlLedger, KnownManifestStore

FIXED_NOW = 1_700_000_000

Responder = Callable[[httpx.Request], httpx.Response]
Route = Union[httpx.Response, Responder]


def _replay(template: httpx.Response) -> Responder:
    """Serve a fresh copy of ``template`` on every request."""

    def _respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    return _respond


class FakePublisher:
    """``httpx.MockTransport`` handler serving queued responses per URL.

    Each URL holds a queue of responses; the last one is repeated once the
    queue is drained. Every request is recorded for later assertions.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Deque[Responder]] = defaultdict(deque)
        self.requests: List[httpx.Request] = []

    def add(self, url: str, *routes: Route) -> "FakePublisher":
        for route in routes:
            if isinstance(route, httpx.Response):
                route = _replay(route)
            self.routes[url].append(route)
        return self

    def json(
        self,
        url: str,
        payload: object,
        *,
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "FakePublisher":
        return self.add(
            url, httpx.Response(status, headers=dict(headers or {}), text=json.dumps(payload))
        )

    def text(
        self,
        url: str,
        body: str = "",
        *,
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "FakePublisher":
        return self.add(url, httpx.Response(status, headers=dict(headers or {}), text=body))

    def fail(self, url: str) -> "FakePublisher":
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        return self.add(url, _raise)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(str(request.url))
        if not queue:
            return httpx.Response(404, text="not found")
        route = queue.popleft() if len(queue) > 1 else queue[0]
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, url: Optional[str] = None) -> List[httpx.Request]:
        if url is None:
            return list(self.requests)
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture
def db(tmp_path):
    database = CrawlerDatabase(tmp_path / "crawler.sqlite")
    yield database
    database.close()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def client(publisher):
    with httpx.Client(transport=publisher.transport) as http_client:
        yield http_client


@pytest.fixture
def fetcher(client, db) -> ResourceFetcher:
    return ResourceFetcher(client, db, clock=lambda: float(FIXED_NOW))


@pytest.fixture
def ledger(db) -> CrawlLedger:
    return CrawlLedger(db)


@pytest.fixture
def known_manifests(db) -> KnownManifestStore:
    return KnownManifestStore(db)
