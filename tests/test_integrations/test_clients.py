"""Tests for the case store and notification HTTP clients."""

import json

import httpx
import pytest
from tenacity import wait_none

from rehab_progress.config import Settings
from rehab_progress.integrations import (
    HttpCaseStore,
    HttpNotificationSink,
    InMemoryCaseStore,
    LoggingNotificationSink,
    build_case_store,
    build_notification_sink,
)
from rehab_progress.plans.errors import CollaboratorError


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(HttpCaseStore._send.retry, "wait", wait_none())
    monkeypatch.setattr(HttpNotificationSink._post.retry, "wait", wait_none())


def _transport(*responses):
    """MockTransport replaying ``responses`` in order and recording requests."""
    seen = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    return httpx.MockTransport(handler), seen


# ---------------------------------------------------------------- case store

class TestHttpCaseStore:
    async def test_get_status(self):
        transport, seen = _transport(httpx.Response(200, json={"id": "case-1", "status": "in_rehab"}))
        store = HttpCaseStore("http://cases.test", api_key="secret", transport=transport)

        assert await store.get_case_status("case-1") == "in_rehab"
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/cases/case-1"
        assert seen[0].headers["X-API-Key"] == "secret"
        await store.close()

    async def test_unknown_case_reads_as_none(self):
        transport, _ = _transport(httpx.Response(404))
        store = HttpCaseStore("http://cases.test", transport=transport)
        assert await store.get_case_status("missing") is None

    async def test_set_status(self):
        transport, seen = _transport(httpx.Response(200, json={}))
        store = HttpCaseStore("http://cases.test", transport=transport)

        await store.set_case_status("case-1", "return_to_work")

        assert seen[0].method == "PATCH"
        assert json.loads(seen[0].content) == {"status": "return_to_work"}
        assert "X-API-Key" not in seen[0].headers

    async def test_set_status_on_unknown_case_fails(self):
        transport, _ = _transport(httpx.Response(404))
        store = HttpCaseStore("http://cases.test", transport=transport)
        with pytest.raises(CollaboratorError):
            await store.set_case_status("missing", "return_to_work")

    async def test_server_errors_are_retried(self):
        transport, seen = _transport(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"status": "return_to_work"}),
        )
        store = HttpCaseStore("http://cases.test", transport=transport)

        assert await store.get_case_status("case-1") == "return_to_work"
        assert len(seen) == 3

    async def test_gives_up_after_three_attempts(self):
        transport, seen = _transport(httpx.Response(500))
        store = HttpCaseStore("http://cases.test", transport=transport)

        with pytest.raises(CollaboratorError):
            await store.get_case_status("case-1")
        assert len(seen) == 3

    async def test_transport_errors_are_retried(self):
        transport, seen = _transport(
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"status": "in_rehab"}),
        )
        store = HttpCaseStore("http://cases.test", transport=transport)

        assert await store.get_case_status("case-1") == "in_rehab"
        assert len(seen) == 2

    async def test_client_errors_are_not_retried(self):
        transport, seen = _transport(httpx.Response(400))
        store = HttpCaseStore("http://cases.test", transport=transport)

        with pytest.raises(CollaboratorError):
            await store.set_case_status("case-1", "bogus")
        assert len(seen) == 1

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json=["in_rehab"]),
        ],
        ids=["html", "list"],
    )
    async def test_malformed_status_body_raises_collaborator_error(self, response):
        transport, _ = _transport(response)
        store = HttpCaseStore("http://cases.test", transport=transport)

        with pytest.raises(CollaboratorError):
            await store.get_case_status("case-1")


class TestInMemoryCaseStore:
    async def test_round_trip(self):
        store = InMemoryCaseStore({"case-1": "in_rehab"})
        await store.set_case_status("case-1", "return_to_work")
        assert await store.get_case_status("case-1") == "return_to_work"
        assert await store.get_case_status("case-2") is None


# ------------------------------------------------------------- notifications

class TestHttpNotificationSink:
    async def test_posts_payload(self):
        transport, seen = _transport(httpx.Response(201, json={"id": "n-1"}))
        sink = HttpNotificationSink("http://notify.test", transport=transport)

        await sink.send("clin-1", "high_pain", "High pain reported", "Pain 8 on Mar 03", {"plan_id": "plan-1"})

        assert seen[0].url.path == "/notifications"
        assert json.loads(seen[0].content) == {
            "recipient_id": "clin-1",
            "type": "high_pain",
            "title": "High pain reported",
            "message": "Pain 8 on Mar 03",
            "metadata": {"plan_id": "plan-1"},
        }
        await sink.close()

    async def test_failure_raises_collaborator_error(self):
        transport, seen = _transport(httpx.Response(500))
        sink = HttpNotificationSink("http://notify.test", transport=transport)

        with pytest.raises(CollaboratorError):
            await sink.send("clin-1", "high_pain", "t", "m")
        assert len(seen) == 3


# ------------------------------------------------------------------ builders

def test_builders_follow_settings():
    local = Settings(case_store_url="", notification_url="")
    assert isinstance(build_case_store(local), InMemoryCaseStore)
    assert isinstance(build_notification_sink(local), LoggingNotificationSink)

    remote = Settings(case_store_url="http://cases.test", notification_url="http://notify.test")
    assert isinstance(build_case_store(remote), HttpCaseStore)
    assert isinstance(build_notification_sink(remote), HttpNotificationSink)
