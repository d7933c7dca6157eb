"""
Tests for the Hypothesis API client, with a mocked requests session.
"""

from unittest.mock import MagicMock

import pytest
import requests

from hypotag.errors import RemoteError
from hypotag.hypothesis import PAGE_SIZE, HypothesisClient
from hypotag.types import Annotation


def row(id, updated, **extra):
    data = {
        "id": id,
        "uri": f"https://example.com/{id}",
        "text": f"note {id}",
        "tags": ["t"],
        "updated": updated,
        "created": updated,
        "user": "acct:alice@hypothes.is",
        "group": "__world__",
        "target": [{"selector": [
            {"type": "TextPositionSelector", "start": 0, "end": 5},
            {"type": "TextQuoteSelector", "exact": f"quote {id}"},
        ]}],
        "document": {"title": [f"Page {id}"]},
    }
    data.update(extra)
    return data


def response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def client(session):
    return HypothesisClient("alice", "token", session=session)


class TestAnnotationFromJson:

    def test_fields(self):
        ann = Annotation.from_json(row("a1", "2024-01-01"))
        assert ann.id == "a1"
        assert ann.quotes == ["quote a1"]
        assert ann.title == "Page a1"
        assert ann.tags == ["t"]

    def test_sparse_row(self):
        ann = Annotation.from_json({"id": "x", "text": None, "tags": None, "document": {}})
        assert ann.text == ""
        assert ann.tags == []
        assert ann.quotes == []
        assert ann.title == ""


class TestClient:

    def test_auth_header(self, client, session):
        assert session.headers["Authorization"] == "Bearer token"
        assert client.user == "acct:alice@hypothes.is"

    def test_pages_until_empty(self, client, session):
        session.request.side_effect = [
            response({"rows": [row("a1", "t1"), row("a2", "t2")]}),
            response({"rows": [row("a3", "t3")]}),
            response({"rows": []}),
        ]
        anns = client.fetch_annotations(group="g1")
        assert [a.id for a in anns] == ["a1", "a2", "a3"]

        calls = session.request.call_args_list
        assert len(calls) == 3
        first = calls[0].kwargs["params"]
        assert first["user"] == "acct:alice@hypothes.is"
        assert first["group"] == "g1"
        assert first["limit"] == PAGE_SIZE
        assert first["sort"] == "updated"
        assert calls[2].kwargs["params"]["search_after"] == "t3"

    def test_since_starts_after(self, client, session):
        session.request.side_effect = [response({"rows": []})]
        assert client.fetch_annotations(since="2024-05-01") == []
        params = session.request.call_args.kwargs["params"]
        assert params["search_after"] == "2024-05-01"
        assert "group" not in params

    def test_limit(self, client, session):
        session.request.side_effect = [response({"rows": [row("a1", "t1"), row("a2", "t2")]})]
        assert len(client.search_annotations({}, limit=1)) == 1

    def test_delete(self, client, session):
        session.request.return_value = response({"id": "a1", "deleted": True})
        assert client.delete_annotation("a1") is True
        method, url = session.request.call_args.args
        assert method == "DELETE"
        assert url.endswith("/annotations/a1")


class TestFailures:

    def test_http_error(self, client, session):
        resp = response({})
        resp.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        session.request.return_value = resp
        with pytest.raises(RemoteError, match="401"):
            client.get_profile()

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("no route")
        with pytest.raises(RemoteError):
            client.fetch_annotations()

    def test_invalid_json(self, client, session):
        resp = response(None)
        resp.json.side_effect = ValueError("bad json")
        session.request.return_value = resp
        with pytest.raises(RemoteError, match="invalid JSON"):
            client.get_profile()
