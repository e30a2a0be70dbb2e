"""
Unit tests for upstream forwarding helpers.
"""

from urllib.parse import unquote

import pytest
from starlette.requests import Request

from shared.errors import ValidationError
from service_proxy.app.adapters.upstream_client import filter_headers, join_upstream_url, raw_forward_path


def make_request(raw_path: bytes, root_path: str = "", with_raw_path: bool = True) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": unquote(raw_path.decode("latin-1")),
        "root_path": root_path,
        "query_string": b"",
        "headers": [],
    }
    if with_raw_path:
        scope["raw_path"] = raw_path
    return Request(scope)


class TestRawForwardPath:
    """Test cases for raw_forward_path."""

    @pytest.mark.parametrize(
        "raw_path,expected",
        [
            (b"/endpoint/a/v1/status", "v1/status"),
            (b"/endpoint/a/files/report%3Fv2.txt", "files/report%3Fv2.txt"),
            (b"/endpoint/a/notes%23draft", "notes%23draft"),
            (b"/endpoint/c/..%2F..%2Fadmin", "..%2F..%2Fadmin"),
            (b"/endpoint/a/", ""),
        ],
    )
    def test_keeps_client_encoding(self, raw_path, expected):
        endpoint_id = raw_path.decode().split("/")[2]
        path = unquote(raw_path.decode()).split("/", 3)[3]

        assert raw_forward_path(make_request(raw_path), endpoint_id, path) == expected

    def test_strips_root_path(self):
        request = make_request(b"/proxy/endpoint/a/items/1", root_path="/proxy")

        assert raw_forward_path(request, "a", "items/1") == "items/1"

    def test_requotes_decoded_path_without_raw_path(self):
        request = make_request(b"/endpoint/a/files/report%3Fv2.txt", with_raw_path=False)

        assert raw_forward_path(request, "a", "files/report?v2.txt") == "files/report%3Fv2.txt"

    @pytest.mark.parametrize(
        "raw_path",
        [
            b"/endpoint/a/../admin",
            b"/endpoint/a/%2E%2E/admin",
            b"/endpoint/a/v1/./status",
            b"/endpoint/a/v1/%2e",
        ],
    )
    def test_rejects_dot_segments(self, raw_path):
        path = unquote(raw_path.decode()).split("/", 3)[3]

        with pytest.raises(ValidationError):
            raw_forward_path(make_request(raw_path), "a", path)


class TestJoinUpstreamUrl:
    """Test cases for join_upstream_url."""

    @pytest.mark.parametrize(
        "base,path,expected",
        [
            ("https://alpha-api-nightly.mol.ai", "v1/status", "https://alpha-api-nightly.mol.ai/v1/status"),
            ("https://alpha-api-nightly.mol.ai/", "/v1/status", "https://alpha-api-nightly.mol.ai/v1/status"),
            ("http://upstream/api", "items", "http://upstream/api/items"),
            ("http://upstream", "", "http://upstream/"),
        ],
    )
    def test_join(self, base, path, expected):
        assert join_upstream_url(base, path) == expected

    def test_query_preserved(self):
        assert join_upstream_url("http://upstream", "search", "q=1&page=2") == "http://upstream/search?q=1&page=2"


class TestFilterHeaders:
    """Test cases for filter_headers."""

    def test_drops_hop_by_hop_and_host(self):
        raw = [
            (b"host", b"proxy.local"),
            (b"connection", b"keep-alive, X-Session"),
            (b"x-session", b"abc"),
            (b"transfer-encoding", b"chunked"),
            (b"accept", b"application/json"),
        ]

        assert filter_headers(raw, drop_host=True) == [("accept", "application/json")]

    def test_keeps_host_by_default_and_repeated_headers(self):
        raw = [(b"host", b"a"), (b"set-cookie", b"a=1"), (b"set-cookie", b"b=2")]

        assert filter_headers(raw) == [("host", "a"), ("set-cookie", "a=1"), ("set-cookie", "b=2")]
