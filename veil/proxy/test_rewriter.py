import json
from dataclasses import replace

import pytest

from veil.proxy.models import RewriteContext
from veil.proxy.rewriter import (
    charset_of,
    inject_payload,
    is_rewritable,
    rewrite_body,
)
from veil.utils_tests.origin_stub import PAYLOAD


@pytest.fixture
def context():
    return RewriteContext(origin_host="origin.example", is_mobile=False, inject=True)


@pytest.fixture
def no_inject(context):
    return replace(context, inject=False)


class TestContentTypes:
    @pytest.mark.parametrize(
        "content_type, expected",
        [
            ("text/html", True),
            ("text/html; charset=utf-8", True),
            ("TEXT/HTML", True),
            ("application/xhtml+xml", True),
            ("application/json", True),
            ("application/problem+json; charset=utf-8", True),
            ("text/css", False),
            ("application/javascript", False),
            ("image/png", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_rewritable(self, content_type, expected):
        assert is_rewritable(content_type) is expected

    def test_charset(self):
        assert charset_of("text/html; charset=ISO-8859-1") == "iso8859-1"
        assert charset_of('text/html; charset="utf-8"') == "utf-8"
        assert charset_of("text/html") == "utf-8"
        assert charset_of("text/html; charset=bogus-charset") == "utf-8"


class TestInjectPayload:
    def test_before_first_body_close(self):
        html = "<body>a</body><body>b</body>"
        assert inject_payload(html, PAYLOAD) == f"<body>a{PAYLOAD}</body><body>b</body>"

    def test_no_body_tag(self):
        assert inject_payload("<div>fragment</div>", PAYLOAD) == "<div>fragment</div>"

    def test_empty_payload(self):
        assert inject_payload("<body></body>", "") == "<body></body>"


class TestHtmlRewrite:
    def test_scenario_origin_link_and_injection(self, proxy_config, context):
        body = b'<html><body><a href="https://origin.example/x">l</a></body></html>'

        result = rewrite_body(body, "text/html", context, proxy_config)

        assert result.changed
        text = result.body.decode("utf-8")
        assert '<a href="/x">l</a>' in text
        assert f"{PAYLOAD}</body>" in text
        assert text.count(PAYLOAD) == 1
        assert "origin.example" not in text

    def test_no_injection_when_disabled(self, proxy_config, no_inject):
        body = b'<html><body><a href="https://origin.example/x">l</a></body></html>'

        result = rewrite_body(body, "text/html", no_inject, proxy_config)

        assert PAYLOAD.encode() not in result.body
        assert b'<a href="/x">l</a>' in result.body

    def test_relative_html_without_body_is_noop(self, proxy_config, context):
        body = b'<div><a href="/x?y=1#z">l</a></div>'

        result = rewrite_body(body, "text/html", context, proxy_config)

        assert not result.changed
        assert result.body is body

    def test_rewriting_twice_is_stable(self, proxy_config, no_inject):
        body = b'<a href="https://origin.example/a?b=1#c">l</a>'

        first = rewrite_body(body, "text/html", no_inject, proxy_config)
        second = rewrite_body(first.body, "text/html", no_inject, proxy_config)

        assert first.body == b'<a href="/a?b=1#c">l</a>'
        assert not second.changed

    def test_foreign_urls_stripped_with_allowlist(self, proxy_config, no_inject):
        config = replace(proxy_config, domain_allowlist=("cdn.example.com",))
        body = (
            b'<link href="https://cdn.example.com/app.css">'
            b'<img src="https://ads.example.org/pixel.gif">'
            b'<a href="https://origin.example/home">h</a>'
        )

        result = rewrite_body(body, "text/html", no_inject, config)

        assert result.body == (
            b'<link href="https://cdn.example.com/app.css">'
            b'<img src="">'
            b'<a href="/home">h</a>'
        )

    def test_origin_link_with_default_port_kept_as_relative(self, proxy_config, no_inject):
        config = replace(proxy_config, domain_allowlist=("cdn.example.com",))
        body = b'<a href="https://origin.example:443/home">h</a>'

        result = rewrite_body(body, "text/html", no_inject, config)

        assert result.body == b'<a href="/home">h</a>'

    def test_foreign_urls_kept_without_allowlist(self, proxy_config, no_inject):
        body = b'<img src="https://ads.example.org/pixel.gif">'

        result = rewrite_body(body, "text/html", no_inject, proxy_config)

        assert not result.changed

    def test_latin1_charset_round_trip(self, proxy_config, no_inject):
        body = '<p>Año</p><a href="https://origin.example/ñ">x</a>'.encode("latin-1")

        result = rewrite_body(
            body, "text/html; charset=ISO-8859-1", no_inject, proxy_config
        )

        assert result.body == '<p>Año</p><a href="/ñ">x</a>'.encode("latin-1")

    def test_undeclared_latin1_body_still_rewritten(self, proxy_config, context):
        body = '<body><p>Señor</p><a href="https://origin.example/x">l</a></body>'.encode(
            "latin-1"
        )

        result = rewrite_body(body, "text/html", context, proxy_config)

        assert result.changed
        assert result.body == (
            f'<body><p>Señor</p><a href="/x">l</a>{PAYLOAD}</body>'.encode("latin-1")
        )
        assert b"origin.example" not in result.body

    def test_invalid_bytes_in_json_kept(self, proxy_config, context):
        body = b'{"name": "caf\xe9", ' + rb'"next": "https:\/\/origin.example\/p\/2"}'

        result = rewrite_body(body, "application/json", context, proxy_config)

        assert result.changed
        assert result.body == b'{"name": "caf\xe9", ' + rb'"next": "\/p\/2"}'


class TestJsonRewrite:
    def test_urls_relativized_and_still_valid(self, proxy_config, context):
        data = {
            "next": "https://origin.example/api/page/2?size=10",
            "items": [{"href": "https://origin.example/3co/item"}],
            "external": "https://cdn.example.com/x",
        }
        body = json.dumps(data).encode()

        result = rewrite_body(body, "application/json", context, proxy_config)

        parsed = json.loads(result.body)
        assert parsed["next"] == "/api/page/2?size=10"
        assert parsed["items"][0]["href"] == "/3co/item"
        assert parsed["external"] == "https://cdn.example.com/x"

    def test_escaped_slashes(self, proxy_config, context):
        body = b'{"u":"https:\\/\\/origin.example\\/x"}'

        result = rewrite_body(body, "application/json", context, proxy_config)

        assert json.loads(result.body) == {"u": "/x"}

    def test_no_injection_into_json(self, proxy_config, context):
        body = b'{"html":"<body></body>","u":"https://origin.example/a"}'

        result = rewrite_body(body, "application/json", context, proxy_config)

        assert PAYLOAD.encode() not in result.body

    def test_rewrite_breaking_json_keeps_original(self, proxy_config, context):
        # The unquoted URL token swallows the closing brace
        body = b'{"a": 1, "b": https://origin.example/x}'

        result = rewrite_body(body, "application/json", context, proxy_config)

        assert not result.changed
        assert result.body is body

    def test_invalid_json_without_origin_urls_untouched(self, proxy_config, context):
        body = b"{not json"

        result = rewrite_body(body, "application/json", context, proxy_config)

        assert result.body is body


class TestOtherTypes:
    def test_binary_untouched(self, proxy_config, context):
        body = b"\x89PNG https://origin.example/x"

        result = rewrite_body(body, "image/png", context, proxy_config)

        assert not result.changed
        assert result.body is body
