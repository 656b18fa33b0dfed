"""Tests for the HTTP remote refiner client."""

import json

import httpx
import pytest

from proofmark.core.errors import AuthError, NetworkError, RateLimitError, RemoteAnalysisError
from proofmark.core.remote_refiner import HttpRemoteRefiner
from proofmark.core.schemas_grammar import CheckOptions, to_wire
from tests.fakes.fake_analyzers import make_suggestion

TEXT = "She dont like teh cat."


def _wire(original, proposed, type_="grammar", sid=None):
    return to_wire(make_suggestion(TEXT, original, proposed, type_, sid=sid))


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWholeDocumentCheck:
    @pytest.mark.asyncio
    async def test_posts_camel_case_request(self):
        """Checks send camelCase flags and a bearer token."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"success": True, "data": {"suggestions": [_wire("dont", "doesn't")], "cached": False}},
            )

        refiner = HttpRemoteRefiner(
            "https://api.test/v1/", token_provider=lambda: "secret", client=_client(handler)
        )
        suggestions = await refiner.refine(TEXT, None, CheckOptions(include_style=True))

        assert seen["url"] == "https://api.test/v1/grammar/check"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["includeStyle"] is True
        assert seen["body"]["includeSpelling"] is True
        assert seen["body"]["text"] == TEXT
        assert [(s.original, s.proposed) for s in suggestions] == [("dont", "doesn't")]

    @pytest.mark.asyncio
    async def test_async_token_provider(self):
        async def token():
            return "async-secret"

        def handler(request):
            assert request.headers["Authorization"] == "Bearer async-secret"
            return httpx.Response(200, json={"success": True, "data": {"suggestions": []}})

        refiner = HttpRemoteRefiner("https://api.test/v1", token_provider=token, client=_client(handler))

        assert await refiner.refine(TEXT) == []

    @pytest.mark.asyncio
    async def test_malformed_entries_are_dropped(self):
        """Invalid suggestions are skipped, valid ones kept."""
        bad_range = _wire("teh", "the", "spelling")
        bad_range["range"] = {"start": 30, "end": 20}
        out_of_bounds = _wire("teh", "the", "spelling")
        out_of_bounds["range"] = {"start": 100, "end": 103}

        def handler(request):
            return httpx.Response(
                200,
                json={"success": True, "data": {"suggestions": [bad_range, out_of_bounds, _wire("dont", "doesn't")]}},
            )

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))
        suggestions = await refiner.refine(TEXT)

        assert [s.original for s in suggestions] == ["dont"]

    @pytest.mark.asyncio
    async def test_results_are_memoized(self):
        """Repeated identical calls hit the network once."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True, "data": {"suggestions": [_wire("dont", "doesn't")]}})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))
        first = await refiner.refine(TEXT)
        first[0].proposed = "mutated"
        second = await refiner.refine(TEXT)

        assert len(calls) == 1
        assert second[0].proposed == "doesn't"

    @pytest.mark.asyncio
    async def test_memo_keeps_most_recently_used(self):
        """The memo is bounded; the least recently used result is evicted."""
        calls = []

        def handler(request):
            calls.append(json.loads(request.content)["text"])
            return httpx.Response(200, json={"success": True, "data": {"suggestions": []}})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler), memo_size=2)
        await refiner.refine("One.")
        await refiner.refine("Two.")
        await refiner.refine("One.")
        await refiner.refine("Three.")

        assert calls == ["One.", "Two.", "Three."]
        assert len(refiner._memo) == 2

        await refiner.refine("One.")
        await refiner.refine("Two.")

        assert calls == ["One.", "Two.", "Three.", "Two."]


class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_token_is_auth_error(self):
        refiner = HttpRemoteRefiner(
            "https://api.test/v1",
            token_provider=lambda: None,
            client=_client(lambda r: httpx.Response(200)),
        )

        with pytest.raises(AuthError):
            await refiner.refine(TEXT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_unauthorized(self, status):
        def handler(request):
            return httpx.Response(status, json={"error": {"message": "Unauthorized", "code": status}})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        with pytest.raises(AuthError) as exc_info:
            await refiner.refine(TEXT)
        assert exc_info.value.category == "auth"
        assert exc_info.value.message == "Unauthorized"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        def handler(request):
            return httpx.Response(
                429,
                headers={"Retry-After": "12"},
                json={"error": {"message": "Rate limit exceeded", "code": 429}},
            )

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        with pytest.raises(RateLimitError) as exc_info:
            await refiner.refine(TEXT)
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500, text="oops")

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        with pytest.raises(RemoteAnalysisError) as exc_info:
            await refiner.refine(TEXT)
        assert exc_info.value.status_code == 500
        assert exc_info.value.category == "generic"

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        with pytest.raises(NetworkError):
            await refiner.refine(TEXT)

    @pytest.mark.asyncio
    async def test_body_without_data(self):
        def handler(request):
            return httpx.Response(200, json={"success": True})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        with pytest.raises(RemoteAnalysisError):
            await refiner.refine(TEXT)

    @pytest.mark.asyncio
    async def test_errors_are_not_memoized(self):
        """A failed call is retried on the next request."""
        responses = [
            httpx.Response(503, json={"error": {"message": "busy"}}),
            httpx.Response(200, json={"success": True, "data": {"suggestions": []}}),
        ]

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(lambda r: responses.pop(0)))

        with pytest.raises(RemoteAnalysisError):
            await refiner.refine(TEXT)
        assert await refiner.refine(TEXT) == []


class TestRefineOne:
    @pytest.mark.asyncio
    async def test_returns_refined_suggestion(self):
        target = make_suggestion(TEXT, "teh", "", "spelling", confidence=0.5)
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            refined = _wire("teh", "the", "spelling", sid="refined-1")
            return httpx.Response(200, json={"success": True, "data": {"suggestion": refined}})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))
        result = await refiner.refine(TEXT, target)

        assert seen["path"] == "/v1/grammar/refine"
        assert seen["body"]["suggestion"]["id"] == target.id
        assert seen["body"]["suggestion"]["canRegenerate"] is False
        assert [(s.id, s.proposed) for s in result] == [("refined-1", "the")]

    @pytest.mark.asyncio
    async def test_null_suggestion_means_no_improvement(self):
        target = make_suggestion(TEXT, "teh", "the", "spelling")

        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"suggestion": None}})

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        assert await refiner.refine(TEXT, target) is None

    @pytest.mark.asyncio
    async def test_same_proposal_means_no_improvement(self):
        target = make_suggestion(TEXT, "teh", "the", "spelling")

        def handler(request):
            return httpx.Response(
                200, json={"success": True, "data": {"suggestion": _wire("teh", "the", "spelling")}}
            )

        refiner = HttpRemoteRefiner("https://api.test/v1", client=_client(handler))

        assert await refiner.refine(TEXT, target) is None
