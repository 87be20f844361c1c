"""测试证据源 (网络调用全部通过 httpx.MockTransport 模拟)."""

import time

import httpx
import pytest

from codeguard.base import EvidenceSource, compact_query
from codeguard.errors import SourceRateLimited
from codeguard.models import Candidate
from codeguard.sources.github import GitHubClient, GitHubSource, parse_repo_url
from codeguard.sources.stackoverflow import (
    StackExchangeClient,
    StackOverflowSource,
    extract_code_from_answer,
    language_tag,
)
from codeguard.sources.web import SerpApiClient, WebSearchSource


def _failing_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"不应发出请求: {request.url}")

    return httpx.MockTransport(handler)


class _ScriptedSource(EvidenceSource):
    def __init__(self, error: Exception | None = None, configured: bool = True):
        super().__init__(timeout=5.0)
        self.error = error
        self._configured = configured
        self.calls = 0

    @property
    def kind(self):
        return "web"

    @property
    def name(self):
        return "scripted"

    @property
    def configured(self):
        return self._configured

    def _search(self, query, language):
        self.calls += 1
        if self.error:
            raise self.error
        return [Candidate(title="t", link="l", source_kind="web", snippet_text=query)]


class TestCompactQuery:
    def test_collapse_whitespace(self):
        assert compact_query("a   b\n\t c") == "a b c"

    def test_cut_at_word_boundary(self):
        assert compact_query("hello world foo", max_length=12) == "hello world"

    def test_strip_punctuation(self):
        assert compact_query("foo(bar);", strip_punctuation=True) == "foo bar"

    def test_long_single_word(self):
        assert compact_query("x" * 50, max_length=10) == "x" * 10


class TestSearchBoundary:
    def test_success(self):
        source = _ScriptedSource()
        assert len(source.search("query")) == 1

    def test_unconfigured_returns_empty(self):
        source = _ScriptedSource(configured=False)
        assert source.search("query") == []
        assert source.calls == 0

    def test_empty_query(self):
        source = _ScriptedSource()
        assert source.search("   ") == []
        assert source.calls == 0

    def test_exception_swallowed(self):
        source = _ScriptedSource(error=RuntimeError("boom"))
        assert source.search("query") == []

    def test_rate_limited_blocks_limiter(self):
        source = _ScriptedSource(error=SourceRateLimited("slow down", retry_after=30))
        assert source.search("query") == []
        assert source.limiter.blocked_for > 20

        # 限流窗口内不再调用
        assert source.search("query") == []
        assert source.calls == 1


class TestGitHub:
    def test_parse_repo_url(self):
        assert parse_repo_url("https://github.com/owner/repo") == ("owner", "repo")
        assert parse_repo_url("git@github.com:owner/repo.git") == ("owner", "repo")
        with pytest.raises(ValueError):
            parse_repo_url("https://example.com/x")

    def test_unconfigured(self):
        source = GitHubSource(client=GitHubClient(transport=_failing_transport()))
        assert source.configured is False
        assert source.search("function add(a, b)", "javascript") == []

    def test_search_uses_text_matches(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "items": [{
                    "name": "add.js",
                    "path": "src/add.js",
                    "html_url": "https://github.com/o/r/blob/main/src/add.js",
                    "repository": {"full_name": "o/r"},
                    "score": 12.5,
                    "text_matches": [
                        {"fragment": "function add(a, b) {"},
                        {"fragment": "  return a + b;"},
                    ],
                }],
            })

        client = GitHubClient(token="t", transport=httpx.MockTransport(handler))
        source = GitHubSource(token="t", client=client)
        candidates = source.search("function add(a, b) { return a + b; }", "javascript")

        assert len(candidates) == 1
        c = candidates[0]
        assert c.source_kind == "repo"
        assert c.title == "o/r/src/add.js"
        assert c.link == "https://github.com/o/r/blob/main/src/add.js"
        assert c.snippet_text == "function add(a, b) {\n  return a + b;"
        assert c.native_score == 12.5

        request = seen[0]
        assert request.url.path == "/search/code"
        assert request.url.params["q"].endswith("language:javascript")
        assert request.headers["Accept"] == "application/vnd.github.text-match+json"
        assert request.headers["Authorization"] == "Bearer t"

    def test_rate_limit_response(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                403,
                headers={
                    "x-ratelimit-remaining": "0",
                    "x-ratelimit-reset": str(int(time.time()) + 120),
                },
                json={"message": "API rate limit exceeded"},
            )

        client = GitHubClient(token="t", transport=httpx.MockTransport(handler))
        source = GitHubSource(token="t", client=client)
        assert source.search("query text") == []
        assert source.limiter.blocked_for > 60
        assert source.search("query text") == []
        assert len(calls) == 1

    def test_auth_failure_is_soft(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Bad credentials"})

        client = GitHubClient(token="bad", transport=httpx.MockTransport(handler))
        source = GitHubSource(token="bad", client=client)
        assert source.search("query text") == []
        assert source.limiter.blocked_for == 0

    def test_search_repositories(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [{
                "full_name": "o/r",
                "description": None,
                "html_url": "https://github.com/o/r",
                "stargazers_count": 7,
                "language": "Python",
                "size": 12,
            }]})

        client = GitHubClient(token="t", transport=httpx.MockTransport(handler))
        repos = client.search_repositories("plagiarism", language="python")
        assert repos == [{
            "name": "o/r",
            "description": "",
            "url": "https://github.com/o/r",
            "stars": 7,
            "language": "Python",
            "size": 12,
        }]
        assert seen[0].url.params["sort"] == "stars"

    def test_extract_repository(self):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/repos/o/r/contents/":
                return httpx.Response(200, json=[
                    {"type": "file", "name": "main.py", "path": "main.py"},
                    {"type": "file", "name": "logo.png", "path": "logo.png"},
                    {"type": "dir", "name": "lib", "path": "lib"},
                ])
            if path == "/repos/o/r/contents/lib":
                return httpx.Response(200, json=[
                    {"type": "file", "name": "util.js", "path": "lib/util.js"},
                ])
            if path == "/repos/o/r/contents/main.py":
                return httpx.Response(200, text="print('hi')\n")
            if path == "/repos/o/r/contents/lib/util.js":
                return httpx.Response(500, text="oops")
            return httpx.Response(404)

        client = GitHubClient(token="t", transport=httpx.MockTransport(handler))
        files = client.extract_repository("https://github.com/o/r")
        assert [f.filename for f in files] == ["main.py"]
        assert files[0].language == "python"
        assert files[0].content == "print('hi')\n"


class TestStackOverflow:
    def test_language_tag(self):
        assert language_tag("cpp") == "c++"
        assert language_tag("csharp") == "c#"
        assert language_tag("python") == "python"
        assert language_tag("unknown") is None
        assert language_tag(None) is None

    def test_extract_code_from_answer(self):
        body = (
            "<p>Use <code>len(x)</code></p>"
            "<pre><code>def f():\n    return 1 &lt; 2\n</code></pre>"
        )
        code = extract_code_from_answer(body)
        assert code.startswith("def f():")
        assert "1 < 2" in code
        assert code.endswith("len(x)")

    def test_extract_code_none(self):
        assert extract_code_from_answer("<p>just prose</p>") == ""

    def _handler(self, questions, answer_calls, backoff=None):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/search/advanced"):
                data = {"items": questions}
                if backoff:
                    data["backoff"] = backoff
                return httpx.Response(200, json=data)
            if path.endswith("/answers"):
                answer_calls.append(path)
                return httpx.Response(200, json={"items": [{
                    "answer_id": 1,
                    "score": 42,
                    "body": "<pre><code>def add(a, b):\n    return a + b\n</code></pre>",
                }]})
            return httpx.Response(404)

        return handler

    def _questions(self, n, answer_count=1):
        return [
            {
                "question_id": i,
                "title": f"Question &amp; {i}",
                "link": f"https://stackoverflow.com/q/{i}",
                "answer_count": answer_count,
            }
            for i in range(n)
        ]

    def test_search(self):
        answer_calls: list[str] = []
        transport = httpx.MockTransport(self._handler(self._questions(2), answer_calls))
        source = StackOverflowSource(
            min_interval=0.0, client=StackExchangeClient(transport=transport)
        )
        candidates = source.search("def add(a, b): return a + b", "python")

        assert len(candidates) == 2
        assert candidates[0].source_kind == "qa"
        assert candidates[0].title == "Question & 0"
        assert candidates[0].native_score == 42.0
        assert "return a + b" in candidates[0].snippet_text

    def test_followups_capped(self):
        answer_calls: list[str] = []
        transport = httpx.MockTransport(self._handler(self._questions(5), answer_calls))
        source = StackOverflowSource(
            max_followups=2, min_interval=0.0, client=StackExchangeClient(transport=transport)
        )
        assert len(source.search("query text", "python")) == 2
        assert len(answer_calls) == 2

    def test_unanswered_skipped(self):
        answer_calls: list[str] = []
        transport = httpx.MockTransport(
            self._handler(self._questions(3, answer_count=0), answer_calls)
        )
        source = StackOverflowSource(min_interval=0.0, client=StackExchangeClient(transport=transport))
        assert source.search("query text") == []
        assert answer_calls == []

    def test_backoff_honored(self):
        answer_calls: list[str] = []
        transport = httpx.MockTransport(self._handler(self._questions(2), answer_calls, backoff=30))
        source = StackOverflowSource(min_interval=0.0, client=StackExchangeClient(transport=transport))
        assert source.search("query text") == []
        assert source.limiter.blocked_for > 20
        assert answer_calls == []

    def _failing_answer_handler(self, failing_id, failure, answer_calls):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/search/advanced"):
                return httpx.Response(200, json={"items": [
                    {"question_id": i, "title": f"Q{i}", "link": f"https://stackoverflow.com/q/{i}",
                     "answer_count": 1}
                    for i in (1, 2, 3)
                ]})
            if path.endswith("/answers"):
                answer_calls.append(path)
                if path.endswith(f"/questions/{failing_id}/answers"):
                    return failure
                return httpx.Response(200, json={"items": [{
                    "answer_id": 9, "score": 3, "body": "<pre><code>x = 1</code></pre>",
                }]})
            return httpx.Response(404)

        return handler

    def test_failed_answer_keeps_other_candidates(self):
        """单个回答拉取失败只跳过该问题."""
        answer_calls: list[str] = []
        handler = self._failing_answer_handler(2, httpx.Response(500, text="boom"), answer_calls)
        source = StackOverflowSource(
            min_interval=0.0, client=StackExchangeClient(transport=httpx.MockTransport(handler))
        )
        candidates = source.search("query text", "python")

        assert [c.link for c in candidates] == [
            "https://stackoverflow.com/q/1",
            "https://stackoverflow.com/q/3",
        ]
        assert len(answer_calls) == 3
        assert source.limiter.blocked_for == 0

    def test_rate_limited_answer_stops_followups(self):
        answer_calls: list[str] = []
        failure = httpx.Response(429, headers={"retry-after": "60"}, text="slow down")
        handler = self._failing_answer_handler(2, failure, answer_calls)
        source = StackOverflowSource(
            min_interval=0.0, client=StackExchangeClient(transport=httpx.MockTransport(handler))
        )
        candidates = source.search("query text", "python")

        assert [c.link for c in candidates] == ["https://stackoverflow.com/q/1"]
        assert len(answer_calls) == 2
        assert source.limiter.blocked_for > 30

    def test_tag_sent(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": []})

        client = StackExchangeClient(key="k", transport=httpx.MockTransport(handler))
        client.search_questions("q", tag="c++")
        params = seen[0].url.params
        assert params["tagged"] == "c++"
        assert params["site"] == "stackoverflow"
        assert params["key"] == "k"


class TestWebSearch:
    def test_unconfigured(self):
        source = WebSearchSource(client=SerpApiClient(transport=_failing_transport()))
        assert source.configured is False
        assert source.search("query text") == []

    def test_search(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"organic_results": [
                {"title": "Add two numbers", "link": "https://example.com/add", "snippet": "return a + b"},
            ]})

        client = SerpApiClient(api_key="k", transport=httpx.MockTransport(handler))
        source = WebSearchSource(api_key="k", client=client)
        candidates = source.search("def add(a, b)", "python")

        assert len(candidates) == 1
        assert candidates[0].source_kind == "web"
        assert candidates[0].snippet_text == "return a + b"
        assert seen[0].url.params["q"].endswith(" python code")
        assert seen[0].url.params["api_key"] == "k"

    def test_api_error_is_soft(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "Invalid API key."})

        client = SerpApiClient(api_key="k", transport=httpx.MockTransport(handler))
        source = WebSearchSource(api_key="k", client=client)
        assert source.search("query text") == []
