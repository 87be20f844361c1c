"""测试单文件分析流程 (证据源全部用本地假实现)."""

import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from codeguard.analyzer import FileAnalyzer
from codeguard.base import EvidenceSource
from codeguard.config import AnalysisConfig
from codeguard.models import AuthorshipVerdict, Candidate, CodeFile

ADD_JS = "function add(a, b) { return a + b; }"


class FakeSource(EvidenceSource):
    def __init__(self, candidates=None, kind="repo", delay=0.0):
        super().__init__(timeout=5.0)
        self._kind = kind
        self.candidates = candidates or []
        self.delay = delay
        self.queries: list[str] = []

    @property
    def kind(self):
        return self._kind

    @property
    def name(self):
        return f"fake-{self._kind}"

    def _search(self, query, language):
        self.queries.append(query)
        if self.delay:
            time.sleep(self.delay)
        return list(self.candidates)


class ExplodingSource(FakeSource):
    def search(self, query, language=None):
        raise RuntimeError("unexpected")


class FakeAuthorship:
    def __init__(self, probability=0.5, error=None):
        self.probability = probability
        self.error = error
        self.calls = 0

    def evaluate(self, code, language="unknown"):
        self.calls += 1
        if self.error:
            raise self.error
        return AuthorshipVerdict(ai_probability=self.probability, confidence=1 / 3)


def _candidate(snippet, link="https://example.com/x", kind="repo", title="x"):
    return Candidate(title=title, link=link, source_kind=kind, snippet_text=snippet)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=False, cancel_futures=True)


class TestScoring:
    def test_identical_snippet_is_critical(self, executor):
        source = FakeSource([
            _candidate("function add(a,b){\n  return a+b;\n}", link="https://github.com/o/r/add.js"),
            _candidate("SELECT name FROM users WHERE id = 1", link="https://example.com/sql"),
            _candidate("", link="https://example.com/empty"),
        ])
        analyzer = FileAnalyzer(AnalysisConfig(), [source], None, executor)
        result = analyzer.analyze(CodeFile(filename="add.js", content=ADD_JS))

        assert result.error is None
        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.risk_tier == "critical"
        assert match.link == "https://github.com/o/r/add.js"
        assert match.origin_unit.index == 0
        assert result.plagiarism_score == pytest.approx(match.similarity)

    def test_threshold_is_strict(self, executor):
        config = AnalysisConfig(similarity_threshold=1.0)
        source = FakeSource([_candidate(ADD_JS)])
        result = FileAnalyzer(config, [source], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert result.matches == []
        assert result.plagiarism_score == 0.0

    def test_score_formula(self, executor):
        source = FakeSource([
            _candidate(ADD_JS, link="https://example.com/a"),
            _candidate("function add(x, y) { return x + y; }", link="https://example.com/b"),
        ])
        result = FileAnalyzer(AnalysisConfig(), [source], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        sims = [m.similarity for m in result.matches]
        assert sims == sorted(sims, reverse=True)
        expected = max(sims) * 0.7 + sum(sims) / len(sims) * 0.3
        assert result.plagiarism_score == pytest.approx(expected)
        assert 0.0 <= result.plagiarism_score <= 1.0

    def test_ties_follow_source_order(self, executor):
        slow_repo = FakeSource([_candidate(ADD_JS, link="https://repo", kind="repo")], delay=0.2)
        fast_qa = FakeSource([_candidate(ADD_JS, link="https://qa", kind="qa")], kind="qa")
        result = FileAnalyzer(AnalysisConfig(), [slow_repo, fast_qa], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert [m.link for m in result.matches] == ["https://repo", "https://qa"]

    def test_deterministic(self, executor):
        sources = [
            FakeSource([_candidate(ADD_JS, link="https://a"), _candidate("function add(x, y) { return x + y; }", link="https://b")]),
            FakeSource([_candidate("function add(a, b) { return b + a; }", link="https://c", kind="qa")], kind="qa"),
        ]
        analyzer = FileAnalyzer(AnalysisConfig(), sources, None, executor)
        file = CodeFile(filename="add.js", content=ADD_JS)
        first = [(m.link, m.similarity) for m in analyzer.analyze(file).matches]
        second = [(m.link, m.similarity) for m in analyzer.analyze(file).matches]
        assert first == second

    def test_one_call_per_unit_and_source(self, executor):
        content = "function a() {\n  return 1;\n}\n\nfunction b() {\n  return 2;\n}\n"
        sources = [FakeSource(), FakeSource(kind="qa")]
        FileAnalyzer(AnalysisConfig(), sources, None, executor).analyze(
            CodeFile(filename="ab.js", content=content)
        )
        assert len(sources[0].queries) == 2
        assert len(sources[1].queries) == 2


class TestFailureModes:
    def test_zero_units(self, executor):
        source = FakeSource([_candidate("x = 1")])
        result = FileAnalyzer(AnalysisConfig(), [source], None, executor).analyze(
            CodeFile(filename="tiny.py", content="x = 1")
        )
        assert result.matches == []
        assert result.plagiarism_score == 0.0
        assert result.error is None
        assert source.queries == []

    def test_source_timeout(self, executor):
        config = AnalysisConfig(per_source_timeout=0.2)
        source = FakeSource([_candidate(ADD_JS)], delay=1.0)
        started = time.monotonic()
        result = FileAnalyzer(config, [source], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert time.monotonic() - started < 0.9
        assert result.matches == []
        assert result.plagiarism_score == 0.0
        assert result.error is None

    def test_slow_source_does_not_hide_fast_one(self, executor):
        config = AnalysisConfig(per_source_timeout=0.2)
        slow = FakeSource([_candidate(ADD_JS, link="https://slow")], delay=1.0)
        fast = FakeSource([_candidate(ADD_JS, link="https://fast", kind="qa")], kind="qa")
        result = FileAnalyzer(config, [slow, fast], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert [m.link for m in result.matches] == ["https://fast"]

    def test_file_budget(self, executor):
        config = AnalysisConfig(per_source_timeout=5.0, per_file_time_budget=0.3)
        source = FakeSource([_candidate(ADD_JS)], delay=1.5)
        started = time.monotonic()
        result = FileAnalyzer(config, [source], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert time.monotonic() - started < 1.2
        assert result.matches == []
        assert result.error is None

    def test_source_exception_isolated(self, executor):
        good = FakeSource([_candidate(ADD_JS, link="https://good", kind="qa")], kind="qa")
        result = FileAnalyzer(AnalysisConfig(), [ExplodingSource(), good], None, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert result.error is None
        assert [m.link for m in result.matches] == ["https://good"]

    def test_unexpected_error_sets_error(self, executor):
        with patch("codeguard.analyzer.extract_units", side_effect=RuntimeError("boom")):
            result = FileAnalyzer(AnalysisConfig(), [], FakeAuthorship(0.8), executor).analyze(
                CodeFile(filename="add.js", content=ADD_JS)
            )
        assert result.error == "boom"
        assert result.plagiarism_score == 0.0
        assert result.ai_generated_score == 0.0


class TestAuthorshipStage:
    def test_score_recorded(self, executor):
        authorship = FakeAuthorship(0.8)
        result = FileAnalyzer(AnalysisConfig(), [], authorship, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert result.ai_generated_score == 0.8
        assert result.authorship.ai_probability == 0.8

    def test_failure_becomes_warning(self, executor):
        authorship = FakeAuthorship(error=RuntimeError("model down"))
        source = FakeSource([_candidate(ADD_JS)])
        result = FileAnalyzer(AnalysisConfig(), [source], authorship, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert result.error is None
        assert result.ai_generated_score == 0.0
        assert len(result.warnings) == 1
        assert "model down" in result.warnings[0]
        assert len(result.matches) == 1

    def test_disabled(self, executor):
        authorship = FakeAuthorship(0.8)
        config = AnalysisConfig(enable_authorship_check=False)
        result = FileAnalyzer(config, [], authorship, executor).analyze(
            CodeFile(filename="add.js", content=ADD_JS)
        )
        assert authorship.calls == 0
        assert result.ai_generated_score == 0.0
