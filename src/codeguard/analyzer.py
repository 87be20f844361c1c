"""单文件分析 — AI 判定、单元抽取、证据检索扇出、相似度评分.

状态流转:
    init → authorship_check → unit_extraction → evidence_fan_out → scoring → aggregated
                                                                           ↘ failed

检索扇出的每个 (单元, 证据源) 调用在共享线程池中独立运行:
- 单次调用超时从开始运行时计起 (per_source_timeout)
- 整个扇出受单文件时长预算约束 (per_file_time_budget)
- 被放弃的调用: 未开始的取消，已开始的忽略结果，均视为无候选
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from dataclasses import dataclass, field

from codeguard.authorship import AuthorshipHeuristic
from codeguard.base import EvidenceSource
from codeguard.config import AnalysisConfig
from codeguard.extractor import extract_units
from codeguard.models import Candidate, CodeFile, CodeUnit, FileResult, Match
from codeguard.similarity import is_match, risk_tier, score

logger = logging.getLogger(__name__)


@dataclass
class _SourceCall:
    """一次 (单元, 证据源) 检索调用."""

    unit: CodeUnit
    source_index: int
    source: EvidenceSource
    started_at: float | None = None
    finished_at: float | None = None
    future: Future | None = field(default=None, repr=False)

    def run(self) -> list[Candidate]:
        self.started_at = time.monotonic()
        try:
            return self.source.search(self.unit.text, self.unit.origin_file.language)
        finally:
            self.finished_at = time.monotonic()


class FileAnalyzer:
    """单文件分析器."""

    def __init__(
        self,
        config: AnalysisConfig,
        sources: list[EvidenceSource],
        authorship: AuthorshipHeuristic | None,
        executor: Executor,
    ):
        self.config = config
        self.sources = sources
        self.authorship = authorship
        self.executor = executor

    def analyze(self, file: CodeFile) -> FileResult:
        """分析单个文件. 不抛异常，意外错误记录在 FileResult.error."""
        language = file.language or "unknown"
        result = FileResult(filename=file.filename, language=language, size=len(file.content))
        logger.debug("[%s] init (language=%s, size=%d)", file.filename, language, result.size)

        try:
            self._check_authorship(file, result)

            logger.debug("[%s] unit_extraction", file.filename)
            units = extract_units(
                file.content,
                language=language,
                filename=file.filename,
                max_units=self.config.max_units_per_file,
            )
            if not units:
                logger.debug("[%s] 未抽取到代码单元", file.filename)
                return result

            logger.debug("[%s] evidence_fan_out (%d 个单元, %d 个证据源)",
                         file.filename, len(units), len(self.sources))
            candidates = self._fan_out(file.filename, units)

            logger.debug("[%s] scoring", file.filename)
            matches = self._score(units, candidates)

            # sorted() 是稳定排序，相似度相同时保留访问顺序
            result.matches = sorted(matches, key=lambda m: m.similarity, reverse=True)
            result.plagiarism_score = self._plagiarism_score(result.matches)
            logger.debug("[%s] aggregated (%d 条匹配, score=%.3f)",
                         file.filename, len(result.matches), result.plagiarism_score)
        except Exception as e:
            logger.error("[%s] failed: %s", file.filename, e, exc_info=True)
            return FileResult(
                filename=file.filename,
                language=language,
                size=len(file.content),
                error=str(e) or type(e).__name__,
                warnings=result.warnings,
            )

        return result

    def _check_authorship(self, file: CodeFile, result: FileResult) -> None:
        if not self.config.enable_authorship_check or self.authorship is None:
            return

        logger.debug("[%s] authorship_check", file.filename)
        try:
            verdict = self.authorship.evaluate(file.content, file.language)
        except Exception as e:
            logger.warning("[%s] AI 生成判定失败: %s", file.filename, e)
            result.warnings.append(f"AI 生成判定失败: {e}")
            return

        result.authorship = verdict
        result.ai_generated_score = verdict.ai_probability

    def _fan_out(
        self, filename: str, units: list[CodeUnit]
    ) -> dict[tuple[int, int], list[Candidate]]:
        """并发检索. 返回 {(单元序号, 证据源序号): 候选列表}."""
        calls: list[_SourceCall] = []
        for unit in units:
            for i, source in enumerate(self.sources):
                call = _SourceCall(unit=unit, source_index=i, source=source)
                call.future = self.executor.submit(call.run)
                calls.append(call)

        results: dict[tuple[int, int], list[Candidate]] = {}
        if not calls:
            return results

        per_call = self.config.per_source_timeout
        deadline = time.monotonic() + self.config.per_file_time_budget
        pending = {call.future: call for call in calls}

        while pending:
            now = time.monotonic()
            if now >= deadline:
                logger.warning("[%s] 超出单文件时长预算 (%.0fs)，放弃 %d 个检索调用",
                               filename, self.config.per_file_time_budget, len(pending))
                break

            for fut, call in list(pending.items()):
                if call.started_at is not None and not fut.done() and now - call.started_at >= per_call:
                    logger.warning("[%s] %s 检索超时 (单元 #%d)", filename, call.source.name, call.unit.index)
                    del pending[fut]

            if not pending:
                break

            # 已开始的调用等到各自超时点，未开始的最多等一个单次超时再复查
            wait_for = min(deadline - now, per_call)
            for call in pending.values():
                if call.started_at is not None:
                    wait_for = min(wait_for, call.started_at + per_call - now)
            done, _ = wait(list(pending), timeout=max(wait_for, 0.0), return_when=FIRST_COMPLETED)

            for fut in done:
                call = pending.pop(fut)
                key = (call.unit.index, call.source_index)
                if fut.cancelled():
                    continue
                exc = fut.exception()
                if exc is not None:
                    logger.warning("[%s] %s 检索异常 (单元 #%d): %s",
                                   filename, call.source.name, call.unit.index, exc)
                    continue
                if (
                    call.started_at is not None
                    and call.finished_at is not None
                    and call.finished_at - call.started_at > per_call
                ):
                    logger.warning("[%s] %s 检索超时 (单元 #%d)", filename, call.source.name, call.unit.index)
                    continue
                results[key] = fut.result()

        for fut in pending:
            fut.cancel()

        return results

    def _score(
        self,
        units: list[CodeUnit],
        candidates: dict[tuple[int, int], list[Candidate]],
    ) -> list[Match]:
        """按 (单元序号, 证据源顺序, 候选顺序) 评分，与完成顺序无关."""
        threshold = self.config.similarity_threshold
        matches: list[Match] = []
        for unit in units:
            for i in range(len(self.sources)):
                for candidate in candidates.get((unit.index, i), []):
                    if not candidate.snippet_text.strip():
                        continue
                    s = score(unit.text, candidate.snippet_text)
                    if not is_match(s, threshold):
                        continue
                    matches.append(Match(
                        **candidate.model_dump(),
                        similarity=s,
                        risk_tier=risk_tier(s),
                        origin_unit=unit,
                    ))
        return matches

    def _plagiarism_score(self, matches: list[Match]) -> float:
        if not matches:
            return 0.0
        sims = [m.similarity for m in matches]
        raw = (
            max(sims) * self.config.plagiarism_max_weight
            + sum(sims) / len(sims) * self.config.plagiarism_mean_weight
        )
        return max(0.0, min(1.0, raw))
