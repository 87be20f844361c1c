"""提交级汇总 — 文件分数均值、高风险文件、外部来源去重."""

import logging
import secrets
import time
from datetime import datetime, timezone

from codeguard.errors import SubmissionInputError
from codeguard.models import (
    SOURCE_KINDS,
    FileResult,
    HighRiskFile,
    SourceAggregate,
    SubmissionResult,
    SubmissionSummary,
)

logger = logging.getLogger(__name__)


def new_analysis_id() -> str:
    """生成分析 ID: analysis_<毫秒时间戳>_<9 位十六进制>."""
    return f"analysis_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class SubmissionAggregator:
    """把多个 FileResult 合并为一份 SubmissionResult."""

    def __init__(self, high_risk_threshold: float = 0.7):
        self.high_risk_threshold = high_risk_threshold

    def aggregate(self, results: list[FileResult]) -> SubmissionResult:
        if not results:
            raise SubmissionInputError("没有可汇总的文件结果")

        n = len(results)
        summary = SubmissionSummary(
            plagiarism_score=_clamp(sum(r.plagiarism_score for r in results) / n),
            ai_generated_score=_clamp(sum(r.ai_generated_score for r in results) / n),
            total_matches=sum(len(r.matches) for r in results),
            high_risk_files=[
                HighRiskFile(filename=r.filename, score=r.plagiarism_score)
                for r in results
                if r.plagiarism_score > self.high_risk_threshold
            ],
        )

        result = SubmissionResult(
            analysis_id=new_analysis_id(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            total_files=n,
            summary=summary,
            files=results,
            sources=self._dedup_sources(results),
        )
        logger.info(
            "汇总完成: %d 个文件, %d 条匹配, %d 个高风险文件",
            n, summary.total_matches, len(summary.high_risk_files),
        )
        return result

    @staticmethod
    def _dedup_sources(results: list[FileResult]) -> dict[str, list[SourceAggregate]]:
        """按 (证据源类型, 链接) 去重."""
        seen: dict[tuple[str, str], SourceAggregate] = {}
        for r in results:
            for m in r.matches:
                key = (m.source_kind, m.link)
                agg = seen.get(key)
                if agg is None:
                    agg = SourceAggregate(source_kind=m.source_kind, title=m.title, link=m.link)
                    seen[key] = agg
                if r.filename not in agg.referencing_files:
                    agg.referencing_files.append(r.filename)
                agg.max_similarity = max(agg.max_similarity, m.similarity)
                agg.total_matches += 1

        sources: dict[str, list[SourceAggregate]] = {kind: [] for kind in SOURCE_KINDS}
        for agg in seen.values():
            sources[agg.source_kind].append(agg)
        for kind in sources:
            sources[kind].sort(key=lambda a: a.max_similarity, reverse=True)
        return sources


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
