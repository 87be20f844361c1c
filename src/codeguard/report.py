"""分析报告生成 (markdown / json)."""

import json

from codeguard import __version__
from codeguard.models import FileResult, SourceAggregate, SubmissionResult

# 证据源类型中文名
_SOURCE_LABELS: dict[str, str] = {
    "repo": "代码托管 (GitHub)",
    "qa": "问答社区 (Stack Overflow)",
    "web": "通用网页",
}

# 风险等级显示
_TIER_LABELS: dict[str, str] = {
    "critical": "🔴 极高",
    "high": "🟠 高",
    "medium": "🟡 中",
    "low": "🟢 低",
    "minimal": "⚪ 极低",
}

# 每个文件在报告中展示的匹配数上限
_MAX_MATCHES_SHOWN = 5


def risk_label(score: float) -> str:
    """分数 → 风险文字."""
    if score > 0.7:
        return "高风险"
    if score > 0.4:
        return "中风险"
    return "低风险"


def generate_report(result: SubmissionResult, format: str = "markdown") -> str:
    """生成分析报告.

    Args:
        result: 提交分析结果
        format: 输出格式 (markdown / json)
    """
    if format == "json":
        return json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2)
    return _generate_markdown_report(result)


def _generate_markdown_report(result: SubmissionResult) -> str:
    summary = result.summary
    lines: list[str] = []

    # ── 标题 ──
    lines.append("# 代码溯源分析报告")
    lines.append("")
    lines.append(f"**分析 ID**: `{result.analysis_id}`")
    lines.append(f"**分析时间**: {result.timestamp}")
    lines.append(f"**分析工具**: knowlyr-codeguard {__version__}")
    lines.append("")
    lines.append("---")
    lines.append("")

    # ── 1. 总览 ──
    lines.append("## 1. 总览")
    lines.append("")
    lines.append("| 指标 | 数值 |")
    lines.append("|------|------|")
    lines.append(f"| 文件数 | {result.total_files} |")
    lines.append(
        f"| 抄袭风险 | {summary.plagiarism_score:.1%} ({risk_label(summary.plagiarism_score)}) |"
    )
    lines.append(
        f"| AI 生成可能性 | {summary.ai_generated_score:.1%} ({risk_label(summary.ai_generated_score)}) |"
    )
    lines.append(f"| 匹配总数 | {summary.total_matches} |")
    lines.append(f"| 高风险文件 | {len(summary.high_risk_files)} |")
    lines.append("")

    if summary.high_risk_files:
        lines.append("### 高风险文件")
        lines.append("")
        for f in summary.high_risk_files:
            lines.append(f"- `{f.filename}` — {f.score:.1%}")
        lines.append("")

    lines.append("---")
    lines.append("")

    # ── 2. 文件详情 ──
    lines.append("## 2. 文件详情")
    lines.append("")
    for f in result.files:
        _section_file(lines, f)

    lines.append("---")
    lines.append("")

    # ── 3. 外部来源 ──
    _section_sources(lines, result.sources)

    # ── 4. 说明 ──
    lines.append("## 4. 说明")
    lines.append("")
    lines.append("- 相似度为字符 bigram Dice 系数，只反映文本层面的重合程度")
    lines.append("- AI 生成可能性来自启发式规则和可选的模型复核，仅供参考")
    lines.append("- 本报告是辅助判断材料，不构成抄袭认定")
    lines.append("")
    lines.append("---")
    lines.append("")
    lines.append("由 knowlyr-codeguard 生成")
    lines.append("")

    return "\n".join(lines)


def _section_file(lines: list[str], f: FileResult) -> None:
    lines.append(f"### `{f.filename}`")
    lines.append("")
    lines.append(f"- 语言: {f.language}，大小: {f.size} 字符")
    lines.append(f"- 抄袭风险: {f.plagiarism_score:.1%}")
    lines.append(
        f"- AI 生成可能性: {f.ai_generated_score:.1%} (置信度 {f.authorship.confidence:.0%})"
    )
    if f.error:
        lines.append(f"- ⚠️ 分析失败: {f.error}")
    for w in f.warnings:
        lines.append(f"- ⚠️ {w}")
    lines.append("")

    if f.matches:
        lines.append("| 相似度 | 等级 | 来源 | 单元 |")
        lines.append("|--------|------|------|------|")
        for m in f.matches[:_MAX_MATCHES_SHOWN]:
            tier = _TIER_LABELS.get(m.risk_tier, m.risk_tier)
            title = m.title.replace("|", "\\|") or m.link
            unit = f"#{m.origin_unit.index} {m.origin_unit.kind} (L{m.origin_unit.start_line})"
            lines.append(f"| {m.similarity:.1%} | {tier} | [{title}]({m.link}) | {unit} |")
        if len(f.matches) > _MAX_MATCHES_SHOWN:
            lines.append("")
            lines.append(f"*另有 {len(f.matches) - _MAX_MATCHES_SHOWN} 条匹配未列出*")
        lines.append("")

    if f.authorship.signals:
        lines.append("AI 生成判定依据:")
        lines.append("")
        for s in f.authorship.signals:
            lines.append(f"- `{s.kind}` ({s.weight:.2f}): {s.evidence}")
        lines.append("")


def _section_sources(lines: list[str], sources: dict[str, list[SourceAggregate]]) -> None:
    lines.append("## 3. 外部来源")
    lines.append("")

    if not any(sources.values()):
        lines.append("未发现相似的外部来源。")
        lines.append("")
        return

    for kind, aggregates in sources.items():
        if not aggregates:
            continue
        lines.append(f"### {_SOURCE_LABELS.get(kind, kind)}")
        lines.append("")
        lines.append("| 来源 | 最高相似度 | 匹配数 | 涉及文件 |")
        lines.append("|------|-----------|--------|----------|")
        for agg in aggregates:
            title = agg.title.replace("|", "\\|") or agg.link
            files = ", ".join(f"`{name}`" for name in agg.referencing_files)
            lines.append(
                f"| [{title}]({agg.link}) | {agg.max_similarity:.1%} | {agg.total_matches} | {files} |"
            )
        lines.append("")
