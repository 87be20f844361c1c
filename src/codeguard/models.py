"""数据模型 — 代码单元 / 候选 / 匹配 / 文件结果 / 提交结果."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from codeguard.languages import detect_language

SourceKind = Literal["repo", "qa", "web"]
RiskTier = Literal["minimal", "low", "medium", "high", "critical"]
UnitKind = Literal["function", "class", "chunk"]

SOURCE_KINDS: tuple[str, ...] = ("repo", "qa", "web")


class CodeFile(BaseModel):
    """待分析的源文件."""

    filename: str = Field(min_length=1)
    content: str
    language: str = ""

    @model_validator(mode="after")
    def _fill_language(self) -> "CodeFile":
        if not self.language:
            self.language = detect_language(self.filename)
        return self


class FileRef(BaseModel):
    """代码单元所属文件."""

    model_config = ConfigDict(frozen=True)

    filename: str
    language: str = "unknown"


class CodeUnit(BaseModel):
    """一个可比对的代码片段（函数、类或行块）."""

    model_config = ConfigDict(frozen=True)

    text: str
    origin_file: FileRef
    index: int = Field(ge=0)
    kind: UnitKind = "chunk"
    start_line: int = Field(default=1, ge=1)


class Candidate(BaseModel):
    """证据源返回的未评分候选片段."""

    title: str = ""
    link: str = ""
    source_kind: SourceKind
    snippet_text: str = ""
    native_score: float | None = None


class Match(Candidate):
    """通过相似度阈值的候选."""

    similarity: float = Field(ge=0.0, le=1.0)
    risk_tier: RiskTier
    origin_unit: CodeUnit


class AuthorshipSignal(BaseModel):
    """AI 生成判定的单条依据."""

    kind: str
    evidence: str
    weight: float = Field(ge=0.0, le=1.0)


class AuthorshipVerdict(BaseModel):
    """AI 生成可能性判定."""

    ai_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    signals: list[AuthorshipSignal] = Field(default_factory=list)
    pattern_score: float = Field(default=0.0, ge=0.0, le=1.0)
    statistical_score: float = Field(default=0.0, ge=0.0, le=1.0)
    model_score: float = Field(default=0.0, ge=0.0, le=1.0)
    model_rationale: str = ""


class FileResult(BaseModel):
    """单文件分析结果."""

    filename: str
    language: str = "unknown"
    size: int = 0
    plagiarism_score: float = Field(default=0.0, ge=0.0, le=1.0)
    ai_generated_score: float = Field(default=0.0, ge=0.0, le=1.0)
    matches: list[Match] = Field(default_factory=list)
    authorship: AuthorshipVerdict = Field(default_factory=AuthorshipVerdict)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class SourceAggregate(BaseModel):
    """整个提交中去重后的一个外部来源."""

    source_kind: SourceKind
    title: str = ""
    link: str
    referencing_files: list[str] = Field(default_factory=list)
    max_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    total_matches: int = 0


class HighRiskFile(BaseModel):
    """高风险文件."""

    filename: str
    score: float = Field(ge=0.0, le=1.0)


class SubmissionSummary(BaseModel):
    """提交级汇总."""

    plagiarism_score: float = Field(default=0.0, ge=0.0, le=1.0)
    ai_generated_score: float = Field(default=0.0, ge=0.0, le=1.0)
    total_matches: int = 0
    high_risk_files: list[HighRiskFile] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    """提交分析报告."""

    analysis_id: str
    timestamp: str
    total_files: int
    summary: SubmissionSummary
    files: list[FileResult] = Field(default_factory=list)
    sources: dict[str, list[SourceAggregate]] = Field(
        default_factory=lambda: {kind: [] for kind in SOURCE_KINDS}
    )
