"""AI 生成判定 — 模式分析 + 统计分析 + 生成模型第二意见.

三类信号按固定权重合成:
    ai_probability = pattern * 0.4 + model * 0.4 + statistical * 0.2

这些启发式只提供参考分值，不是统计意义上的检测器；
confidence 只反映有多少类信号给出了非零贡献。
"""

import json
import logging
import re
from typing import Any

from codeguard.config import AnalysisConfig
from codeguard.errors import LLMError
from codeguard.llm import LLMClient
from codeguard.models import AuthorshipSignal, AuthorshipVerdict

logger = logging.getLogger(__name__)

MODEL_EXCERPT_CHARS = 2000

_PROMPT_TEMPLATE = """Analyze the following {language} code and determine if it appears to be AI-generated. Consider:
1. Code structure and organization
2. Variable naming patterns
3. Comment style and frequency
4. Error handling patterns
5. Overall code quality and consistency

Code:
```{language}
{code}
```

Respond with JSON only, in exactly this format:
{{"ai_probability": 0.75, "reasoning": "one or two sentences"}}"""

_GENERIC_NAMES = frozenset({
    "data", "result", "value", "item", "element", "obj", "arr", "str", "num",
    "temp", "temp1", "temp2", "var1", "var2", "x", "y", "z", "i", "j", "k",
    "count", "index", "length", "size", "name", "type", "id", "key",
})

_VAR_DECLARATION = re.compile(r"\b(?:const|let|var)\s+([A-Za-z_$][\w$]*)")
_ASSIGNMENT = re.compile(r"^[ \t]*([A-Za-z_]\w*)[ \t]*(?::[^=\n]+)?=(?!=)", re.MULTILINE)
_FUNCTION_DEF = re.compile(r"\bfunction\s+\w+\s*\(|\bdef\s+\w+\s*\(")
_CLASS_DEF = re.compile(r"\bclass\s+\w+")
_ERROR_HANDLING = re.compile(r"\btry\s*[:{]|\bcatch\s*\(|\bexcept\b|\bfinally\s*[:{]|\bthrow\s+new\b|\braise\s+\w")
_OPERATOR = re.compile(r"[+\-*/=<>!&|]")
_SPACED_OPERATOR = re.compile(r"\s[+\-*/=<>!&|]+\s")
_CAMEL_CASE = re.compile(r"\b[a-z]+[A-Z]\w*\b")
_SNAKE_CASE = re.compile(r"\b[a-z]+_[a-z0-9_]+\b")
_PERSONAL_MARKERS = re.compile(r"\b(?:TODO|FIXME|HACK|XXX|BUG)\b", re.IGNORECASE)
_NUMBER = re.compile(r"(\d+(?:\.\d+)?)\s*(%?)")
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*(%)")
_LABELED_NUMBER = re.compile(r"(?:probability|likelihood)\D{0,20}?(\d+(?:\.\d+)?)\s*(%?)", re.IGNORECASE)
_LIST_MARKER = re.compile(r"^[ \t]*\d+\.\s", re.MULTILINE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _variance(values: list[float]) -> float:
    """总体方差."""
    if not values:
        return 0.0
    mu = _mean(values)
    return sum((v - mu) ** 2 for v in values) / len(values)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _is_comment(stripped: str, language: str) -> bool:
    if language == "python":
        return stripped.startswith(("#", '"""', "'''"))
    return stripped.startswith(("//", "/*", "*", "#"))


# ---------------------------------------------------------------------------
# 模式分析
# ---------------------------------------------------------------------------


def comment_ratio(lines: list[str], language: str) -> float:
    """注释行占比."""
    if not lines:
        return 0.0
    return sum(1 for line in lines if _is_comment(line.strip(), language)) / len(lines)


def formatting_consistency(lines: list[str]) -> float:
    """格式一致性: 行尾风格、运算符空格、缩进方差."""
    total = len(lines)
    if not total:
        return 0.0

    consistent = 0.0
    endings_ok = all(
        not line.strip()
        or line.rstrip().endswith((";", "{", "}", ":", ",", ")", "]"))
        or line.strip().startswith(("//", "#"))
        for line in lines
    )
    if endings_ok:
        consistent += total * 0.3

    spaced = sum(1 for line in lines if _OPERATOR.search(line) and _SPACED_OPERATOR.search(line))
    if spaced > total * 0.1:
        consistent += total * 0.3

    indents = [float(len(line) - len(line.lstrip())) for line in lines if line.strip()]
    # 缩进方差小说明排版很整齐
    if _variance(indents) < 2:
        consistent += total * 0.4

    return min(consistent / total, 1.0)


def _declared_names(code: str) -> list[str]:
    return _VAR_DECLARATION.findall(code) + _ASSIGNMENT.findall(code)


def generic_naming(code: str) -> float:
    """通用变量名占比."""
    names = _declared_names(code)
    if not names:
        return 0.0
    return sum(1 for n in names if n.lower() in _GENERIC_NAMES) / len(names)


def over_engineering(lines: list[str]) -> float:
    """过度工程迹象: 异常处理、函数密度、注释密度."""
    total = len(lines)
    if not total:
        return 0.0

    score = 0.0
    if sum(1 for line in lines if _ERROR_HANDLING.search(line)) > total * 0.1:
        score += 0.3
    if sum(1 for line in lines if _FUNCTION_DEF.search(line)) > total * 0.15:
        score += 0.3
    if sum(1 for line in lines if line.strip().startswith(("//", "#"))) > total * 0.3:
        score += 0.4
    return min(score, 1.0)


def personal_style(code: str, lines: list[str]) -> float:
    """个人风格: 缩进不齐、命名混用、TODO 类注释. 越高越像人写的."""
    score = 0.0
    indents = [float(len(line) - len(line.lstrip())) for line in lines if line.strip()]
    if _variance(indents) > 2:
        score += 0.3
    if _CAMEL_CASE.search(code) and _SNAKE_CASE.search(code):
        score += 0.3
    if any(_PERSONAL_MARKERS.search(line) for line in lines):
        score += 0.4
    return min(score, 1.0)


def analyze_patterns(code: str, language: str) -> tuple[float, list[AuthorshipSignal]]:
    """模式分析. 返回 (分数, 触发的信号)."""
    lines = code.split("\n")
    signals: list[AuthorshipSignal] = []

    ratio = comment_ratio(lines, language)
    if ratio > 0.3:
        signals.append(AuthorshipSignal(
            kind="excessive_comments",
            evidence=f"注释占比 {ratio:.1%}",
            weight=_clamp(ratio * 0.3),
        ))

    formatting = formatting_consistency(lines)
    if formatting > 0.8:
        signals.append(AuthorshipSignal(
            kind="perfect_formatting",
            evidence=f"格式一致性 {formatting:.1%}",
            weight=_clamp(formatting * 0.2),
        ))

    generic = generic_naming(code)
    if generic > 0.6:
        signals.append(AuthorshipSignal(
            kind="generic_names",
            evidence=f"通用命名占比 {generic:.1%}",
            weight=_clamp(generic * 0.25),
        ))

    engineering = over_engineering(lines)
    if engineering > 0.7:
        signals.append(AuthorshipSignal(
            kind="over_engineering",
            evidence=f"过度工程分 {engineering:.1%}",
            weight=_clamp(engineering * 0.3),
        ))

    personal = personal_style(code, lines)
    if personal < 0.3:
        signals.append(AuthorshipSignal(
            kind="lack_personal_style",
            evidence=f"个人风格分 {personal:.1%}",
            weight=_clamp((1 - personal) * 0.2),
        ))

    return min(sum(s.weight for s in signals), 1.0), signals


# ---------------------------------------------------------------------------
# 统计分析
# ---------------------------------------------------------------------------


def analyze_statistics(code: str) -> dict[str, Any]:
    """行 / 函数 / 类 / 变量密度统计，附带统计分."""
    lines = code.split("\n")
    total = len(lines)

    comment_lines = sum(1 for line in lines if line.strip().startswith(("//", "#", "/*", "*")))
    function_count = sum(1 for line in lines if _FUNCTION_DEF.search(line))
    class_count = sum(1 for line in lines if _CLASS_DEF.search(line))
    variable_count = sum(1 for line in lines if _VAR_DECLARATION.search(line) or _ASSIGNMENT.match(line))

    function_density = function_count / total
    score = 0.0
    if comment_lines / total > 0.2:
        score += 0.2
    if 0.05 < function_density < 0.15:
        score += 0.2
    if variable_count / total > 0.1:
        score += 0.2
    if total > 50:
        score += 0.2
    if class_count > 0:
        score += 0.2

    return {
        "total_lines": total,
        "comment_lines": comment_lines,
        "function_count": function_count,
        "class_count": class_count,
        "variable_count": variable_count,
        "score": min(score, 1.0),
    }


# ---------------------------------------------------------------------------
# 生成模型第二意见
# ---------------------------------------------------------------------------


def build_prompt(code: str, language: str) -> str:
    """构造复核 prompt，只截取前 MODEL_EXCERPT_CHARS 个字符."""
    return _PROMPT_TEMPLATE.format(language=language, code=code[:MODEL_EXCERPT_CHARS])


def parse_model_response(content: str) -> tuple[float, str]:
    """解析模型响应，返回 (概率, 理由).

    优先解析 JSON（允许包裹在代码块或其他文字中）；
    失败时从自由文本中取数值: 先找紧跟 probability / likelihood 的数，再找百分数，
    最后取第一个数 (行首列表序号除外)。百分数或大于 1 的值按百分比处理。
    """
    match = _JSON_OBJECT.search(content)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            raw = parsed.get("ai_probability", parsed.get("aiProbability"))
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                reasoning = str(parsed.get("reasoning") or "未提供理由")
                return _clamp(float(raw)), reasoning

    # 行首的列表序号 ("1. ...") 不是概率
    text = _LIST_MARKER.sub(" ", content)
    number = _LABELED_NUMBER.search(text) or _PERCENT.search(text) or _NUMBER.search(text)
    if number:
        value = float(number.group(1))
        if number.group(2) == "%" or value > 1:
            value /= 100
        return _clamp(value), content.strip()

    return 0.0, f"无法解析模型响应: {content.strip()[:200]}"


class AuthorshipHeuristic:
    """AI 生成判定器."""

    def __init__(self, config: AnalysisConfig | None = None, llm: LLMClient | None = None):
        self.config = config or AnalysisConfig()
        self.llm = llm

    def evaluate(self, code: str, language: str = "unknown") -> AuthorshipVerdict:
        """对单个文件给出 AI 生成判定."""
        if not code.strip():
            return AuthorshipVerdict()

        pattern_score, signals = analyze_patterns(code, language)
        stats = analyze_statistics(code)
        statistical_score = stats["score"]
        model_score, rationale = self._model_opinion(code, language)

        cfg = self.config
        if statistical_score > 0:
            signals.append(AuthorshipSignal(
                kind="statistical",
                evidence=(
                    f"{stats['total_lines']} 行, {stats['function_count']} 个函数, "
                    f"{stats['class_count']} 个类, {stats['variable_count']} 处变量声明"
                ),
                weight=_clamp(statistical_score * cfg.statistical_weight),
            ))
        if model_score > 0:
            signals.append(AuthorshipSignal(
                kind="model_opinion",
                evidence=rationale,
                weight=_clamp(model_score * cfg.model_weight),
            ))

        ai_probability = _clamp(
            pattern_score * cfg.pattern_weight
            + model_score * cfg.model_weight
            + statistical_score * cfg.statistical_weight
        )
        contributing = sum(1 for s in (pattern_score, model_score, statistical_score) if s > 0)

        return AuthorshipVerdict(
            ai_probability=ai_probability,
            confidence=round(contributing / 3, 4),
            signals=signals,
            pattern_score=_clamp(pattern_score),
            statistical_score=_clamp(statistical_score),
            model_score=model_score,
            model_rationale=rationale,
        )

    def _model_opinion(self, code: str, language: str) -> tuple[float, str]:
        if self.llm is None or not self.llm.configured:
            return 0.0, "生成模型未配置"

        try:
            content = self.llm.generate(build_prompt(code, language))
        except LLMError as e:
            logger.warning("生成模型复核失败: %s", e)
            return 0.0, f"复核失败: {e}"

        return parse_model_response(content)
