"""文本相似度 — 归一化 + 字符 bigram Dice 系数.

归一化去掉空白、标点、引号风格等表层格式差异，
这些差异不能作为原创性的证据。
"""

import re
from collections import Counter

from codeguard.models import RiskTier

_NON_ALNUM = re.compile(r"[\W_]+")
_WHITESPACE = re.compile(r"\s+")

# (下限, 等级)，从高到低匹配
_RISK_TIERS: list[tuple[float, RiskTier]] = [
    (0.9, "critical"),
    (0.7, "high"),
    (0.5, "medium"),
    (0.3, "low"),
]


def normalize(text: str) -> str:
    """小写化，非字母数字替换为空格，合并空白并去首尾空白."""
    return " ".join(_NON_ALNUM.sub(" ", text.lower()).split())


def _bigrams(text: str) -> Counter:
    return Counter(text[i : i + 2] for i in range(len(text) - 1))


def dice_coefficient(a: str, b: str) -> float:
    """字符 bigram 的 Sørensen–Dice 系数（忽略空白）.

    两串相同返回 1.0（包括两个空串），任一串不足 2 个字符返回 0.0。
    """
    a = _WHITESPACE.sub("", a)
    b = _WHITESPACE.sub("", b)

    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    bigrams_a = _bigrams(a)
    bigrams_b = _bigrams(b)
    overlap = sum((bigrams_a & bigrams_b).values())

    return 2.0 * overlap / (len(a) - 1 + len(b) - 1)


def score(text_a: str, text_b: str) -> float:
    """计算两段代码的相似度 [0, 1]."""
    similarity = dice_coefficient(normalize(text_a), normalize(text_b))
    return max(0.0, min(1.0, similarity))


def is_match(similarity: float, threshold: float = 0.3) -> bool:
    """相似度严格大于阈值才算匹配."""
    return similarity > threshold


def risk_tier(similarity: float) -> RiskTier:
    """相似度 → 风险等级."""
    for lower, tier in _RISK_TIERS:
        if similarity >= lower:
            return tier
    return "minimal"
