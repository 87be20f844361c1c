"""代码单元抽取 — 把一个文件拆成可检索、可比对的片段.

两步走:
1. 结构化抽取: 按语言家族扫描函数 / 类定义
   - 缩进家族 (python): 按缩进层级确定代码块边界
   - 花括号家族 (js/ts/java/c/go/rust ...): 跳过字符串和注释后做括号配对
2. 兜底: 结构化结果为空时，按"有效行"切成固定大小的行块

单元数量有上限（默认 10），用来限制下游的网络请求扇出。

嵌套定义各自成为单元: 类本身是一个单元，类中的每个方法也是一个单元，
文本互相重叠。一个方法很多的类会占满大部分名额，后面的定义可能被截掉。
"""

import re
from dataclasses import dataclass

from codeguard.languages import BRACE_LANGUAGES, INDENT_LANGUAGES
from codeguard.models import CodeUnit, FileRef, UnitKind

MAX_UNITS = 10

# 兜底行块参数
MIN_LINE_LENGTH = 20
CHUNK_SIZE = 5
MIN_CHUNK_LENGTH = 50
_COMMENT_PREFIXES = ("//", "#", "/*", "*", "<!--", "--")


@dataclass
class _Block:
    start: int  # 起始字符偏移
    end: int  # 结束字符偏移 (不含)
    kind: UnitKind


def extract_units(
    text: str,
    language: str = "unknown",
    filename: str = "",
    max_units: int = MAX_UNITS,
) -> list[CodeUnit]:
    """抽取代码单元.

    Args:
        text: 文件内容
        language: 语言名 (见 languages.LANGUAGE_MAP)
        filename: 文件名，仅用于标注单元来源
        max_units: 单元数量上限

    Returns:
        按扫描顺序排列的代码单元，最多 max_units 个
    """
    if not text or not text.strip():
        return []

    language = (language or "unknown").lower()
    origin = FileRef(filename=filename, language=language)

    blocks = _structural_blocks(text, language)
    if blocks:
        pieces = [
            (text[b.start : b.end].rstrip(), b.kind, text.count("\n", 0, b.start) + 1)
            for b in blocks
        ]
    else:
        pieces = [(chunk, "chunk", line_no) for chunk, line_no in _significant_chunks(text)]

    units: list[CodeUnit] = []
    for piece_text, kind, line_no in pieces:
        if not piece_text.strip():
            continue
        units.append(
            CodeUnit(
                text=piece_text,
                origin_file=origin,
                index=len(units),
                kind=kind,
                start_line=line_no,
            )
        )
        if len(units) >= max_units:
            break

    return units


def _structural_blocks(text: str, language: str) -> list[_Block]:
    if language in INDENT_LANGUAGES:
        return _scan_indent_blocks(text)
    if language in BRACE_LANGUAGES:
        return _scan_brace_blocks(text, language)
    if language == "unknown":
        return _scan_brace_blocks(text, language) or _scan_indent_blocks(text)
    # 标记 / 数据 / 样式类语言没有函数结构，直接走行块兜底
    return []


# ---------------------------------------------------------------------------
# 缩进家族
# ---------------------------------------------------------------------------

_PY_HEADER = re.compile(r"^([ \t]*)(?:async[ \t]+)?(def|class)[ \t]+[A-Za-z_]\w*")
_PY_DECORATOR = re.compile(r"^[ \t]*@")
_TRIPLE_QUOTES = ('"""', "'''")
_MAX_HEADER_LINES = 30


def _indent_width(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip())


def _string_state(lines: list[str]) -> list[bool]:
    """每一行开头是否处于三引号字符串内部."""
    states: list[bool] = []
    delim: str | None = None

    for line in lines:
        states.append(delim is not None)
        pos = 0
        while True:
            if delim is None:
                hits = [(line.find(q, pos), q) for q in _TRIPLE_QUOTES]
                hits = [(i, q) for i, q in hits if i >= 0]
                if not hits:
                    break
                idx, delim = min(hits)
                pos = idx + 3
            else:
                idx = line.find(delim, pos)
                if idx < 0:
                    break
                delim = None
                pos = idx + 3

    return states


def _header_end(lines: list[str], start: int) -> int:
    """定义头结束行: 括号闭合且没有续行符的第一行.

    `def f(): return 1` 这种同一行带函数体的写法，定义头就在本行结束。
    """
    depth = 0
    for i in range(start, min(start + _MAX_HEADER_LINES, len(lines))):
        code = lines[i].split("#", 1)[0].rstrip()
        depth += sum(code.count(c) for c in "([{") - sum(code.count(c) for c in ")]}")
        if depth <= 0 and not code.endswith("\\"):
            return i
    return start


def _scan_indent_blocks(text: str) -> list[_Block]:
    lines = text.splitlines(keepends=True)
    in_string = _string_state(lines)

    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    blocks: list[_Block] = []
    for i, line in enumerate(lines):
        if in_string[i]:
            continue
        m = _PY_HEADER.match(line)
        if not m:
            continue

        indent = _indent_width(m.group(1))
        first = i
        while first > 0 and _PY_DECORATOR.match(lines[first - 1]) and _indent_width(lines[first - 1]) == indent:
            first -= 1

        last = _header_end(lines, i)
        j = last + 1
        while j < len(lines):
            current = lines[j]
            if in_string[j]:
                last = j
            elif current.strip():
                if _indent_width(current) <= indent:
                    break
                last = j
            j += 1

        kind: UnitKind = "function" if m.group(2) == "def" else "class"
        blocks.append(_Block(start=offsets[first], end=offsets[last + 1], kind=kind))

    return blocks


# ---------------------------------------------------------------------------
# 花括号家族
# ---------------------------------------------------------------------------

_CONTROL_WORDS = frozenset({
    "if", "for", "while", "switch", "catch", "return", "else", "new", "throw",
    "case", "await", "yield", "typeof", "delete", "sizeof", "do", "try", "using",
    "lock", "foreach", "synchronized", "function",
})

_CLASS_HEADER = re.compile(
    r"\b(?:class|interface|struct|enum|trait|impl|object)[ \t]+[A-Za-z_$][\w$]*"
)
_FUNCTION_HEADERS = [
    # JavaScript / PHP: function name(
    re.compile(r"\bfunction[ \t]*\*?[ \t]+[A-Za-z_$][\w$]*[ \t]*\("),
    # JavaScript: const name = (...) => {
    re.compile(
        r"\b(?:const|let|var)[ \t]+[A-Za-z_$][\w$]*[ \t]*=[ \t]*(?:async[ \t]*)?"
        r"(?:\([^()\n]*\)|[A-Za-z_$][\w$]*)[ \t]*=>[ \t]*(?=\{)"
    ),
    # Go / Swift: func name(   Go 方法: func (r *T) name(
    re.compile(r"\bfunc[ \t]+(?:\([^)\n]*\)[ \t]*)?[A-Za-z_]\w*"),
    # Rust: fn name   Kotlin: fun name(   Scala: def name
    re.compile(r"\b(?:fn|fun|def)[ \t]+(?:<[^>\n]*>[ \t]*)?[A-Za-z_][\w.]*"),
]
# Java / C / C++ / C#: 修饰符和返回类型 + 方法名(
_TYPED_HEADER = re.compile(
    r"^[ \t]*((?:[\w<>\[\],.*&:]+[ \t]+)+)\**&?([A-Za-z_]\w*)[ \t]*\(", re.MULTILINE
)
# JavaScript 类方法简写: name(args) {
_METHOD_SHORTHAND = re.compile(
    r"^[ \t]*(?:(?:async|static|get|set)[ \t]+)*([A-Za-z_$][\w$]*)[ \t]*\([^;{}()\n]*\)[ \t]*(?=\{)",
    re.MULTILINE,
)
_SHORTHAND_LANGUAGES = frozenset({"javascript", "typescript", "vue", "unknown"})
_SINGLE_QUOTE_STRING_LANGUAGES = frozenset({"javascript", "typescript", "php", "vue", "unknown"})
_CHAR_LITERAL = re.compile(r"'(?:\\.|[^\\'\n])'")
_MAX_SIGNATURE_GAP = 400


def _header_matches(text: str, language: str) -> list[tuple[int, int, UnitKind]]:
    """所有定义头: (头起点, 头终点, 类型)."""
    headers: list[tuple[int, int, UnitKind]] = []

    for m in _CLASS_HEADER.finditer(text):
        headers.append((m.start(), m.end(), "class"))

    for pattern in _FUNCTION_HEADERS:
        for m in pattern.finditer(text):
            headers.append((m.start(), m.end(), "function"))

    for m in _TYPED_HEADER.finditer(text):
        first_token = m.group(1).split()[0]
        if m.group(2) in _CONTROL_WORDS or first_token in _CONTROL_WORDS:
            continue
        headers.append((m.start(), m.end(), "function"))

    if language in _SHORTHAND_LANGUAGES:
        for m in _METHOD_SHORTHAND.finditer(text):
            if m.group(1) in _CONTROL_WORDS:
                continue
            headers.append((m.start(), m.end(), "function"))

    return headers


def _find_open_brace(text: str, pos: int) -> int:
    """定义头之后的第一个 '{'；中途遇到 ';' 或 '}' 说明只是声明."""
    limit = min(len(text), pos + _MAX_SIGNATURE_GAP)
    for i in range(pos, limit):
        ch = text[i]
        if ch == "{":
            return i
        if ch in ";}":
            return -1
    return -1


def _match_brace(text: str, open_idx: int, language: str) -> int:
    """从 open_idx 处的 '{' 开始配对，跳过字符串和注释. 返回配对 '}' 的下标，失败返回 -1."""
    depth = 0
    i = open_idx
    n = len(text)
    single_quote_strings = language in _SINGLE_QUOTE_STRING_LANGUAGES

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
            continue
        if ch == "/" and nxt == "*":
            close = text.find("*/", i + 2)
            i = n if close < 0 else close + 2
            continue
        if ch in "\"`" or (ch == "'" and single_quote_strings):
            i = _skip_string(text, i, ch)
            continue
        if ch == "'":
            m = _CHAR_LITERAL.match(text, i)
            i = m.end() if m else i + 1
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1

    return -1


def _skip_string(text: str, start: int, quote: str) -> int:
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n" and quote != "`":
            # 未闭合的单行字符串，按行结束处理
            return i
        i += 1
    return n


def _scan_brace_blocks(text: str, language: str) -> list[_Block]:
    # 同一个 '{' 可能被多个模式命中，只保留最早的定义头
    by_brace: dict[int, tuple[int, UnitKind]] = {}
    for start, end, kind in _header_matches(text, language):
        open_idx = _find_open_brace(text, end)
        if open_idx < 0:
            continue
        if open_idx not in by_brace or start < by_brace[open_idx][0]:
            by_brace[open_idx] = (start, kind)

    blocks: list[_Block] = []
    for open_idx, (start, kind) in by_brace.items():
        close_idx = _match_brace(text, open_idx, language)
        if close_idx < 0:
            continue
        line_start = text.rfind("\n", 0, start) + 1
        blocks.append(_Block(start=line_start, end=close_idx + 1, kind=kind))

    blocks.sort(key=lambda b: (b.start, b.end))
    return blocks


# ---------------------------------------------------------------------------
# 兜底行块
# ---------------------------------------------------------------------------


def _significant_chunks(text: str) -> list[tuple[str, int]]:
    """有效行 (非空、非纯注释、足够长) 每 CHUNK_SIZE 行一块. 返回 (文本, 起始行号)."""
    significant: list[tuple[int, str]] = []
    for line_no, line in enumerate(text.splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith(_COMMENT_PREFIXES):
            continue
        if len(stripped) < MIN_LINE_LENGTH:
            continue
        significant.append((line_no, line.rstrip()))

    chunks: list[tuple[str, int]] = []
    for i in range(0, len(significant), CHUNK_SIZE):
        group = significant[i : i + CHUNK_SIZE]
        chunk = "\n".join(line for _, line in group)
        if len(chunk) > MIN_CHUNK_LENGTH:
            chunks.append((chunk, group[0][0]))

    return chunks
