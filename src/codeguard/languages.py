"""文件扩展名 → 语言映射."""

from pathlib import PurePosixPath

LANGUAGE_MAP: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".cs": "csharp",
    ".php": "php",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".sql": "sql",
    ".sh": "bash",
    ".bat": "batch",
    ".ps1": "powershell",
    ".vue": "vue",
    ".json": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".txt": "text",
}

# 结构化抽取按语言家族分派
INDENT_LANGUAGES = frozenset({"python"})
BRACE_LANGUAGES = frozenset({
    "javascript", "typescript", "java", "c", "cpp", "csharp", "go", "rust",
    "php", "swift", "kotlin", "scala", "vue",
})


def detect_language(filename: str) -> str:
    """根据扩展名推断语言，未知返回 'unknown'."""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
    return LANGUAGE_MAP.get(suffix, "unknown")


def is_code_file(filename: str) -> bool:
    """是否为支持分析的源文件."""
    return detect_language(filename) != "unknown"
