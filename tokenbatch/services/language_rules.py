"""
Per-language rule tables.

Everything language specific lives here as data: estimation weights,
category extraction patterns, keyword sets, and the boundary rules the
chunker uses to find safe cut points. Adding a language means adding
table entries, not code paths.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional

from tokenbatch.models.chunk import BoundaryKind
from tokenbatch.models.token import Language


# ---------------------------------------------------------------------------
# Estimation weights (empirical, not derived from any real tokenizer)
# ---------------------------------------------------------------------------

WEIGHT_KEYS = ("token_ratio", "comment", "string", "keyword", "symbol", "identifier")

LANGUAGE_WEIGHTS: dict[Language, dict[str, float]] = {
    Language.JAVASCRIPT: {
        "token_ratio": 0.28, "comment": 0.2, "string": 0.35,
        "keyword": 1.2, "symbol": 0.15, "identifier": 0.3,
    },
    Language.TYPESCRIPT: {
        "token_ratio": 0.32, "comment": 0.2, "string": 0.35,
        "keyword": 1.3, "symbol": 0.18, "identifier": 0.35,
    },
    Language.PYTHON: {
        "token_ratio": 0.25, "comment": 0.18, "string": 0.3,
        "keyword": 1.1, "symbol": 0.12, "identifier": 0.28,
    },
    Language.JAVA: {
        "token_ratio": 0.35, "comment": 0.22, "string": 0.4,
        "keyword": 1.4, "symbol": 0.2, "identifier": 0.38,
    },
    Language.GO: {
        "token_ratio": 0.3, "comment": 0.2, "string": 0.32,
        "keyword": 1.25, "symbol": 0.15, "identifier": 0.32,
    },
    Language.RUST: {
        "token_ratio": 0.33, "comment": 0.25, "string": 0.38,
        "keyword": 1.5, "symbol": 0.22, "identifier": 0.35,
    },
    Language.CSHARP: {
        "token_ratio": 0.34, "comment": 0.22, "string": 0.4,
        "keyword": 1.35, "symbol": 0.18, "identifier": 0.36,
    },
    Language.JSON: {
        "token_ratio": 0.4, "comment": 0.0, "string": 0.5,
        "keyword": 0.8, "symbol": 0.25, "identifier": 0.45,
    },
    Language.MARKDOWN: {
        "token_ratio": 0.22, "comment": 0.15, "string": 0.25,
        "keyword": 0.9, "symbol": 0.1, "identifier": 0.2,
    },
    Language.YAML: {
        "token_ratio": 0.3, "comment": 0.15, "string": 0.35,
        "keyword": 1.0, "symbol": 0.2, "identifier": 0.25,
    },
    Language.DEFAULT: {
        "token_ratio": 0.28, "comment": 0.2, "string": 0.3,
        "keyword": 1.0, "symbol": 0.15, "identifier": 0.3,
    },
}

EXTENSION_LANGUAGES: dict[str, Language] = {
    ".js": Language.JAVASCRIPT,
    ".jsx": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".cjs": Language.JAVASCRIPT,
    ".ts": Language.TYPESCRIPT,
    ".tsx": Language.TYPESCRIPT,
    ".py": Language.PYTHON,
    ".pyw": Language.PYTHON,
    ".java": Language.JAVA,
    ".go": Language.GO,
    ".rs": Language.RUST,
    ".cs": Language.CSHARP,
    ".json": Language.JSON,
    ".md": Language.MARKDOWN,
    ".markdown": Language.MARKDOWN,
    ".yml": Language.YAML,
    ".yaml": Language.YAML,
}

LANGUAGE_ALIASES: dict[str, Language] = {
    "js": Language.JAVASCRIPT,
    "jsx": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "ts": Language.TYPESCRIPT,
    "tsx": Language.TYPESCRIPT,
    "py": Language.PYTHON,
    "python3": Language.PYTHON,
    "golang": Language.GO,
    "rs": Language.RUST,
    "c#": Language.CSHARP,
    "cs": Language.CSHARP,
    "dotnet": Language.CSHARP,
    "md": Language.MARKDOWN,
    "yml": Language.YAML,
}


def detect_language(path: str, hint: Optional[str] = None) -> Language:
    """Resolve a language from an explicit hint, then the path suffix."""
    if hint:
        key = hint.strip().lower()
        if key in LANGUAGE_ALIASES:
            return LANGUAGE_ALIASES[key]
        try:
            return Language(key)
        except ValueError:
            pass
    suffix = PurePosixPath(path.replace("\\", "/")).suffix.lower()
    return EXTENSION_LANGUAGES.get(suffix, Language.DEFAULT)


def is_modeled(language: Language) -> bool:
    return language is not Language.DEFAULT and language in LANGUAGE_WEIGHTS


# ---------------------------------------------------------------------------
# Category extraction patterns
# ---------------------------------------------------------------------------

_C_COMMENTS = (r"/\*[\s\S]*?\*/", r"//.*$")
_DOUBLE_QUOTED = r'"[^"\\]*(?:\\.[^"\\]*)*"'
_SINGLE_QUOTED = r"'[^'\\]*(?:\\.[^'\\]*)*'"
_BACKTICK = r"`[^`\\]*(?:\\.[^`\\]*)*`"


def _compile(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.MULTILINE) for p in patterns)


COMMENT_PATTERNS: dict[Language, tuple[re.Pattern, ...]] = {
    Language.JAVASCRIPT: _compile(*_C_COMMENTS),
    Language.TYPESCRIPT: _compile(*_C_COMMENTS),
    Language.PYTHON: _compile(r"#.*$", r"'''[\s\S]*?'''", r'"""[\s\S]*?"""'),
    Language.JAVA: _compile(*_C_COMMENTS),
    Language.GO: _compile(*_C_COMMENTS),
    Language.RUST: _compile(*_C_COMMENTS),
    Language.CSHARP: _compile(*_C_COMMENTS),
    Language.DEFAULT: _compile(*_C_COMMENTS, r"#.*$"),
}

STRING_PATTERNS: dict[Language, tuple[re.Pattern, ...]] = {
    Language.JAVASCRIPT: _compile(_DOUBLE_QUOTED, _SINGLE_QUOTED, _BACKTICK),
    Language.TYPESCRIPT: _compile(_DOUBLE_QUOTED, _SINGLE_QUOTED, _BACKTICK),
    Language.PYTHON: _compile(r'"""[\s\S]*?"""', r"'''[\s\S]*?'''", _DOUBLE_QUOTED, _SINGLE_QUOTED),
    Language.DEFAULT: _compile(_DOUBLE_QUOTED, _SINGLE_QUOTED),
}

KEYWORDS: dict[Language, tuple[str, ...]] = {
    Language.JAVASCRIPT: (
        "function", "const", "let", "var", "if", "else", "for", "while",
        "return", "class", "export", "import",
    ),
    Language.TYPESCRIPT: (
        "function", "const", "let", "var", "if", "else", "for", "while",
        "return", "class", "export", "import", "interface", "type",
    ),
    Language.PYTHON: (
        "def", "class", "if", "elif", "else", "for", "while", "import",
        "from", "return", "try", "except",
    ),
    Language.DEFAULT: ("function", "class", "if", "else", "for", "while", "return"),
}

KEYWORD_PATTERNS: dict[Language, tuple[tuple[str, re.Pattern], ...]] = {
    language: tuple((word, re.compile(rf"\b{word}\b")) for word in words)
    for language, words in KEYWORDS.items()
}

SYMBOL_PATTERN = re.compile(r"[{}()\[\]<>.,;:!@#$%^&*+=|\\/?-]")
IDENTIFIER_PATTERN = re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*")
WHITESPACE_PATTERN = re.compile(r"\s")
IDENTIFIER_STRIP_PATTERNS = _compile(*_C_COMMENTS, _DOUBLE_QUOTED, _SINGLE_QUOTED)


def lookup(table: dict, language: Language):
    return table.get(language, table[Language.DEFAULT])


# ---------------------------------------------------------------------------
# Boundary rules
# ---------------------------------------------------------------------------

BOUNDARY_PRIORITIES: dict[BoundaryKind, int] = {
    BoundaryKind.CLASS: 10,
    BoundaryKind.INTERFACE: 9,
    BoundaryKind.FUNCTION: 8,
    BoundaryKind.TYPE: 7,
    BoundaryKind.MODULE: 6,
    BoundaryKind.COMMENT: 5,
    BoundaryKind.OTHER: 3,
}

# Structural outline boundaries outrank anything a pattern guessed
OUTLINE_PRIORITY_BONUS = 10


@dataclass(frozen=True)
class BoundaryRules:
    """Data describing where a language may be cut."""
    block_style: str  # "braces" or "indent"
    max_depth: int
    safe: tuple[tuple[BoundaryKind, re.Pattern], ...]
    avoid: tuple[re.Pattern, ...]
    imports: tuple[re.Pattern, ...]
    leading: tuple[re.Pattern, ...] = field(default_factory=tuple)
    line_comment: str = "//"
    char_literals: bool = False  # single quotes delimit one character only


def _safe(*entries: tuple[BoundaryKind, str]) -> tuple[tuple[BoundaryKind, re.Pattern], ...]:
    return tuple((kind, re.compile(pattern)) for kind, pattern in entries)


_BRACE_AVOID = (
    r"\b(?:if|for|while|switch)\s*\(",
    r"\btry\s*\{",
    r"^\s*(?:else|catch|finally|do|case|default)\b",
    r"^\s*\}",
)
_C_LEADING = (r"^\s*//", r"^\s*/\*", r"^\s*\*")

BOUNDARY_RULES: dict[Language, BoundaryRules] = {
    Language.JAVASCRIPT: BoundaryRules(
        block_style="braces",
        max_depth=0,
        safe=_safe(
            (BoundaryKind.FUNCTION, r"^\s*(?:export\s+(?:default\s+)?)?(?:async\s+)?function\b"),
            (BoundaryKind.FUNCTION, r"^\s*(?:export\s+)?(?:const|let|var)\s+\w+\s*=\s*(?:async\s+)?(?:function\b|\(|\w+\s*=>)"),
            (BoundaryKind.CLASS, r"^\s*(?:export\s+(?:default\s+)?)?class\s+\w+"),
            (BoundaryKind.COMMENT, r"^\s*/\*"),
            (BoundaryKind.COMMENT, r"^\s*//\s*[=\-]{3,}"),
            (BoundaryKind.MODULE, r"^\s*import\b"),
            (BoundaryKind.MODULE, r"^\s*export\b"),
            (BoundaryKind.MODULE, r"^\s*module\.exports\b"),
        ),
        avoid=tuple(re.compile(p) for p in _BRACE_AVOID),
        imports=(
            re.compile(r"^\s*import\b"),
            re.compile(r"^\s*(?:const|let|var)\s+.*=\s*require\s*\("),
        ),
        leading=tuple(re.compile(p) for p in (*_C_LEADING, r"^\s*@\w")),
    ),
    Language.TYPESCRIPT: BoundaryRules(
        block_style="braces",
        max_depth=0,
        safe=_safe(
            (BoundaryKind.FUNCTION, r"^\s*(?:export\s+(?:default\s+)?)?(?:async\s+)?function\b"),
            (BoundaryKind.FUNCTION, r"^\s*(?:export\s+)?(?:const|let|var)\s+\w+\s*(?::[^=]+)?=\s*(?:async\s+)?(?:function\b|\(|\w+\s*=>)"),
            (BoundaryKind.CLASS, r"^\s*(?:export\s+(?:default\s+)?)?(?:abstract\s+)?class\s+\w+"),
            (BoundaryKind.INTERFACE, r"^\s*(?:export\s+)?interface\s+\w+"),
            (BoundaryKind.TYPE, r"^\s*(?:export\s+)?(?:type\s+\w+|enum\s+\w+|declare\s+)"),
            (BoundaryKind.COMMENT, r"^\s*/\*"),
            (BoundaryKind.COMMENT, r"^\s*//\s*[=\-]{3,}"),
            (BoundaryKind.MODULE, r"^\s*import\b"),
            (BoundaryKind.MODULE, r"^\s*export\b"),
        ),
        avoid=tuple(re.compile(p) for p in _BRACE_AVOID),
        imports=(
            re.compile(r"^\s*import\b"),
            re.compile(r"^\s*(?:const|let|var)\s+.*=\s*require\s*\("),
        ),
        leading=tuple(re.compile(p) for p in (*_C_LEADING, r"^\s*@\w")),
    ),
    Language.PYTHON: BoundaryRules(
        block_style="indent",
        max_depth=0,
        safe=_safe(
            (BoundaryKind.FUNCTION, r"^(?:async\s+)?def\s+\w+"),
            (BoundaryKind.CLASS, r"^class\s+\w+"),
            (BoundaryKind.COMMENT, r"^#\s*[=\-#]{3,}"),
            (BoundaryKind.COMMENT, r"^(?:[rRuUbB]{0,2})(?:\"\"\"|''')"),
            (BoundaryKind.MODULE, r"^from\s+\S+\s+import\b"),
            (BoundaryKind.MODULE, r"^import\s+"),
            (BoundaryKind.TYPE, r"^[A-Z_][A-Za-z0-9_]*\s*(?::[^=]+)?=\s*"),
        ),
        avoid=tuple(
            re.compile(p)
            for p in (r"^\s*(?:if|elif|else|for|while|try|except|finally|with|match|case)\b",)
        ),
        imports=(re.compile(r"^\s*(?:import|from)\s+"),),
        leading=(re.compile(r"^\s*#"), re.compile(r"^\s*@")),
        line_comment="#",
    ),
    Language.JAVA: BoundaryRules(
        block_style="braces",
        max_depth=1,
        safe=_safe(
            (BoundaryKind.CLASS, r"^\s*(?:(?:public|private|protected|static|final|abstract|sealed)\s+)*(?:class|enum|record)\s+\w+"),
            (BoundaryKind.INTERFACE, r"^\s*(?:(?:public|private|protected|static|sealed)\s+)*(?:interface|@interface)\s+\w+"),
            (BoundaryKind.FUNCTION, r"^\s*(?:(?:public|private|protected|static|final|abstract|synchronized|default)\s+)+[\w<>\[\],?]+\s+\w+\s*\("),
            (BoundaryKind.COMMENT, r"^\s*/\*\*"),
            (BoundaryKind.MODULE, r"^\s*import\s+"),
            (BoundaryKind.MODULE, r"^\s*package\s+"),
        ),
        avoid=tuple(re.compile(p) for p in _BRACE_AVOID),
        imports=(re.compile(r"^\s*(?:import|package)\s+"),),
        leading=tuple(re.compile(p) for p in (*_C_LEADING, r"^\s*@\w")),
    ),
    Language.GO: BoundaryRules(
        block_style="braces",
        max_depth=0,
        safe=_safe(
            (BoundaryKind.FUNCTION, r"^func\s"),
            (BoundaryKind.INTERFACE, r"^type\s+\w+\s+interface\b"),
            (BoundaryKind.CLASS, r"^type\s+\w+\s+struct\b"),
            (BoundaryKind.TYPE, r"^type\s+"),
            (BoundaryKind.OTHER, r"^(?:var|const)\s"),
            (BoundaryKind.COMMENT, r"^/\*"),
            (BoundaryKind.MODULE, r"^import\b"),
            (BoundaryKind.MODULE, r"^package\s"),
        ),
        avoid=tuple(re.compile(p) for p in _BRACE_AVOID),
        imports=(re.compile(r"^\s*(?:package|import)\b"),),
        leading=tuple(re.compile(p) for p in _C_LEADING),
    ),
    Language.RUST: BoundaryRules(
        block_style="braces",
        max_depth=0,
        safe=_safe(
            (BoundaryKind.FUNCTION, r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?(?:extern\s+\"[^\"]*\"\s+)?fn\s+\w+"),
            (BoundaryKind.CLASS, r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:struct|enum|union)\s+\w+"),
            (BoundaryKind.INTERFACE, r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:unsafe\s+)?trait\s+\w+"),
            (BoundaryKind.CLASS, r"^\s*(?:unsafe\s+)?impl\b"),
            (BoundaryKind.TYPE, r"^\s*(?:pub(?:\([^)]*\))?\s+)?type\s+\w+"),
            (BoundaryKind.MODULE, r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:mod|use)\s+"),
            (BoundaryKind.COMMENT, r"^\s*/\*"),
        ),
        avoid=tuple(re.compile(p) for p in (*_BRACE_AVOID, r"^\s*(?:if|match|loop)\b")),
        imports=(re.compile(r"^\s*(?:pub\s+)?(?:use|extern\s+crate)\s+"),),
        leading=tuple(re.compile(p) for p in (*_C_LEADING, r"^\s*#!?\[")),
        char_literals=True,
    ),
    Language.CSHARP: BoundaryRules(
        block_style="braces",
        max_depth=2,
        safe=_safe(
            (BoundaryKind.CLASS, r"^\s*(?:(?:public|private|protected|internal|static|sealed|abstract|partial)\s+)*(?:class|struct|record|enum)\s+\w+"),
            (BoundaryKind.INTERFACE, r"^\s*(?:(?:public|private|protected|internal|partial)\s+)*interface\s+\w+"),
            (BoundaryKind.FUNCTION, r"^\s*(?:(?:public|private|protected|internal|static|virtual|override|async|abstract|sealed)\s+)+[\w<>\[\],?]+\s+\w+\s*\("),
            (BoundaryKind.MODULE, r"^\s*namespace\s+"),
            (BoundaryKind.MODULE, r"^\s*using\s+[\w.]+\s*;"),
            (BoundaryKind.COMMENT, r"^\s*/\*"),
        ),
        avoid=tuple(re.compile(p) for p in (*_BRACE_AVOID, r"^\s*(?:foreach|using)\s*\(")),
        imports=(re.compile(r"^\s*using\s+[\w.=\s]+;"),),
        leading=tuple(re.compile(p) for p in (*_C_LEADING, r"^\s*\[\w")),
    ),
}


def boundary_rules_for(language: Language) -> Optional[BoundaryRules]:
    """Rules for a language, or ``None`` when only simple splitting applies."""
    return BOUNDARY_RULES.get(language)
