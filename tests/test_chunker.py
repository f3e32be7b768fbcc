import pytest

from tokenbatch.config import Settings
from tokenbatch.errors import ErrorCode
from tokenbatch.models.chunk import (
    BoundaryKind,
    ChunkKind,
    ChunkStrategy,
    OutlineSymbol,
    StructuralOutline,
)
from tokenbatch.models.token import Language
from tokenbatch.services.chunker import BoundaryChunker
from tokenbatch.services.language_rules import boundary_rules_for


def _js_module(count: int) -> str:
    """Two require lines, then ``count`` small functions each under a comment."""
    parts = ["const fs = require('fs');", "const path = require('path');", ""]
    for i in range(count):
        parts += [
            f"// helper number {i}",
            f"function helper{i}(a, b) {{",
            f"  const value = a + b * {i};",
            "  return path.join(String(value), fs.constants ? 'x' : 'y');",
            "}",
            "",
        ]
    return "\n".join(parts)


@pytest.fixture
def small_target():
    return Settings(target_chunk_tokens=300, min_chunk_tokens=100)


def test_chunks_stay_within_target_and_reconstruct_source(small_target):
    source = _js_module(40)
    plan = BoundaryChunker(config=small_target).plan("src/helpers.js", source)

    assert plan.success
    assert plan.strategy is ChunkStrategy.BOUNDARY_AWARE
    assert plan.total_chunks > 1
    assert all(c.estimated_tokens <= 300 for c in plan.chunks)
    assert not any(c.oversized for c in plan.chunks)
    assert plan.reconstruct() == source

    imports = ["const fs = require('fs');", "const path = require('path');"]
    assert plan.chunks[0].included_context_lines == []
    for chunk in plan.chunks[1:]:
        assert chunk.included_context_lines == imports
        own_lines = chunk.content.split("\n")[chunk.overlap_lines:]
        assert own_lines[0].startswith("// helper number")


def test_chunk_indices_are_consecutive_and_lines_contiguous(small_target):
    plan = BoundaryChunker(config=small_target).plan("src/helpers.js", _js_module(40))

    assert [c.index for c in plan.chunks] == list(range(1, plan.total_chunks + 1))
    for previous, current in zip(plan.chunks, plan.chunks[1:]):
        assert current.start_line + current.overlap_lines == previous.end_line + 1


def test_single_unit_larger_than_target_is_flagged_oversized(small_target):
    body = [f"  const v{i} = {i};" for i in range(200)]
    source = "\n".join(
        ["function giant() {", *body, "  return v0;", "}", "", "function small() {", "  return 1;", "}", ""]
    )
    plan = BoundaryChunker(config=small_target).plan("src/giant.js", source)

    first, *rest = plan.chunks
    assert first.start_line == 1
    assert first.end_line >= 203
    assert first.oversized
    assert first.estimated_tokens > 300
    assert rest and not any(c.oversized for c in rest)
    assert plan.reconstruct() == source


def test_long_statement_run_is_split_between_statements(small_target):
    source = "\n".join(f'app.get("/route/{i}", handlers.route{i});' for i in range(2000))
    plan = BoundaryChunker(config=small_target).plan("src/routes.js", source)

    assert plan.strategy is ChunkStrategy.BOUNDARY_AWARE
    assert plan.total_chunks > 1
    assert not any(c.oversized for c in plan.chunks)
    assert all(c.estimated_tokens <= 300 for c in plan.chunks)
    for chunk in plan.chunks:
        own_lines = chunk.content.split("\n")[chunk.overlap_lines:]
        assert own_lines[0].startswith("app.get(")
    assert plan.reconstruct() == source


def test_statements_after_a_function_are_not_bound_to_it(small_target):
    registrations = [f"register('plugin-{i}', {{ enabled: true, order: {i} }});" for i in range(300)]
    source = "\n".join(["function main() {", "  return 1;", "}", "", *registrations])
    plan = BoundaryChunker(config=small_target).plan("src/plugins.js", source)

    assert plan.total_chunks > 1
    assert not any(c.oversized for c in plan.chunks)
    assert all(c.estimated_tokens <= 300 for c in plan.chunks)
    assert plan.chunks[0].start_line == 1
    assert plan.reconstruct() == source


def test_statement_without_inner_boundaries_is_sliced_by_lines(small_target):
    rows = [f"  {{ id: {i}, label: 'row {i}', weight: {i * 3} }}," for i in range(400)]
    source = "\n".join(["const table = [", *rows, "];", "module.exports = table;"])
    plan = BoundaryChunker(config=small_target).plan("src/table.js", source)

    assert plan.strategy is ChunkStrategy.BOUNDARY_AWARE
    assert plan.total_chunks > 1
    assert not any(c.oversized for c in plan.chunks)
    assert any("split by line count" in w for w in plan.warnings)
    assert plan.reconstruct() == source


def test_python_top_level_statements_are_split(small_target):
    source = "\n".join(f"route_{i} = register('/items/{i}', handler_{i}, methods=['GET'])" for i in range(600))
    plan = BoundaryChunker(config=small_target).plan("app/routes.py", source)

    assert plan.strategy is ChunkStrategy.BOUNDARY_AWARE
    assert plan.total_chunks > 1
    assert not any(c.oversized for c in plan.chunks)
    assert plan.reconstruct() == source


def test_unsupported_language_uses_simple_split(small_target):
    source = "\n".join(f"Paragraph line {i} with a handful of ordinary words." for i in range(200))
    plan = BoundaryChunker(config=small_target).plan("docs/README.md", source)

    assert plan.success
    assert plan.strategy is ChunkStrategy.SIMPLE_SPLIT
    assert plan.total_chunks > 1
    assert all(c.kind is ChunkKind.FALLBACK for c in plan.chunks)
    assert all(c.estimated_tokens <= 300 for c in plan.chunks)
    assert plan.reconstruct() == source


def test_malformed_outline_falls_back_with_warning(small_target):
    outline = StructuralOutline(symbols=[OutlineSymbol(name="ghost", start_line=999)])
    source = _js_module(40)
    plan = BoundaryChunker(config=small_target).plan("src/helpers.js", source, outline=outline)

    assert plan.success
    assert plan.strategy is ChunkStrategy.SIMPLE_SPLIT
    assert any("outline" in w.lower() for w in plan.warnings)
    assert plan.reconstruct() == source


def test_outline_boundaries_take_precedence(small_target):
    # helper 3 spans lines 23-26, its comment sits on line 22
    outline = StructuralOutline(
        symbols=[OutlineSymbol(name="helper3", kind=BoundaryKind.FUNCTION, start_line=23, end_line=26)]
    )
    plan = BoundaryChunker(config=small_target).plan("src/helpers.js", _js_module(40), outline=outline)

    boundaries = {b.line_number: b for c in plan.chunks for b in c.boundaries}
    assert boundaries[22].source == "outline"
    assert boundaries[16].source == "pattern"


def test_missing_content_is_a_planning_error():
    plan = BoundaryChunker(config=Settings()).plan("src/gone.js", None)

    assert not plan.success
    assert plan.error.code is ErrorCode.CHUNK_PLANNING_ERROR
    assert plan.chunks == []


def test_target_above_maximum_is_capped():
    plan = BoundaryChunker(config=Settings()).plan("src/tiny.js", "const a = 1;\n", target_chunk_tokens=50_000)

    assert any("capped" in w for w in plan.warnings)
    assert plan.total_chunks == 1


def test_python_candidates_skip_nested_and_bracketed_lines():
    lines = [
        "import os",
        "",
        "",
        "def load(path):",
        "    if path:",
        "        return os.path.join(",
        "            path,",
        '            "x",',
        "        )",
        "    return None",
        "",
        "class Loader:",
        "    def run(self):",
        "        pass",
    ]
    chunker = BoundaryChunker(config=Settings())
    candidates = chunker.find_candidates(lines, boundary_rules_for(Language.PYTHON))

    assert [(c.line_number, c.kind) for c in candidates] == [
        (1, BoundaryKind.MODULE),
        (4, BoundaryKind.FUNCTION),
        (12, BoundaryKind.CLASS),
    ]


def test_python_candidates_ignore_code_inside_triple_quotes():
    lines = ['x = """', "def fake():", '"""', "def real():", "    pass"]
    chunker = BoundaryChunker(config=Settings())
    candidates = chunker.find_candidates(lines, boundary_rules_for(Language.PYTHON))

    assert [c.line_number for c in candidates] == [4]


def test_python_decorators_move_cut_upwards():
    lines = ["x = 1", "", "# the loader", "@cached", "def load():", "    pass"]
    chunker = BoundaryChunker(config=Settings())
    candidates = chunker.find_candidates(lines, boundary_rules_for(Language.PYTHON))

    assert [c.line_number for c in candidates] == [3]


def test_javascript_candidates_ignore_braces_in_strings_and_comments():
    lines = [
        'import fs from "fs";',
        "",
        "function a() {",
        "  if (fs) {",
        "    return 1;",
        "  }",
        "}",
        "",
        "const b = () => {",
        '  return "}"; // }',
        "};",
        "",
        "class C {",
        "  method() {",
        "    return `{`;",
        "  }",
        "}",
    ]
    chunker = BoundaryChunker(config=Settings())
    candidates = chunker.find_candidates(lines, boundary_rules_for(Language.JAVASCRIPT))

    assert [(c.line_number, c.kind) for c in candidates] == [
        (1, BoundaryKind.MODULE),
        (3, BoundaryKind.FUNCTION),
        (9, BoundaryKind.FUNCTION),
        (13, BoundaryKind.CLASS),
    ]


def test_trailing_brace_in_comment_does_not_block_next_boundary():
    lines = ["const x = 1; // {", "function f() {", "}"]
    chunker = BoundaryChunker(config=Settings())
    candidates = chunker.find_candidates(lines, boundary_rules_for(Language.JAVASCRIPT))

    assert [c.line_number for c in candidates] == [2]
