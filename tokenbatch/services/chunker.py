"""
BoundaryChunker - Splits oversized files at syntactically safe lines.

Strategy:
- Find candidate cut lines from per-language patterns (function, class,
  interface, type, comment block, import/export starts) that sit at an
  allowed nesting depth and outside open blocks
- Merge in precise boundaries from an external structural outline
- Break over-target segments that are not a single function/class/type
  unit at top-level statement starts, slicing by line count as a last resort
- Pack the resulting segments greedily up to the target size
- Fall back to plain line slicing when no language rules apply
"""

import re
from dataclasses import dataclass
from typing import Optional

from tokenbatch.config import Settings, settings as default_settings
from tokenbatch.errors import ChunkPlanningError, ErrorCode, error_info
from tokenbatch.models.chunk import (
    BoundaryCandidate,
    BoundaryKind,
    Chunk,
    ChunkKind,
    ChunkPlan,
    ChunkStrategy,
    StructuralOutline,
)
from tokenbatch.models.token import Language
from tokenbatch.services import language_rules as rules
from tokenbatch.services.language_rules import BoundaryRules
from tokenbatch.services.token_estimator import TokenEstimator
from tokenbatch.utils.logger import get_logger

logger = get_logger(__name__)


# Nesting state for a line that starts inside a block comment or string
INSIDE_LITERAL = -1

_BRACE_TOKENS = re.compile(
    r'"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\'|`(?:[^`\\]|\\.)*`|//|/\*'
)
_CHAR_LITERAL_TOKENS = re.compile(r'"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)\'|//|/\*')
_PYTHON_TOKENS = re.compile(r'"""|\'\'\'|"(?:[^"\\]|\\.)*"|\'(?:[^\'\\]|\\.)*\'|#')

_OPENERS = "([{"
_CLOSERS = ")]}"

_STRUCTURAL_KINDS = {
    BoundaryKind.FUNCTION,
    BoundaryKind.CLASS,
    BoundaryKind.INTERFACE,
    BoundaryKind.TYPE,
    BoundaryKind.MODULE,
}

# Candidate kinds that open a single unit which must not be cut
_UNIT_KINDS = {
    BoundaryKind.FUNCTION,
    BoundaryKind.CLASS,
    BoundaryKind.INTERFACE,
    BoundaryKind.TYPE,
}

# Lines that continue the preceding statement even at top level
_CONTINUATION = re.compile(r"^\s*(?:else|elif|except|finally|catch|case|default)\b")


@dataclass
class _Segment:
    start: int  # 1-indexed, inclusive
    end: int
    tokens: int
    indivisible: bool = False


def _bracket_delta(text: str) -> int:
    return sum(text.count(c) for c in _OPENERS) - sum(text.count(c) for c in _CLOSERS)


class BoundaryChunker:
    """
    Plans chunks for files too large for one processing unit.

    Chunks never exceed the target size unless a single structural unit
    (or a single line) is itself larger; such chunks are flagged ``oversized``.
    """

    def __init__(
        self,
        estimator: Optional[TokenEstimator] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.estimator = estimator or TokenEstimator(self.settings)
        self.target_chunk_tokens = self.settings.target_chunk_tokens
        self.min_chunk_tokens = self.settings.min_chunk_tokens
        self.max_chunk_tokens = self.settings.max_chunk_tokens
        self.overlap_lines = self.settings.chunk_overlap_lines
        self.preserve_imports = self.settings.preserve_imports

    # ── Public API ────────────────────────────────────────────────

    def plan(
        self,
        path: str,
        content: Optional[str],
        outline: Optional[StructuralOutline] = None,
        target_chunk_tokens: Optional[int] = None,
        language_hint: Optional[str] = None,
    ) -> ChunkPlan:
        """
        Plan chunks for one file.

        Args:
            path: File path (used for language detection)
            content: Full file text
            outline: Optional precise function/class locations
            target_chunk_tokens: Per-call target, defaults to settings
            language_hint: Explicit language overriding the path suffix

        Returns:
            ChunkPlan whose ``strategy`` tells whether boundary guarantees hold
        """
        if content is None:
            return ChunkPlan(
                path=path,
                success=False,
                error=error_info(ErrorCode.CHUNK_PLANNING_ERROR, "Content unavailable", path=path),
            )

        warnings: list[str] = []
        target = self._resolve_target(target_chunk_tokens, warnings)
        hint = (outline.language if outline and outline.language else None) or language_hint
        language = rules.detect_language(path, hint)
        lines = content.split("\n")
        total_tokens = self.estimator.estimate_text(content, language)

        boundary_rules = rules.boundary_rules_for(language)
        if boundary_rules is None:
            return self._simple_split(path, lines, language, target, total_tokens, warnings)

        try:
            plan = self._boundary_plan(
                path, lines, language, boundary_rules, outline, target, total_tokens, warnings
            )
        except ChunkPlanningError as e:
            logger.warning("chunk_outline_rejected", path=path, error=e.message)
            warnings.append(f"Structural outline rejected: {e.message}")
            return self._simple_split(path, lines, language, target, total_tokens, warnings)
        except Exception as e:
            logger.warning("chunk_plan_failed", path=path, error=str(e))
            warnings.append(f"Boundary detection failed: {e}")
            return self._simple_split(path, lines, language, target, total_tokens, warnings)

        logger.info(
            "chunk_plan_complete",
            path=path,
            strategy=plan.strategy.value,
            chunks=plan.total_chunks,
            candidates=plan.candidate_count,
            avg_tokens=plan.avg_chunk_tokens,
        )
        return plan

    def find_candidates(self, lines: list[str], boundary_rules: BoundaryRules) -> list[BoundaryCandidate]:
        """Pattern-matched cut lines, each moved up over its leading comments."""
        states, codes = self._nesting_states(lines, boundary_rules)
        candidates: list[BoundaryCandidate] = []
        previous_code = ""

        for index, line in enumerate(lines):
            opens_after = previous_code.endswith("{")
            code = codes[index].strip()
            if code:
                previous_code = code
            if not line.strip():
                continue
            state = states[index]
            if state == INSIDE_LITERAL or state > boundary_rules.max_depth:
                continue
            if boundary_rules.block_style == "braces" and opens_after:
                continue

            kind = next((k for k, pattern in boundary_rules.safe if pattern.search(line)), None)
            if kind is None:
                continue
            if any(pattern.search(line) for pattern in boundary_rules.avoid):
                continue

            indent = len(line) - len(line.lstrip())
            cut = self._attach_leading(lines, states, index, indent, boundary_rules)
            candidates.append(
                BoundaryCandidate(
                    line_number=cut + 1,
                    kind=kind,
                    indent_level=indent,
                    priority=rules.BOUNDARY_PRIORITIES[kind],
                )
            )
        return candidates

    # ── Boundary-aware planning ───────────────────────────────────

    def _boundary_plan(
        self,
        path: str,
        lines: list[str],
        language: Language,
        boundary_rules: BoundaryRules,
        outline: Optional[StructuralOutline],
        target: int,
        total_tokens: int,
        warnings: list[str],
    ) -> ChunkPlan:
        outline_candidates, protected = self._outline_candidates(outline, lines, boundary_rules)
        candidates = self._merge_candidates(self.find_candidates(lines, boundary_rules), outline_candidates, protected)

        imports = self._extract_imports(lines, boundary_rules) if self.preserve_imports else []
        if imports:
            import_tokens = self.estimator.estimate_text("\n".join(imports), language)
            if import_tokens > target // 2:
                warnings.append("Leading imports exceed half the target size; not duplicated into chunks")
                imports = []

        plan = ChunkPlan(
            path=path,
            language=language.value,
            strategy=ChunkStrategy.BOUNDARY_AWARE,
            imports=imports,
            total_lines=len(lines),
            total_tokens=total_tokens,
            candidate_count=len(candidates),
            warnings=warnings,
        )

        if total_tokens <= target:
            plan.chunks = [self._build_chunk(1, lines, 1, len(lines), language, [], 0, candidates, last=True)]
            return plan

        segments = self._segments(lines, candidates, language)
        segments = self._split_divisible(lines, segments, boundary_rules, language, target, plan.warnings)
        plan.chunks = self._pack(lines, segments, language, imports, candidates, target)
        return plan

    def _outline_candidates(
        self,
        outline: Optional[StructuralOutline],
        lines: list[str],
        boundary_rules: BoundaryRules,
    ) -> tuple[list[BoundaryCandidate], list[tuple[int, int]]]:
        """Validate outline symbols; return top-level boundaries and their spans."""
        if outline is None or not outline.symbols:
            return [], []

        total = len(lines)
        for symbol in outline.symbols:
            if symbol.start_line < 1 or symbol.start_line > total:
                raise ChunkPlanningError(
                    f"Symbol {symbol.name!r} starts outside the file (line {symbol.start_line} of {total})",
                    symbol=symbol.name,
                )
            if symbol.end_line is not None and not symbol.start_line <= symbol.end_line <= total:
                raise ChunkPlanningError(
                    f"Symbol {symbol.name!r} has an invalid end line {symbol.end_line}",
                    symbol=symbol.name,
                )

        spans = sorted(
            (
                (s.start_line, s.end_line if s.end_line is not None else s.start_line, s)
                for s in outline.symbols
            ),
            key=lambda span: (span[0], -span[1]),
        )
        top_level = []
        for start, end, symbol in spans:
            if any(o_start < start <= o_end for o_start, o_end, _ in top_level):
                continue  # nested inside another symbol
            top_level.append((start, end, symbol))

        candidates = []
        for start, _, symbol in top_level:
            line = lines[start - 1]
            cut = start
            while cut > 1 and lines[cut - 2].strip() and any(
                pattern.search(lines[cut - 2]) for pattern in boundary_rules.leading
            ):
                cut -= 1
            candidates.append(
                BoundaryCandidate(
                    line_number=cut,
                    kind=symbol.kind,
                    indent_level=len(line) - len(line.lstrip()),
                    priority=rules.BOUNDARY_PRIORITIES[symbol.kind] + rules.OUTLINE_PRIORITY_BONUS,
                    source="outline",
                )
            )
        return candidates, [(start, end) for start, end, _ in top_level if end > start]

    @staticmethod
    def _merge_candidates(
        pattern_candidates: list[BoundaryCandidate],
        outline_candidates: list[BoundaryCandidate],
        protected: list[tuple[int, int]],
    ) -> list[BoundaryCandidate]:
        """One candidate per line, highest priority wins, sorted by line."""
        by_line: dict[int, BoundaryCandidate] = {}
        for candidate in [*pattern_candidates, *outline_candidates]:
            # cutting inside a known unit would split it
            if any(start < candidate.line_number <= end for start, end in protected):
                continue
            current = by_line.get(candidate.line_number)
            if current is None or candidate.priority > current.priority:
                by_line[candidate.line_number] = candidate
        return [by_line[line] for line in sorted(by_line)]

    def _segments(
        self, lines: list[str], candidates: list[BoundaryCandidate], language: Language
    ) -> list[_Segment]:
        units = {c.line_number for c in candidates if c.source == "outline" or c.kind in _UNIT_KINDS}
        starts = sorted({1, *(c.line_number for c in candidates if 1 < c.line_number <= len(lines))})
        segments = []
        for position, start in enumerate(starts):
            end = starts[position + 1] - 1 if position + 1 < len(starts) else len(lines)
            segments.append(self._segment(lines, start, end, language, indivisible=start in units))
        return segments

    def _segment(
        self, lines: list[str], start: int, end: int, language: Language, indivisible: bool = False
    ) -> _Segment:
        text = "\n".join(lines[start - 1 : end])
        if end < len(lines):
            text += "\n"
        return _Segment(
            start=start,
            end=end,
            tokens=self.estimator.estimate_text(text, language),
            indivisible=indivisible,
        )

    def _split_divisible(
        self,
        lines: list[str],
        segments: list[_Segment],
        boundary_rules: BoundaryRules,
        language: Language,
        target: int,
        warnings: list[str],
    ) -> list[_Segment]:
        """
        Break over-target segments at top-level statement starts.

        A segment opened by a function, class, interface, type or outline
        symbol keeps that unit whole; whatever follows the unit, and any
        segment with no such opener, is cut between statements. A statement
        run that still exceeds the target is sliced by line count.
        """
        if all(s.tokens <= target for s in segments):
            return segments

        states, codes = self._nesting_states(lines, boundary_rules)
        result: list[_Segment] = []
        for segment in segments:
            if segment.tokens <= target:
                result.append(segment)
                continue

            starts = [segment.start] + self._statement_starts(
                lines, states, codes, boundary_rules, segment.start, segment.end
            )
            for position, start in enumerate(starts):
                end = starts[position + 1] - 1 if position + 1 < len(starts) else segment.end
                piece = self._segment(
                    lines, start, end, language, indivisible=segment.indivisible and position == 0
                )
                if piece.tokens <= target or piece.indivisible:
                    result.append(piece)
                    continue
                logger.info(
                    "chunk_segment_line_split",
                    start_line=start,
                    end_line=end,
                    tokens=piece.tokens,
                    target=target,
                )
                warnings.append(f"Lines {start}-{end} have no statement boundary; split by line count")
                result.extend(self._line_slices(lines, piece, language, target))
        return result

    def _statement_starts(
        self,
        lines: list[str],
        states: list[int],
        codes: list[str],
        boundary_rules: BoundaryRules,
        start: int,
        end: int,
    ) -> list[int]:
        """Lines after ``start`` up to ``end`` where a new top-level statement begins."""
        starts: list[int] = []
        previous = ""
        for number in range(start, end + 1):
            index = number - 1
            code = codes[index].strip()
            if (
                number > start
                and code
                and states[index] == 0
                and self._ends_statement(previous, boundary_rules)
                and not _CONTINUATION.match(lines[index])
            ):
                cut = self._attach_leading(lines, states, index, 0, boundary_rules) + 1
                if cut > (starts[-1] if starts else start):
                    starts.append(cut)
            if code:
                previous = code
        return starts

    @staticmethod
    def _ends_statement(code: str, boundary_rules: BoundaryRules) -> bool:
        if not code:
            return True
        if boundary_rules.block_style == "indent":
            return not code.endswith("\\") and not code.startswith("@")
        return code.endswith((";", "}"))

    def _line_slices(self, lines: list[str], piece: _Segment, language: Language, target: int) -> list[_Segment]:
        """Fixed line-count slices of one segment, halved until each fits or is one line."""
        count = piece.end - piece.start + 1
        per_slice = max(1, int(target // (piece.tokens / count)))
        while True:
            slices = [
                self._segment(lines, start, min(start + per_slice - 1, piece.end), language)
                for start in range(piece.start, piece.end + 1, per_slice)
            ]
            if per_slice == 1 or all(s.tokens <= target for s in slices):
                return slices
            per_slice = max(1, per_slice // 2)

    def _pack(
        self,
        lines: list[str],
        segments: list[_Segment],
        language: Language,
        imports: list[str],
        candidates: list[BoundaryCandidate],
        target: int,
    ) -> list[Chunk]:
        """Greedy packing: close a chunk before the next segment would overflow it."""
        chunks: list[Chunk] = []
        import_tokens = self.estimator.estimate_text("\n".join(imports) + "\n\n", language) if imports else 0
        position = 0

        while position < len(segments):
            index = len(chunks) + 1
            first = segments[position]
            context = imports if index > 1 else []
            overlap = 0
            if chunks:
                overlap = max(0, min(self.overlap_lines, first.start - chunks[-1].start_line - 1))
            overlap_tokens = 0
            if overlap:
                overlap_text = "\n".join(lines[first.start - 1 - overlap : first.start - 1]) + "\n"
                overlap_tokens = self.estimator.estimate_text(overlap_text, language)

            budget = (import_tokens if context else 0) + overlap_tokens + first.tokens
            stop = position + 1
            while stop < len(segments) and budget + segments[stop].tokens <= target:
                budget += segments[stop].tokens
                stop += 1

            is_last = stop == len(segments)
            chunk = self._build_chunk(
                index, lines, first.start - overlap, segments[stop - 1].end,
                language, context, overlap, candidates, last=is_last,
            )
            # the summed estimate is only an approximation of the whole
            while chunk.estimated_tokens > target and stop - 1 > position:
                stop -= 1
                is_last = False
                chunk = self._build_chunk(
                    index, lines, first.start - overlap, segments[stop - 1].end,
                    language, context, overlap, candidates, last=is_last,
                )
            if chunk.estimated_tokens > target and stop - 1 == position:
                chunk = self._fit_single_segment(
                    index, lines, first, language, context, overlap, candidates, target, is_last
                )

            chunks.append(chunk)
            position = stop

        return chunks

    def _fit_single_segment(
        self,
        index: int,
        lines: list[str],
        segment: _Segment,
        language: Language,
        context: list[str],
        overlap: int,
        candidates: list[BoundaryCandidate],
        target: int,
        last: bool,
    ) -> Chunk:
        """Shed overlap, then context, before declaring a segment oversized."""
        attempts = [(context, 0), ([], 0)] if overlap or context else []
        chunk = None
        for attempt_context, attempt_overlap in attempts:
            chunk = self._build_chunk(
                index, lines, segment.start - attempt_overlap, segment.end,
                language, attempt_context, attempt_overlap, candidates, last=last,
            )
            if chunk.estimated_tokens <= target:
                return chunk
        if chunk is None:
            chunk = self._build_chunk(
                index, lines, segment.start - overlap, segment.end,
                language, context, overlap, candidates, last=last,
            )
        chunk.oversized = True
        logger.info(
            "chunk_oversized_unit",
            start_line=segment.start,
            end_line=segment.end,
            tokens=chunk.estimated_tokens,
            target=target,
        )
        return chunk

    def _build_chunk(
        self,
        index: int,
        lines: list[str],
        start: int,
        end: int,
        language: Language,
        context: list[str],
        overlap: int,
        candidates: list[BoundaryCandidate],
        last: bool,
    ) -> Chunk:
        own_start = start + overlap
        inside = [c for c in candidates if own_start <= c.line_number <= end]
        chunk = Chunk(
            index=index,
            start_line=start,
            end_line=end,
            content="\n".join(lines[start - 1 : end]),
            included_context_lines=list(context),
            overlap_lines=overlap,
            kind=self._chunk_kind(inside, index, last),
            boundaries=inside,
        )
        chunk.estimated_tokens = self.estimator.estimate_text(chunk.render(), language)
        return chunk

    @staticmethod
    def _chunk_kind(boundaries: list[BoundaryCandidate], index: int, last: bool) -> ChunkKind:
        kinds = {b.kind for b in boundaries}
        if kinds & {BoundaryKind.CLASS, BoundaryKind.INTERFACE}:
            return ChunkKind.CLASS_FOCUSED
        if BoundaryKind.FUNCTION in kinds:
            return ChunkKind.FUNCTION_FOCUSED
        if kinds & {BoundaryKind.MODULE, BoundaryKind.TYPE}:
            return ChunkKind.MODULE_FOCUSED
        if last and index > 1 and not kinds & _STRUCTURAL_KINDS:
            return ChunkKind.REMAINDER
        return ChunkKind.MIXED

    # ── Simple split fallback ─────────────────────────────────────

    def _simple_split(
        self,
        path: str,
        lines: list[str],
        language: Language,
        target: int,
        total_tokens: int,
        warnings: list[str],
    ) -> ChunkPlan:
        """Fixed line-count slicing sized from the average tokens per line."""
        plan = ChunkPlan(
            path=path,
            language=language.value,
            strategy=ChunkStrategy.SIMPLE_SPLIT,
            total_lines=len(lines),
            total_tokens=total_tokens,
            warnings=warnings,
        )
        total_lines = len(lines)
        if total_tokens <= target:
            per_chunk = total_lines
        else:
            per_line = total_tokens / total_lines
            per_chunk = max(1, int(target // per_line))

        while True:
            slices = self._slice(lines, per_chunk, language)
            if all(c.estimated_tokens <= target for c in slices) or per_chunk == 1:
                break
            per_chunk = max(1, per_chunk // 2)

        if len(slices) > 1 and slices[-1].estimated_tokens < self.min_chunk_tokens:
            tail = slices.pop()
            merged = self._fallback_chunk(lines, slices[-1].index, slices[-1].start_line, tail.end_line, language)
            if merged.estimated_tokens <= target:
                slices[-1] = merged
            else:
                slices.append(tail)

        for chunk in slices:
            chunk.oversized = chunk.estimated_tokens > target

        plan.chunks = slices
        logger.info(
            "chunk_plan_complete",
            path=path,
            strategy=plan.strategy.value,
            chunks=plan.total_chunks,
            lines_per_chunk=per_chunk,
        )
        return plan

    def _slice(self, lines: list[str], per_chunk: int, language: Language) -> list[Chunk]:
        return [
            self._fallback_chunk(lines, position + 1, start, min(start + per_chunk - 1, len(lines)), language)
            for position, start in enumerate(range(1, len(lines) + 1, per_chunk))
        ]

    def _fallback_chunk(self, lines: list[str], index: int, start: int, end: int, language: Language) -> Chunk:
        content = "\n".join(lines[start - 1 : end])
        return Chunk(
            index=index,
            start_line=start,
            end_line=end,
            content=content,
            estimated_tokens=self.estimator.estimate_text(content, language),
            kind=ChunkKind.FALLBACK,
        )

    # ── Line scanning ─────────────────────────────────────────────

    def _nesting_states(self, lines: list[str], boundary_rules: BoundaryRules) -> tuple[list[int], list[str]]:
        """Nesting depth at the start of each line, and each line's code with strings and comments removed."""
        if boundary_rules.block_style == "indent":
            return self._indent_states(lines)
        return self._brace_states(lines, boundary_rules)

    @staticmethod
    def _brace_states(lines: list[str], boundary_rules: BoundaryRules) -> tuple[list[int], list[str]]:
        tokens = _CHAR_LITERAL_TOKENS if boundary_rules.char_literals else _BRACE_TOKENS
        states: list[int] = []
        codes: list[str] = []
        depth = 0
        in_comment = False

        for line in lines:
            states.append(INSIDE_LITERAL if in_comment else depth)
            text = line
            if in_comment:
                close = text.find("*/")
                if close == -1:
                    codes.append("")
                    continue
                text = text[close + 2 :]
                in_comment = False

            code_parts = []
            position = 0
            while position < len(text):
                match = tokens.search(text, position)
                if match is None:
                    code_parts.append(text[position:])
                    break
                code_parts.append(text[position : match.start()])
                token = match.group(0)
                if token == "//":
                    break
                if token == "/*":
                    close = text.find("*/", match.end())
                    if close == -1:
                        in_comment = True
                        break
                    position = close + 2
                    continue
                position = match.end()
            code = "".join(code_parts)
            codes.append(code)
            depth = max(0, depth + _bracket_delta(code))

        return states, codes

    @staticmethod
    def _indent_states(lines: list[str]) -> tuple[list[int], list[str]]:
        states: list[int] = []
        codes: list[str] = []
        depth = 0
        triple: Optional[str] = None

        for line in lines:
            if triple is not None or depth > 0:
                states.append(INSIDE_LITERAL if triple is not None else depth)
            else:
                indent = len(line) - len(line.lstrip())
                states.append(1 if indent > 0 else 0)

            code_parts = []
            position = 0
            while position < len(line):
                if triple is not None:
                    close = line.find(triple, position)
                    if close == -1:
                        position = len(line)
                        break
                    position = close + 3
                    triple = None
                    continue
                match = _PYTHON_TOKENS.search(line, position)
                if match is None:
                    code_parts.append(line[position:])
                    break
                code_parts.append(line[position : match.start()])
                token = match.group(0)
                if token == "#":
                    break
                if token in ('"""', "'''"):
                    triple = token
                position = match.end()
            code = "".join(code_parts)
            codes.append(code)
            depth = max(0, depth + _bracket_delta(code))

        return states, codes

    @staticmethod
    def _attach_leading(
        lines: list[str],
        states: list[int],
        index: int,
        indent: int,
        boundary_rules: BoundaryRules,
    ) -> int:
        """Move a cut up over directly preceding comments and decorators."""
        cut = index
        above = index - 1
        while above >= 0:
            line = lines[above]
            if not line.strip():
                break
            if len(line) - len(line.lstrip()) > indent:
                break
            if states[above] != INSIDE_LITERAL and states[above] > boundary_rules.max_depth:
                break
            if not any(pattern.search(line) for pattern in boundary_rules.leading):
                break
            cut = above
            above -= 1
        return cut

    def _extract_imports(self, lines: list[str], boundary_rules: BoundaryRules) -> list[str]:
        """Leading import/require lines, including multi-line import blocks."""
        imports: list[str] = []
        open_brackets = 0
        docstring: Optional[str] = None

        for line in lines:
            stripped = line.strip()
            if docstring is not None:
                if docstring in stripped:
                    docstring = None
                continue
            if open_brackets > 0:
                imports.append(line)
                open_brackets = max(0, open_brackets + _bracket_delta(line))
                continue
            if not stripped:
                continue
            if any(pattern.search(line) for pattern in boundary_rules.imports):
                imports.append(line)
                open_brackets = max(0, _bracket_delta(line))
                continue
            if boundary_rules.block_style == "indent" and not imports and stripped[:3] in ('"""', "'''"):
                quote = stripped[:3]
                if stripped.count(quote) < 2:
                    docstring = quote
                continue
            if stripped.startswith(boundary_rules.line_comment) or stripped.startswith(("/*", "*")):
                continue
            break

        return imports

    # ── Helpers ───────────────────────────────────────────────────

    def _resolve_target(self, requested: Optional[int], warnings: list[str]) -> int:
        target = requested if requested is not None else self.target_chunk_tokens
        if target < 1:
            warnings.append(f"Invalid target {target}; using {self.target_chunk_tokens}")
            target = self.target_chunk_tokens
        if target > self.max_chunk_tokens:
            warnings.append(f"Target {target} capped at max_chunk_tokens {self.max_chunk_tokens}")
            target = self.max_chunk_tokens
        return target
