"""
BatchGrouper - Groups estimated files into batches for task building.

Routing per file, in input order:
- estimation/read failure      -> error_recovery group
- above target_chunk_tokens    -> one large_file_chunk group per chunk
- below small_file_tokens      -> combined with same-directory neighbours
- everything else              -> single_file group
"""

import asyncio
import posixpath
from typing import Callable, Mapping, Optional, Sequence

from tokenbatch.config import Settings, settings as default_settings
from tokenbatch.errors import AccessError, ErrorInfo
from tokenbatch.models.chunk import StructuralOutline
from tokenbatch.models.task import BatchFile, BatchGroup, BatchKind, BatchPlan, ChunkMeta
from tokenbatch.models.token import FileInput, TokenEstimate
from tokenbatch.services.chunker import BoundaryChunker
from tokenbatch.services.token_estimator import TokenEstimator
from tokenbatch.utils.logger import get_logger, run_context

logger = get_logger(__name__)


class BatchGrouper:
    """
    Turns a file list into batch groups.

    ``reader`` loads content for files passed without it; read failures
    become error_recovery groups instead of aborting the run.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        estimator: Optional[TokenEstimator] = None,
        chunker: Optional[BoundaryChunker] = None,
        reader: Optional[Callable[[str], str]] = None,
    ):
        self.settings = config or default_settings
        self.estimator = estimator or TokenEstimator(self.settings)
        self.chunker = chunker or BoundaryChunker(self.estimator, self.settings)
        self.reader = reader

    async def group(
        self,
        files: Sequence[FileInput],
        outlines: Optional[Mapping[str, StructuralOutline]] = None,
        run_id: Optional[str] = None,
    ) -> BatchPlan:
        """
        Estimate, chunk and group files.

        Args:
            files: Files in project order; position n is parent ordinal n+1
            outlines: Optional structural outlines keyed by path
            run_id: Id stamped on every log event of this run; the ambient
                run id, or a fresh one, when omitted

        Returns:
            BatchPlan with groups in input order, carrying the run id so the
            task build can log under the same id
        """
        with run_context(run_id) as rid:
            logger.info("batch_grouping_started", files=len(files))
            plan = await self._group(files, outlines or {})
        plan.run_id = rid
        return plan

    async def _group(self, files: Sequence[FileInput], outlines: Mapping[str, StructuralOutline]) -> BatchPlan:
        loaded, read_errors = await self._load(files)
        estimates = await self.estimator.estimate_batch(loaded)

        plan = BatchPlan(estimates=estimates)
        open_combined: dict[str, BatchGroup] = {}
        target = self.settings.target_chunk_tokens

        for position, (item, estimate) in enumerate(zip(loaded, estimates)):
            error = read_errors.get(position) or estimate.error
            if error is not None:
                plan.groups.append(self._error_group(item, error))
                continue

            tokens = estimate.total_tokens
            if tokens > target:
                groups = await self._chunk_groups(item, estimate, position + 1, outlines.get(item.path), plan)
                plan.groups.extend(groups)
                continue

            batch_file = self._batch_file(item, estimate)
            if self.settings.combine_small_files and tokens < self.settings.small_file_tokens:
                directory = posixpath.dirname(item.path.replace("\\", "/"))
                current = open_combined.get(directory)
                if current is not None and current.estimated_tokens + tokens <= self.settings.combined_batch_tokens:
                    current.files.append(batch_file)
                    current.estimated_tokens += tokens
                    current.file_count = len(current.files)
                    continue
                current = BatchGroup(
                    kind=BatchKind.COMBINED_FILES.value,
                    estimated_tokens=tokens,
                    files=[batch_file],
                    file_count=1,
                    metadata={"directory": directory},
                )
                open_combined[directory] = current
                plan.groups.append(current)
                continue

            plan.groups.append(self._single_group(item, estimate, batch_file))

        # a combined group that never gained a second file is just a single file
        for index, group in enumerate(plan.groups):
            if group.kind == BatchKind.COMBINED_FILES.value and len(group.files) == 1:
                only = group.files[0]
                plan.groups[index] = group.model_copy(
                    update={
                        "kind": BatchKind.SINGLE_FILE.value,
                        "metadata": {"directory": group.metadata.get("directory", ""), "language": only.language},
                    }
                )

        for index, group in enumerate(plan.groups):
            group.batch_id = f"batch_{index + 1}"

        logger.info(
            "batch_grouping_complete",
            files=len(files),
            groups=len(plan.groups),
            chunked=len(plan.chunk_plans),
            errors=plan.count(BatchKind.ERROR_RECOVERY),
        )
        return plan

    # ── Internal ──────────────────────────────────────────────────

    async def _load(self, files: Sequence[FileInput]) -> tuple[list[FileInput], dict[int, ErrorInfo]]:
        """Fill in missing content through the reader, recording read failures."""
        loaded: list[FileInput] = []
        errors: dict[int, ErrorInfo] = {}
        for position, item in enumerate(files):
            if item.content is not None or self.reader is None:
                loaded.append(item)
                continue
            try:
                content = await asyncio.to_thread(self.reader, item.path)
            except (OSError, UnicodeDecodeError) as e:
                failure = AccessError(f"Cannot read {item.path}: {e}", path=item.path)
                logger.warning("file_read_failed", path=item.path, error=str(e))
                errors[position] = failure.to_info()
                loaded.append(item)
                continue
            loaded.append(item.model_copy(update={"content": content}))
        return loaded, errors

    async def _chunk_groups(
        self,
        item: FileInput,
        estimate: TokenEstimate,
        ordinal: int,
        outline: Optional[StructuralOutline],
        plan: BatchPlan,
    ) -> list[BatchGroup]:
        chunk_plan = await asyncio.to_thread(
            self.chunker.plan, item.path, item.content, outline, None, item.language_hint
        )
        plan.chunk_plans[item.path] = chunk_plan
        plan.warnings.extend(f"{item.path}: {w}" for w in chunk_plan.warnings)
        if not chunk_plan.success:
            return [self._error_group(item, chunk_plan.error)]

        batch_file = self._batch_file(item, estimate)
        return [
            BatchGroup(
                kind=BatchKind.LARGE_FILE_CHUNK.value,
                estimated_tokens=chunk.estimated_tokens,
                files=[batch_file],
                file_count=1,
                chunk=ChunkMeta(
                    chunk_index=chunk.index,
                    total_chunks=chunk_plan.total_chunks,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    estimated_tokens=chunk.estimated_tokens,
                    parent_path=item.path,
                    parent_tokens=estimate.total_tokens,
                    parent_ordinal=ordinal,
                ),
                metadata={
                    "chunk_kind": chunk.kind.value,
                    "strategy": chunk_plan.strategy.value,
                    "oversized": chunk.oversized,
                },
            )
            for chunk in chunk_plan.chunks
        ]

    @staticmethod
    def _batch_file(item: FileInput, estimate: TokenEstimate) -> BatchFile:
        return BatchFile(
            path=item.path,
            token_count=estimate.total_tokens,
            importance=item.importance,
            complexity=item.complexity,
            language=estimate.language.value,
            is_entry_point=item.is_entry_point,
        )

    @staticmethod
    def _single_group(item: FileInput, estimate: TokenEstimate, batch_file: BatchFile) -> BatchGroup:
        return BatchGroup(
            kind=BatchKind.SINGLE_FILE.value,
            estimated_tokens=estimate.total_tokens,
            files=[batch_file],
            file_count=1,
            metadata={
                "directory": posixpath.dirname(item.path.replace("\\", "/")),
                "language": estimate.language.value,
            },
        )

    @staticmethod
    def _error_group(item: FileInput, error: Optional[ErrorInfo]) -> BatchGroup:
        return BatchGroup(
            kind=BatchKind.ERROR_RECOVERY.value,
            files=[BatchFile(path=item.path)],
            file_count=1,
            reason=error.message if error else "Unknown error",
            metadata={"error_code": error.code.value} if error else {},
        )
