"""
Context-carrying scheduler.

Drives the executor over every unit of a job with up to ``max_workers``
requests in flight, feeding each unit a sliding window of the preceding
text, skipping units already completed in a restored session, and
reporting progress after every unit.
"""
import asyncio
import math
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from chunkwise.core.chunking.line_nodes import parse_lines, reconstruct_lines
from chunkwise.core.chunking.node_chunker import NodeChunker
from chunkwise.core.chunking.text_chunker import create_chunks_from_files, split_by_size
from chunkwise.core.models import (
    EpubNode,
    FileContent,
    JobProgress,
    SourceChunk,
    TranslationContext,
    TranslationResult,
)
from chunkwise.core.translation.executor import CANCELLED_REASON, TranslationUnitExecutor
from chunkwise.utils.unified_logger import LogType, get_logger

ProgressCallback = Callable[[JobProgress], None]
ResultCallback = Callable[[TranslationResult], None]


class _ProgressTracker:
    """Counts processed units and reports snapshots with an ETA."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback], logger):
        self.progress = JobProgress(total_chunks=total, current_status_message="translating")
        self.on_progress = on_progress
        self.logger = logger
        self.start_time = time.monotonic()

    def _emit(self) -> None:
        progress = self.progress
        self.logger.debug(
            f"Processed {progress.processed_chunks}/{progress.total_chunks}",
            LogType.PROGRESS,
            {
                'percentage': progress.percentage,
                'current': progress.processed_chunks,
                'total': progress.total_chunks,
                'eta_seconds': progress.eta_seconds,
            },
        )
        if self.on_progress:
            self.on_progress(progress.snapshot())

    def started(self, index: int) -> None:
        self.progress.current_chunk_processing = index
        self._emit()

    def record(self, result: TranslationResult, counted_as_failed: Optional[bool] = None) -> None:
        progress = self.progress
        progress.processed_chunks += 1
        failed = (not result.success) if counted_as_failed is None else counted_as_failed
        if failed:
            progress.failed_chunks += 1
            if result.error:
                progress.last_error_message = result.error
        else:
            progress.successful_chunks += 1

        remaining = progress.total_chunks - progress.processed_chunks
        elapsed = time.monotonic() - self.start_time
        progress.eta_seconds = math.ceil(elapsed / progress.processed_chunks * remaining)
        self._emit()

    def finish(self, stopped: bool) -> None:
        self.progress.current_status_message = "stopped" if stopped else "complete"
        self.progress.eta_seconds = 0
        self.progress.current_chunk_processing = None
        self._emit()


class TranslationScheduler:
    """
    Schedules translation units over a TranslationUnitExecutor.

    The executor's cancellation token is the run's stop flag: a quota error
    inside the executor or an explicit ``request_stop()`` halts admission of
    new units and discards results that arrive afterwards.
    """

    def __init__(self, executor: TranslationUnitExecutor, config, logger=None):
        self.executor = executor
        self.config = config
        self.logger = logger or get_logger()

    @property
    def stop_requested(self) -> bool:
        return self.executor.stop_requested

    def request_stop(self, reason: str = CANCELLED_REASON) -> None:
        self.executor.request_stop(reason)

    def reset_stop(self) -> None:
        """Clear a previous stop so failed chunks can be retried."""
        self.executor.reset_stop()

    def _trim_context(self, text: Optional[str]) -> Optional[str]:
        if not self.config.enable_sliding_window or not text:
            return None
        size = self.config.sliding_window_size
        if size <= 0:
            return None
        return text[-size:]

    async def _run_pool(self, jobs: List[Callable[[], Awaitable[None]]]) -> None:
        """Run jobs with at most ``max_workers`` in flight, stopping admission on a stop request."""
        max_workers = max(1, self.config.max_workers)
        in_flight = set()

        for job in jobs:
            if self.stop_requested:
                break
            while len(in_flight) >= max_workers:
                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    task.result()
            if self.stop_requested:
                break
            in_flight.add(asyncio.ensure_future(job()))

        if in_flight:
            await asyncio.gather(*in_flight)

    # === Plain text ===

    def build_text_chunks(self, source: Union[str, List[FileContent], List[SourceChunk]]) -> List[SourceChunk]:
        """Split raw text or files into units; pre-split units pass through unchanged."""
        if isinstance(source, str):
            return [SourceChunk(text=text, file_index=0)
                    for text in split_by_size(source, self.config.chunk_size)]
        if source and all(isinstance(item, SourceChunk) for item in source):
            return list(source)
        return create_chunks_from_files(source, self.config.chunk_size)

    async def translate_text(self, source: Union[str, List[FileContent], List[SourceChunk]],
                             context: Optional[TranslationContext] = None,
                             on_progress: Optional[ProgressCallback] = None,
                             existing_results: Optional[List[TranslationResult]] = None,
                             on_result: Optional[ResultCallback] = None) -> List[TranslationResult]:
        """
        Translate plain text (or a list of text files) chunk by chunk.

        ``source`` may also be a resume queue of SourceChunks, whose
        ``index`` keeps the chunk numbering of the original run.

        Returns:
            Results sorted by chunk_index. Chunks not reached before a stop
            have no result.
        """
        self.reset_stop()
        chunks = self.build_text_chunks(source)
        indices = [chunk.index if chunk.index is not None else position
                   for position, chunk in enumerate(chunks)]
        existing = {result.chunk_index: result for result in existing_results or []}
        results: Dict[int, TranslationResult] = {}
        tracker = _ProgressTracker(len(chunks), on_progress, self.logger)

        self.logger.info(f"Translating {len(chunks)} chunks with {self.config.max_workers} worker(s)",
                         LogType.CHUNK_INFO)

        def previous_context_for(position: int) -> Tuple[Optional[str], bool]:
            if position == 0 or not self.config.enable_sliding_window:
                return None, False
            previous = chunks[position - 1]
            if previous.file_index != chunks[position].file_index:
                return None, False
            if self.config.max_workers == 1:
                previous_result = results.get(indices[position - 1])
                if previous_result and previous_result.success and previous_result.translated_text:
                    return self._trim_context(previous_result.translated_text), True
            return self._trim_context(previous.text), False

        def make_job(position: int, chunk: SourceChunk):
            index = indices[position]

            async def job():
                previous_context, is_translated = previous_context_for(position)
                tracker.started(index)
                result = await self.executor.translate_chunk(
                    chunk.text, index, context,
                    previous_context=previous_context,
                    is_previous_translated=is_translated,
                )
                if self.stop_requested:
                    return
                results[index] = result
                tracker.record(result)
                if on_result:
                    on_result(result)
            return job

        jobs = []
        for position, chunk in enumerate(chunks):
            prior = existing.get(indices[position])
            if prior is not None and prior.success and len(prior.original_text) == len(chunk.text):
                results[indices[position]] = prior
                tracker.record(prior)
                continue
            jobs.append(make_job(position, chunk))

        if len(jobs) < len(chunks):
            self.logger.info(f"Resuming: {len(chunks) - len(jobs)} chunks already translated")

        await self._run_pool(jobs)
        tracker.finish(self.stop_requested)
        return [results[index] for index in sorted(results)]

    async def retry_failed_chunks(self, results: List[TranslationResult],
                                  context: Optional[TranslationContext] = None,
                                  on_progress: Optional[ProgressCallback] = None,
                                  on_result: Optional[ResultCallback] = None) -> List[TranslationResult]:
        """Translate only the failed results again and return the merged, sorted list."""
        self.reset_stop()
        by_index = {result.chunk_index: result for result in results}
        failed = [result for result in sorted(results, key=lambda r: r.chunk_index) if not result.success]
        if not failed:
            return [by_index[index] for index in sorted(by_index)]

        self.logger.info(f"Retrying {len(failed)} failed chunks")
        tracker = _ProgressTracker(len(failed), on_progress, self.logger)
        merged = dict(by_index)

        def previous_context_for(index: int) -> Tuple[Optional[str], bool]:
            previous = by_index.get(index - 1)
            if previous is None:
                return None, False
            if previous.success and previous.translated_text:
                return self._trim_context(previous.translated_text), True
            return self._trim_context(previous.original_text), False

        def make_job(failed_result: TranslationResult):
            async def job():
                index = failed_result.chunk_index
                previous_context, is_translated = previous_context_for(index)
                tracker.started(index)
                result = await self.executor.translate_chunk(
                    failed_result.original_text, index, context,
                    previous_context=previous_context,
                    is_previous_translated=is_translated,
                )
                if self.stop_requested:
                    return
                merged[index] = result
                tracker.record(result)
                if on_result:
                    on_result(result)
            return job

        await self._run_pool([make_job(result) for result in failed])
        tracker.finish(self.stop_requested)
        return [merged[index] for index in sorted(merged)]

    @staticmethod
    def combine_results(results: List[TranslationResult]) -> str:
        return ''.join(result.translated_text for result in sorted(results, key=lambda r: r.chunk_index))

    # === Node batches (integrity mode and EPUB) ===

    def _node_chunker(self) -> NodeChunker:
        return NodeChunker(self.config.chunk_size, self.config.epub_max_nodes_per_chunk, logger=self.logger)

    async def _translate_node_chunks(self, node_chunks: List[List[EpubNode]],
                                     context: Optional[TranslationContext],
                                     on_progress: Optional[ProgressCallback],
                                     on_result: Optional[ResultCallback],
                                     existing_results: Optional[List[TranslationResult]],
                                     integrity: bool
                                     ) -> Tuple[Dict[int, List[EpubNode]], Dict[int, TranslationResult]]:
        """
        Translate node chunks.

        Integrity mode keeps a failed chunk's source lines and marks it
        failed. Document mode recovers a failed chunk by binary batch
        splitting and carries a sliding window between chunks.

        Returns:
            (translated nodes per chunk index, results per chunk index
            including restored ones)
        """
        existing = {result.chunk_index: result for result in existing_results or []}
        translated: Dict[int, List[EpubNode]] = {}
        results: Dict[int, TranslationResult] = {}
        tracker = _ProgressTracker(len(node_chunks), on_progress, self.logger)
        separator = '\n' if integrity else '\n\n'

        def text_of(nodes: List[EpubNode]) -> List[str]:
            return [node.content for node in nodes if node.is_text]

        def previous_context_for(index: int) -> Tuple[Optional[str], bool]:
            if integrity or index == 0 or not self.config.enable_sliding_window:
                return None, False
            previous_chunk = node_chunks[index - 1]
            if previous_chunk[-1].document_id != node_chunks[index][0].document_id:
                return None, False
            if self.config.max_workers == 1 and index - 1 in translated:
                return self._trim_context('\n'.join(text_of(translated[index - 1]))), True
            return self._trim_context('\n'.join(text_of(previous_chunk))), False

        def success_result(index: int, original: List[EpubNode], nodes: List[EpubNode]) -> TranslationResult:
            return TranslationResult(
                chunk_index=index,
                original_text=separator.join(text_of(original)),
                translated_text=separator.join(text_of(nodes)),
                translated_segments=[node.content or '' for node in nodes],
            )

        def make_job(index: int, chunk: List[EpubNode]):
            async def job():
                previous_context, is_translated = previous_context_for(index)
                tracker.started(index)
                counted_as_failed = None
                try:
                    nodes = await self.executor.translate_node_batch(
                        chunk, context, chunk_index=index,
                        previous_context=previous_context,
                        is_previous_translated=is_translated,
                    )
                    result = success_result(index, chunk, nodes)
                except Exception as e:
                    if self.stop_requested:
                        return
                    if integrity:
                        self.logger.error(f"Chunk {index + 1} failed: {e}", LogType.ERROR_DETAIL)
                        nodes = list(chunk)
                        result = TranslationResult.failure(index, separator.join(text_of(chunk)), str(e))
                    else:
                        self.logger.warning(f"Chunk {index + 1} failed ({e}), retrying in smaller batches")
                        nodes = await self.executor.retry_nodes_with_smaller_batches(chunk, index, context, 1)
                        result = success_result(index, chunk, nodes)
                        counted_as_failed = True

                if self.stop_requested:
                    return
                translated[index] = nodes
                results[index] = result
                tracker.record(result, counted_as_failed)
                if on_result:
                    on_result(result)
            return job

        jobs = []
        for index, chunk in enumerate(node_chunks):
            prior = existing.get(index)
            if prior is not None and prior.success:
                restored = self.executor.restore_nodes_from_result(chunk, prior)
                if restored is not None:
                    translated[index] = restored
                    results[index] = prior
                    tracker.record(prior)
                    continue
                self.logger.warning(f"Chunk {index + 1}: stored result does not match, translating again")
            jobs.append(make_job(index, chunk))

        self.logger.info(f"Translating {len(jobs)} of {len(node_chunks)} node chunks", LogType.CHUNK_INFO)
        await self._run_pool(jobs)
        tracker.finish(self.stop_requested)
        return translated, results

    async def translate_text_with_integrity(self, full_text: str,
                                            context: Optional[TranslationContext] = None,
                                            on_progress: Optional[ProgressCallback] = None,
                                            on_result: Optional[ResultCallback] = None,
                                            existing_results: Optional[List[TranslationResult]] = None
                                            ) -> Tuple[str, List[TranslationResult]]:
        """
        Translate line by line so the output keeps exactly the input's line layout.

        Failed chunks keep their source lines in the reconstructed text.

        Returns:
            (reconstructed text, results sorted by chunk_index)
        """
        self.reset_stop()
        parsed = parse_lines(full_text)
        if not parsed.nodes:
            return '\n'.join(parsed.original_lines), []

        node_chunks = self._node_chunker().split(parsed.nodes)
        translated, results = await self._translate_node_chunks(node_chunks, context, on_progress, on_result,
                                                                existing_results, integrity=True)

        translated_nodes = [node for index in sorted(translated) for node in translated[index]]
        translated_nodes.sort(key=lambda node: node.line_index)
        text = reconstruct_lines(translated_nodes, parsed.original_lines)
        return text, [results[index] for index in sorted(results)]

    async def retry_failed_integrity_chunks(self, results: List[TranslationResult],
                                            full_text: str,
                                            context: Optional[TranslationContext] = None,
                                            on_progress: Optional[ProgressCallback] = None,
                                            on_result: Optional[ResultCallback] = None
                                            ) -> Tuple[str, List[TranslationResult]]:
        """Re-run integrity mode, restoring the successful chunks from ``results``."""
        failed = sum(1 for result in results if not result.success)
        self.logger.info(f"Retrying {failed} failed integrity chunks")

        text, rerun = await self.translate_text_with_integrity(full_text, context, on_progress,
                                                               on_result, existing_results=results)
        merged = {result.chunk_index: result for result in results}
        merged.update({result.chunk_index: result for result in rerun})
        return text, [merged[index] for index in sorted(merged)]

    async def translate_epub_nodes(self, nodes: List[EpubNode],
                                   context: Optional[TranslationContext] = None,
                                   on_progress: Optional[ProgressCallback] = None,
                                   on_result: Optional[ResultCallback] = None,
                                   existing_results: Optional[List[TranslationResult]] = None
                                   ) -> List[EpubNode]:
        """
        Translate flattened document nodes in batches.

        Returns every input node in order; chunks without a result (stopped
        before they ran) keep their source content.
        """
        self.reset_stop()
        if not nodes:
            return []

        node_chunks = self._node_chunker().split(nodes)
        translated, _ = await self._translate_node_chunks(node_chunks, context, on_progress, on_result,
                                                          existing_results, integrity=False)
        return [node
                for index, chunk in enumerate(node_chunks)
                for node in translated.get(index, chunk)]
