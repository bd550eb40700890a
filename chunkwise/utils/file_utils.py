"""
File-level translation: read the input, run the scheduler, write the
output, and keep the session snapshot up to date.
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import aiofiles

from chunkwise.config import SESSION_DB_PATH, TranslationConfig
from chunkwise.core.epub.container import EpubContainer
from chunkwise.core.exceptions import ConfigurationError
from chunkwise.core.llm.providers.gemini import GeminiProvider
from chunkwise.core.models import FileContent, GlossaryEntry, JobProgress, TranslationContext, TranslationResult
from chunkwise.core.translation.cancellation import CancellationToken
from chunkwise.core.translation.executor import TranslationUnitExecutor
from chunkwise.core.translation.scheduler import TranslationScheduler
from chunkwise.persistence.database import Database
from chunkwise.persistence.session_manager import SessionManager, build_snapshot, restore_snapshot
from chunkwise.utils.unified_logger import LogType, get_logger


def get_unique_output_path(output_path):
    """
    Generate a unique output path by adding a number suffix if the file already exists.

    Examples:
        book.epub -> book.epub (if doesn't exist)
        book.epub -> book (1).epub (if book.epub exists)
    """
    path = Path(output_path)
    if not path.exists():
        return output_path

    counter = 1
    while True:
        new_path = path.parent / f"{path.stem} ({counter}){path.suffix}"
        if not new_path.exists():
            return str(new_path)
        counter += 1
        if counter > 9999:
            raise RuntimeError(f"Could not find unique filename after 9999 attempts for: {output_path}")


def default_output_path(input_path: str, target_language: str) -> str:
    base, ext = os.path.splitext(input_path)
    return f"{base}_translated_{target_language.lower()}{ext or '.txt'}"


async def read_text_file(path: str) -> str:
    async with aiofiles.open(path, 'r', encoding='utf-8') as f:
        return await f.read()


async def write_text_file(path: str, text: str) -> None:
    async with aiofiles.open(path, 'w', encoding='utf-8') as f:
        await f.write(text)


async def load_glossary(path: str) -> List[GlossaryEntry]:
    """Load glossary entries from a JSON list (or an object with an ``entries`` list)."""
    try:
        data = json.loads(await read_text_file(path))
    except ValueError as e:
        raise ConfigurationError(f"Glossary file is not valid JSON: {e}", {'path': path}) from e

    if isinstance(data, dict):
        data = data.get('entries', [])
    if not isinstance(data, list):
        raise ConfigurationError("Glossary must be a list of entries", {'path': path})
    return [GlossaryEntry.from_dict(item) for item in data]


class FileTranslationJob:
    """
    One CLI translation run over a single text or EPUB file.

    Args:
        config: TranslationConfig for the run
        context: Glossary/story bible injected into prompts
        session_path: Snapshot JSON to resume from (when present) and export to
        progress_callback: Receives JobProgress snapshots
        cancellation: Token a signal handler can cancel to stop gracefully
    """

    def __init__(self, config: TranslationConfig,
                 context: Optional[TranslationContext] = None,
                 session_path: Optional[str] = None,
                 progress_callback: Optional[Callable[[JobProgress], None]] = None,
                 cancellation: Optional[CancellationToken] = None,
                 provider=None,
                 store=None,
                 logger=None):
        self.config = config
        self.context = context or TranslationContext()
        self.session_path = session_path
        self.progress_callback = progress_callback
        self.logger = logger or get_logger()
        self.cancellation = cancellation or CancellationToken()
        self.provider = provider or GeminiProvider(
            api_key=config.gemini_api_key,
            model=config.model,
            requests_per_minute=config.requests_per_minute,
            timeout=config.timeout,
            logger=self.logger,
        )
        self.session_manager = SessionManager(store or Database(SESSION_DB_PATH), logger=self.logger)
        self.executor = TranslationUnitExecutor(self.provider, config, self.logger, self.cancellation)
        self.scheduler = TranslationScheduler(self.executor, config, self.logger)
        self.last_progress: Optional[JobProgress] = None
        self.results: List[TranslationResult] = []

    def _on_progress(self, progress: JobProgress) -> None:
        self.last_progress = progress
        if self.progress_callback:
            self.progress_callback(progress)

    async def _restore(self, files: List[FileContent]) -> Tuple[Optional[List[TranslationResult]], Optional[dict]]:
        """Previous results and the resume queue of a stopped run, when a session file exists."""
        if not self.session_path or not os.path.exists(self.session_path):
            return None, None

        snapshot = await self.session_manager.import_snapshot(self.session_path)
        restored = restore_snapshot(snapshot, current_files=files, base_config=self.config)
        if restored.story_bible and not self.context.story_bible:
            self.context.story_bible = restored.story_bible

        completed = sum(1 for result in restored.results if result.success)
        self.logger.info(f"Session restored from {self.session_path}: "
                         f"{completed}/{len(restored.results)} chunks completed")
        return restored.results, snapshot.get('resume_state')

    async def _save_session(self, files: List[FileContent], mode: str, chapters=None,
                            resume_state: Optional[dict] = None) -> None:
        snapshot = build_snapshot(files, self.config, self.results, self.last_progress, mode,
                                  story_bible=self.context.story_bible, chapters=chapters)
        if resume_state:
            snapshot['resume_state'] = resume_state
        await self.session_manager.save_snapshot(files[0].name, snapshot)
        if self.session_path:
            await self.session_manager.export_snapshot(snapshot, self.session_path)

    @staticmethod
    def _merge(existing: Optional[List[TranslationResult]], fresh: List[TranslationResult]) -> List[TranslationResult]:
        merged = {result.chunk_index: result for result in existing or [] if result.success}
        merged.update({result.chunk_index: result for result in fresh})
        return [merged[index] for index in sorted(merged)]

    async def translate_text_file(self, input_path: str, output_path: str, integrity: bool = False) -> List[TranslationResult]:
        text = await read_text_file(input_path)
        files = [FileContent(name=os.path.basename(input_path), content=text)]
        existing, resume_state = await self._restore(files)

        if integrity:
            try:
                translated_text, self.results = await self.scheduler.translate_text_with_integrity(
                    text, self.context, self._on_progress, existing_results=existing)
            finally:
                await self._save_session(files, 'text')
        else:
            units = self.scheduler.build_text_chunks(files)
            if resume_state:
                units, seeds = SessionManager.resume(resume_state)
                existing = self._merge(existing, seeds)
                self.logger.info(f"Resuming {len(units)} queued chunks")

            fresh: List[TranslationResult] = []
            queue = None
            try:
                await self.scheduler.translate_text(units, self.context, self._on_progress,
                                                    existing_results=existing, on_result=fresh.append)
            finally:
                self.results = self._merge(existing, fresh)
                if self.scheduler.stop_requested:
                    remainder = SessionManager.remaining_units(units, self.results)
                    queue = SessionManager.snapshot(remainder, self.results)
                await self._save_session(files, 'text', resume_state=queue)
            translated_text = self.scheduler.combine_results(self.results)

        await write_text_file(output_path, translated_text)
        self.logger.info(f"Translation saved: '{output_path}'")
        return self.results

    async def translate_epub_file(self, input_path: str, output_path: str) -> List[TranslationResult]:
        container = await asyncio.to_thread(EpubContainer.open, input_path, self.logger)
        chapters = container.load_chapters()
        nodes = [node for chapter in chapters for node in chapter.nodes]
        files = [FileContent(name=os.path.basename(input_path), content='',
                             size=os.path.getsize(input_path), is_epub=True)]
        existing, _ = await self._restore(files)

        fresh: List[TranslationResult] = []
        try:
            translated_nodes = await self.scheduler.translate_epub_nodes(
                nodes, self.context, self._on_progress, on_result=fresh.append, existing_results=existing)
        finally:
            self.results = self._merge(existing, fresh)
            await self._save_session(files, 'epub', chapters)

        translated_chapters = EpubContainer.apply_translated_nodes(chapters, translated_nodes)
        count, path = await asyncio.to_thread(container.save, output_path, translated_chapters)
        self.logger.info(f"EPUB saved: '{path}' ({count} chapters)")
        return self.results

    async def run(self, input_path: str, output_path: str, integrity: bool = False) -> List[TranslationResult]:
        try:
            if input_path.lower().endswith('.epub'):
                return await self.translate_epub_file(input_path, output_path)
            return await self.translate_text_file(input_path, output_path, integrity)
        finally:
            await self.provider.close()

    def stats(self) -> dict:
        return {
            'completed': sum(1 for result in self.results if result.success),
            'failed': sum(1 for result in self.results if not result.success),
            'stopped': self.cancellation.is_cancelled,
        }

    def log_stats(self, output_path: str) -> None:
        self.logger.info("Translation finished", LogType.TRANSLATION_END, {
            'output_file': output_path,
            'stats': self.stats(),
        })
