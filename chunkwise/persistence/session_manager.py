"""
Session snapshots and resumable extraction queues.

A snapshot records everything needed to resume a translation run without
re-translating finished chunks: the source (or its fingerprint), the
settings, and every chunk result so far. Extraction queues hold the
unprocessed suffix of a sampled segment list so an interrupted glossary or
story-bible pass continues exactly where it stopped.
"""

import json
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiofiles

from chunkwise.config import APP_VERSION, TranslationConfig
from chunkwise.core.chunking.text_chunker import split_by_size
from chunkwise.core.epub.document_model import EpubChapter
from chunkwise.core.exceptions import FingerprintMismatchError, SessionError, SnapshotFormatError
from chunkwise.core.models import FileContent, JobProgress, SourceChunk, StoryBible, TranslationResult
from chunkwise.utils.unified_logger import get_logger

SNAPSHOT_VERSION = "1.0.0"
PREVIOUSLY_FAILED = "previously failed"
REQUIRED_SNAPSHOT_KEYS = ('meta', 'source_info', 'config', 'source_text', 'progress', 'translated_chunks')

FINGERPRINT_SAMPLE_UNITS = 100


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def _utf16_units(text: str) -> List[int]:
    data = text.encode('utf-16-le', 'surrogatepass')
    return [int.from_bytes(data[i:i + 2], 'little') for i in range(0, len(data), 2)]


def generate_fingerprint(files: List[FileContent]) -> str:
    """
    Cheap identity hash of the loaded source files.

    DJB2 over ``name:size`` of every file plus the first 100 UTF-16 code
    units of the first file's content. The shift wraps to 32 bits while the
    sum does not, so fingerprints match those written by browser clients.
    """
    if not files:
        return ''

    signature = '|'.join(f"{f.name}:{f.size}" for f in files)
    units = _utf16_units(signature) + _utf16_units(files[0].content or '')[:FINGERPRINT_SAMPLE_UNITS]

    value = 5381
    for unit in units:
        value = _int32(_int32(value) << 5) + value + unit
    return f"fp_{abs(value):x}"


def build_snapshot(files: List[FileContent],
                   config: TranslationConfig,
                   results: List[TranslationResult],
                   progress: Optional[JobProgress] = None,
                   mode: str = "text",
                   story_bible: Optional[StoryBible] = None,
                   chapters: Optional[List[EpubChapter]] = None) -> Dict[str, Any]:
    """Serialize a run into the JSON snapshot format."""
    if not files:
        raise SessionError("Nothing to snapshot: no source files loaded")

    source = files[0]
    snapshot: Dict[str, Any] = {
        'meta': {
            'version': SNAPSHOT_VERSION,
            'created_at': datetime.now(timezone.utc).isoformat(),
            'app_version': APP_VERSION,
        },
        'source_info': {
            'file_name': source.name,
            'file_size': source.size,
        },
        'source_fingerprint': generate_fingerprint(files),
        'config': config.to_snapshot_config(),
        'mode': mode,
        'source_text': source.content,
        'progress': {
            'total_chunks': progress.total_chunks if progress else 0,
            'processed_chunks': progress.processed_chunks if progress else 0,
        },
        'translated_chunks': {
            str(result.chunk_index): {
                'original_text': result.original_text,
                'translated_text': result.translated_text,
                'translated_segments': result.translated_segments,
                'status': 'completed' if result.success else 'failed',
            }
            for result in sorted(results, key=lambda r: r.chunk_index)
        },
    }

    if chapters:
        snapshot['epub_structure'] = {
            'chapters': [
                {'id': chapter.file_name, 'filename': chapter.file_name, 'nodeCount': len(chapter.nodes)}
                for chapter in chapters
            ]
        }
    if story_bible is not None:
        snapshot['story_bible'] = story_bible.to_dict()
    return snapshot


@dataclass
class RestoredSession:
    files: List[FileContent]
    results: List[TranslationResult]
    progress: JobProgress
    config: TranslationConfig
    mode: str = "text"
    story_bible: Optional[StoryBible] = None


def restore_snapshot(snapshot: Dict[str, Any],
                     current_files: Optional[List[FileContent]] = None,
                     base_config: Optional[TranslationConfig] = None) -> RestoredSession:
    """
    Rebuild a run from a snapshot.

    Raises:
        SnapshotFormatError: Required keys are missing
        FingerprintMismatchError: ``current_files`` differ from the snapshot's source
        SessionError: An EPUB snapshot is restored without its source file
    """
    if not isinstance(snapshot, dict):
        raise SnapshotFormatError("Snapshot must be a JSON object")
    missing = [key for key in REQUIRED_SNAPSHOT_KEYS if key not in snapshot]
    if missing:
        raise SnapshotFormatError(f"Snapshot is missing required keys: {', '.join(missing)}",
                                  {'missing': missing})

    mode = snapshot.get('mode') or 'text'
    expected = snapshot.get('source_fingerprint')

    if current_files:
        actual = generate_fingerprint(current_files)
        if expected and expected != actual:
            raise FingerprintMismatchError(
                "Snapshot was taken from a different source file", expected=expected, actual=actual
            )
        files = list(current_files)
    elif mode == 'epub':
        raise SessionError("EPUB snapshots can only be restored with the original EPUB file loaded")
    else:
        source_info = snapshot['source_info']
        files = [FileContent(
            name=source_info.get('file_name', ''),
            content=snapshot.get('source_text') or '',
            size=source_info.get('file_size', 0),
        )]

    results = []
    for index, chunk in snapshot['translated_chunks'].items():
        completed = chunk.get('status') == 'completed'
        results.append(TranslationResult(
            chunk_index=int(index),
            original_text=chunk.get('original_text', ''),
            translated_text=chunk.get('translated_text') or '',
            translated_segments=chunk.get('translated_segments'),
            success=completed,
            error=None if completed else PREVIOUSLY_FAILED,
        ))
    results.sort(key=lambda r: r.chunk_index)

    progress = JobProgress(
        total_chunks=snapshot['progress'].get('total_chunks', 0),
        processed_chunks=snapshot['progress'].get('processed_chunks', 0),
        successful_chunks=sum(1 for r in results if r.success),
        failed_chunks=sum(1 for r in results if not r.success),
        current_status_message="restored",
    )

    story_bible = None
    if snapshot.get('story_bible'):
        story_bible = StoryBible.from_dict(snapshot['story_bible'])

    return RestoredSession(
        files=files,
        results=results,
        progress=progress,
        config=TranslationConfig.from_snapshot_config(snapshot['config'], base_config),
        mode=mode,
        story_bible=story_bible,
    )


class SessionManager:
    """
    Persists snapshots through a key-value store (see ``Database``) and
    imports/exports them as JSON files.
    """

    def __init__(self, store, key_prefix: str = "session:", logger=None):
        self.store = store
        self.key_prefix = key_prefix
        self.logger = logger or get_logger()

    @staticmethod
    def remaining_units(units: List[SourceChunk], results: List[TranslationResult]) -> List[SourceChunk]:
        """
        The suffix of ``units`` from the first position without a result.

        Processing is admitted in order, so the remainder is found by
        position rather than by comparing contents. Each unit keeps its
        absolute chunk index.
        """
        processed = {result.chunk_index for result in results}
        numbered = [replace(unit, index=unit.index if unit.index is not None else position)
                    for position, unit in enumerate(units)]
        for position, unit in enumerate(numbered):
            if unit.index not in processed:
                return numbered[position:]
        return []

    @staticmethod
    def snapshot(queue_remainder: List[SourceChunk], results: List[TranslationResult]) -> Dict[str, Any]:
        """Persistable state: the unprocessed units in order plus every result so far."""
        return {
            'remaining_units': [unit.to_dict() for unit in queue_remainder],
            'results': [result.to_dict() for result in sorted(results, key=lambda r: r.chunk_index)],
        }

    @staticmethod
    def resume(state: Dict[str, Any]) -> Tuple[List[SourceChunk], List[TranslationResult]]:
        """
        Returns:
            (units to hand back to the scheduler unchanged, successful results
            to seed it with)
        """
        if not isinstance(state, dict) or 'remaining_units' not in state:
            raise SnapshotFormatError("Resume state must contain remaining_units")
        try:
            units = [SourceChunk.from_dict(item) for item in state['remaining_units']]
            seeds = [TranslationResult.from_dict(item) for item in state.get('results', [])]
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotFormatError(f"Invalid resume state: {e}") from e
        return units, [seed for seed in seeds if seed.success]

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    async def save_snapshot(self, name: str, snapshot: Dict[str, Any]) -> None:
        await self.store.aset(self._key(name), snapshot)
        self.logger.debug(f"Snapshot saved: {name} ({len(snapshot.get('translated_chunks', {}))} chunks)")

    async def load_snapshot(self, name: str) -> Optional[Dict[str, Any]]:
        return await self.store.aget(self._key(name))

    async def delete_snapshot(self, name: str) -> bool:
        return await self.store.adelete(self._key(name))

    async def export_snapshot(self, snapshot: Dict[str, Any], path: str) -> str:
        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(snapshot, ensure_ascii=False, indent=2))
        self.logger.info(f"Snapshot exported: {path}")
        return path

    async def import_snapshot(self, path: str) -> Dict[str, Any]:
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            text = await f.read()
        try:
            snapshot = json.loads(text)
        except ValueError as e:
            raise SnapshotFormatError(f"Snapshot file is not valid JSON: {e}", {'path': path}) from e
        if not isinstance(snapshot, dict):
            raise SnapshotFormatError("Snapshot must be a JSON object", {'path': path})
        return snapshot


# === Extraction queues ===

@dataclass
class ExtractionQueue:
    """The not-yet-processed suffix of a sampled segment list."""

    remaining_units: List[str] = field(default_factory=list)
    total_units_at_start: int = 0

    def remaining(self, processed_in_run: int) -> List[str]:
        return self.remaining_units[max(0, processed_in_run):]

    def global_processed(self, processed_in_run: int) -> int:
        done_before = self.total_units_at_start - len(self.remaining_units)
        return min(self.total_units_at_start, done_before + processed_in_run)

    def to_dict(self) -> Dict[str, Any]:
        return {'remaining_units': self.remaining_units, 'total_units_at_start': self.total_units_at_start}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractionQueue':
        return cls(remaining_units=list(data.get('remaining_units', [])),
                   total_units_at_start=int(data.get('total_units_at_start', 0)))


def sample_segments(segments: List[str], ratio_percent: float = 10.0,
                    rng: Optional[random.Random] = None) -> List[str]:
    """Fisher-Yates sample of ``max(1, floor(n * ratio))`` segments, kept in source order."""
    if not segments:
        return []
    rng = rng or random.Random()

    count = len(segments)
    sample_size = max(1, int(count * ratio_percent / 100))
    indices = list(range(count))
    for i in range(count - 1, 0, -1):
        j = rng.randrange(i + 1)
        indices[i], indices[j] = indices[j], indices[i]

    return [segments[i] for i in sorted(indices[:sample_size])]


class ExtractionQueueManager:
    """Stores one named extraction queue in the key-value store."""

    def __init__(self, store, name: str = "glossary", logger=None):
        self.store = store
        self.name = name
        self.key = f"extraction_queue:{name}"
        self.logger = logger or get_logger()

    def load(self) -> Optional[ExtractionQueue]:
        data = self.store.get(self.key)
        return ExtractionQueue.from_dict(data) if data else None

    def clear(self) -> None:
        self.store.delete(self.key)

    def _save(self, queue: ExtractionQueue) -> None:
        self.store.set(self.key, queue.to_dict())

    def prepare(self, text: Optional[str] = None, resume: bool = False,
                chunk_size: int = 8000, ratio: float = 10.0,
                rng: Optional[random.Random] = None) -> Tuple[ExtractionQueue, bool]:
        """
        Return the queue to work through.

        With ``resume`` and a stored non-empty queue, that queue is returned
        unchanged. Otherwise ``text`` is split, sampled and stored as a new
        queue.

        Returns:
            (queue, whether it was resumed)
        """
        if resume:
            stored = self.load()
            if stored and stored.remaining_units:
                self.logger.info(f"Resuming {self.name} extraction: "
                                 f"{len(stored.remaining_units)} segments left")
                return stored, True

        if not text or not text.strip():
            raise SessionError(f"No text to analyze for {self.name} extraction")

        segments = split_by_size(text, chunk_size)
        sampled = sample_segments(segments, ratio, rng)
        queue = ExtractionQueue(remaining_units=sampled, total_units_at_start=len(sampled))
        self._save(queue)
        self.logger.info(f"{self.name} extraction: {len(text):,} chars, "
                         f"{len(sampled)} of {len(segments)} segments sampled")
        return queue, False

    def checkpoint(self, queue: ExtractionQueue, processed_in_run: int) -> ExtractionQueue:
        """Persist exactly the unprocessed suffix; clear the stored queue once it is empty."""
        remainder = ExtractionQueue(queue.remaining(processed_in_run), queue.total_units_at_start)
        if remainder.remaining_units:
            self._save(remainder)
            self.logger.info(f"{self.name} extraction paused: "
                             f"{len(remainder.remaining_units)} segments kept in the queue")
        else:
            self.clear()
        return remainder
