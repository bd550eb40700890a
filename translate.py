"""
Command-line interface for text and EPUB translation
"""
import argparse
import asyncio
import signal
import sys

from tqdm import tqdm

from chunkwise.config import (
    CHUNK_SIZE,
    DEFAULT_SOURCE_LANGUAGE,
    DEFAULT_TARGET_LANGUAGE,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    MAX_WORKERS,
    REQUESTS_PER_MINUTE,
    TranslationConfig,
)
from chunkwise.core.exceptions import TranslationError
from chunkwise.core.models import TranslationContext
from chunkwise.core.quality_auditor import analyze_translation_quality, format_analysis_result
from chunkwise.core.translation.cancellation import CancellationToken
from chunkwise.utils.file_utils import (
    FileTranslationJob,
    default_output_path,
    get_unique_output_path,
    load_glossary,
)
from chunkwise.utils.unified_logger import LogType, setup_cli_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Translate a text or EPUB file with Gemini.")
    parser.add_argument("-i", "--input", required=True, help="Path to the input file (.txt or .epub).")
    parser.add_argument("-o", "--output", default=None, help="Path to the output file. If not specified, uses input filename with suffix.")
    parser.add_argument("-sl", "--source_lang", default=DEFAULT_SOURCE_LANGUAGE, help=f"Source language (default: {DEFAULT_SOURCE_LANGUAGE}).")
    parser.add_argument("-tl", "--target_lang", default=DEFAULT_TARGET_LANGUAGE, help=f"Target language (default: {DEFAULT_TARGET_LANGUAGE}).")
    parser.add_argument("-m", "--model", default=GEMINI_MODEL, help=f"Gemini model (default: {GEMINI_MODEL}).")
    parser.add_argument("--gemini_api_key", default=GEMINI_API_KEY, help="Google Gemini API key (defaults to GEMINI_API_KEY).")
    parser.add_argument("--chunk-size", dest="chunk_size", type=int, default=CHUNK_SIZE, help=f"Maximum characters per chunk (default: {CHUNK_SIZE}).")
    parser.add_argument("--workers", type=int, default=MAX_WORKERS, help=f"Concurrent requests (default: {MAX_WORKERS}).")
    parser.add_argument("--rpm", type=int, default=REQUESTS_PER_MINUTE, help=f"Requests per minute, 0 for unlimited (default: {REQUESTS_PER_MINUTE}).")
    parser.add_argument("--integrity", action="store_true", help="Translate text files line by line, keeping the exact line layout.")
    parser.add_argument("--glossary", default=None, help="Glossary JSON file injected into prompts.")
    parser.add_argument("--session", default=None, help="Snapshot JSON: resumed from if it exists, written after the run.")
    parser.add_argument("--audit", action="store_true", help="Report chunks whose translated length looks suspicious.")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")
    return parser


def _install_stop_handler(cancellation: CancellationToken, logger) -> None:
    """Ctrl+C stops the run gracefully so the session snapshot is still written."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancellation.cancel, "Interrupted by user")
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform; Ctrl+C aborts immediately")


async def main(args) -> int:
    logger = setup_cli_logger(enable_colors=not args.no_color)

    config = TranslationConfig.from_cli_args(args)
    config.validate()
    if not config.gemini_api_key:
        logger.error("--gemini_api_key (or GEMINI_API_KEY) is required")
        return 2

    context = TranslationContext()
    if args.glossary:
        context.glossary_entries = await load_glossary(args.glossary)
        logger.info(f"Loaded {len(context.glossary_entries)} glossary entries")

    file_type = "EPUB" if args.input.lower().endswith('.epub') else "TEXT"
    logger.info("Translation Started", LogType.TRANSLATION_START, {
        'source_lang': config.source_language,
        'target_lang': config.target_language,
        'file_type': file_type,
        'model': config.model,
        'input_file': args.input,
        'output_file': args.output,
    })

    bar = tqdm(desc=f"Translating {config.source_language} to {config.target_language}", unit="chunk")

    def on_progress(progress):
        bar.total = progress.total_chunks
        bar.n = progress.processed_chunks
        bar.set_postfix(failed=progress.failed_chunks, refresh=False)
        bar.refresh()

    cancellation = CancellationToken()
    _install_stop_handler(cancellation, logger)

    job = FileTranslationJob(config, context, session_path=args.session,
                             progress_callback=on_progress, cancellation=cancellation, logger=logger)
    try:
        results = await job.run(args.input, args.output, integrity=args.integrity)
    finally:
        bar.close()

    job.log_stats(args.output)

    if args.audit:
        print(format_analysis_result(analyze_translation_quality(results)))

    if cancellation.is_cancelled:
        logger.warning(f"Run stopped: {cancellation.reason}")
        return 1
    return 0


def cli() -> int:
    args = build_parser().parse_args()
    if args.output is None:
        args.output = default_output_path(args.input, args.target_lang)
    args.output = get_unique_output_path(args.output)

    try:
        return asyncio.run(main(args))
    except TranslationError as e:
        setup_cli_logger(enable_colors=not args.no_color).error(
            f"Translation failed: {e.message}", LogType.ERROR_DETAIL, {'details': str(e)}
        )
        return 1


if __name__ == "__main__":
    sys.exit(cli())
