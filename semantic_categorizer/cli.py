"""
Command-line entry points.

stdout carries JSON lines only (progress, info, error, complete and result
records, each with a ``type`` field); logging goes to stderr.

Usage:
    python -m semantic_categorizer --help
    python -m semantic_categorizer categorize --project-id 1
    python -m semantic_categorizer typing --project-id 1
    python -m semantic_categorizer match input.json
    python -m semantic_categorizer evaluate --project-id 1
    python -m semantic_categorizer cache-stats
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Optional

from . import __version__
from .classification.evaluation import evaluate_model
from .classification.model_store import ModelStore
from .classification.predictor import ClassifierPredictor
from .config import CategorizerConfig
from .database.engine import DatabaseManager
from .exceptions import (
    ModelCompatibilityError,
    OperationAbortedError,
    SemanticCategorizerError,
)
from .jobs import CategorizationJob, TypingJob, build_fetcher, load_samples
from .matching.item_store import InMemoryItemSource
from .matching.streaming_matcher import StreamingCategoryMatcher
from .progress.reporter import ProgressReporter, ResultSink
from .progress.sinks import JsonLinesSink

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///categorizer.db"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 130


def setup_logging(verbose: bool = False) -> None:
    """Configure logging on stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> CategorizerConfig:
    """Create the configuration from CLI arguments (env vars still override)."""
    kwargs: dict = {
        "database_url": args.database_url
        or os.getenv("CATEGORIZER_DATABASE_URL")
        or DEFAULT_DATABASE_URL,
    }
    if args.model:
        kwargs["embedding_model"] = args.model
    if getattr(args, "chunk_size", None):
        kwargs["embedding_chunk_size"] = args.chunk_size
    return CategorizerConfig(**kwargs)


def _install_cancel_handlers(cancel: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig} not supported here")


def _open_database(config: CategorizerConfig) -> DatabaseManager:
    db_manager = DatabaseManager(config)
    db_manager.create_tables()
    return db_manager


def _run_project_job(job_cls: Any, args: argparse.Namespace) -> int:
    sink = JsonLinesSink(sys.stdout)
    reporter = ProgressReporter(sink)

    try:
        config = build_config(args)
        db_manager = _open_database(config)
    except SemanticCategorizerError as e:
        logger.error(f"Startup failed: {e}")
        reporter.error(e, stage=job_cls.stage)
        return EXIT_FAILED

    job_started = False

    async def runner() -> None:
        nonlocal job_started
        cancel = asyncio.Event()
        _install_cancel_handlers(cancel)
        job = job_cls(
            config,
            db_manager=db_manager,
            reporter=reporter,
            results=ResultSink(sink),
            cancel=cancel,
        )
        job_started = True
        await job.run(args.project_id)

    try:
        asyncio.run(runner())
        return EXIT_OK
    except OperationAbortedError:
        return EXIT_ABORTED
    except Exception as e:
        # job.run reports its own failures; only setup errors are reported here
        logger.error(f"{job_cls.stage} failed: {e}")
        if not job_started:
            reporter.error(e, stage=job_cls.stage)
        return EXIT_FAILED
    finally:
        db_manager.close()


def cmd_categorize(args: argparse.Namespace) -> int:
    """Match a project's target keywords against its category keywords."""
    return _run_project_job(CategorizationJob, args)


def cmd_typing(args: argparse.Namespace) -> int:
    """Train or reuse the project's classifier and label its keywords."""
    return _run_project_job(TypingJob, args)


def cmd_match(args: argparse.Namespace) -> int:
    """Match explicit keyword and category lists read from a JSON file."""
    sink = JsonLinesSink(sys.stdout)
    reporter = ProgressReporter(sink)
    results = ResultSink(sink)

    try:
        with open(args.input, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("input must be a JSON object")
        targets = InMemoryItemSource.from_records(data.get("keywords", []))
        categories = InMemoryItemSource.from_records(
            data.get("categories", []), dedupe=True
        )
        config = build_config(args)
        db_manager = _open_database(config)
    except (OSError, ValueError, SemanticCategorizerError) as e:
        logger.error(f"Cannot start match: {e}")
        reporter.error(e, stage="match")
        return EXIT_FAILED

    async def runner() -> None:
        cancel = asyncio.Event()
        _install_cancel_handlers(cancel)
        matcher = StreamingCategoryMatcher.from_config(
            config, build_fetcher(config, db_manager)
        )
        reporter.info(
            "Matching explicit lists",
            stage="match",
            targets=targets.count(),
            categories=categories.count(),
        )
        async for result in matcher.stream(
            targets,
            categories,
            on_progress=lambda update: reporter.progress(update),
            cancel=cancel,
        ):
            results.write(result)
        reporter.complete(
            stage="match",
            processed=matcher.stats.targets_processed,
            unmatched=matcher.stats.targets_unmatched,
            comparisons=matcher.stats.comparisons,
        )

    try:
        asyncio.run(runner())
        return EXIT_OK
    except OperationAbortedError as e:
        reporter.error(e, stage="match")
        return EXIT_ABORTED
    except SemanticCategorizerError as e:
        logger.error(f"Match failed: {e}")
        reporter.error(e, stage="match")
        return EXIT_FAILED
    finally:
        db_manager.close()


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate the project's stored classifier on its labeled samples."""
    reporter = ProgressReporter(JsonLinesSink(sys.stdout))

    try:
        config = build_config(args)
        db_manager = _open_database(config)
    except SemanticCategorizerError as e:
        reporter.error(e, stage="evaluation")
        return EXIT_FAILED

    async def runner() -> None:
        fetcher = build_fetcher(config, db_manager)
        predictor = ClassifierPredictor(fetcher, model_store=ModelStore(db_manager))
        model = predictor.load_model(args.project_id)
        if model is None:
            raise ModelCompatibilityError(
                f"No stored model for project {args.project_id}"
            )

        samples = load_samples(db_manager, args.project_id)
        embeddings = await fetcher.fetch(
            [sample.text for sample in samples],
            cache_only=args.cache_only,
            on_progress=lambda update: reporter.progress(update),
        )
        report = evaluate_model(model, samples, embeddings.vectors)
        reporter.complete(stage="evaluation", **report.to_dict())

    try:
        asyncio.run(runner())
        return EXIT_OK
    except SemanticCategorizerError as e:
        logger.error(f"Evaluation failed: {e}")
        reporter.error(e, stage="evaluation")
        return EXIT_FAILED
    finally:
        db_manager.close()


def cmd_cache_stats(args: argparse.Namespace) -> int:
    """Print cache and table sizes."""
    reporter = ProgressReporter(JsonLinesSink(sys.stdout))
    try:
        config = build_config(args)
        db_manager = _open_database(config)
    except SemanticCategorizerError as e:
        reporter.error(e, stage="cache")
        return EXIT_FAILED

    try:
        fetcher = build_fetcher(config, db_manager)
        if args.clear:
            deleted = fetcher.cache.clear(args.model)
            reporter.info("Cache cleared", stage="cache", deleted=deleted)
        reporter.complete(
            stage="cache",
            model=args.model,
            entries=fetcher.cache.size(args.model),
            tables=db_manager.get_table_info(),
        )
        return EXIT_OK
    except SemanticCategorizerError as e:
        reporter.error(e, stage="cache")
        return EXIT_FAILED
    finally:
        db_manager.close()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semantic-categorizer",
        description="Embedding-based keyword categorization and typing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--database-url",
        help=f"Database URL (default: $CATEGORIZER_DATABASE_URL or {DEFAULT_DATABASE_URL})",
    )
    parser.add_argument("--model", help="Embedding model name")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    categorize_parser = subparsers.add_parser(
        "categorize", help="Assign target keywords to their nearest category"
    )
    categorize_parser.add_argument("--project-id", type=int, required=True)
    categorize_parser.add_argument("--chunk-size", type=int, help="Texts per provider call")
    categorize_parser.set_defaults(func=cmd_categorize)

    typing_parser = subparsers.add_parser(
        "typing", help="Train or reuse the classifier and label target keywords"
    )
    typing_parser.add_argument("--project-id", type=int, required=True)
    typing_parser.add_argument("--chunk-size", type=int, help="Texts per provider call")
    typing_parser.set_defaults(func=cmd_typing)

    match_parser = subparsers.add_parser(
        "match", help="Match explicit lists from a JSON file"
    )
    match_parser.add_argument(
        "input", help='JSON file with "keywords" and "categories" arrays'
    )
    match_parser.set_defaults(func=cmd_match)

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Evaluate the stored classifier on its training samples"
    )
    evaluate_parser.add_argument("--project-id", type=int, required=True)
    evaluate_parser.add_argument(
        "--cache-only",
        action="store_true",
        help="Fail instead of calling the provider for missing embeddings",
    )
    evaluate_parser.set_defaults(func=cmd_evaluate)

    cache_parser = subparsers.add_parser("cache-stats", help="Show embedding cache size")
    cache_parser.add_argument(
        "--clear", action="store_true", help="Delete cached embeddings first"
    )
    cache_parser.set_defaults(func=cmd_cache_stats)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if not args.command:
        parser.print_help(sys.stderr)
        return 2

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
