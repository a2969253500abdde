"""Command-line entry point for generating and narrating articles."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from scribe import (
    ArticlePipeline,
    ArticleService,
    AudioPipeline,
    EngineWorker,
    GenerationRequest,
    HttpArticleStore,
    OpenAIEngine,
    ScribeError,
)
from scribe.config import config

if TYPE_CHECKING:
    from collections.abc import Sequence

    from scribe import GenerationStage

logger = config.get_logger(__name__)

AUDIO_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/mpeg": "mp3",
    "audio/ogg": "opus",
    "audio/aac": "aac",
    "audio/flac": "flac",
    "audio/L16": "pcm",
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Generate research-grounded blog articles and narrate them.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate an article.")
    generate.add_argument(
        "--title",
        default="",
        help="Article title (default: pick a random topic).",
    )
    generate.add_argument(
        "--context",
        default="",
        help="Extra context or angle for the article.",
    )
    generate.add_argument(
        "--model",
        default=config.CHAT_MODEL,
        help=f"Text generation model (default: {config.CHAT_MODEL}).",
    )
    generate.add_argument(
        "--publish",
        action="store_true",
        help="Store the article through the blog backend API.",
    )

    narrate = subparsers.add_parser("narrate", help="Narrate a markdown file.")
    narrate.add_argument("file", type=Path, help="Markdown or text file to read.")
    narrate.add_argument(
        "--voice",
        default=config.TTS_VOICE,
        help=f"Synthesis voice (default: {config.TTS_VOICE}).",
    )
    narrate.add_argument(
        "--output-dir",
        type=Path,
        default=Path("narration"),
        help="Directory for audio segments (default: narration).",
    )
    return parser.parse_args(argv)


def log_progress(stage: GenerationStage, payload: str | list[str] | None) -> None:
    if isinstance(payload, list):
        logger.info("%s: %d background passages", stage.value, len(payload))
    else:
        logger.info("%s: %s", stage.value, payload or "")


async def run_generate(args: argparse.Namespace, engine: EngineWorker) -> int:
    pipeline = ArticlePipeline(engine)
    request = GenerationRequest(
        title=args.title, context=args.context, model=args.model
    )

    if args.publish:
        service = ArticleService(pipeline, HttpArticleStore())
        article = await service.generate_new_article(request, log_progress)
        logger.info("Article %d created at %s", article.id, article.created_at)
        title, content = article.title, article.content
    else:
        generated = await pipeline.generate_article(request, log_progress)
        title, content = generated.title, generated.content

    print(f"# {title}\n\n{content}")  # noqa: T201
    return 0


async def run_narrate(args: argparse.Namespace, engine: EngineWorker) -> int:
    text = args.file.read_text(encoding="utf-8")
    pipeline = AudioPipeline(engine)
    args.output_dir.mkdir(parents=True, exist_ok=True)

    written = 0
    async for segment in pipeline.synthesize(text, voice=args.voice):
        extension = AUDIO_EXTENSIONS.get(segment.media_type, "bin")
        path = args.output_dir / f"{segment.index:03d}.{extension}"
        path.write_bytes(segment.audio)
        written += 1
        logger.info("Wrote segment %d: %s", segment.index + 1, path)

    if not written:
        logger.error("Nothing to narrate in %s", args.file)
        return 1
    logger.info("Narration written to %s (%d segments)", args.output_dir, written)
    return 0


async def run(args: argparse.Namespace) -> int:
    async with EngineWorker(OpenAIEngine()) as engine:
        if args.command == "generate":
            return await run_generate(args, engine)
        return await run_narrate(args, engine)


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    if args.command == "narrate" and not args.file.exists():
        logger.error("Input file not found: %s", args.file)
        return 1

    try:
        return asyncio.run(run(args))
    except ScribeError:
        logger.exception("%s failed", args.command)
        return 1
    except KeyboardInterrupt:
        logger.info("Scribe stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
