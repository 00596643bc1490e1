"""Command-line entry point.

Transcribes one or more audio files concurrently, each in its own
orchestration run, and prints the rendered results. Configuration comes
from VOX_* environment variables; flags override the request options.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from vox_engine.audio import probe_audio
from vox_engine.config import parse_provider, parse_provider_list, request_from_env
from vox_engine.engines.local import LocalEngineAdapter
from vox_engine.engines.registry import build_remote_engines
from vox_engine.observability.logger import StructuredJsonFormatter
from vox_engine.orchestrator import Completed, Orchestrator, RunOutcome, TranscriptionContext
from vox_engine.output.formatters import OutputFormat, render
from vox_engine.utils.errors import VoxError

logger = logging.getLogger(__name__)


def _setup_logging(level: int = logging.INFO) -> None:
    """Configure root logger with structured JSON output on stderr."""
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vox-engine",
        description="Transcribe audio with local-first, multi-provider fallback.",
    )
    parser.add_argument("paths", nargs="+", help="Audio files to transcribe")
    parser.add_argument(
        "--format",
        choices=[f.value for f in OutputFormat],
        default=OutputFormat.TXT.value,
        help="Output format (default: txt)",
    )
    parser.add_argument("--language", default=None, help="Locale hint, e.g. en-US")
    parser.add_argument("--provider", default=None, help="Preferred remote provider")
    parser.add_argument(
        "--api-key",
        default=None,
        help="Credential for remote providers (default: provider environment variables)",
    )
    parser.add_argument("-o", "--output", default=None, help="Write the result to this file")
    parser.add_argument(
        "--fallback",
        default=None,
        help="Comma-separated alternate providers, in order",
    )
    parser.add_argument("--force-remote", action="store_true", help="Skip the local engine")
    parser.add_argument("--timestamps", action="store_true", help="Request segment timestamps")
    parser.add_argument("--no-local", action="store_true", help="Do not load a local engine")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def build_orchestrator(
    context: TranscriptionContext, enable_local: bool = True
) -> Orchestrator:
    """Create an orchestrator with every registered remote provider."""
    return Orchestrator(
        local=LocalEngineAdapter() if enable_local else None,
        remotes=build_remote_engines(context.network),
        context=context,
    )


async def _transcribe_all(
    orchestrator: Orchestrator, args: argparse.Namespace
) -> list[tuple[str, RunOutcome]]:
    overrides: dict[str, object] = {}
    if args.language:
        overrides["language"] = args.language
    if args.provider:
        overrides["preferred_provider"] = parse_provider(args.provider, "--provider")
    if args.fallback:
        overrides["alternate_providers"] = parse_provider_list(args.fallback, "--fallback")
    if args.force_remote:
        overrides["force_remote"] = True
    if args.timestamps:
        overrides["include_timestamps"] = True
    if args.api_key:
        overrides["credential"] = args.api_key

    requests = [replace(request_from_env(probe_audio(path)), **overrides) for path in args.paths]
    outcomes = await asyncio.gather(*(orchestrator.transcribe(r) for r in requests))
    return list(zip(args.paths, outcomes, strict=True))


def main(argv: list[str] | None = None) -> int:
    """Transcribe the given files; returns the process exit code."""
    args = build_parser().parse_args(argv)
    _setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        # stdout carries the transcript; run metrics go to stderr with the logs
        context = replace(TranscriptionContext.from_env(), metrics_stream=sys.stderr)
    except VoxError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    orchestrator = build_orchestrator(context, enable_local=not args.no_local)
    try:
        results = asyncio.run(_transcribe_all(orchestrator, args))
    except VoxError as exc:
        logger.error("Transcription aborted: %s", exc)
        return 2
    finally:
        context.scratch.cleanup_all()

    exit_code = 0
    rendered: list[str] = []
    for path, outcome in results:
        if isinstance(outcome, Completed):
            if len(results) > 1:
                rendered.append(f"==> {path} <==")
            rendered.append(render(outcome.result, args.format))
        else:
            exit_code = 1
            engines = ", ".join(f"{e}={k}" for e, k in outcome.engine_errors)
            print(f"{path}: transcription failed: {outcome.error} [{engines}]", file=sys.stderr)

    if not rendered:
        return exit_code

    output = "\n".join(rendered)
    if args.output:
        try:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(output + "\n")
        except OSError as exc:
            logger.error("Cannot write output file %s: %s", args.output, exc)
            return 2
        logger.info("Wrote transcript to %s", args.output)
    else:
        print(output)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
