#!/usr/bin/env python3
"""
Processing CLI — run valuation PDFs through the full pipeline and print the
final metrics.

Usage
-----
Single document:
    python -m scripts.process --pdf data/pdfs/acme_esop_2023.pdf

Every PDF in a directory:
    python -m scripts.process --dir data/pdfs/

Keep base metrics when the enhanced pass disagrees:
    python -m scripts.process --pdf report.pdf --precedence fill_nulls

Base extraction only (no enhanced validation pass):
    python -m scripts.process --pdf report.pdf --no-enhanced
"""

import argparse
import asyncio
import glob
import json
import logging
import os
import sys
import time

# Ensure repo root is on the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from valuation import config                               # noqa: E402
from valuation.database import init_db                     # noqa: E402
from valuation.ingest.embedder import check_ollama         # noqa: E402
from valuation.jobs.orchestrator import JobOrchestrator    # noqa: E402
from valuation.models import JobStatus                     # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("process")


async def _preflight_checks() -> None:
    """Warn about missing services; every stage has a fallback, so none is fatal."""
    if not config.OPENAI_API_KEY:
        logger.warning("✗ OPENAI_API_KEY is not set; metrics will come from pattern extraction only")
    else:
        logger.info("✓ LLM API key found (model: %s)", config.LLM_MODEL)

    if not config.PARSER_API_KEY:
        logger.warning("✗ PARSER_API_KEY is not set; using local PDF text extraction")

    if not await check_ollama():
        logger.warning(
            "✗ Ollama is not reachable at %s or model '%s' is not loaded; "
            "chunks will get placeholder embeddings",
            config.OLLAMA_URL,
            config.EMBEDDING_MODEL,
        )
    else:
        logger.info("✓ Ollama reachable at %s (model: %s)", config.OLLAMA_URL, config.EMBEDDING_MODEL)


async def _process_one(orchestrator: JobOrchestrator, pdf_path: str, show_json: bool) -> bool:
    basename = os.path.basename(pdf_path)
    with open(pdf_path, "rb") as f:
        data = f.read()

    t0 = time.time()
    logger.info("▶ Processing %s", basename)
    job = orchestrator.store.create(basename)

    runner = asyncio.create_task(orchestrator.run(job.id, data, basename))
    async for snapshot in orchestrator.subscribe(job.id):
        logger.info("  [%3d%%] %s", snapshot.progress, snapshot.message)
    job = await runner
    elapsed = time.time() - t0

    if job.status is not JobStatus.COMPLETED:
        logger.error("✗ %s — %s", basename, job.error_message)
        return False

    result = job.result or {}
    logger.info(
        "✓ %s → %s  |  tier=%s, %d chunks, confidence %d%%  [%.1fs]",
        basename, result.get("document_id"), result.get("parse_tier"),
        result.get("chunk_count", 0), result.get("confidence", 0), elapsed,
    )
    for warning in result.get("warnings", []):
        logger.warning("  ! %s", warning)
    if show_json:
        print(json.dumps(result.get("metrics", {}), indent=2))
    return True


async def run(args: argparse.Namespace):
    await _preflight_checks()
    init_db()

    if args.pdf:
        pdf_paths = [args.pdf]
    else:
        pdf_paths = sorted(glob.glob(os.path.join(args.dir, "*.pdf")))
        if not pdf_paths:
            logger.error("No PDF files found in %s", args.dir)
            sys.exit(1)
        logger.info("Found %d PDFs in %s", len(pdf_paths), args.dir)

    orchestrator = JobOrchestrator(precedence=args.precedence, enhanced=not args.no_enhanced)

    failures = 0
    for path in pdf_paths:
        if not await _process_one(orchestrator, path, show_json=not args.quiet):
            failures += 1

    logger.info("━" * 60)
    logger.info("Done: %d succeeded, %d failed, %d total", len(pdf_paths) - failures, failures, len(pdf_paths))

    if failures:
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Extract and validate ESOP valuation metrics from PDF reports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--pdf", type=str, help="Path to a single PDF file")
    source.add_argument("--dir", type=str, help="Directory of PDFs to process")

    parser.add_argument(
        "--precedence",
        choices=["enhanced", "fill_nulls"],
        default=config.MERGE_PRECEDENCE,
        help="How enhanced values combine with base values",
    )
    parser.add_argument("--no-enhanced", action="store_true", help="Skip the enhanced validation pass")
    parser.add_argument("--quiet", action="store_true", help="Do not print the metrics JSON")

    asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    main()
