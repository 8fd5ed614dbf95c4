"""Question answering entrypoint.

This script answers one question against the configured collection and
prints the answer followed by the sources used and their relevance signals.
Questions are screened first (length, repetition, links, contact details);
a rejected question is reported with suggestions and exits with status 2.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from heritage_rag.app.container import build_container
from heritage_rag.config import GlobalConfig
from heritage_rag.retrieval.question_filter import filter_question


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask a question to the heritage RAG pipeline")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )
    parser.add_argument("--question", "-q", required=True, type=str, help="Question to answer.")
    parser.add_argument("--top-k", "-k", type=int, default=None, help="Number of context chunks.")
    parser.add_argument("--heritage-id", type=str, default=None, help="Restrict to one heritage site.")
    parser.add_argument("--no-filter", action="store_true", help="Skip question screening.")
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING).",
    )

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    question = args.question
    if not args.no_filter:
        screened = filter_question(question)
        if not screened.passed:
            for error in screened.errors:
                print(f"error: {error}", file=sys.stderr)
            for suggestion in screened.suggestions:
                print(f"hint: {suggestion}", file=sys.stderr)
            sys.exit(2)
        question = screened.cleaned

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)

    result = asyncio.run(
        container.pipeline.query(question, top_k=args.top_k, heritage_id=args.heritage_id)
    )

    print(result.answer)
    print()
    print(f"mode: {result.mode}" + (" (reranking degraded)" if result.degraded else ""))
    for index, source in enumerate(result.sources, start=1):
        signals = ", ".join(f"{name}={value:.2f}" for name, value in source["signals"].items())
        title = source["metadata"].get("title", source["id"])
        print(f"[{index}] {title} fused={source['fused']:.3f} ({signals})")


if __name__ == "__main__":
    main()
