"""Document ingestion entrypoint.

This script reads one text file, or every ``.txt``/``.md`` file in a
directory, chunks it, embeds the chunks through the paced embedding pipeline
and stores them in the configured Qdrant collection.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from heritage_rag.app.container import build_container
from heritage_rag.common.errors import EmbeddingError, ValidationError
from heritage_rag.config import GlobalConfig

TEXT_SUFFIXES = {".txt", ".md"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest heritage documents into the vector store")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--input",
        "-i",
        required=True,
        type=str,
        help="Text file, or directory of .txt/.md files, to ingest.",
    )
    parser.add_argument("--title", type=str, default=None, help="Document title (defaults to the file stem).")
    parser.add_argument("--heritage-id", type=str, default=None, help="Heritage site identifier.")
    parser.add_argument("--category", type=str, default="heritage", help="Document category.")
    parser.add_argument(
        "--collection-name",
        type=str,
        default=None,
        help="Override the collection name from config (optional).",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )

    return parser.parse_args()


def _collect_files(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in TEXT_SUFFIXES)
    raise FileNotFoundError(f"Input not found: {path}")


def _metadata_for(path: Path, args: argparse.Namespace, single: bool) -> dict:
    metadata = {
        "title": args.title if (args.title and single) else path.stem,
        "filename": path.name,
        "category": args.category,
        "uploadedAt": datetime.now(timezone.utc).isoformat(),
    }
    if args.heritage_id:
        metadata["heritageId"] = args.heritage_id
    return metadata


async def _ingest(container, files: list[Path], args: argparse.Namespace) -> int:
    failures = 0
    for path in files:
        text = path.read_text(encoding="utf-8")
        metadata = _metadata_for(path, args, single=len(files) == 1)
        try:
            report = await container.pipeline.ingest(text, metadata, collection_name=args.collection_name)
        except ValidationError as exc:
            print(f"Skipped {path.name}: {exc}")
            continue
        except EmbeddingError as exc:
            failures += 1
            print(f"Failed to ingest {path.name}: {exc} ({len(exc.completed)} chunks embedded before failure)")
            continue
        print(f"Ingested {path.name}: {report.chunks_count} chunks into {report.collection_name}")
    return failures


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)

    files = _collect_files(Path(args.input))
    print(f"Ingesting {len(files)} file(s)")
    failures = asyncio.run(_ingest(container, files, args))

    if failures:
        print(f"Ingestion finished with {failures} failure(s)")
        sys.exit(1)
    print("Ingestion complete!")


if __name__ == "__main__":
    main()
