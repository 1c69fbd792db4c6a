import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from twelveimg.client.api import GalleryApiClient
from twelveimg.client.engine import ALLOWED_MIME_TYPES, MAX_CONCURRENT_UPLOADS, UploadEngine, UploadStatus, UploadTask

logger = logging.getLogger("twelveimg.client")

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


def collect_files(inputs: List[str]) -> List[Path]:
    """Expand directories (non-recursively) into their image files, keeping the given order."""
    files: List[Path] = []
    for raw in inputs:
        path = Path(raw).expanduser()
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES))
        elif path.is_file():
            files.append(path)
        else:
            logger.warning(f"Skipping {path}: not found")
    return files


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="twelveimg-upload", description="Upload photos into a gallery.")
    p.add_argument("gallery_id", help="Target gallery id")
    p.add_argument("files", nargs="+", help="Image files or directories of images")
    p.add_argument(
        "--api-url",
        default=os.environ.get("TWELVEIMG_API_URL", "http://localhost:8000"),
        help="API base URL (default: $TWELVEIMG_API_URL or http://localhost:8000)",
    )
    p.add_argument(
        "--token",
        default=os.environ.get("TWELVEIMG_TOKEN"),
        help="Session bearer token (default: $TWELVEIMG_TOKEN)",
    )
    p.add_argument(
        "--concurrency",
        type=int,
        default=MAX_CONCURRENT_UPLOADS,
        help=f"Maximum simultaneous uploads (default: {MAX_CONCURRENT_UPLOADS})",
    )
    p.add_argument("--no-compress", action="store_true", help="Upload originals without downscaling")
    p.add_argument("--quiet", action="store_true", help="Only log warnings and the final summary")
    return p


def _print_progress(task: UploadTask) -> None:
    if task.status in (UploadStatus.DONE, UploadStatus.FAILED):
        suffix = f" ({task.error})" if task.error else ""
        print(f"[{task.status.value:>6}] {task.original_filename}{suffix}", flush=True)


async def run_upload(args: argparse.Namespace) -> int:
    files = collect_files(args.files)
    if not files:
        print("No files to upload.", file=sys.stderr)
        return 2

    async with GalleryApiClient(args.api_url, args.token, max_connections=args.concurrency + 4) as api:
        engine = UploadEngine(
            api,
            args.gallery_id,
            max_concurrency=args.concurrency,
            compress=not args.no_compress,
            on_update=None if args.quiet else _print_progress,
        )
        report = await engine.run(files)
        if report.failed and any(t.status == UploadStatus.FAILED and t.grant for t in engine.tasks):
            logger.info("Retrying failed confirmations once")
            retry = await engine.confirm_failed()
            report.image_ids.extend(retry.image_ids)
            report.failed = retry.failed

    print(
        f"Uploaded {report.succeeded} of {len(files)} files "
        f"({report.bytes_uploaded / (1024 * 1024):.1f} MB in {report.duration_seconds:.1f}s)"
    )
    for local_id, error in report.failed.items():
        task = next((t for t in engine.tasks if t.local_id == local_id), None)
        print(f"  failed: {task.original_filename if task else local_id}: {error}", file=sys.stderr)
    return 0 if not report.failed else 1


def main(argv: Optional[List[str]] = None) -> None:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.concurrency < 1:
        parser.error("--concurrency must be at least 1")

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )
    logger.debug(f"Accepted types: {', '.join(ALLOWED_MIME_TYPES)}")
    raise SystemExit(asyncio.run(run_upload(args)))


if __name__ == "__main__":
    main()
