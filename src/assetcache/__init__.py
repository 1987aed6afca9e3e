"""Disk cache and download proxy for release assets served by an upstream host."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from .dispatcher import ProxyResponse, RequestDispatcher, internal_error_response
from .display import display_paths, to_mb
from .errors import AssetCacheError, ConfigPreconditionError, FetchError, NotFoundError
from .fetcher import BackgroundFetcher
from .registry import AssetMetadata, AssetRegistry
from .service import AssetCacheService
from .store import DEFAULT_CACHE_DIR, DiskCacheStore
from .upstream import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, OCTET_STREAM, UpstreamClient


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetcache",
        description="Manage the local disk cache of release assets.",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DEFAULT_CACHE_DIR,
        help=f"Directory holding cached assets (default: {DEFAULT_CACHE_DIR})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Download one asset into the cache.")
    fetch.add_argument("url", help="Upstream API URL of the asset.")
    fetch.add_argument("--name", required=True, help="File name to store the asset under.")
    fetch.add_argument(
        "--content-type",
        default=OCTET_STREAM,
        help=f"MIME type served for the asset (default: {OCTET_STREAM})",
    )
    fetch.add_argument(
        "--size",
        type=int,
        default=0,
        help="Declared size in bytes, used for reporting only.",
    )
    fetch.add_argument(
        "--credential",
        default=None,
        help="Access token embedded in the upstream URL for private assets.",
    )
    fetch.add_argument(
        "--timeout",
        type=float,
        nargs=2,
        metavar=("CONNECT", "READ"),
        default=DEFAULT_TIMEOUT,
        help="Connect and read timeouts in seconds (default: %(default)s)",
    )
    fetch.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRIES,
        help="Download attempts before giving up (default: %(default)s)",
    )

    subparsers.add_parser("list", help="Show the assets currently on disk.")
    subparsers.add_parser("clear", help="Remove the cache directory.")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "list":
        store = DiskCacheStore(args.cache_dir)
        names = store.names()
        if not names:
            print("Cache is empty.")
            return
        for name in names:
            print(f"{name}\t{to_mb(store.size_of(name))} MB")
        return

    if args.command == "clear":
        DiskCacheStore(args.cache_dir).clear()
        print(f"Removed {args.cache_dir}")
        return

    metadata = AssetMetadata(
        name=args.name,
        upstream_url=args.url,
        content_type=args.content_type,
        size_bytes=max(args.size, 0),
    )
    try:
        with AssetCacheService(
            args.cache_dir,
            timeout=tuple(args.timeout),
            max_retries=args.max_retries,
            max_workers=1,
        ) as service:
            path = service.fetch_to_disk(metadata, args.credential)
            size = service.store.size_of(metadata.name)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        raise SystemExit(2)
    except FetchError as exc:
        print(f"HTTP error: {exc}", file=sys.stderr)
        raise SystemExit(1)
    print(f"Saved {metadata.name} ({to_mb(size)} MB) -> {display_paths([path], Path.cwd())}")


__all__ = [
    "AssetCacheError",
    "AssetCacheService",
    "AssetMetadata",
    "AssetRegistry",
    "BackgroundFetcher",
    "ConfigPreconditionError",
    "DiskCacheStore",
    "FetchError",
    "NotFoundError",
    "ProxyResponse",
    "RequestDispatcher",
    "UpstreamClient",
    "build_parser",
    "internal_error_response",
    "main",
]
