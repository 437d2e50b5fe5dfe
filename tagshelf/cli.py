import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from . import config
from .gateway import GatewayError, LocalGateway
from .results import ResultListController


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tagshelf", description="Browse and tag files in a directory tree.")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)
    parser.add_argument(
        "--repo",
        default=None,
        help="repository directory (defaults to the last one used)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="index the repository and report changes")

    p_query = sub.add_parser("query", help="list items matching a filter")
    p_query.add_argument("text", nargs="?", default="")
    p_query.add_argument("--offset", type=int, default=0, help="first row shown")
    p_query.add_argument("--rows", type=int, default=0, help="rows shown, 0 for all")

    p_tag = sub.add_parser("tag", help="add tags to an item")
    p_tag.add_argument("path")
    p_tag.add_argument("tags", nargs="+")

    p_untag = sub.add_parser("untag", help="remove tags from an item")
    p_untag.add_argument("path")
    p_untag.add_argument("tags", nargs="+")

    p_show = sub.add_parser("show", help="show one item")
    p_show.add_argument("path")

    sub.add_parser("tags", help="list tags with usage counts")
    return parser


def _format_row(position: int, path: str, tags: Sequence[str]) -> str:
    return f"{position:6d}  {path}" + (f"  [{' '.join(tags)}]" if tags else "")


async def run(args: argparse.Namespace) -> int:
    repo = args.repo or config.get_last_repo_path()
    if not repo:
        print("no repository given and none remembered; pass --repo", file=sys.stderr)
        return 2
    gateway = LocalGateway()
    result = await gateway.open_repository(repo)
    config.set_last_repo_path(gateway.path)

    if args.command == "scan":
        print(
            f"{result.scanned} files, {len(result.added)} added, {len(result.updated)} updated, "
            f"{len(result.renamed)} renamed, {len(result.removed)} removed, {result.errors} errors"
        )
        return 0

    if args.command == "tags":
        for tag in await gateway.all_tags():
            print(f"{tag.count:6d}  {tag.name}")
        return 0

    if args.command == "query":
        controller = ResultListController(gateway, query=args.text)
        await controller.set_repository_path(gateway.path)
        if controller.query_invalid:
            print(f"invalid query: {args.text!r}", file=sys.stderr)
            return 1
        count = len(controller)
        start = min(max(args.offset, 0), count)
        end = count if args.rows <= 0 else min(count, start + args.rows)
        for position in range(start, end):
            details = await controller.cache.load(controller.index_to_item_id(position))
            print(_format_row(position, details.path, details.tags))
        print(f"{count} items", file=sys.stderr)
        return 0

    item_id = (await gateway.find_item(args.path)).id
    if args.command == "tag":
        await gateway.insert_tags([item_id], args.tags)
    elif args.command == "untag":
        await gateway.remove_tags([item_id], args.tags)
    details = await gateway.fetch_item_details(item_id)
    print(_format_row(item_id, details.path, details.tags))
    if args.command == "show":
        print(f"        type: {details.filetype.value}, size: {details.size_bytes}")
        if details.width and details.height:
            print(f"        dimensions: {details.width}x{details.height}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except GatewayError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
