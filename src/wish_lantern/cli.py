import argparse
import asyncio
import logging
import sys

from .board import WishBoard, open_board
from .config import BoardConfig, open_store
from .cue import terminal_bell
from .errors import StoreError
from .models import ANONYMOUS_AUTHOR, Wish


def _format_wish(wish: Wish) -> str:
    author = wish.author if wish.author and wish.author != ANONYMOUS_AUTHOR else ""
    byline = f" - {author}" if author else ""
    state = "burned" if wish.is_burned else "floating"
    return f"{wish.id}  [{state}]  {wish.content}{byline}"


def _print_board(board: WishBoard, show_all: bool = False):
    wishes = board.wishes if show_all else board.active_wishes
    for wish in wishes:
        print(_format_wish(wish))
    print(f"{len(board.active_wishes)} floating, {board.total_count} wishes in total")


def _print_summary(board: WishBoard):
    recent = ", ".join(wish.content for wish in board.recent_wishes)
    print(f"-- {len(board.active_wishes)} floating / {board.total_count} total; recent: {recent}")


async def _run(args: argparse.Namespace) -> int:
    config = BoardConfig.from_env()
    if args.url:
        config = config.model_copy(update={"url": args.url})

    on_submitted = None if args.quiet else terminal_bell
    async with open_store(config) as store:
        async with open_board(store, on_submitted=on_submitted) as board:
            if board.load_error is not None and args.command != "watch":
                raise board.load_error
            if args.command == "list":
                _print_board(board, show_all=args.all)
            elif args.command == "submit":
                wish = await board.submit(args.content, args.author)
                print(f"Lantern launched: {wish.id}")
            elif args.command == "burn":
                wish = await board.burn(args.wish_id)
                if wish is None:
                    print(f"Wish {args.wish_id} has already burned")
                else:
                    print(f"Wish {wish.id} burned")
            elif args.command == "watch":
                board.listen(_print_summary)
                _print_board(board)
                if args.seconds is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(args.seconds)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wish-lantern")
    parser.add_argument("--url", help="store URL, e.g. sqlite:///wishes.db (default: $WISH_LANTERN_URL)")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--quiet", action="store_true", help="do not ring the bell on submit")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="show floating wishes")
    list_parser.add_argument("--all", action="store_true", help="include burned wishes")

    submit_parser = subparsers.add_parser("submit", help="launch a new wish")
    submit_parser.add_argument("content")
    submit_parser.add_argument("--author", default="")

    burn_parser = subparsers.add_parser("burn", help="burn a wish")
    burn_parser.add_argument("wish_id")

    watch_parser = subparsers.add_parser("watch", help="follow the board live")
    watch_parser.add_argument("--seconds", type=float, default=None)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except StoreError as e:
        logging.debug(f"Store failure: {e}")
        print("Something went wrong talking to the wish store. Please try again.", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
