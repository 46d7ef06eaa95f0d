"""CLI interface for the Match game.

Usage:
    python -m match_game play -l LEARNER -s SET --file cards.json   Play Match with cards from a file
    python -m match_game play -l LEARNER -s SET --remote            Play Match with cards from the set API
    python -m match_game stats -l LEARNER -s SET                    Show stored progress
    python -m match_game reset -l LEARNER -s SET                    Forget stored progress
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from backend.card_source import CardSourceError, QuizletClient, load_cards_from_file
from backend.config import settings
from backend.database import async_session, engine
from backend.match.cards import MatchCard
from backend.match.progress import ProgressStore, ProgressSummary, summarize_progress
from backend.match.session import MatchSession, PickOutcome, SessionState
from backend.match.storage import DatabaseStorage
from backend.models import Base
from match_game.display import format_seconds, render_grid, render_hardest, render_status

Prompt = Callable[[str], Awaitable[str]]


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_store() -> ProgressStore:
    return ProgressStore(DatabaseStorage(async_session))


async def ask(prompt: str) -> str:
    """Read a line in a worker thread so the event loop (and the ticker) keeps running."""
    return (await asyncio.to_thread(input, prompt)).strip()


def _show_time_in_title(elapsed_ms: int) -> None:
    sys.stdout.write(f"\x1b]2;Match {format_seconds(elapsed_ms)}s\x07")
    sys.stdout.flush()


async def load_cards(args: argparse.Namespace) -> list[MatchCard]:
    if args.file:
        return load_cards_from_file(Path(args.file))
    if getattr(args, "remote", False):
        return await QuizletClient().fetch_set_cards(args.set_id)
    return []


def _print_batch_complete(session: MatchSession, elapsed_ms: int, terms: dict[str, str]) -> None:
    snapshot = session.snapshot()
    summary = snapshot.summary
    print("\n  Nice! Batch completed")
    print(
        f"  Time: {format_seconds(elapsed_ms)}  •  "
        f"Learned: {summary.learned} / {snapshot.total_cards}  •  Remaining: {summary.remaining}"
    )
    print(f"  A card is learned after {session.learn_streak} correct in a row.")
    hardest = render_hardest(snapshot, terms)
    if hardest:
        print(hardest)


async def play_session(session: MatchSession, prompt: Prompt = ask) -> ProgressSummary:
    """Run an interactive Match session until the learner stops."""
    terms = {card.id: card.term for card in session.cards}
    await session.open()
    if session.state is SessionState.EMPTY:
        print("\n  No cards to study in this set.")
        return session.end()

    if sys.stdout.isatty():
        session.start_ticker(_show_time_in_title)

    print("\n  Match: pick a term and its definition to clear them from the board.")
    try:
        while True:
            snapshot = session.snapshot()
            print()
            print(render_status(snapshot))
            print(render_grid(snapshot.tiles))

            choice = (await prompt("\n  Tile number (r=reset, q=quit): ")).lower()
            if choice == "q":
                print("\n  Session ended.")
                break
            if choice == "r":
                await session.reset()
                print("  Progress reset.")
                continue
            if not choice.isdigit() or not 1 <= int(choice) <= len(snapshot.tiles):
                print("  Enter a tile number from the board.")
                continue

            tile = snapshot.tiles[int(choice) - 1]
            result, resolution = await session.pick_and_resolve(tile.id)
            if result.outcome is PickOutcome.IGNORED:
                print(f"  That tile can't be picked ({result.reason}).")
                continue
            if resolution is None:
                continue
            if not resolution.matched:
                print("  Not a pair.")
                continue

            print("  Match! Card learned." if resolution.newly_learned else "  Match!")
            if resolution.batch_completed:
                _print_batch_complete(session, resolution.elapsed_ms or 0, terms)
                again = (await prompt("  Continue? [Y/n]: ")).lower()
                if again in ("n", "q"):
                    break
                await session.start_batch()
    finally:
        summary = session.end()
    return summary


async def cmd_play(args: argparse.Namespace) -> None:
    """Play Match in the terminal."""
    await ensure_db()
    try:
        cards = await load_cards(args)
    except CardSourceError as exc:
        print(f"  {exc}")
        return
    if not cards:
        print("  No cards found. Pass --file PATH or --remote.")
        return

    session = MatchSession(
        args.learner_id,
        args.set_id,
        cards,
        get_store(),
        round_size=args.round_size,
    )
    summary = await play_session(session)
    print(f"  Learned {summary.learned} of {summary.learned + summary.remaining} cards.\n")


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show stored progress for a learner and set."""
    await ensure_db()
    progress = await get_store().load(args.learner_id, args.set_id)

    card_ids = None
    terms: dict[str, str] = {}
    if args.file:
        try:
            cards = load_cards_from_file(Path(args.file))
        except CardSourceError as exc:
            print(f"  {exc}")
            return
        card_ids = [card.id for card in cards]
        terms = {card.id: card.term for card in cards}
    summary = summarize_progress(progress, card_ids, settings.hardest_cards_limit)

    best = format_seconds(summary.best_time_ms) if summary.best_time_ms is not None else "-"
    print(f"\n  Match progress: learner {args.learner_id}, set {args.set_id}")
    print(f"  {'Learned:':<20} {summary.learned}")
    print(f"  {'Remaining:':<20} {summary.remaining}")
    print(f"  {'Mistakes:':<20} {summary.mistakes}")
    print(f"  {'Total wrong:':<20} {summary.total_wrong}")
    print(f"  {'Best time (s):':<20} {best}")
    if summary.hardest:
        hardest = ", ".join(f"{terms.get(card_id, card_id)} ({wrong})" for card_id, wrong in summary.hardest)
        print(f"  {'Hardest:':<20} {hardest}")
    print()


async def cmd_reset(args: argparse.Namespace) -> None:
    """Forget stored progress for a learner and set."""
    await ensure_db()
    await get_store().reset(args.learner_id, args.set_id)
    print(f"  Progress reset for learner {args.learner_id}, set {args.set_id}.")


def main() -> None:
    """Entry point for the Match game CLI."""
    parser = argparse.ArgumentParser(
        prog="match_game",
        description="Flashcard Match game",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    target = argparse.ArgumentParser(add_help=False)
    target.add_argument("-l", "--learner", dest="learner_id", required=True, help="Learner id")
    target.add_argument("-s", "--set", dest="set_id", required=True, help="Flashcard set id")

    # play
    play_parser = subparsers.add_parser("play", parents=[target], help="Play Match in the terminal")
    source = play_parser.add_mutually_exclusive_group()
    source.add_argument("-f", "--file", help="Card file (.json or .csv)")
    source.add_argument("--remote", action="store_true", help="Fetch cards from the set API")
    play_parser.add_argument(
        "--round-size", type=int, default=settings.round_size, help="Cards per batch"
    )

    # stats
    stats_parser = subparsers.add_parser("stats", parents=[target], help="Show stored progress")
    stats_parser.add_argument("-f", "--file", help="Card file to scope the counts to")

    # reset
    subparsers.add_parser("reset", parents=[target], help="Forget stored progress")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    cmd_map = {
        "play": cmd_play,
        "stats": cmd_stats,
        "reset": cmd_reset,
    }

    asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    main()
