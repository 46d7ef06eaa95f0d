"""Plain-text rendering of the Match board for the terminal.

Usage:
    from match_game.display import render_grid, render_status

    snapshot = session.snapshot()
    print(render_status(snapshot))
    print(render_grid(snapshot.tiles))
"""

from __future__ import annotations

import shutil
import textwrap

from backend.match.session import MatchSnapshot, TileView

_DEFAULT_COLUMNS = 3
_SOLVED_MARK = "·"


def format_seconds(ms: int) -> str:
    """Format milliseconds as seconds with one decimal, e.g. 12345 -> '12.3'."""
    return f"{ms / 1000:.1f}"


def _cell_width(columns: int) -> int:
    terminal_width = shutil.get_terminal_size((80, 24)).columns
    return max(12, terminal_width // columns - 3)


def render_grid(tiles: list[TileView], columns: int = _DEFAULT_COLUMNS, width: int | None = None) -> str:
    """Render the tiles as a numbered grid.

    Tiles are numbered from 1 in board order. Solved tiles keep their slot
    but show no text; picked tiles are bracketed.
    """
    if not tiles:
        return "  (no tiles)"
    width = width or _cell_width(columns)
    lines: list[str] = []
    for row_start in range(0, len(tiles), columns):
        cells = []
        for number, tile in enumerate(tiles[row_start : row_start + columns], row_start + 1):
            if tile.solved:
                label = _SOLVED_MARK
            else:
                label = textwrap.shorten(tile.text, width=max(4, width - 6), placeholder="…")
                if tile.picked:
                    label = f"[{label}]"
            cells.append(f"{number:>2}. {label}".ljust(width))
        lines.append("  " + " ".join(cells).rstrip())
    return "\n".join(lines)


def render_status(snapshot: MatchSnapshot) -> str:
    """Render the counters line shown above the board."""
    summary = snapshot.summary
    parts = [
        f"Learned: {summary.learned}",
        f"Remaining: {summary.remaining}",
        f"Mistakes: {summary.mistakes}",
        f"Time: {format_seconds(snapshot.elapsed_ms)}",
    ]
    if summary.best_time_ms is not None:
        parts.append(f"Best: {format_seconds(summary.best_time_ms)}")
    line = "  " + "  •  ".join(parts)
    sub = f"  Current batch: {snapshot.batch_size} pairs  •  Pairs left: {snapshot.pairs_left}"
    if summary.total_wrong > 0:
        sub += f"  •  Total wrong: {summary.total_wrong}"
    if snapshot.persistence_warning:
        sub += "\n  (progress is not being saved)"
    return f"{line}\n{sub}"


def render_hardest(snapshot: MatchSnapshot, terms: dict[str, str]) -> str:
    """Render the most-missed cards, or an empty string if none were missed."""
    hardest = snapshot.summary.hardest
    if not hardest:
        return ""
    entries = [f"{terms.get(card_id, card_id)} ({wrong})" for card_id, wrong in hardest]
    return "  Hardest: " + ", ".join(entries)
