from __future__ import annotations

import argparse
import asyncio
import logging
import os

import numpy as np
from rich.console import Console
from rich.table import Table

from .config import GeneratorConfig
from .generator import MelodyGenerator
from .logging_utils import configure_logging, log_exception
from .selector import NoteSelector
from .timeline import ScaleTimeline

_LOGGER = logging.getLogger("jazzline.cli")
_CONSOLE = Console()


def _parse_params(pairs: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"expected key=value, got {pair!r}")
        params[key.strip()] = value.strip()
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jazzline")
    sub = parser.add_subparsers(dest="command", required=True)

    play = sub.add_parser("play", help="Play the generated melody over the backing loop.")
    play.add_argument("--duration", type=float, default=None, help="Seconds to play (default: forever).")
    play.add_argument("--sounds", type=str, default=None, help="Directory holding the samples.")
    play.add_argument("--progression", type=int, default=0, help="Notes to play right away.")
    play.add_argument("--offload", action="store_true", help="Compute notes on a worker thread.")
    play.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Setting such as volume=0.5 or autoNotesChance=0.4 (repeatable).",
    )

    trace = sub.add_parser("trace", help="Print a seeded note sequence without audio.")
    trace.add_argument("--notes", type=int, default=16)
    trace.add_argument("--seed", type=int, default=None)
    trace.add_argument("--transpose", type=int, default=None)
    trace.add_argument("--step-ms", type=int, default=None, help="Simulated time between notes.")
    return parser


async def _play(config: GeneratorConfig, duration: float | None, progression: int) -> None:
    generator = MelodyGenerator(config)
    generator.start()
    try:
        if progression:
            generator.play_note_progression(progression)
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        generator.close()
    _LOGGER.info("Played %d note(s).", generator.notes_played)


def _trace(config: GeneratorConfig, notes: int, seed: int | None, step_ms: int) -> Table:
    now = [0.0]
    timeline = ScaleTimeline()
    selector = NoteSelector(
        rng=np.random.default_rng(seed),
        timeline=timeline,
        clock=lambda: now[0],
    )
    selector.set_transpose(config.transpose)

    table = Table(title=f"jazzline trace (seed={seed}, transpose={config.transpose})")
    for column in ("#", "time", "segment", "scale", "pitch", "sample", "rate"):
        table.add_column(column, justify="right" if column != "scale" else "left")
    for index in range(notes):
        now[0] = index * step_ms / 1000.0
        position = now[0] % timeline.loop_duration
        segment_index = timeline.locate_index(position)
        sound = selector.generate_next_note(segment_index)
        segment = timeline.segment(segment_index)
        table.add_row(
            str(index),
            f"{position:.2f}",
            str(segment_index),
            f"{segment.scale} ({segment.root})",
            str(sound.pitch),
            sound.sample_id,
            f"{sound.playback_rate:.4f}",
        )
    return table


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "play":
            config = GeneratorConfig.from_params(_parse_params(args.param))
            if args.sounds:
                config = config.with_updates(base_url=args.sounds)
            if args.offload:
                config = config.with_updates(offload=True)
            asyncio.run(_play(config, args.duration, args.progression))
            return 0

        if args.command == "trace":
            config = GeneratorConfig.default()
            if args.transpose is not None:
                config = config.with_updates(transpose=args.transpose)
            step_ms = args.step_ms if args.step_ms is not None else config.auto_notes_delay_ms
            _CONSOLE.print(_trace(config, max(0, args.notes), args.seed, step_ms))
            return 0

        parser.print_help()
        return 1
    except KeyboardInterrupt:
        _CONSOLE.print("Stopped.")
        return 0
    except Exception as exc:
        debug = bool(os.environ.get("JAZZLINE_DEBUG"))
        _LOGGER.warning("jazzline CLI failed: %s", exc, exc_info=debug)
        log_exception("jazzline CLI", exc, argv=argv)
        _CONSOLE.print(f"[bold red]jazzline failed:[/] {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
