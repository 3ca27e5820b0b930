"""
Command-line interface.

    loopscope analyze loop.wav [--fast] [--window 0.5] [-o report.json]
    loopscope mix base.wav take1.wav take2.wav -o mix.wav --volume 1=0.5 --mute 2
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from loopscope.config import AnalysisConfig
from loopscope.core.buffer import AudioLoader
from loopscope.core.session import LoopSession
from loopscope.errors import DecodeFailure, InvalidLayerIndex
from loopscope.pipeline import LoopPipeline

logger = logging.getLogger(__name__)


def _parse_volume(text: str) -> tuple:
    """``"I=V"`` -> (int, float)."""
    try:
        index, volume = text.split("=", 1)
        return int(index), float(volume)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected INDEX=VOLUME, got {text!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopscope",
        description="Analyse and mix audio loops",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Detect tempo, key and chords")
    analyze.add_argument(
        "audio",
        type=Path,
        help="Input audio file (wav, mp3, flac)",
    )
    analyze.add_argument(
        "--fast",
        action="store_true",
        help="Coarse tempo pass over the first 10 seconds",
    )
    analyze.add_argument(
        "--window",
        type=float,
        default=None,
        help="Chord window length in seconds (default: 1.0)",
    )
    analyze.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Write the JSON report here instead of stdout",
    )

    mix = sub.add_parser("mix", help="Layer overdubs on a base loop and export WAV")
    mix.add_argument(
        "base",
        type=Path,
        help="Base loop audio file",
    )
    mix.add_argument(
        "overdubs",
        type=Path,
        nargs="*",
        help="Overdub takes, layered in order",
    )
    mix.add_argument(
        "-o", "--output",
        type=Path,
        required=True,
        help="Output WAV file",
    )
    mix.add_argument(
        "--volume",
        type=_parse_volume,
        action="append",
        default=[],
        metavar="I=V",
        help="Set layer I to volume V (0-1); repeatable",
    )
    mix.add_argument(
        "--mute",
        type=int,
        action="append",
        default=[],
        metavar="I",
        help="Mute layer I; repeatable",
    )
    return parser


def _check_inputs(paths) -> None:
    for path in paths:
        if not path.exists():
            print(f"Error: Audio file not found: {path}", file=sys.stderr)
            sys.exit(1)


def run_analyze(args: argparse.Namespace) -> None:
    _check_inputs([args.audio])

    config = AnalysisConfig.fast() if args.fast else AnalysisConfig()
    if args.window is not None:
        config.chords.window_seconds = args.window

    result = LoopPipeline(config).process(args.audio, args.output)
    if args.output is None:
        print(json.dumps(result["report"], indent=2))
    else:
        print(f"Report written to {result['report_path']}")


def run_mix(args: argparse.Namespace) -> None:
    _check_inputs([args.base, *args.overdubs])

    loader = AudioLoader()
    session = LoopSession()
    session.start(loader.load(args.base))
    for path in args.overdubs:
        session.overdub(loader.load(path))

    for index, volume in args.volume:
        session.set_volume(index, volume)
    for index in args.mute:
        session.set_muted(index, True)

    path = session.export_wav(args.output)
    print(f"Mixed {len(session.layers)} layer(s) into {path}")


def main(argv=None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "analyze":
            run_analyze(args)
        else:
            run_mix(args)
    except DecodeFailure as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except InvalidLayerIndex as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
