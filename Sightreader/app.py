#!/usr/bin/env python3
import argparse
import importlib
import sys
from pathlib import Path

from config import DEFAULT_PROFILE, TEMPO_CHOICES
from display import ConsoleObserver
from library import DirectoryLibrary
from sampler import PitchSampler
from session import SessionController
from sr_types import SessionFlags, SessionState
from stats_gateway import HttpStatsGateway, NullStatsGateway

HELP = ("Commands: s=start/stop  r=reset  t=tuner  n=next  b=back  g <n>=goto item n  "
        "tempo <qpm|inherit>  ?=help  q=quit")


def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{text!r} is not a whole number")
    if value <= 0:
        raise argparse.ArgumentTypeError(f"{text!r} must be greater than zero")
    return value


def load_parser(target: str):
    """'package.module:function' -> callable(text) -> tune."""
    module_name, _, attr = target.partition(":")
    return getattr(importlib.import_module(module_name), attr or "parse")


def handle_command(session: SessionController, line: str) -> bool:
    """Run one command line. Returns False when the user asked to quit."""
    parts = line.strip().split()
    if not parts:
        return True
    cmd, rest = parts[0].lower(), parts[1:]
    if cmd in ("q", "quit", "exit"):
        return False
    if cmd == "s":
        session.toggle()
    elif cmd == "r":
        session.reset()
    elif cmd == "t":
        session.tune_mode()
    elif cmd == "n":
        session.increment()
    elif cmd == "b":
        session.decrement()
    elif cmd == "g" and rest and rest[0].isdigit():
        session.goto_index(int(rest[0]) - 1)
    elif cmd == "tempo" and rest and rest[0] == "inherit":
        session.set_tempo(None)
    elif cmd == "tempo" and rest and rest[0].isdigit():
        session.set_tempo(int(rest[0]))
    else:
        print(HELP)
    return True


def main(argv=None):
    ap = argparse.ArgumentParser(description="Sight-reading practice: play along with a score into your mic and get scored.")
    ap.add_argument("score", nargs="?", help="Score file (.mid, or text with --parser) or a .pls playlist (JSON list of file names)")
    ap.add_argument("--device", help="Input device index or name substring. If omitted, the system default is used.")
    ap.add_argument("--list-devices", action="store_true", help="Print available input devices and exit")
    ap.add_argument("--tempo", type=positive_int, help=f"Tempo override in QPM (e.g. {', '.join(map(str, TEMPO_CHOICES))}); default inherits from the score")
    ap.add_argument("--profile", default=DEFAULT_PROFILE, help=f"Score history profile (default {DEFAULT_PROFILE!r})")
    ap.add_argument("--stats-url", help="Base URL of the score statistics service")
    ap.add_argument("--ignore-duration", action="store_true", help="Score a note once it's hit, without checking how long it's held")
    ap.add_argument("--auto-continue", action="store_true", help="Move to the next playlist item once a score reaches your average")
    ap.add_argument("--no-click", action="store_true", help="Disable the count-in click")
    ap.add_argument("--channel", type=int, help="Only read this MIDI channel (0-15) from MIDI scores")
    ap.add_argument("--parser", help="Callable that parses score text into a tune, as 'module:function'")
    args = ap.parse_args(argv)

    # sounddevice needs PortAudio; only load it once we are going to listen
    from capture import SoundDeviceCapture
    from devices import find_input_device, list_input_devices

    if args.list_devices or not args.score:
        print("Available input devices:")
        for d in list_input_devices():
            print(f"  {d['index']:>3} : {d['name']}")
        if not args.score:
            print("\nTip: re-run with a score file, e.g. 'sightreader lesson1.mid --device usb'")
        return 0

    device = find_input_device(args.device)
    if args.device and device is None:
        print(f"[WARN] Input device '{args.device}' not found. Using the system default.")

    click = None
    if not args.no_click:
        from audio import count_in_click
        click = count_in_click

    path = Path(args.score)
    library = DirectoryLibrary(path.parent, channel=args.channel)
    session = SessionController(
        sampler=PitchSampler(capture_factory=SoundDeviceCapture),
        gateway=HttpStatsGateway(args.stats_url) if args.stats_url else NullStatsGateway(),
        observer=ConsoleObserver(),
        parser=load_parser(args.parser) if args.parser else None,
        library=library,
        flags=SessionFlags(ignore_duration=args.ignore_duration, auto_continue=args.auto_continue),
        profile=args.profile,
        device_id=device,
        click=click,
    )
    session.set_tempo(args.tempo)

    if library.is_playlist(path.name):
        try:
            items = library.load_playlist(path.name)
        except (OSError, ValueError) as e:
            print(f"Unable to load playlist file: {path.name} ({e})")
            return 1
    else:
        items = [path.name]
    session.load_playlist(items)

    print(HELP)
    try:
        for line in sys.stdin:
            if not handle_command(session, line):
                break
    except KeyboardInterrupt:
        pass
    finally:
        session.stop(verbose=False)
        if session.state is SessionState.TUNING:
            session.tune_mode()
        print("\n----- Results -----")
        print(f"{'score':>10s}: {session.tally}")
        print(f"{'qpm':>10s}: {session.qpm}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
