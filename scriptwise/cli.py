"""
Scriptwise CLI

Usage:
    scriptwise classify 'tell application "Finder" to empty the trash'
    scriptwise run --intent "play music" 'tell application "Music" to play'
    scriptwise run --file cleanup.applescript --confirmed
    scriptwise log --intent "play music" --success 'tell application "Music" to play'
    scriptwise similar "play some music" --target Music
    scriptwise target Music
    scriptwise stats
    scriptwise analyze --error "execution error: (-600)" 'tell application "Music" to play'
    scriptwise suggest Music "play my favourites"
    scriptwise skill Music --raw
    scriptwise clear --yes

Scripts may be given inline, with --file PATH, or as "-" to read stdin.
All output is JSON except ``analyze --message`` and ``skill --raw``.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from scriptwise import __version__
from scriptwise.config import DEFAULT_TIMEOUT_MS, configure_logging
from scriptwise.errors import ConfirmationRequired, ScriptwiseError
from scriptwise.intelligence import get_intelligence


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _script_arg(args: argparse.Namespace) -> str:
    if getattr(args, "file", None):
        return Path(args.file).read_text(encoding="utf-8")
    if args.script == "-":
        return sys.stdin.read()
    if not args.script:
        raise SystemExit("error: provide a script inline, with --file, or '-' for stdin")
    return args.script


def _add_script(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("script", nargs="?", default=None, help="AppleScript source, or '-' for stdin")
    parser.add_argument("--file", default=None, help="Read the script from a file")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cli_classify(args: argparse.Namespace) -> None:
    _print_json(get_intelligence().classify(_script_arg(args)).to_dict())


def _cli_run(args: argparse.Namespace) -> None:
    outcome = get_intelligence().run(
        args.intent,
        _script_arg(args),
        confirmed=args.confirmed,
        timeout_ms=args.timeout,
        learn=not args.no_learn,
    )
    _print_json(outcome.to_dict())
    if not outcome.gate.allowed:
        print(outcome.gate.message, file=sys.stderr)
        sys.exit(2)
    if not outcome.success:
        sys.exit(1)


def _cli_log(args: argparse.Namespace) -> None:
    record = get_intelligence().record(args.intent, _script_arg(args), args.success, args.result)
    _print_json(record.to_dict())


def _cli_similar(args: argparse.Namespace) -> None:
    records = get_intelligence().find_similar(
        args.intent,
        target=args.target,
        action=args.action,
        limit=args.limit,
        only_successful=not args.include_failed,
    )
    _print_json([r.to_dict() for r in records])


def _cli_target(args: argparse.Namespace) -> None:
    _print_json([r.to_dict() for r in get_intelligence().by_target(args.target)])


def _cli_stats(args: argparse.Namespace) -> None:
    _print_json(get_intelligence().stats())


def _cli_analyze(args: argparse.Namespace) -> None:
    result = get_intelligence().analyze(_script_arg(args), args.error)
    if args.message:
        print(result["smartMessage"])
    else:
        _print_json(result)


def _cli_suggest(args: argparse.Namespace) -> None:
    _print_json(get_intelligence().suggest(args.target, args.intent).to_dict())


def _cli_skill(args: argparse.Namespace) -> None:
    guide = get_intelligence().skill_guide(args.target)
    if not args.raw:
        _print_json(guide)
        return
    if not guide["available"]:
        print(f'No skill file found for "{args.target}".', file=sys.stderr)
        sys.exit(1)
    print(guide["skill"])


def _cli_clear(args: argparse.Namespace) -> None:
    try:
        get_intelligence().clear_history(confirm=args.yes)
    except ConfirmationRequired as exc:
        print(f"{exc}. Re-run with --yes.", file=sys.stderr)
        sys.exit(2)
    _print_json({"cleared": True})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scriptwise",
        description="Scriptwise — risk-gated AppleScript runner that learns from its history",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command")

    cl = sub.add_parser("classify", help="Risk verdict for a script")
    _add_script(cl)
    cl.set_defaults(func=_cli_classify)

    rn = sub.add_parser("run", help="Classify, gate, execute and learn")
    _add_script(rn)
    rn.add_argument("--intent", default="")
    rn.add_argument("--confirmed", action="store_true", help="Run high/critical risk scripts")
    rn.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="Timeout in ms")
    rn.add_argument("--no-learn", action="store_true", help="Do not record the outcome")
    rn.set_defaults(func=_cli_run)

    lg = sub.add_parser("log", help="Record an execution outcome")
    _add_script(lg)
    lg.add_argument("--intent", default="")
    outcome = lg.add_mutually_exclusive_group(required=True)
    outcome.add_argument("--success", dest="success", action="store_true")
    outcome.add_argument("--failure", dest="success", action="store_false")
    lg.add_argument("--result", default="")
    lg.set_defaults(func=_cli_log)

    si = sub.add_parser("similar", help="Find similar remembered scripts")
    si.add_argument("intent")
    si.add_argument("--target", default=None)
    si.add_argument("--action", default=None)
    si.add_argument("--limit", type=int, default=5)
    si.add_argument("--include-failed", action="store_true")
    si.set_defaults(func=_cli_similar)

    tg = sub.add_parser("target", help="All remembered scripts for an application")
    tg.add_argument("target")
    tg.set_defaults(func=_cli_target)

    st = sub.add_parser("stats", help="Pattern store statistics")
    st.set_defaults(func=_cli_stats)

    an = sub.add_parser("analyze", help="Diagnose a failed script")
    _add_script(an)
    an.add_argument("--error", required=True, help="Error text reported by osascript")
    an.add_argument("--message", action="store_true", help="Print only the human-facing message")
    an.set_defaults(func=_cli_analyze)

    sg = sub.add_parser("suggest", help="Suggest a starting script")
    sg.add_argument("target")
    sg.add_argument("intent")
    sg.set_defaults(func=_cli_suggest)

    sk = sub.add_parser("skill", help="Skill notes and quick reference for an application")
    sk.add_argument("target")
    sk.add_argument("--raw", action="store_true", help="Print only the markdown notes")
    sk.set_defaults(func=_cli_skill)

    cr = sub.add_parser("clear", help="Erase all execution history")
    cr.add_argument("--yes", action="store_true", help="Confirm the erase")
    cr.set_defaults(func=_cli_clear)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)

    if not args.command or not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (ScriptwiseError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
