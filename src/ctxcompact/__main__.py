"""ctxcompact - conversation context compaction for LLM agents."""

import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

_HELP = """\
Usage: ctxcompact compact <log.json> [OPTIONS]
       ctxcompact estimate <log.json> [--max-tokens <n>]

Compact options:
  --strategy <name>    evict (default) or summarize
  --max-tokens <n>     Override the model context size
  --output <path>      Write the compacted log here instead of stdout
  --plugins <dir>      Load plugins from a directory
  --help, -h           Show this help message and exit

Examples:
  ctxcompact compact session.json --max-tokens 120000 --output compacted.json
  ctxcompact compact session.json --strategy summarize
  ctxcompact estimate session.json
"""


def main() -> None:
    """Entry point for the ctxcompact CLI."""
    args = sys.argv[1:]

    if not args or "--help" in args or "-h" in args:
        print(_HELP)
        sys.exit(0)

    from ctxcompact.core.config import EnvSettings, load_config

    env = EnvSettings()
    logging.basicConfig(
        level=env.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    config = load_config()

    if args[0] == "compact":
        sys.exit(_run_compact(args[1:], config))
    elif args[0] == "estimate":
        sys.exit(_run_estimate(args[1:], config))
    else:
        print(f"Unknown command: {args[0]}")
        print("Run 'ctxcompact --help' for usage.")
        sys.exit(1)


def _parse_int(value: str, flag: str) -> int:
    try:
        return int(value)
    except ValueError:
        print(f"{flag} expects an integer, got {value!r}")
        sys.exit(1)


def _run_compact(args: list[str], config) -> int:
    """Parse compact sub-command flags and run it."""
    from ctxcompact.cli.app import CompactOptions, run_compact
    from ctxcompact.core.config import CompactionStrategy

    log_path: Path | None = None
    options: dict = {}

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--strategy" and i + 1 < len(args):
            try:
                options["strategy"] = CompactionStrategy(args[i + 1])
            except ValueError:
                print(f"Unknown strategy: {args[i + 1]} (expected evict or summarize)")
                return 1
            i += 2
        elif arg == "--max-tokens" and i + 1 < len(args):
            options["max_tokens"] = _parse_int(args[i + 1], arg)
            i += 2
        elif arg == "--output" and i + 1 < len(args):
            options["output"] = Path(args[i + 1])
            i += 2
        elif arg == "--plugins" and i + 1 < len(args):
            options["plugins_dir"] = Path(args[i + 1])
            i += 2
        elif not arg.startswith("-") and log_path is None:
            log_path = Path(arg)
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            print("Run 'ctxcompact --help' for usage.")
            return 1

    if log_path is None:
        print("Usage: ctxcompact compact <log.json> [OPTIONS]")
        return 1

    return run_compact(CompactOptions(log_path=log_path, **options), config)


def _run_estimate(args: list[str], config) -> int:
    """Parse estimate sub-command flags and run it."""
    from ctxcompact.cli.app import run_estimate

    log_path: Path | None = None
    max_tokens: int | None = None

    i = 0
    while i < len(args):
        if args[i] == "--max-tokens" and i + 1 < len(args):
            max_tokens = _parse_int(args[i + 1], args[i])
            i += 2
        elif not args[i].startswith("-") and log_path is None:
            log_path = Path(args[i])
            i += 1
        else:
            print(f"Unknown argument: {args[i]}")
            print("Usage: ctxcompact estimate <log.json> [--max-tokens <n>]")
            return 1

    if log_path is None:
        print("Usage: ctxcompact estimate <log.json> [--max-tokens <n>]")
        return 1

    return run_estimate(log_path, config, max_tokens=max_tokens)


if __name__ == "__main__":
    main()
