from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from flag_exorcist import __version__
from flag_exorcist.config import ENV_CUTOFF, ENV_LOG_LEVEL, ENV_REPO_PATH, ENV_SYMBOLS, build_config
from flag_exorcist.errors import ConfigError, RepositoryError

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flag-exorcist",
        description=(
            "Report usages of feature flags that were introduced, according to "
            "git history, longer ago than the cutoff."
        ),
        epilog=(
            f"Environment: {ENV_SYMBOLS} (comma separated), {ENV_CUTOFF} (days), "
            f"{ENV_REPO_PATH}, {ENV_LOG_LEVEL}. Flags take precedence."
        ),
    )
    parser.add_argument("--path", default=".", help="Project directory to analyze")
    parser.add_argument(
        "--symbol",
        action="append",
        default=[],
        help="Flag symbol to track (repeatable, or comma separated)",
    )
    parser.add_argument(
        "--cutoff-days",
        type=int,
        default=None,
        help="Report flags introduced more than this many days ago",
    )
    parser.add_argument(
        "--repo",
        default=None,
        help="Git repository to read history from (default: --path)",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument("--jobs", type=int, default=1, help="Units analyzed in parallel")
    parser.add_argument(
        "--max-commits",
        type=int,
        default=None,
        help="Only walk the newest N commits when dating a flag",
    )
    parser.add_argument(
        "--history-timeout",
        type=float,
        default=None,
        help="Give up dating a single flag after this many seconds",
    )
    parser.add_argument(
        "--include",
        action="append",
        default=[],
        help="Glob to include (repeatable, relative to --path)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Glob to exclude (repeatable, relative to --path)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(
    argv: Iterable[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    environ = environ if environ is not None else os.environ

    root = Path(args.path).resolve()
    if not root.exists() or not root.is_dir():
        parser.error(f"path does not exist or is not a directory: {root}")

    try:
        config = build_config(
            symbols=args.symbol,
            cutoff_days=args.cutoff_days,
            repo_path=args.repo,
            log_level=args.log_level,
            max_commits=args.max_commits,
            history_timeout=args.history_timeout,
            include=args.include,
            exclude=args.exclude,
            jobs=args.jobs,
            environ=environ,
        )
    except ConfigError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    from flag_exorcist.auditor import Auditor, discover_units
    from flag_exorcist.history import GitHistory
    from flag_exorcist.report import CollectingReporter, render_json, render_text

    try:
        history = GitHistory.open(config.repo_path or root)
    except RepositoryError as exc:
        parser.exit(EXIT_ERROR, f"{parser.prog}: error: {exc}\n")

    units = discover_units(root, config.include, config.exclude)
    logging.getLogger(__name__).info(
        "Analyzing %d unit(s) under %s for %s", len(units), root, ", ".join(config.symbols)
    )

    reporter = CollectingReporter()
    with Auditor(config, history, reporter) as auditor:
        diagnostics = auditor.run(units, jobs=config.jobs)

    if args.format == "json":
        sys.stdout.write(render_json(diagnostics, root))
    else:
        sys.stdout.write(render_text(reporter.reports, root))
    return EXIT_FINDINGS if reporter.reports else EXIT_CLEAN


if __name__ == "__main__":
    raise SystemExit(main())
