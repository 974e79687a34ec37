"""Push hook entry point.

Reads the `<old> <new> <ref>` lines git writes to a dependent repository's
hook, works out which repository is pushing and runs a synchronization for
each line. Also owns the logging setup shared with the CLI.
"""

import logging
import os
import sys
from collections.abc import Iterable, Mapping
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config
from .constants import (
    APP_NAME,
    EXIT_FAILED,
    EXIT_OK,
    EXIT_USAGE,
    LOG_FILE,
    SOURCE_ENV_VAR,
)
from .errors import AnchorError, ParseError, ValidationError
from .git_wrapper import GitRepo
from .notify import Notifier, get_notifier
from .policy import PushEvent
from .sync import synchronize

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


def setup_logging(interactive: bool, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False (hook runs), logs
                            to stderr and to a rotating log file.
        max_log_size (int): Max bytes of the log file before rotation.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Git relays hook stderr to the pushing client.
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        try:
            LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE,
                maxBytes=max_log_size,
                backupCount=5,
            )
        except OSError as e:
            logger.warning(f"Could not open log file {LOG_FILE}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def parse_update_line(line: str, source: str) -> PushEvent:
    """Parses one `<old> <new> <ref>` line written by git to a push hook.

    Args:
        line (str): The raw line.
        source (str): The dependent repository's identifier.

    Returns:
        PushEvent: The parsed ref update. Values are validated later by the
                   eligibility filter.

    Raises:
        ParseError: If the line does not have exactly three fields.
    """
    fields = line.split()
    if len(fields) != 3:
        raise ParseError(f"Malformed hook input line: '{line.strip()}'")
    old, new, ref = fields
    return PushEvent(old=old, new=new, ref=ref, source=source)


def resolve_source(explicit: str | None, env: Mapping[str, str]) -> str:
    """Determines which dependent repository the hook is running in.

    Order: the explicit value, then `$GIT_ANCHOR_SOURCE`, then the name of
    `$GIT_DIR` (without a `.git` suffix; for a `.git` directory, its parent).

    Returns:
        str: The identifier, or an empty string if it cannot be determined.
    """
    if explicit:
        return explicit
    if env.get(SOURCE_ENV_VAR):
        return env[SOURCE_ENV_VAR]

    git_dir = env.get("GIT_DIR")
    if not git_dir:
        return ""
    path = Path(git_dir)
    if not path.is_absolute():
        path = Path.cwd() / path
    path = path.resolve()
    name = path.parent.name if path.name == ".git" else path.name
    return name.removesuffix(".git")


def run_hook(
    lines: Iterable[str],
    source: str,
    config: Config,
    repo: GitRepo | None = None,
    notifier: Notifier | None = None,
) -> int:
    """Synchronizes every eligible ref update reported to a push hook.

    Each line is handled independently. Ineligible updates are logged as
    no-ops and do not affect the exit status.

    Args:
        lines (Iterable[str]): Hook input lines.
        source (str): The dependent repository's identifier.
        config (Config): The static configuration.
        repo (GitRepo | None): The aggregator; opened from config if omitted.
        notifier (Notifier | None): Event receiver; built from config if omitted.

    Returns:
        int: 0 if every line succeeded or was skipped, 1 if any line failed,
             2 if the aggregator cannot be opened.
    """
    events = []
    status = EXIT_OK
    for line in lines:
        if not line.strip():
            continue
        try:
            events.append(parse_update_line(line, source))
        except ParseError as e:
            logger.error(f"FAILED {source or '<unknown>'}: {e}")
            status = EXIT_FAILED

    if not events:
        return status

    if repo is None:
        try:
            repo = GitRepo(Path(config.aggregator.path).expanduser())
        except ValueError as e:
            logger.error(f"FAILED {source}: aggregator unavailable: {e}")
            return EXIT_USAGE
    if notifier is None:
        notifier = get_notifier(config.notify.events_file)

    for event in events:
        try:
            synchronize(repo, event, config, notifier)
        except ValidationError as e:
            logger.info(f"SKIPPED {event.source or '<unknown>'} {event.ref}: {e.message}")
        except AnchorError as e:
            logger.error(f"FAILED {event.source} {event.ref} [{e.kind}]: {e}")
            status = EXIT_FAILED

    return status


def main(config: Config, source: str | None = None) -> int:
    """Entry point for push hooks: reads ref updates from stdin.

    Args:
        config (Config): The configuration loaded at process startup.
        source (str | None): Explicit source repository identifier.

    Returns:
        int: The process exit status.
    """
    setup_logging(interactive=False, max_log_size=config.limits.max_log_size)

    if not config.aggregator.path:
        logger.error("FAILED: [aggregator].path is not configured")
        return EXIT_USAGE

    resolved = resolve_source(source, os.environ)
    return run_hook(sys.stdin, resolved, config)
