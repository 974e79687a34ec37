import argparse
import datetime
import logging
import os
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from . import hook
from .config import Config
from .constants import (
    APP_NAME,
    CONFIG_ENV_VAR,
    CONFIG_FILE,
    EXIT_FAILED,
    EXIT_OK,
    EXIT_USAGE,
    ZERO_OID,
)
from .errors import AnchorError, NotFoundError, ParseError, ValidationError
from .git_wrapper import GitRepo
from .lock import break_lock, lock_path, read_lock
from .notify import get_notifier
from .policy import PushEvent
from .refs import branch_ref
from .sync import synchronize
from .tree import read_gitlink

logger = logging.getLogger(APP_NAME)
console = Console()


def _open_aggregator(config: Config) -> GitRepo | None:
    """Opens the configured aggregator, reporting problems to the console."""
    if not config.aggregator.path:
        console.print(
            "[bold red]ERROR:[/bold red] [aggregator].path is not configured."
        )
        return None
    try:
        return GitRepo(Path(config.aggregator.path).expanduser())
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        return None


def run_sync(
    config: Config, source: str, new_rev: str, branch: str, old_rev: str
) -> int:
    """Manually synchronizes one dependent repository's revision.

    Returns:
        int: The process exit status.
    """
    repo = _open_aggregator(config)
    if repo is None:
        return EXIT_USAGE

    event = PushEvent(old=old_rev, new=new_rev, ref=branch_ref(branch), source=source)
    notifier = get_notifier(config.notify.events_file)

    try:
        with console.status(
            f"[bold blue]Syncing {source} -> {branch}...[/bold blue]", spinner="dots"
        ):
            result = synchronize(repo, event, config, notifier)
    except ValidationError as e:
        console.print(f"[bold yellow]REJECTED:[/bold yellow] {e.message}")
        return EXIT_FAILED
    except AnchorError as e:
        console.print(f"[bold red]FAILED ({e.kind}):[/bold red] {e}")
        return EXIT_FAILED

    if result.status == "unchanged":
        console.print(
            f"[bold green]SUCCESS:[/bold green] {result.path} already pinned "
            f"at {new_rev[:12]}."
        )
    else:
        console.print(
            f"[bold green]SUCCESS:[/bold green] {result.branch} advanced "
            f"{result.old_tip[:12]} -> {result.new_tip[:12]} "
            f"({result.attempts} attempt(s))."
        )
    return EXIT_OK


def show_status(config: Config, branch: str) -> int:
    """Displays the pinned revision of every mapped repository on a branch."""
    repo = _open_aggregator(config)
    if repo is None:
        return EXIT_USAGE

    ref = branch_ref(branch)
    tip = repo.rev_parse(ref)
    if not tip:
        console.print(f"[bold red]ERROR:[/bold red] Branch {ref} does not exist.")
        return EXIT_FAILED

    table = Table(title=f"{ref} @ {tip[:12]}")
    table.add_column("Repository", style="cyan")
    table.add_column("Path", style="green")
    table.add_column("Pinned", style="yellow")

    allowed = set(config.policy.repos or config.submodules)
    for source, path in sorted(config.submodules.items()):
        pinned = read_gitlink(repo, tip, path)
        label = source if source in allowed else f"{source} [dim](not allowed)[/dim]"
        table.add_row(label, path, pinned or "[red]missing[/red]")

    console.print(table)

    holder = read_lock(lock_path(repo.git_dir(), branch))
    if holder:
        age = time.time() - holder.acquired_at
        since = datetime.datetime.fromtimestamp(holder.acquired_at)
        console.print(
            Panel(
                f"[bold]Owner:[/bold] {holder.owner}\n"
                f"[bold]Since:[/bold] {since:%Y-%m-%d %H:%M:%S} ({age:.0f}s ago)",
                title="Lock Held",
                border_style="yellow",
                expand=False,
            )
        )
    return EXIT_OK


def unlock_branch(config: Config, branch: str, assume_yes: bool) -> int:
    """Removes a leftover lock file for an aggregator branch."""
    repo = _open_aggregator(config)
    if repo is None:
        return EXIT_USAGE

    path = lock_path(repo.git_dir(), branch)
    holder = read_lock(path)
    if holder is None and not path.exists():
        console.print(f"[dim]No lock held on {branch}.[/dim]")
        return EXIT_OK

    owner = holder.owner if holder else "unknown"
    if not assume_yes and not Confirm.ask(
        f"Break lock on [cyan]{branch}[/cyan] held by [yellow]{owner}[/yellow]?"
    ):
        console.print("[bold red]ABORTED.[/bold red]")
        return EXIT_FAILED

    if break_lock(path):
        logger.warning(f"Lock on {branch} held by {owner} broken by operator.")
    console.print(f"[bold green]SUCCESS:[/bold green] Lock on {branch} removed.")
    return EXIT_OK


def show_config(config: Config, source: Path) -> None:
    """Displays the effective configuration."""
    console.print(f"Config file: [cyan]{source}[/cyan]")
    console.print(f"Aggregator:  [cyan]{config.aggregator.path or '(unset)'}[/cyan]")
    console.print(
        f"Branch:      [cyan]{config.aggregator.branch or '(mirror pushed branch)'}[/cyan]"
    )
    console.print(f"Pattern:     [cyan]{config.policy.branch_pattern}[/cyan]")

    table = Table(title="Submodules")
    table.add_column("Repository", style="cyan")
    table.add_column("Path", style="green")
    for source_repo, path in sorted(config.submodules.items()):
        table.add_row(source_repo, path)
    console.print(table)


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Git Anchor Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "aggregator", "path", "str", '""', "Path of the aggregator repository."
    )
    table.add_row(
        "", "branch", "str", '""', "Branch to advance. Empty mirrors the pushed branch."
    )
    table.add_row(
        "policy",
        "branch_pattern",
        "str",
        '"main|develop"',
        "Regex a pushed branch must fully match.",
    )
    table.add_row(
        "", "repos", "list", "[]", "Allowed source repos. Empty allows all mapped repos."
    )
    table.add_row(
        "submodules", "<repo>", "str", "-", "Gitlink path of each source repository."
    )
    table.add_row(
        "sync", "max_retries", "int", "5", "Retries after a lost compare-and-swap."
    )
    table.add_row("", "retry_backoff", "float | str", "0.2", "Initial retry delay.")
    table.add_row("", "max_backoff", "float | str", "2.0", "Maximum retry delay.")
    table.add_row(
        "", "lock_timeout", "float | str", '"30s"', "Wait limit for the branch lock."
    )
    table.add_row(
        "", "stale_lock", "float | str", '"10m"', "Age after which a lock is broken."
    )
    table.add_row(
        "commit", "author_name", "str", '"git-anchor"', "Author and committer name."
    )
    table.add_row(
        "", "author_email", "str", '"git-anchor@localhost"', "Author and committer email."
    )
    table.add_row(
        "",
        "message",
        "str",
        '"Sync {path} to {short}..."',
        "Template; fields: path, oid, short, repo, branch, previous.",
    )
    table.add_row(
        "notify", "events_file", "str", '""', "JSON-lines event journal (optional)."
    )
    table.add_row(
        "limits", "max_log_size", "int | str", '"5mb"', "Log size before rotation."
    )

    console.print(table)


def main() -> None:
    """Main entry point for the Git Anchor CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Advance an aggregator repository's gitlinks on push.",
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Configuration file to load"
    )

    subparsers = parser.add_subparsers(dest="command")

    hook_parser = subparsers.add_parser(
        "hook", help="Run as a push hook (reads ref updates from stdin)"
    )
    hook_parser.add_argument(
        "--source", help="Source repository identifier (default: from $GIT_DIR)"
    )

    sync_parser = subparsers.add_parser("sync", help="Synchronize a revision manually")
    sync_parser.add_argument("source", help="Source repository identifier")
    sync_parser.add_argument("new_rev", help="Commit hash to pin")
    sync_parser.add_argument(
        "--branch", default="main", help="Pushed branch name (default: main)"
    )
    sync_parser.add_argument(
        "--old", default=ZERO_OID, help="Previous commit of the pushed branch"
    )

    status_parser = subparsers.add_parser("status", help="Show pinned revisions")
    status_parser.add_argument("--branch", help="Aggregator branch (default: main)")

    unlock_parser = subparsers.add_parser("unlock", help="Break a leftover branch lock")
    unlock_parser.add_argument("branch", help="Aggregator branch")
    unlock_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )

    config_parser = subparsers.add_parser(
        "config", help="Show effective config or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_USAGE)

    if args.command == "config" and args.list:
        show_config_reference()
        return

    try:
        config = Config.load(args.config)
    except (NotFoundError, ParseError) as e:
        if args.command == "hook":
            hook.setup_logging(interactive=False)
            logger.error(f"FAILED: {e}")
        else:
            console.print(f"[bold red]CONFIG ERROR:[/bold red] {e}")
        sys.exit(EXIT_USAGE)

    if args.command == "hook":
        sys.exit(hook.main(config, source=args.source))
    elif args.command == "sync":
        hook.setup_logging(interactive=True, max_log_size=config.limits.max_log_size)
        sys.exit(run_sync(config, args.source, args.new_rev, args.branch, args.old))
    elif args.command == "status":
        branch = args.branch or config.aggregator.branch or "main"
        sys.exit(show_status(config, branch))
    elif args.command == "unlock":
        sys.exit(unlock_branch(config, args.branch, args.yes))
    elif args.command == "config":
        source = args.config or Path(os.environ.get(CONFIG_ENV_VAR, CONFIG_FILE))
        show_config(config, source)
        return


if __name__ == "__main__":
    main()
