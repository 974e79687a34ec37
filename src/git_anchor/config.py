import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .commit import format_message
from .constants import (
    APP_NAME,
    CONFIG_ENV_VAR,
    CONFIG_FILE,
    DEFAULT_BRANCH_PATTERN,
)
from .errors import NotFoundError, ParseError
from .policy import EligibilityPolicy

logger = logging.getLogger(APP_NAME)

DEFAULT_MESSAGE = (
    "Sync {path} to {short}\n\nSource: {repo} ({branch})\nSubmodule-Commit: {oid}"
)


def _check_template(template: str) -> str:
    """Renders a commit message template once with placeholder values."""
    try:
        format_message(
            template,
            path="path",
            oid="0" * 40,
            repo="repo",
            branch="main",
            previous="0" * 40,
        )
    except (KeyError, IndexError, AttributeError) as e:
        raise ValueError(f"Unknown template field {e}") from e
    return template


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '30s', '10m') to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class AggregatorConfig:
    """Location of the aggregator repository.

    Attributes:
        path (str): Filesystem path of the aggregator (usually a bare repo).
        branch (str): Aggregator branch to advance. Empty mirrors the pushed
                      branch name.
    """

    path: str = ""
    branch: str = ""


@dataclass
class PolicyConfig:
    """Eligibility settings.

    Attributes:
        branch_pattern (str): Regex a pushed branch must fully match.
        repos (list[str]): Allow-listed source repositories. Empty allows every
                           repository listed under [submodules].
    """

    branch_pattern: str = DEFAULT_BRANCH_PATTERN
    repos: list[str] = field(default_factory=list)


@dataclass
class SyncConfig:
    """Retry and locking settings.

    Attributes:
        max_retries (int): Retries after a compare-and-swap mismatch.
        retry_backoff (float): Initial delay in seconds between retries.
        max_backoff (float): Upper bound on the delay between retries.
        lock_timeout (float): Seconds to wait for the branch lock.
        stale_lock (float): Age in seconds after which a lock is broken.
    """

    max_retries: int = 5
    retry_backoff: float = 0.2
    max_backoff: float = 2.0
    lock_timeout: float = 30.0
    stale_lock: float = 600.0


@dataclass
class CommitConfig:
    """Commit metadata settings.

    Attributes:
        author_name (str): Author and committer name.
        author_email (str): Author and committer email.
        message (str): Message template (see `commit.format_message`).
    """

    author_name: str = "git-anchor"
    author_email: str = "git-anchor@localhost"
    message: str = DEFAULT_MESSAGE


@dataclass
class NotifyConfig:
    """Notification settings.

    Attributes:
        events_file (str): JSON-lines event journal. Empty logs only.
    """

    events_file: str = ""


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        aggregator (AggregatorConfig): Aggregator location.
        policy (PolicyConfig): Eligibility allow-lists.
        submodules (dict[str, str]): Source repository -> gitlink path.
        sync (SyncConfig): Retry and lock behavior.
        commit (CommitConfig): Commit identity and message.
        notify (NotifyConfig): Event reporting.
        limits (LimitsConfig): Resource limits.
    """

    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    submodules: dict[str, str] = field(default_factory=dict)
    sync: SyncConfig = field(default_factory=SyncConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults and a TOML file.

        The file is `path` if given, else `$GIT_ANCHOR_CONFIG`, else the global
        config file. A missing default file yields the defaults.

        Args:
            path (Path | None): An explicit configuration file.

        Returns:
            Config: The populated configuration object.

        Raises:
            NotFoundError: If an explicitly requested file does not exist.
            ParseError: If the file is not valid TOML.
        """
        instance = cls()

        explicit = path or os.environ.get(CONFIG_ENV_VAR)
        source = Path(explicit).expanduser() if explicit else CONFIG_FILE

        if source.exists():
            instance._merge_from_file(source)
        elif explicit:
            raise NotFoundError(f"Config file not found: {source}", path=str(source))

        return instance

    def eligibility(self) -> EligibilityPolicy:
        """Builds the static eligibility policy from this configuration."""
        return EligibilityPolicy(
            branch_pattern=self.policy.branch_pattern,
            repos=tuple(self.policy.repos),
        )

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            raise ParseError(f"Config syntax error: {e}", path=str(path)) from e

        sections = ["aggregator", "policy", "sync", "commit", "notify", "limits"]
        for name in sections + ["submodules"]:
            if name in data and not isinstance(data[name], dict):
                logger.warning(
                    f"Config error in [{name}]: expected a table, got "
                    f"'{data[name]}'. Ignoring."
                )
                del data[name]

        for name in sections:
            if name in data:
                setattr(
                    self,
                    name,
                    self._update_dataclass(name, getattr(self, name), data[name]),
                )

        for repo, sub_path in data.get("submodules", {}).items():
            if not isinstance(sub_path, str) or not sub_path.strip("/"):
                logger.warning(
                    f"Config error in [submodules].{repo}: path must be a "
                    "non-empty string. Ignoring."
                )
                continue
            self.submodules[repo] = sub_path.strip("/")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["lock_timeout", "stale_lock", "retry_backoff", "max_backoff"]:
                    filtered_updates[k] = parse_time(v)
                elif k == "max_retries":
                    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                        raise ValueError(f"Expected a non-negative integer, got '{v}'")
                    filtered_updates[k] = v
                elif k == "repos":
                    if not isinstance(v, list):
                        raise ValueError(f"Expected a list, got '{v}'")
                    filtered_updates[k] = [str(r) for r in v]
                elif not isinstance(v, str):
                    raise ValueError(f"Expected a string, got '{v}'")
                elif k == "branch_pattern":
                    re.compile(v)
                    filtered_updates[k] = v
                elif k == "message":
                    filtered_updates[k] = _check_template(v)
                else:
                    filtered_updates[k] = v
            except (ValueError, re.error) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


@dataclass
class ClientConfig:
    """Settings read by dependent-repository sample clients.

    Attributes:
        server_address (str): Address of the hosting server.
        localhost (bool): Whether the server runs on the local machine.
    """

    server_address: str
    localhost: bool = False


def read_client_config(path: Path) -> ClientConfig:
    """Reads a client configuration document.

    Args:
        path (Path): The TOML document.

    Returns:
        ClientConfig: The parsed settings.

    Raises:
        NotFoundError: If the file does not exist.
        ParseError: If the file is malformed or lacks `server_address`.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise NotFoundError(f"Client config not found: {path}", path=str(path)) from e
    except tomllib.TOMLDecodeError as e:
        raise ParseError(f"Client config syntax error: {e}", path=str(path)) from e

    address = data.get("server_address")
    localhost = data.get("localhost", False)
    if not isinstance(address, str) or not address:
        raise ParseError("Missing 'server_address'", path=str(path))
    if not isinstance(localhost, bool):
        raise ParseError("'localhost' must be true or false", path=str(path))
    return ClientConfig(server_address=address, localhost=localhost)
