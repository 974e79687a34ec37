import logging
import os
import subprocess
from pathlib import Path

from .constants import APP_NAME, HOOK_GIT_ENV

logger = logging.getLogger(APP_NAME)


class GitRepo:
    """A wrapper around the Git plumbing commands for a specific repository.

    Every command runs with the repository as its working directory and with
    the git variables of any invoking hook removed, so a handle always talks
    to its own repository regardless of ambient process state. Bare
    repositories (the usual shape of a server-side aggregator) are supported.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root (or bare repository).

        Raises:
            ValueError: If the path is neither a work tree with a .git entry
                        nor a bare repository.
        """
        self.path = Path(path)
        is_bare = (self.path / "HEAD").is_file() and (self.path / "objects").is_dir()
        if not (self.path / ".git").exists() and not is_bare:
            raise ValueError(f"Not a git repository: {self.path}")

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        input: str | None = None,
        strip: bool = True,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Extra environment variables layered on
                                            top of the cleaned process environment.
                                            Defaults to None.
            input (Optional[str], optional): Data written to the command's stdin.
            strip (bool, optional): Whether to strip surrounding whitespace from
                                    the output. Defaults to True.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        run_env = os.environ.copy()
        for key in HOOK_GIT_ENV:
            run_env.pop(key, None)
        if env:
            run_env.update(env)

        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=run_env,
                input=input,
            )
            if not capture:
                return ""
            return res.stdout.strip() if strip else res.stdout
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e

    def git_dir(self) -> Path:
        """Resolves the absolute path of the repository's git directory.

        Returns:
            Path: The `.git` directory, or the repository root for bare repos.
        """
        return Path(self._run(["rev-parse", "--absolute-git-dir"]))

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (branch, fully qualified ref) to a full commit hash.

        Args:
            rev (str): The revision to parse (e.g., 'refs/heads/main').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except Exception as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def ls_tree(self, treeish: str) -> list[tuple[str, str, str, str]]:
        """Lists the immediate entries of a tree.

        Args:
            treeish (str): A tree or commit hash.

        Returns:
            list[tuple[str, str, str, str]]: (mode, type, oid, name) per entry,
                                             in git's canonical order.
        """
        output = self._run(["ls-tree", "-z", treeish], strip=False)
        entries = []
        for record in output.split("\0"):
            if not record:
                continue
            meta, name = record.split("\t", 1)
            mode, kind, oid = meta.split()
            entries.append((mode, kind, oid, name))
        return entries

    def mktree(self, entries: list[tuple[str, str, str, str]]) -> str:
        """Writes a tree object from a list of entries.

        Gitlink targets belong to other repositories, so missing objects are
        accepted.

        Args:
            entries (list[tuple[str, str, str, str]]): (mode, type, oid, name) tuples.

        Returns:
            str: The SHA-1 hash of the created tree object.
        """
        payload = "".join(
            f"{mode} {kind} {oid}\t{name}\0" for mode, kind, oid, name in entries
        )
        return self._run(["mktree", "-z", "--missing"], input=payload)

    def commit_tree(
        self, tree: str, parents: list[str], message: str, env: dict | None = None
    ) -> str:
        """Creates a commit object from a tree object.

        Args:
            tree (str): The tree SHA-1 to commit.
            parents (list[str]): A list of parent commit SHA-1s.
            message (str): The commit message.
            env (Optional[dict], optional): Identity and date variables.

        Returns:
            str: The SHA-1 hash of the new commit.
        """
        cmd = ["commit-tree", tree]
        for p in parents:
            cmd.extend(["-p", p])
        try:
            return self._run(cmd, env=env, input=message)
        except Exception as e:
            logger.warning(f"Failed to commit tree {tree}: {e}")
            raise

    def update_ref(self, ref: str, new_oid: str, old_oid: str, reason: str) -> None:
        """Atomically moves a reference, provided it still points at `old_oid`.

        Args:
            ref (str): The reference to update (e.g., 'refs/heads/main').
            new_oid (str): The new SHA-1 hash.
            old_oid (str): The expected current SHA-1 hash. Git refuses the
                           update if the ref holds anything else.
            reason (str): The reflog message.
        """
        try:
            self._run(["update-ref", "-m", reason, ref, new_oid, old_oid])
        except Exception as e:
            logger.warning(f"Failed to update ref {ref}: {e}")
            raise
