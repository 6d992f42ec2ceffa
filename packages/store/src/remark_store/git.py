"""Thin subprocess wrapper around the git CLI.

Everything remark persists lives in the repository itself, so this is the
only place that talks to git. Commands run with a fixed, locale-independent
environment and raise RemarkError subclasses instead of CalledProcessError.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from remark_store.errors import RefResolutionError, RemarkError, RepositoryError

logger = logging.getLogger(__name__)

# Only network operations get a timeout; local git commands are expected to
# finish in interactive time.
_FETCH_TIMEOUT = 30

_FALLBACK_NAME = "remark"
_FALLBACK_EMAIL = "remark@localhost"


def _base_env() -> dict[str, str]:
    env = dict(os.environ)
    env["LC_ALL"] = "C"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


class GitRepo:
    """A discovered work tree plus its git directory."""

    def __init__(self, root: Path, git_dir: Path):
        self.root = Path(root)
        self.git_dir = Path(git_dir)
        self._identity_env: dict[str, str] | None = None

    def __repr__(self) -> str:
        return f"GitRepo({str(self.root)!r})"

    @classmethod
    def discover(cls, path: str | os.PathLike = ".") -> GitRepo:
        """Locate the repository containing ``path``.

        Raises RepositoryError when ``path`` is not inside a git work tree.
        """
        if not os.path.isdir(path):
            raise RepositoryError(f"not a directory: {path}")
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--show-toplevel", "--absolute-git-dir"],
                cwd=os.fspath(path),
                capture_output=True,
                text=True,
                env=_base_env(),
            )
        except FileNotFoundError:
            raise RepositoryError("git executable not found on PATH") from None
        if result.returncode != 0:
            raise RepositoryError(f"not a git repository: {os.path.abspath(path)}")
        lines = result.stdout.splitlines()
        if len(lines) < 2:
            raise RepositoryError(f"not inside a git work tree: {os.path.abspath(path)}")
        return cls(Path(lines[0]), Path(lines[1]))

    # ------------------------------------------------------------------
    # Low level
    # ------------------------------------------------------------------

    def run(
        self,
        *args: str,
        input: str | bytes | None = None,
        check: bool = True,
        binary: bool = False,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        error: type[RemarkError] = RepositoryError,
    ) -> subprocess.CompletedProcess:
        """Run ``git <args>`` in the work tree.

        With ``binary`` the input and output are bytes, otherwise UTF-8 text.
        A non-zero exit raises ``error`` unless ``check`` is False.
        """
        full_env = _base_env()
        if env:
            full_env.update(env)
        if binary and isinstance(input, str):
            input = input.encode("utf-8")
        logger.debug("git %s", " ".join(args))
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.root,
                input=input,
                capture_output=True,
                text=not binary,
                encoding=None if binary else "utf-8",
                errors=None if binary else "surrogateescape",
                env=full_env,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise RepositoryError("git executable not found on PATH") from None
        except subprocess.TimeoutExpired:
            raise error(f"git {args[0]} timed out after {timeout}s") from None
        if check and result.returncode != 0:
            stderr = result.stderr
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", "replace")
            raise error(f"git {' '.join(args[:3])} failed: {stderr.strip() or f'exit {result.returncode}'}")
        return result

    def identity_env(self) -> dict[str, str]:
        """Author/committer variables for commits git makes on our behalf.

        Notes commits need an identity; fall back to a fixed one when the user
        has not configured ``user.name``/``user.email``.
        """
        if self._identity_env is None:
            env: dict[str, str] = {}
            if not self.config_get("user.name") and "GIT_AUTHOR_NAME" not in os.environ:
                env["GIT_AUTHOR_NAME"] = env["GIT_COMMITTER_NAME"] = _FALLBACK_NAME
            if not self.config_get("user.email") and "GIT_AUTHOR_EMAIL" not in os.environ:
                env["GIT_AUTHOR_EMAIL"] = env["GIT_COMMITTER_EMAIL"] = _FALLBACK_EMAIL
            self._identity_env = env
        return self._identity_env

    # ------------------------------------------------------------------
    # Refs and commits
    # ------------------------------------------------------------------

    def head_commit(self) -> str:
        result = self.run("rev-parse", "--verify", "--quiet", "HEAD^{commit}", check=False)
        if result.returncode != 0:
            raise RepositoryError("HEAD does not point at a commit yet (unborn branch)")
        return result.stdout.strip()

    def resolve_commit(self, ref: str) -> str:
        result = self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if result.returncode != 0 or not result.stdout.strip():
            raise RefResolutionError(f"cannot resolve {ref!r} to a commit")
        return result.stdout.strip()

    def merge_base(self, ref: str) -> str:
        """Return the merge base of ``ref`` and HEAD."""
        commit = self.resolve_commit(ref)
        head = self.head_commit()
        result = self.run("merge-base", commit, head, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            raise RefResolutionError(f"{ref!r} has no common ancestor with HEAD")
        return result.stdout.strip()

    def ref_exists(self, ref: str) -> bool:
        return self.run("show-ref", "--verify", "--quiet", ref, check=False).returncode == 0

    def list_refs(self, prefix: str) -> list[str]:
        result = self.run("for-each-ref", "--format=%(refname)", prefix)
        return [line for line in result.stdout.splitlines() if line]

    def delete_ref(self, ref: str) -> None:
        self.run("update-ref", "-d", ref)

    def fetch_ref(self, remote: str, ref: str) -> bool:
        """Fetch ``ref`` from ``remote`` into the same local name.

        Returns False (and logs) instead of raising: a missing remote or ref
        simply means there is nothing to fetch.
        """
        try:
            result = self.run(
                "fetch", "--quiet", "--no-tags", remote, f"+{ref}:{ref}",
                check=False,
                timeout=_FETCH_TIMEOUT,
            )
        except RemarkError as e:
            logger.warning("Fetching %s from %s failed: %s", ref, remote, e)
            return False
        if result.returncode != 0:
            logger.debug("Fetching %s from %s failed: %s", ref, remote, result.stderr.strip())
            return False
        return True

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def config_get(self, key: str) -> str | None:
        result = self.run("config", "--get", key, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def config_set(self, key: str, value: str) -> None:
        self.run("config", "--local", key, value)

    def config_unset(self, key: str) -> None:
        # Exit status 5 means the key was not set.
        result = self.run("config", "--local", "--unset", key, check=False)
        if result.returncode not in (0, 5):
            raise RepositoryError(f"git config --unset {key} failed: {result.stderr.strip()}")

    # ------------------------------------------------------------------
    # Objects and files
    # ------------------------------------------------------------------

    def hash_object(self, data: bytes, write: bool = False, error: type[RemarkError] = RepositoryError) -> str:
        args = ["hash-object", "--stdin"]
        if write:
            args.insert(1, "-w")
        return self.run(*args, input=data, binary=True, error=error).stdout.decode("ascii").strip()

    def read_blob(self, spec: str, error: type[RemarkError] = RepositoryError) -> bytes:
        return self.run("cat-file", "blob", spec, binary=True, error=error).stdout

    def read_worktree(self, path: str) -> bytes | None:
        try:
            return (self.root / path).read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    def untracked_paths(self) -> list[str]:
        result = self.run("ls-files", "--others", "--exclude-standard", "-z")
        return sorted(p for p in result.stdout.split("\0") if p)

    def relative_path(self, path: str | os.PathLike) -> str:
        """Return ``path`` relative to the work tree root, '/'-separated.

        Pure path arithmetic: relative inputs are taken as already relative to
        the root. Raises RepositoryError for absolute paths outside the tree.
        """
        p = Path(path)
        if not p.is_absolute():
            return Path(os.path.normpath(p)).as_posix()
        for base in (self.root, self.root.resolve()):
            try:
                return Path(os.path.normpath(p)).relative_to(base).as_posix()
            except ValueError:
                continue
        try:
            return p.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            raise RepositoryError(f"{path} is outside the repository {self.root}") from None
