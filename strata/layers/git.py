"""
Git source - Remote knowledge repositories cached on disk

The checkout lives at <cache_dir>/git-repos/<xxh64(url)>. A fresh
cache dir gets a shallow single-branch clone; afterwards the checkout
is pulled only once the TTL has passed (the mtime of a marker file next
to the checkout records the last fetch). A failed pull keeps serving
the cached checkout; a failed clone makes the layer unavailable.

Credentials:
- token: injected into https:// URLs (https://<token>@host/...)
- basic: injected as https://<user>:<password>@host/...
- ssh:   GIT_SSH_COMMAND with the configured key, for git only

Network and auth failures surface as LayerLoadError, never as a crash.
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Optional, Dict, List, Tuple
from urllib.parse import quote

import xxhash

from ..config import AuthConfig, AuthType, LayerType
from .base import LayerLoadError

logger = logging.getLogger(__name__)


GIT_TIMEOUT = 120.0  # seconds per git command
FETCH_MARKER_SUFFIX = ".fetched"


def cache_key(url: str) -> str:
    """Stable directory name for a repository URL."""
    return xxhash.xxh64(url.encode('utf-8')).hexdigest()


def inject_credentials(url: str, auth: Optional[AuthConfig]) -> str:
    """
    Embed token or basic credentials into an https:// URL.

    Raises:
        LayerLoadError: The configured credential cannot be found
    """
    if auth is None or auth.type == AuthType.SSH:
        return url

    if auth.type == AuthType.TOKEN:
        token = auth.resolve_token()
        if not token:
            raise LayerLoadError(
                f"Token not found for git authentication (env var: {auth.token_env_var or 'none'})"
            )
        credentials = quote(token, safe='')
    else:
        password = auth.resolve_password()
        if not auth.username or not password:
            raise LayerLoadError("Username/password not found for basic authentication")
        credentials = f"{quote(auth.username, safe='')}:{quote(password, safe='')}"

    if not url.startswith("https://"):
        return url
    return url.replace("https://", f"https://{credentials}@", 1)


@dataclass
class GitSource:
    """A remote repository checked out into the cache directory."""
    url: str
    cache_dir: Path
    ttl: float = 3600.0
    branch: Optional[str] = None
    subpath: Optional[str] = None
    auth: Optional[AuthConfig] = None
    timeout: float = GIT_TIMEOUT
    last_fetch_error: Optional[str] = field(default=None, init=False)

    kind: ClassVar[LayerType] = LayerType.GIT
    live: ClassVar[bool] = False
    lowercase_ids: ClassVar[bool] = True
    extra_tags: ClassVar[Tuple[str, ...]] = ()

    @property
    def checkout_dir(self) -> Path:
        return self.cache_dir / "git-repos" / cache_key(self.url)

    @property
    def marker_file(self) -> Path:
        return self.checkout_dir.with_name(self.checkout_dir.name + FETCH_MARKER_SUFFIX)

    def is_expired(self) -> bool:
        """True when the checkout is older than the TTL (or was never fetched)."""
        if not self.marker_file.exists():
            return True
        age = time.time() - self.marker_file.stat().st_mtime
        return age >= self.ttl

    def materialize(self) -> Path:
        if (self.checkout_dir / ".git").exists():
            if self.is_expired():
                self._pull()
        else:
            self._clone()

        root = self.checkout_dir
        if self.subpath:
            root = root / self.subpath.strip('/')
            if not root.is_dir():
                raise LayerLoadError(f"Subpath '{self.subpath}' not found in {self.url}")
        return root

    def _clone(self) -> None:
        if self.checkout_dir.exists():
            # Leftover from an interrupted clone
            shutil.rmtree(self.checkout_dir)
        self.checkout_dir.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone", "--depth", "1", "--single-branch"]
        if self.branch:
            args += ["--branch", self.branch]
        args += [inject_credentials(self.url, self.auth), str(self.checkout_dir)]

        logger.info("Cloning %s into %s", self.url, self.checkout_dir)
        error = self._run_git(args, cwd=self.checkout_dir.parent)
        if error is not None:
            shutil.rmtree(self.checkout_dir, ignore_errors=True)
            raise LayerLoadError(f"Failed to clone {self.url}: {error}")
        self._touch_marker()

    def _pull(self) -> None:
        args = ["pull", "--ff-only", inject_credentials(self.url, self.auth)]
        if self.branch:
            args.append(self.branch)

        logger.info("Pulling %s", self.url)
        error = self._run_git(args, cwd=self.checkout_dir)
        if error is not None:
            self.last_fetch_error = error
            logger.warning("Pull failed for %s, using cached checkout: %s", self.url, error)
            return
        self.last_fetch_error = None
        self._touch_marker()

    def _touch_marker(self) -> None:
        self.marker_file.touch()

    def _git_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        if self.auth is not None and self.auth.type == AuthType.SSH and self.auth.key_path:
            key_path = os.path.expanduser(self.auth.key_path)
            env["GIT_SSH_COMMAND"] = (
                f"ssh -i {key_path} -o UserKnownHostsFile=/dev/null -o StrictHostKeyChecking=no"
            )
        return env

    def _run_git(self, args: List[str], cwd: Path) -> Optional[str]:
        """Run a git command. Returns None on success, else an error message."""
        try:
            subprocess.run(
                ["git"] + args,
                cwd=cwd,
                env=self._git_env(),
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
            return None
        except subprocess.CalledProcessError as e:
            return self._redact((e.stderr or e.stdout or str(e)).strip())
        except subprocess.TimeoutExpired:
            return f"git {args[0]} timed out after {self.timeout:g}s"
        except FileNotFoundError:
            return "git executable not found"

    def _redact(self, message: str) -> str:
        """Keep credentials out of logs and load results."""
        if self.auth is None:
            return message
        for secret in (self.auth.resolve_token(), self.auth.resolve_password()):
            if secret:
                message = message.replace(secret, "***").replace(quote(secret, safe=''), "***")
        return message

    def dispose(self) -> None:
        pass
