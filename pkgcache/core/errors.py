"""
Error types raised by the pkgcache services.

Adapters never raise (failures come back as Receipts); services turn
failed receipts, bad digests and bad input into these exceptions, and
the CLI maps them to exit codes.
"""

from __future__ import annotations

from pathlib import Path


class PkgCacheError(Exception):
    """Base class for every pkgcache failure."""

    exit_code = 1


class ArgumentError(PkgCacheError):
    """A required parameter is missing or invalid. Never retried."""


class FetchError(PkgCacheError):
    """A download or clone failed after the retry budget was spent."""


class IntegrityError(PkgCacheError):
    """A digest did not match, or no expected digest could be found."""

    def __init__(self, message: str, path: Path | None = None, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class UnsupportedArchiveError(PkgCacheError):
    """No decoder is registered for the archive."""


class PatchError(PkgCacheError):
    """One or more patches in a set failed to apply."""

    def __init__(self, message: str, failed: list[Path] | None = None):
        super().__init__(message)
        self.failed = failed or []


class ToolError(PkgCacheError):
    """An external tool (configure, make, cmake, git) exited non-zero."""

    def __init__(
        self,
        message: str,
        return_code: int | None = None,
        diagnostics: list[str] | None = None,
    ):
        super().__init__(message)
        self.return_code = return_code
        self.diagnostics = diagnostics or []

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.return_code or 1


class Interrupted(PkgCacheError):
    """SIGINT / SIGTERM arrived while a guarded operation was running."""

    def __init__(self, signum: int, exit_code: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
        self.exit_code = exit_code
