"""Exception hierarchy for shellcache.

All exceptions inherit from :class:`ShellcacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`shellcache.exit_codes`.
The CLI entry point in :func:`shellcache.app.main` catches ``ShellcacheError``
and exits with the appropriate code.

Inside the engine only two of these ever cross a component boundary:
:class:`TransportFailure` (raised by a transport, consumed by the policy
engine as the "offline" signal) and :class:`InstallError` (raised by
:meth:`~shellcache.versioning.VersionManager.begin_install`).  HTTP error
statuses are *not* exceptions here: they are ordinary responses and are
passed through to the caller untouched.

Subclass hierarchy::

    ShellcacheError (exit 1)
    +-- ConfigError        (exit 3)
    +-- InstallError       (exit 4)
    +-- LifecycleError     (exit 5)
    +-- TransportFailure   (exit 6)
    +-- StoreError         (exit 7)
"""

from shellcache.exit_codes import (
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INSTALL_FAILURE,
    EXIT_LIFECYCLE_ERROR,
    EXIT_STORE_ERROR,
)


class ShellcacheError(Exception):
    """Base exception for all shellcache errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(ShellcacheError):
    """Raised for configuration problems (missing file, invalid JSON/YAML, failed validation)."""

    exit_code = EXIT_CONFIG_ERROR


class TransportFailure(ShellcacheError):
    """Raised by a transport when the network is unreachable or the fetch was aborted.

    This is the only signal the policy engine treats as "offline".  A
    response with an error status is not a transport failure.
    """

    exit_code = EXIT_CONNECTION_ERROR


class StoreError(ShellcacheError):
    """Raised when a store namespace cannot be opened, read, written, or deleted."""

    exit_code = EXIT_STORE_ERROR


class InstallError(ShellcacheError):
    """Raised when a generation's primary namespace could not be fully populated.

    The partially written generation has already been discarded when this
    is raised.
    """

    exit_code = EXIT_INSTALL_FAILURE

    def __init__(self, message: str, version: str = "", url: str = ""):
        super().__init__(message)
        self.version = version
        self.url = url


class LifecycleError(ShellcacheError):
    """Raised when a lifecycle transition is requested out of order."""

    exit_code = EXIT_LIFECYCLE_ERROR
