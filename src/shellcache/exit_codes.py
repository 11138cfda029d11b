"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~shellcache.exceptions.ShellcacheError` subclass.
Deployment scripts can inspect the exit code of ``shellcache install`` to tell
a failed app-shell download apart from a broken configuration file.

Example::

    $ shellcache --config shellcache.json install
    $ echo $?
    4   # EXIT_INSTALL_FAILURE -- a pinned asset could not be stored
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CONFIG_ERROR = 3
"""The configuration file is missing, unreadable, or fails validation."""

EXIT_INSTALL_FAILURE = 4
"""A generation could not be installed; the previous generation stays active."""

EXIT_LIFECYCLE_ERROR = 5
"""A lifecycle transition was requested out of order (e.g. activating an uninstalled generation)."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORE_ERROR = 7
"""The persistent store could not be read or written."""
