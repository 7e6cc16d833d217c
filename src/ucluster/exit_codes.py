"""Exit codes returned by the ``ucluster`` CLI."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes shared by every command."""

    OK = 0
    # bad flag values, malformed config files, missing cluster name
    VALIDATION = 2
    # home directory, existing output file, unwritable paths
    ENVIRONMENT = 3
