# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Run id generation and context management for scan tracing.

Every audit run gets a run id that is attached to all log records
emitted while the run is active, so that account failures and
remediation outcomes can be traced back to a single scan.
"""

import contextvars
import logging
import uuid

logger = logging.getLogger(__name__)

# Context variable to store the run id of the active scan
_run_id_context: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="")


def generate_run_id() -> str:
    """
    Generate a unique run id using UUID4.

    Returns:
        A unique run id string in UUID4 format
    """
    return str(uuid.uuid4())


def set_run_id(run_id: str) -> contextvars.Token:
    """
    Set the run id in the current context.

    Args:
        run_id: The run id to set

    Returns:
        Token that can be passed to ``reset_run_id``
    """
    return _run_id_context.set(run_id)


def reset_run_id(token: contextvars.Token) -> None:
    """Restore the run id that was active before ``set_run_id``."""
    _run_id_context.reset(token)


def get_run_id() -> str:
    """
    Get the run id from the current context.

    Returns:
        The run id if set, or an empty string if not set
    """
    return _run_id_context.get()


class RunIdFilter(logging.Filter):
    """
    Logging filter that stamps each record with the active run id.

    Install on a handler so format strings can use ``%(run_id)s``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True
