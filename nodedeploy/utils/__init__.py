"""Utility modules."""

from nodedeploy.utils.files import TempFileRegistry, file_mode, write_file
from nodedeploy.utils.locking import deployment_lock
from nodedeploy.utils.retry import retry_call
from nodedeploy.utils.signals import termination_signals

__all__ = [
    "TempFileRegistry",
    "file_mode",
    "write_file",
    "deployment_lock",
    "retry_call",
    "termination_signals",
]
