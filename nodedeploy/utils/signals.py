"""
Termination signal handling

SIGTERM and SIGHUP are turned into TerminatedError so an interrupted
deployment still runs its rollback and temp file cleanup.
"""

import signal
from contextlib import contextmanager
from typing import Iterator, Sequence

from nodedeploy.exceptions import TerminatedError

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _raise_terminated(signum, frame):
    raise TerminatedError(signum)


@contextmanager
def termination_signals(signals: Sequence[int] = TERMINATION_SIGNALS) -> Iterator[None]:
    """Raise TerminatedError on the given signals until the block exits."""
    previous = {}
    for signum in signals:
        previous[signum] = signal.signal(signum, _raise_terminated)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
