"""Interactive device sessions.

A session wraps one transport connection, feeds commands to it through a
writer task, collects its output through a reader task, and infers where
each reply ends from prompt terminators or silence.
"""

from switchpool.session.buffer import OutputBuffer
from switchpool.session.vendors import PROMPT_TERMINATORS, Vendor
from switchpool.session.session import Session, SessionStatus

__all__ = [
    "OutputBuffer",
    "PROMPT_TERMINATORS",
    "Session",
    "SessionStatus",
    "Vendor",
]
