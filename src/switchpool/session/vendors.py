"""Vendor initialization: disable output paging once per new session."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchpool.session.session import Session

logger = logging.getLogger(__name__)


class Vendor(enum.StrEnum):
    HUAWEI = "huawei"
    H3C = "h3c"
    CISCO = "cisco"


# Characters a device prompt ends with. The same set works for every
# supported vendor.
PROMPT_TERMINATORS: tuple[str, ...] = ("#", ">", "]")

_PAGINATION_COMMANDS: dict[Vendor, str] = {
    Vendor.HUAWEI: "screen-length 0 temporary",
    Vendor.H3C: "screen-length disable",
    Vendor.CISCO: "terminal length 0",
}


def resolve_vendor(vendor: str) -> Vendor | None:
    """Map a vendor identifier to a known ``Vendor``, case-insensitively."""
    try:
        return Vendor(vendor.strip().lower())
    except ValueError:
        return None


def pagination_command(vendor: str) -> str | None:
    """The pagination-disable command for ``vendor``, or None if unknown."""
    known = resolve_vendor(vendor)
    if known is None:
        return None
    return _PAGINATION_COMMANDS[known]


async def initialize(session: Session, timeout: float = 1.0) -> str:
    """Disable paging on a fresh session and drain the resulting prompt.

    Unknown vendors are left untouched. Returns the drained output.
    """
    command = pagination_command(session.vendor)
    if command is None:
        logger.debug(
            "No pagination command for vendor %r on %s", session.vendor, session.label
        )
        return ""
    await session.write_commands(command)
    return await session.read_until_expected(timeout, *PROMPT_TERMINATORS)
