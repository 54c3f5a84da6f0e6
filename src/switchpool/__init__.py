"""switchpool: pooled interactive SSH sessions to network devices.

    from switchpool import SessionManager, create_config

    config = create_config("admin", "secret", "10.3.1.10", 22, vendor="cisco")
    async with SessionManager() as manager:
        session = await manager.get_session(config)
        output = await session.execute_and_read("show version")
"""

from switchpool.config import PoolSettings, SessionConfig, create_config
from switchpool.errors import (
    ConnectFailed,
    InvalidConfig,
    SessionClosed,
    SwitchPoolError,
    TransportLost,
)
from switchpool.pool.manager import SessionManager
from switchpool.session.session import Session, SessionStatus

__all__ = [
    "ConnectFailed",
    "InvalidConfig",
    "PoolSettings",
    "Session",
    "SessionClosed",
    "SessionConfig",
    "SessionManager",
    "SessionStatus",
    "SwitchPoolError",
    "TransportLost",
    "create_config",
]
