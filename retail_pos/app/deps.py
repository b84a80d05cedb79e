from typing import Optional

from .config import settings
from .session import PosSession


_session: Optional[PosSession] = None


def get_pos_session() -> PosSession:
    global _session
    if _session is None:
        _session = PosSession.from_settings(settings)
    return _session


def reset_pos_session() -> None:
    global _session
    _session = None
