"""Client package public exports."""

from .lifecycle import ConnectionManager
from .session import ProtocolSession, SessionFactory

__all__ = ["ConnectionManager", "ProtocolSession", "SessionFactory"]
