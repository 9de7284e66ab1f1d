"""Data models for the event matching engine."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Event:
    """Calendar occurrence loaded from a calendar source."""
    title: str
    start: Optional[datetime]


@dataclass(frozen=True)
class Match:
    """Event selected for a query."""
    title: str
    start: datetime


@dataclass
class ChatMessage:
    """Inbound chat message."""
    data: str
    nick: Optional[str] = None
    timestamp: Optional[int] = None
