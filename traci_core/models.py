"""
Core data models
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Lifecycle of a simulator connection"""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    CLOSED = "closed"


class SubscriptionState(str, Enum):
    """Lifecycle of a single subscription handle"""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ResponseKind(str, Enum):
    """What follows the status block in the reply to a request"""

    STATUS = "status"
    VARIABLE = "variable"
    VERSION = "version"
    STEP = "step"
    SUBSCRIPTION = "subscription"


class TransportStats(BaseModel):
    """Snapshot of transport counters"""

    connected: bool
    host: Optional[str] = None
    port: Optional[int] = None
    created_at: Optional[datetime] = None
    last_send: Optional[datetime] = None
    last_recv: Optional[datetime] = None
    bytes_sent: int = 0
    bytes_received: int = 0
    frames_sent: int = 0
    frames_received: int = 0


class SubscriptionInfo(BaseModel):
    """Snapshot of one subscription handle"""

    handle: int
    opcode: int
    object_id: str
    variable_ids: List[int] = Field(default_factory=list)
    begin_time: float
    end_time: float
    state: SubscriptionState
    context_domain: Optional[int] = None
    context_range: Optional[float] = None
    buffered: int = 0
