"""Client for the TraCI traffic simulation control protocol"""
from traci_core.client import Connection
from traci_core.engine.dispatcher import CommandResult, Request
from traci_core.engine.subscriptions import Subscription, SubscriptionResult
from traci_core.exceptions import TraciError

__version__ = "0.1.0"

__all__ = [
    "CommandResult",
    "Connection",
    "Request",
    "Subscription",
    "SubscriptionResult",
    "TraciError",
]
