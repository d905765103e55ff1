"""Work queue adapters for the generation dispatcher."""

from .base import QueueDepth, QueueMessage, WorkQueue
from .sqlalchemy_queue import QueueConfig, SqlAlchemyWorkQueue

__all__ = ["QueueConfig", "QueueDepth", "QueueMessage", "SqlAlchemyWorkQueue", "WorkQueue"]
