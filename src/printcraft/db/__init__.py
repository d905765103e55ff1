"""Database models and bootstrap helpers."""

from .db_init import drop_db, init_db
from .db_models import Base, GenerationJobModel, QueueItemModel

__all__ = ["Base", "GenerationJobModel", "QueueItemModel", "drop_db", "init_db"]
