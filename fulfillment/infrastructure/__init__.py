from .clients import SqlClientDirectory
from .db import build_engine, build_sessionmaker, init_models
from .events import InProcessEventBus
from .notifier import EmailNotifier
from .store import SqlAlchemyStore

__all__ = [
    "SqlClientDirectory",
    "build_engine",
    "build_sessionmaker",
    "init_models",
    "InProcessEventBus",
    "EmailNotifier",
    "SqlAlchemyStore",
]
