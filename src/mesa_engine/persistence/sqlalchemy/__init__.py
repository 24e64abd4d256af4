from .adapters import SQLAlchemyCharacterStore, SQLAlchemyCounterStore, SQLAlchemyEventLog
from .db import bootstrap, build_engine, build_session_factory, create_schema
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "bootstrap",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyEventLog",
    "SQLAlchemyCharacterStore",
    "SQLAlchemyCounterStore",
]
