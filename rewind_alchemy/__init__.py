from rewind_alchemy import cleaner, config, connection, exceptions, operations, registry, statement, strategy
from rewind_alchemy.cleaner import ConnectionCleaner
from rewind_alchemy.config import RewinderConfig
from rewind_alchemy.connection import EngineHandle
from rewind_alchemy.registry import CleanerRegistry
from rewind_alchemy.statement import extract_table_name
from rewind_alchemy.strategy import Strategy

__all__ = (
    "CleanerRegistry",
    "ConnectionCleaner",
    "EngineHandle",
    "RewinderConfig",
    "Strategy",
    "cleaner",
    "config",
    "connection",
    "exceptions",
    "extract_table_name",
    "operations",
    "registry",
    "statement",
    "strategy",
)
