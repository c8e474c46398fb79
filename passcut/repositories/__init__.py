"""
Repositories Package - Pass-Cut Platform
passcut/repositories/__init__.py

Data access layer: storage contract plus memory and Snowflake backends.
"""

from passcut.repositories.base import ExamDataStore, PopulationFilter, UnitOfWork
from passcut.repositories.memory import InMemoryExamDataStore
from passcut.repositories.snowflake_repository import SnowflakeExamDataStore

__all__ = [
    "ExamDataStore",
    "PopulationFilter",
    "UnitOfWork",
    "InMemoryExamDataStore",
    "SnowflakeExamDataStore",
]
