"""
Database Module
===============
Database connection and the job state store.
"""
from poem_translator.database.connection import Database, get_database
from poem_translator.database.repositories import (
    JobStateStore,
    get_job_store
)

__all__ = [
    'Database',
    'get_database',
    'JobStateStore',
    'get_job_store'
]
