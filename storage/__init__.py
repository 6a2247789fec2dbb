"""Storage package persisting scan cycles and the opportunities they produced."""

from .models import OpportunityRecord, ScanCycleRecord
from .sqlite_repository import SQLiteRepository

__all__ = ["OpportunityRecord", "ScanCycleRecord", "SQLiteRepository"]
