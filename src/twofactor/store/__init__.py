"""Persistence for two-factor records and one-time codes."""

from twofactor.store.base import CodeStore, RecordStore
from twofactor.store.memory import MemoryCodeStore, MemoryRecordStore

__all__ = ["CodeStore", "MemoryCodeStore", "MemoryRecordStore", "RecordStore"]
