"""Persistence for case records and the user profile."""

from orchestrator.storage.json_repository import (
    JsonCaseRepository,
    JsonProfileRepository,
    default_data_dir,
    migrate_case_record,
)

__all__ = [
    "JsonCaseRepository",
    "JsonProfileRepository",
    "default_data_dir",
    "migrate_case_record",
]
