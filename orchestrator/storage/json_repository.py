"""JSON-file repositories for case records and the user profile.

Layout under the data directory (``REJOINDER_DATA_DIR``, default
``~/.rejoinder``)::

    case_data/<caseId>/case.json
    case_data/<caseId>/versions/<versionId>.json
    backups/<caseId>_<timestamp>.json
    user_profile.json

Every write goes to a temporary file that is then moved into place, so a
crash never leaves a half-written record behind.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from letter_factory.constants import CURRENT_SCHEMA_VERSION, MAX_BACKUPS_PER_CASE
from orchestrator.models import Case, UserProfile
from orchestrator.validation import validate_case_id

logger = logging.getLogger("rejoinder.orchestrator.storage")

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_BACKUP_STAMP = re.compile(r"^\d{8}T\d{12}Z$")


def default_data_dir() -> Path:
    return Path(os.getenv("REJOINDER_DATA_DIR") or Path.home() / ".rejoinder").expanduser()


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> Any | None:
    """Read a JSON file; unreadable or malformed files yield ``None``."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Could not read %s: %s", path, exc)
        return None


def _version_tuple(version: Any) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in str(version).split("."))
    except ValueError:
        return (0,)


def migrate_case_record(raw: dict[str, Any]) -> dict[str, Any]:
    """Bring a stored case record up to ``CURRENT_SCHEMA_VERSION``.

    Records without a version tag, or with an older one, get a default court
    and the current tag. The record is modified in place and returned.
    """
    version = raw.get("version")
    if version and _version_tuple(version) >= _version_tuple(CURRENT_SCHEMA_VERSION):
        return raw

    case_data = raw.get("caseData")
    if not isinstance(case_data, dict):
        case_data = {}
    case_data.setdefault("court", "Not specified")
    raw["caseData"] = case_data
    raw["version"] = CURRENT_SCHEMA_VERSION
    logger.info("Migrated case %s from version %s to %s", raw.get("caseId"), version or "none", CURRENT_SCHEMA_VERSION)
    return raw


class JsonCaseRepository:
    """Stores one directory per case with its letter versions and backups."""

    def __init__(self, root: str | Path | None = None, max_backups: int = MAX_BACKUPS_PER_CASE) -> None:
        self.root = Path(root).expanduser() if root else default_data_dir()
        self.cases_dir = self.root / "case_data"
        self.backups_dir = self.root / "backups"
        self.max_backups = max_backups
        self.cases_dir.mkdir(parents=True, exist_ok=True)
        self.backups_dir.mkdir(parents=True, exist_ok=True)

    def _case_dir(self, case_id: str) -> Path:
        return self.cases_dir / validate_case_id(case_id)

    def exists(self, case_id: str) -> bool:
        return (self._case_dir(case_id) / "case.json").is_file()

    def save(self, case: Case) -> None:
        """Persist ``case``, its letter versions, and a rotating backup."""
        case_dir = self._case_dir(case.case_id)
        payload = case.to_json_dict()
        payload["version"] = CURRENT_SCHEMA_VERSION
        versions = payload.pop("letterVersions", [])

        _write_json_atomic(case_dir / "case.json", payload)
        for version in versions:
            version_path = case_dir / "versions" / f"{version['id']}.json"
            if not version_path.exists():
                _write_json_atomic(version_path, version)

        self._backup(case.case_id, {**payload, "letterVersions": versions})
        logger.debug("Saved case %s (%d letters, %d versions)", case.case_id, len(case.request_letters), len(versions))

    def load(self, case_id: str) -> Case | None:
        """Load a case, migrating old records; invalid records yield ``None``."""
        case_dir = self._case_dir(case_id)
        case_file = case_dir / "case.json"
        if not case_file.is_file():
            return None

        raw = _read_json(case_file)
        if not isinstance(raw, dict):
            logger.error("Discarding case %s: record is not a JSON object", case_id)
            return None
        raw = migrate_case_record(raw)
        raw.setdefault("caseId", case_id)

        versions_dir = case_dir / "versions"
        if versions_dir.is_dir():
            versions = [_read_json(path) for path in versions_dir.glob("*.json")]
            raw["letterVersions"] = sorted(
                (version for version in versions if isinstance(version, dict)),
                key=lambda version: _version_tuple(version.get("id", 0)),
            )

        try:
            return Case.model_validate(raw)
        except PydanticValidationError as exc:
            logger.error("Discarding case %s: %d validation errors", case_id, exc.error_count())
            return None

    def list_all(self) -> list[Case]:
        cases: list[Case] = []
        for case_dir in sorted(self.cases_dir.iterdir()):
            if not case_dir.is_dir() or not _SAFE_ID.match(case_dir.name):
                continue
            case = self.load(case_dir.name)
            if case is not None:
                cases.append(case)
        return cases

    def delete(self, case_id: str) -> bool:
        case_dir = self._case_dir(case_id)
        if not case_dir.exists():
            return False
        shutil.rmtree(case_dir)
        logger.info("Deleted case %s", case_id)
        return True

    def backups(self, case_id: str) -> list[Path]:
        """Backups of ``case_id``, oldest first."""
        prefix = f"{validate_case_id(case_id)}_"
        found = [
            path
            for path in self.backups_dir.glob(f"{prefix}*.json")
            if _BACKUP_STAMP.match(path.stem[len(prefix):])
        ]
        return sorted(found)

    def _backup(self, case_id: str, payload: dict[str, Any]) -> None:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        _write_json_atomic(self.backups_dir / f"{case_id}_{stamp}.json", payload)

        backups = self.backups(case_id)
        for stale in backups[: max(len(backups) - self.max_backups, 0)]:
            stale.unlink(missing_ok=True)


class JsonProfileRepository:
    """Stores the single user profile."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root).expanduser() if root else default_data_dir()
        self.path = self.root / "user_profile.json"

    def load(self) -> UserProfile:
        if not self.path.is_file():
            return UserProfile()
        raw = _read_json(self.path)
        if not isinstance(raw, dict):
            return UserProfile()
        try:
            return UserProfile.model_validate(raw)
        except PydanticValidationError as exc:
            # Never log the record itself: it holds the API key.
            logger.error("Ignoring invalid user profile: %d validation errors", exc.error_count())
            return UserProfile()

    def save(self, profile: UserProfile) -> None:
        _write_json_atomic(self.path, profile.to_json_dict())
        logger.info("Saved user profile")
