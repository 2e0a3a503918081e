"""Tests for the JSON-file repositories."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import make_case, make_letter

from orchestrator.exceptions import InvalidPayloadError
from orchestrator.models import LetterStats, LetterVersion, UserProfile
from orchestrator.storage import JsonCaseRepository, JsonProfileRepository, default_data_dir, migrate_case_record


def write_record(repository: JsonCaseRepository, case_id: str, record: object) -> Path:
    path = repository.cases_dir / case_id / "case.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(record), encoding="utf-8")
    return path


def version(version_id: int, content: str = "<div>letter</div>") -> LetterVersion:
    return LetterVersion(
        id=version_id,
        letter_id="rog-set1",
        content=content,
        strategy="modular",
        stats=LetterStats(total_requests=2, qualifying=2),
    )


class TestJsonCaseRepository:
    """Tests for JsonCaseRepository."""

    def test_save_and_load(self, repository: JsonCaseRepository) -> None:
        case = make_case(make_letter(2))

        repository.save(case)
        loaded = repository.load("doe-v-acme")

        assert loaded == case
        assert repository.exists("doe-v-acme")

    def test_record_uses_camel_case_and_version_tag(self, repository: JsonCaseRepository) -> None:
        repository.save(make_case(make_letter(1)))

        raw = json.loads((repository.cases_dir / "doe-v-acme" / "case.json").read_text(encoding="utf-8"))

        assert raw["caseId"] == "doe-v-acme"
        assert raw["version"] == "1.1"
        assert raw["requestLetters"][0]["responseDate"] == "May 20, 2024"
        assert "letterVersions" not in raw

    def test_versions_stored_separately_and_never_rewritten(self, repository: JsonCaseRepository) -> None:
        case = make_case(make_letter(1))
        case.letter_versions.append(version(1))
        repository.save(case)
        version_path = repository.cases_dir / "doe-v-acme" / "versions" / "1.json"
        original = version_path.read_text(encoding="utf-8")

        case.letter_versions[0] = version(1, content="<div>changed</div>")
        case.letter_versions.append(version(2))
        repository.save(case)

        assert version_path.read_text(encoding="utf-8") == original
        loaded = repository.load("doe-v-acme")
        assert [v.id for v in loaded.letter_versions] == [1, 2]
        assert loaded.letter_versions[0].content == "<div>letter</div>"

    def test_versions_load_in_numeric_order(self, repository: JsonCaseRepository) -> None:
        case = make_case(make_letter(1))
        case.letter_versions.extend(version(number) for number in (10, 2, 1))
        repository.save(case)

        loaded = repository.load("doe-v-acme")

        assert [v.id for v in loaded.letter_versions] == [1, 2, 10]

    def test_backups_are_capped(self, data_dir: Path) -> None:
        repository = JsonCaseRepository(data_dir, max_backups=5)
        case = make_case(make_letter(1))

        for index in range(7):
            case.case_name = f"Doe v. Acme ({index})"
            repository.save(case)

        backups = repository.backups("doe-v-acme")
        assert len(backups) == 5
        newest = json.loads(backups[-1].read_text(encoding="utf-8"))
        assert newest["caseName"] == "Doe v. Acme (6)"

    def test_backups_of_similar_ids_are_kept_apart(self, repository: JsonCaseRepository) -> None:
        repository.save(make_case(make_letter(1), case_id="doe"))
        repository.save(make_case(make_letter(1), case_id="doe_v"))

        assert len(repository.backups("doe")) == 1
        assert len(repository.backups("doe_v")) == 1

    def test_no_temporary_files_left_behind(self, repository: JsonCaseRepository) -> None:
        repository.save(make_case(make_letter(1)))

        leftovers = list(repository.root.rglob("*.tmp"))

        assert leftovers == []

    def test_missing_case(self, repository: JsonCaseRepository) -> None:
        assert repository.load("nobody") is None
        assert not repository.exists("nobody")

    def test_invalid_record_is_discarded(self, repository: JsonCaseRepository) -> None:
        write_record(repository, "broken", {"caseId": "broken", "requestLetters": [{"id": "a", "requests": []}]})
        assert repository.load("broken") is None

    def test_malformed_json_is_discarded(self, repository: JsonCaseRepository) -> None:
        path = repository.cases_dir / "garbled" / "case.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        assert repository.load("garbled") is None

    def test_list_all_skips_invalid_records(self, repository: JsonCaseRepository) -> None:
        repository.save(make_case(make_letter(1)))
        write_record(repository, "broken", ["not", "an", "object"])

        assert [case.case_id for case in repository.list_all()] == ["doe-v-acme"]

    def test_legacy_record_is_migrated(self, repository: JsonCaseRepository) -> None:
        write_record(
            repository,
            "legacy",
            {
                "caseId": "legacy",
                "caseName": "Legacy v. Record",
                "caseData": {"caseNumber": "19-CV-7"},
                "requestLetters": [make_letter(1).to_json_dict()],
            },
        )

        case = repository.load("legacy")

        assert case.version == "1.1"
        assert case.court == "Not specified"
        assert case.case_number == "19-CV-7"

    def test_delete(self, repository: JsonCaseRepository) -> None:
        repository.save(make_case(make_letter(1)))

        assert repository.delete("doe-v-acme")
        assert not repository.delete("doe-v-acme")
        assert repository.load("doe-v-acme") is None

    @pytest.mark.parametrize("case_id", ["../escape", "a/b", "", ".hidden"])
    def test_unsafe_ids_are_rejected(self, repository: JsonCaseRepository, case_id: str) -> None:
        with pytest.raises(InvalidPayloadError):
            repository.load(case_id)


class TestMigrateCaseRecord:
    """Tests for migrate_case_record."""

    def test_unversioned_record_gets_default_court(self) -> None:
        record = migrate_case_record({"caseId": "x"})
        assert record["caseData"] == {"court": "Not specified"}
        assert record["version"] == "1.1"

    def test_existing_court_is_kept(self) -> None:
        record = migrate_case_record({"caseId": "x", "version": "1.0", "caseData": {"court": "District Court"}})
        assert record["caseData"]["court"] == "District Court"
        assert record["version"] == "1.1"

    def test_current_record_untouched(self) -> None:
        record = {"caseId": "x", "version": "1.1", "caseData": {}}
        assert migrate_case_record(record) == {"caseId": "x", "version": "1.1", "caseData": {}}


class TestJsonProfileRepository:
    """Tests for JsonProfileRepository."""

    def test_default_when_missing(self, profiles: JsonProfileRepository) -> None:
        assert profiles.load() == UserProfile()

    def test_round_trip(self, profiles: JsonProfileRepository, profile: UserProfile) -> None:
        profiles.save(profile.model_copy(update={"api_key": "sk-test"}))

        loaded = profiles.load()

        assert loaded.name == "Jane Counsel"
        assert loaded.api_key == "sk-test"
        assert json.loads(profiles.path.read_text(encoding="utf-8"))["barNumber"] == "123456"

    def test_invalid_profile_falls_back_to_default(self, profiles: JsonProfileRepository) -> None:
        profiles.path.parent.mkdir(parents=True, exist_ok=True)
        profiles.path.write_text(json.dumps({"name": ["not", "a", "string"]}), encoding="utf-8")

        assert profiles.load() == UserProfile()


def test_default_data_dir_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REJOINDER_DATA_DIR", str(tmp_path / "store"))
    assert default_data_dir() == tmp_path / "store"
