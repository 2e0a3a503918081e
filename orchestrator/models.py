"""Pydantic models for case records, letters, versions and the user profile.

Persisted JSON uses camelCase keys (``caseId``, ``requestLetters``, ...) while
Python attributes stay snake_case. Models are populated by either form.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from letter_factory.constants import CURRENT_SCHEMA_VERSION

Strategy = Literal["single_pass", "modular"]


class RejoinderModel(BaseModel):
    """Base model: camelCase aliases, tolerant of unknown keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump using the persisted (camelCase) key names."""
        return self.model_dump(mode="json", by_alias=True)


def _present(value: str | None) -> bool:
    return bool(value and value.strip())


class Request(RejoinderModel):
    """One discovery request within a request letter."""

    id: int = Field(gt=0)
    text: str
    objection: str | None = None
    reply: str | None = None

    @property
    def has_objection(self) -> bool:
        return _present(self.objection)

    @property
    def has_reply(self) -> bool:
        return _present(self.reply)

    @property
    def qualifies(self) -> bool:
        """True when the request can appear in the response letter."""
        return self.has_objection and self.has_reply


class LetterStats(RejoinderModel):
    total_requests: int = 0
    with_objections: int = 0
    with_replies: int = 0
    pending: int = 0
    qualifying: int = 0


class RequestLetter(RejoinderModel):
    """A dated batch of requests answered by one opposing response document."""

    id: str = Field(min_length=1)
    date_added: str = Field(default_factory=lambda: date.today().isoformat())
    description: str = ""
    requests: list[Request] = Field(min_length=1)
    response_date: str | None = None
    recipient_emails: list[str] = Field(default_factory=list)
    salutation_names: str | None = None

    @field_validator("requests")
    @classmethod
    def _unique_request_ids(cls, value: list[Request]) -> list[Request]:
        seen: set[int] = set()
        for request in value:
            if request.id in seen:
                raise ValueError(f"Duplicate request id {request.id}")
            seen.add(request.id)
        return value

    @field_validator("recipient_emails", mode="before")
    @classmethod
    def _coerce_emails(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def get_request(self, request_id: int) -> Request | None:
        for request in self.requests:
            if request.id == request_id:
                return request
        return None

    def qualifying_requests(self) -> list[Request]:
        return [request for request in self.requests if request.qualifies]

    def stats(self) -> LetterStats:
        return LetterStats(
            total_requests=len(self.requests),
            with_objections=sum(1 for r in self.requests if r.has_objection),
            with_replies=sum(1 for r in self.requests if r.has_reply),
            pending=sum(1 for r in self.requests if r.has_objection and not r.has_reply),
            qualifying=sum(1 for r in self.requests if r.qualifies),
        )


class LetterVersion(RejoinderModel):
    """Immutable snapshot of one assembled response letter."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(gt=0)
    generated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    letter_id: str
    content: str
    strategy: Strategy
    stats: LetterStats


class Case(RejoinderModel):
    """Top-level aggregate of request letters and generated letter versions."""

    case_id: str = Field(min_length=1)
    case_name: str = ""
    version: str = CURRENT_SCHEMA_VERSION
    case_data: dict[str, Any] = Field(default_factory=dict)
    request_letters: list[RequestLetter] = Field(default_factory=list)
    letter_versions: list[LetterVersion] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_letter_ids(self) -> Case:
        seen: set[str] = set()
        for letter in self.request_letters:
            if letter.id in seen:
                raise ValueError(f"Duplicate request letter id '{letter.id}'")
            seen.add(letter.id)
        return self

    @property
    def court(self) -> str:
        return str(self.case_data.get("court") or "")

    @property
    def case_number(self) -> str:
        return str(self.case_data.get("caseNumber") or self.case_data.get("case_number") or "")

    def get_letter(self, letter_id: str) -> RequestLetter | None:
        for letter in self.request_letters:
            if letter.id == letter_id:
                return letter
        return None

    def get_version(self, version_id: int) -> LetterVersion | None:
        for version in self.letter_versions:
            if version.id == version_id:
                return version
        return None

    def next_letter_id(self) -> str:
        """Next ``rog-set<n>`` identifier not already taken."""
        taken = {letter.id for letter in self.request_letters}
        index = len(self.request_letters) + 1
        while f"rog-set{index}" in taken:
            index += 1
        return f"rog-set{index}"

    def next_version_id(self) -> int:
        return max((version.id for version in self.letter_versions), default=0) + 1

    def stats(self) -> dict[str, Any]:
        letters = {letter.id: letter.stats() for letter in self.request_letters}
        totals = LetterStats(
            total_requests=sum(s.total_requests for s in letters.values()),
            with_objections=sum(s.with_objections for s in letters.values()),
            with_replies=sum(s.with_replies for s in letters.values()),
            pending=sum(s.pending for s in letters.values()),
            qualifying=sum(s.qualifying for s in letters.values()),
        )
        return {
            "caseId": self.case_id,
            "letters": {key: value.to_json_dict() for key, value in letters.items()},
            "totals": totals.to_json_dict(),
            "versions": len(self.letter_versions),
        }


class UserProfile(RejoinderModel):
    """Attorney and firm details used for the letterhead and signature."""

    name: str = ""
    org: str = ""
    org_address: str = ""
    phone: str = ""
    email: str = ""
    bar_number: str = ""
    signature: str = ""
    api_key: str = Field(default="", repr=False)

    def public_dict(self) -> dict[str, Any]:
        """Profile as returned to clients: the API key is never included."""
        payload = self.model_dump(mode="json", by_alias=True, exclude={"api_key"})
        payload["hasApiKey"] = bool(self.api_key)
        return payload

    @property
    def initials(self) -> str:
        parts = [part for part in self.name.split() if part]
        return "".join(part[0].upper() for part in parts) or "AN"


class NewCasePayload(RejoinderModel):
    case_id: str | None = None
    case_name: str = Field(min_length=1)
    case_data: dict[str, Any] = Field(default_factory=dict)


class CaseUpdatePayload(RejoinderModel):
    case_name: str | None = None
    case_data: dict[str, Any] | None = None
    request_letters: list[RequestLetter] | None = None


class ReplyRequestPayload(RejoinderModel):
    context: str | None = None


class BatchReplyPayload(RejoinderModel):
    context: str | None = None
    overwrite: bool = False
