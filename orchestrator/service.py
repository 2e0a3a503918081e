"""Application service coordinating the letter pipelines.

The letter-factory stages are pure functions over data handed to them. This
service is the caller that owns case records: it loads a case, runs a stage,
merges the result into the case and persists it. Streaming operations report
through a ``ProgressChannel`` and turn every failure into a terminal ``error``
event; the non-streaming operations raise.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

from letter_factory.assembler import LetterAssembler
from letter_factory.deconstruction import classify_objection
from letter_factory.drafting import DisputeContext, draft_refutations
from letter_factory.extraction import extract_objections, extract_requests, merge_objections
from letter_factory.taxonomy import ObjectionTaxonomy, load_taxonomy
from orchestrator.exceptions import (
    CaseNotFoundError,
    ClassificationError,
    InvalidPayloadError,
    LetterNotFoundError,
    RejoinderError,
    RequestNotFoundError,
    RunInProgressError,
    ServiceError,
    VersionNotFoundError,
)
from orchestrator.models import (
    Case,
    LetterVersion,
    Request,
    RequestLetter,
    UserProfile,
)
from orchestrator.progress import (
    DRAFT_PROGRESS,
    LETTER_PROGRESS,
    REQUEST_PROGRESS,
    UPLOAD_PROGRESS,
    ProgressChannel,
)
from orchestrator.run_registry import RunRegistry
from orchestrator.storage.json_repository import JsonCaseRepository, JsonProfileRepository
from orchestrator.validation import (
    validate_batch_reply,
    validate_case_id,
    validate_case_update,
    validate_letter_id,
    validate_new_case,
    validate_profile,
    validate_reply_request,
    validate_request_id,
    validate_version_id,
)
from tools import document_converter
from tools.llm_client import CompletionService, LLMClient

logger = logging.getLogger("rejoinder.orchestrator")

T = TypeVar("T")

NO_FILE_MESSAGE = "No file selected"


@dataclass(frozen=True, slots=True)
class ReplyDraft:
    """Outcome of drafting one request's reply."""

    request_id: int
    categories: tuple[str, ...]
    reply: str

    def to_dict(self) -> dict[str, Any]:
        return {"requestId": self.request_id, "categories": list(self.categories), "reply": self.reply}


def case_summary(case: Case) -> dict[str, Any]:
    """Compact listing entry for a case."""
    return {
        "caseId": case.case_id,
        "caseName": case.case_name,
        "court": case.court,
        "caseNumber": case.case_number,
        "letters": len(case.request_letters),
        "versions": len(case.letter_versions),
    }


class PipelineService:
    """Service responsible for case records and the four user-triggered pipelines."""

    def __init__(
        self,
        repository: JsonCaseRepository | None = None,
        profiles: JsonProfileRepository | None = None,
        taxonomy: ObjectionTaxonomy | None = None,
        llm: CompletionService | None = None,
        runs: RunRegistry | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.repository = repository or JsonCaseRepository()
        self.profiles = profiles or JsonProfileRepository(self.repository.root)
        self.taxonomy = taxonomy or load_taxonomy()
        self.runs = runs or RunRegistry()
        self._llm = llm
        self._today = today

        # Client built from the profile key, rebuilt when the key changes
        self._client: LLMClient | None = None
        self._client_key: str | None = None

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def completion_service(self) -> CompletionService:
        """The injected service, or a client using the profile's API key.

        Without a profile key the client falls back to ``ANTHROPIC_API_KEY``
        and then to stub mode.
        """
        if self._llm is not None:
            return self._llm

        key = self.profiles.load().api_key or None
        if self._client is None or key != self._client_key:
            self._client = LLMClient(api_key=key)
            self._client_key = key
        return self._client

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def list_cases(self) -> list[dict[str, Any]]:
        return [case_summary(case) for case in self.repository.list_all()]

    def get_case(self, case_id: str) -> Case:
        """Load a case.

        Raises:
            InvalidPayloadError: If the case id is malformed.
            CaseNotFoundError: If the case does not exist.
        """
        case = self.repository.load(validate_case_id(case_id))
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    def create_case(self, payload: dict[str, Any]) -> Case:
        """Create an empty case.

        Raises:
            InvalidPayloadError: If the payload is invalid or the id is taken.
        """
        validated = validate_new_case(payload)
        if self.repository.exists(validated.case_id):
            raise InvalidPayloadError(
                f"Case '{validated.case_id}' already exists",
                field="caseId",
                value=validated.case_id,
            )

        case = Case(
            case_id=validated.case_id,
            case_name=validated.case_name.strip(),
            case_data=validated.case_data,
        )
        self.repository.save(case)
        logger.info("Created case %s", case.case_id)
        return case

    def update_case(self, case_id: str, payload: dict[str, Any]) -> Case:
        """Apply a partial update to a case's name, data or request letters."""
        validated = validate_case_update(payload)
        case = self.get_case(case_id)

        update: dict[str, Any] = {}
        if validated.case_name is not None:
            update["case_name"] = validated.case_name.strip()
        if validated.case_data is not None:
            update["case_data"] = {**case.case_data, **validated.case_data}
        if validated.request_letters is not None:
            update["request_letters"] = validated.request_letters

        try:
            updated = Case.model_validate({**case.model_dump(), **update})
        except ValueError as exc:
            raise InvalidPayloadError(f"Invalid case update: {exc}", field="requestLetters") from exc

        self.repository.save(updated)
        logger.info("Updated case %s (%s)", case_id, ", ".join(sorted(update)) or "no changes")
        return updated

    def delete_case(self, case_id: str) -> None:
        if not self.repository.delete(validate_case_id(case_id)):
            raise CaseNotFoundError(case_id)

    def case_stats(self, case_id: str) -> dict[str, Any]:
        return self.get_case(case_id).stats()

    def get_letter(self, case_id: str, letter_id: str) -> tuple[Case, RequestLetter]:
        """Load a case and one of its request letters.

        Raises:
            CaseNotFoundError: If the case does not exist.
            LetterNotFoundError: If the letter does not exist in the case.
        """
        case = self.get_case(case_id)
        return case, self._letter_in(case, letter_id)

    def ensure_idle(self, case_id: str, letter_id: str) -> None:
        """Raise ``RunInProgressError`` if the letter is busy.

        Streaming endpoints call this before opening the stream so the
        conflict can be reported as a plain HTTP error.
        """
        active = self.runs.get_active(case_id, letter_id)
        if active is not None:
            raise RunInProgressError(case_id, letter_id, active.pipeline)

    # ------------------------------------------------------------------
    # Versions and profile
    # ------------------------------------------------------------------

    def get_versions(self, case_id: str) -> list[LetterVersion]:
        return list(self.get_case(case_id).letter_versions)

    def get_version(self, case_id: str, version_id: int | str) -> LetterVersion:
        version_number = validate_version_id(version_id)
        version = self.get_case(case_id).get_version(version_number)
        if version is None:
            raise VersionNotFoundError(case_id, version_number)
        return version

    def get_profile(self) -> UserProfile:
        return self.profiles.load()

    def save_profile(self, payload: dict[str, Any]) -> UserProfile:
        """Replace the profile; an omitted API key keeps the stored one."""
        profile = validate_profile(payload)
        if "apiKey" not in payload and "api_key" not in payload:
            profile = profile.model_copy(update={"api_key": self.profiles.load().api_key})
        self.profiles.save(profile)
        return profile

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def import_request_letter(
        self,
        case_id: str,
        document: bytes | None,
        filename: str = "requests.pdf",
        *,
        description: str | None = None,
        response_date: str | None = None,
        recipient_emails: list[str] | str | None = None,
        salutation_names: str | None = None,
        channel: ProgressChannel | None = None,
    ) -> RequestLetter | None:
        """Read a request letter and add its numbered requests to the case.

        Streams on ``request-progress``. A missing document cancels the run.
        """
        channel = channel or ProgressChannel(REQUEST_PROGRESS)
        if document is None:
            await channel.cancel(NO_FILE_MESSAGE)
            return None

        async def work() -> RequestLetter:
            case = self.get_case(case_id)

            await channel.progress("reading", f"Reading {filename}...", 0)
            text = document_converter.convert(document, filename)

            await channel.progress("preparing", f"Preparing {len(text)} characters for analysis...", 25)
            llm = self.completion_service()

            await channel.progress("processing", "Identifying numbered requests...", 50)
            extracted = await extract_requests(llm, text)

            await channel.progress("finalizing", f"Saving {len(extracted)} requests...", 75)

            def add_letter(current: Case) -> RequestLetter:
                letter = RequestLetter(
                    id=current.next_letter_id(),
                    date_added=self._today().isoformat(),
                    description=description or f"Discovery Requests (set {len(current.request_letters) + 1})",
                    requests=[Request(id=item.id, text=item.text) for item in extracted],
                    response_date=response_date,
                    recipient_emails=recipient_emails,
                    salutation_names=salutation_names,
                )
                current.request_letters.append(letter)
                return letter

            letter = self._update_case(case.case_id, add_letter)

            await channel.complete(letter.to_json_dict(), f"Imported {len(letter.requests)} requests")
            return letter

        return await self._run_streaming(channel, case_id, "import", "import", work)

    async def extract_objections_stream(
        self,
        case_id: str,
        letter_id: str,
        document: bytes | None,
        filename: str = "response.pdf",
        *,
        channel: ProgressChannel | None = None,
    ) -> list[int] | None:
        """Find the opponent's objections and merge them into the letter.

        Streams on ``upload-progress``. A missing document cancels the run
        before any completion call.

        Returns:
            Ids of the requests whose objection was set, or ``None`` if the
            run was cancelled or failed.
        """
        channel = channel or ProgressChannel(UPLOAD_PROGRESS)
        if document is None:
            await channel.cancel(NO_FILE_MESSAGE)
            return None

        async def work() -> list[int]:
            case, letter = self.get_letter(case_id, letter_id)

            await channel.progress("reading", f"Reading {filename}...", 0)
            text = document_converter.convert(document, filename)
            await channel.progress("reading", f"Read {len(text)} characters", 20)

            await channel.progress("preparing", f"Preparing {len(letter.requests)} requests for matching...", 25)
            llm = self.completion_service()
            await channel.progress("preparing", "Prepared extraction prompt", 35)

            await channel.progress("processing", "Extracting objections...", 35)
            extracted = await extract_objections(llm, letter.requests, text)

            await channel.progress("finalizing", "Merging objections into requests...", 85)
            def merge(current: Case) -> tuple[RequestLetter, list[int]]:
                merged_into = self._letter_in(current, letter_id)
                return merged_into, merge_objections(merged_into.requests, extracted)

            letter, updated = self._update_case(case.case_id, merge)
            await channel.progress("finalizing", "Saved case", 95)

            await channel.complete(
                {
                    "letterId": letter.id,
                    "updated": updated,
                    "objections": [entry.to_dict() for entry in extracted],
                    "letter": letter.to_json_dict(),
                },
                f"Found objections for {len(updated)} of {len(letter.requests)} requests",
            )
            return updated

        return await self._run_streaming(channel, case_id, letter_id, "extract", work)

    async def draft_reply(
        self,
        case_id: str,
        letter_id: str,
        request_id: int | str,
        payload: dict[str, Any] | None = None,
    ) -> ReplyDraft:
        """Classify one request's objection and draft its reply.

        Raises:
            InvalidPayloadError: If the request has no objection.
            RunInProgressError: If another run holds the letter.
            ServiceError: If a completion call fails.
            ClassificationError: If the objection cannot be classified.
        """
        options = validate_reply_request(payload)
        number = validate_request_id(request_id)

        async with self.runs.run(case_id, letter_id, "draft"):
            case, _ = self.get_letter(case_id, letter_id)
            request = self._request_in(case, letter_id, number)

            draft = await self._draft(request, options.context)

            def store(current: Case) -> None:
                self._request_in(current, letter_id, number).reply = draft.reply

            self._update_case(case.case_id, store)
            return draft

    async def draft_all_stream(
        self,
        case_id: str,
        letter_id: str,
        payload: dict[str, Any] | None = None,
        *,
        channel: ProgressChannel | None = None,
    ) -> dict[str, Any] | None:
        """Draft replies for every request with an objection.

        Requests that already have a reply are skipped unless ``overwrite``
        is set. A request whose drafting fails keeps no reply and is listed
        under ``failed`` in the completion data; the batch carries on.
        Streams on ``draft-progress``.
        """
        channel = channel or ProgressChannel(DRAFT_PROGRESS)

        async def work() -> dict[str, Any]:
            options = validate_batch_reply(payload)
            case, letter = self.get_letter(case_id, letter_id)
            targets = [
                request
                for request in letter.requests
                if request.has_objection and (options.overwrite or not request.has_reply)
            ]

            await channel.progress("setup", f"Drafting replies for {len(targets)} requests...", 0)
            drafted: list[dict[str, Any]] = []
            replies: dict[int, str] = {}
            failed: list[dict[str, Any]] = []
            for index, request in enumerate(targets):
                await channel.progress(
                    "drafting",
                    f"Drafting reply {index + 1}/{len(targets)} (Request #{request.id})...",
                    round(5 + index / len(targets) * 85),
                )
                try:
                    draft = await self._draft(request, options.context)
                except (ServiceError, ClassificationError) as exc:
                    logger.warning("Drafting failed for request %d: %s", request.id, exc.message)
                    failed.append({"id": request.id, "error": exc.message})
                    continue
                replies[request.id] = draft.reply
                drafted.append(draft.to_dict())

            await channel.progress("saving", "Saving replies...", 95)
            if replies:

                def store(current: Case) -> RequestLetter:
                    stored_in = self._letter_in(current, letter_id)
                    for item in stored_in.requests:
                        if item.id in replies:
                            item.reply = replies[item.id]
                    return stored_in

                letter = self._update_case(case.case_id, store)

            data = {"letterId": letter.id, "drafted": drafted, "failed": failed, "stats": letter.stats().to_json_dict()}
            await channel.complete(data, f"Drafted {len(drafted)} replies ({len(failed)} failed)")
            return data

        return await self._run_streaming(channel, case_id, letter_id, "draft", work)

    async def assemble_stream(
        self,
        case_id: str,
        letter_id: str,
        *,
        channel: ProgressChannel | None = None,
    ) -> LetterVersion | None:
        """Assemble the response letter and store it as a new version.

        Streams on ``letter-progress``; modular runs publish each section as
        it is generated.
        """
        channel = channel or ProgressChannel(LETTER_PROGRESS)

        async def work() -> LetterVersion:
            case, letter = self.get_letter(case_id, letter_id)
            assembler = LetterAssembler(self.completion_service(), today=self._today)
            result = await assembler.assemble(case, letter, self.profiles.load(), channel)

            def add_version(current: Case) -> LetterVersion:
                version = LetterVersion(
                    id=current.next_version_id(),
                    letter_id=letter.id,
                    content=result.content,
                    strategy=result.strategy,
                    stats=letter.stats(),
                )
                current.letter_versions.append(version)
                return version

            version = self._update_case(case.case_id, add_version)
            logger.info("Stored letter version %d for %s/%s (%s)", version.id, case_id, letter_id, version.strategy)

            await channel.complete(
                {"version": version.to_json_dict(), "singlePassAttempted": result.single_pass_attempted},
                f"Letter generated ({version.strategy.replace('_', '-')})",
            )
            return version

        return await self._run_streaming(channel, case_id, letter_id, "assemble", work)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _update_case(self, case_id: str, mutate: Callable[[Case], T]) -> T:
        """Apply ``mutate`` to a freshly loaded copy of the case and save it.

        Pipelines hold their case across long completion calls while other
        letters of the same case may be imported, drafted or edited. Their
        results are merged into the stored record as it is now, never into
        the copy they started from. Nothing here awaits, so load, merge and
        save run as one step on the event loop.
        """
        case = self.get_case(case_id)
        result = mutate(case)
        self.repository.save(case)
        return result

    @staticmethod
    def _letter_in(case: Case, letter_id: str) -> RequestLetter:
        letter = case.get_letter(validate_letter_id(letter_id))
        if letter is None:
            raise LetterNotFoundError(case.case_id, letter_id)
        return letter

    @classmethod
    def _request_in(cls, case: Case, letter_id: str, request_id: int) -> Request:
        request = cls._letter_in(case, letter_id).get_request(request_id)
        if request is None:
            raise RequestNotFoundError(letter_id, request_id)
        return request

    async def _draft(self, request: Request, context: str | None) -> ReplyDraft:
        if not request.has_objection:
            raise InvalidPayloadError(
                f"Request {request.id} has no objection to refute",
                field="objection",
                details={"request_id": request.id},
            )

        llm = self.completion_service()
        categories = await classify_objection(llm, request.objection, self.taxonomy.categories)
        if not categories:
            logger.info("No categories for request %d, using fallback", request.id)
            categories = [self.taxonomy.fallback_category]

        reply = await draft_refutations(
            llm,
            self.taxonomy,
            categories,
            DisputeContext(request_text=request.text, objection_text=request.objection, user_context=context),
        )
        return ReplyDraft(request_id=request.id, categories=tuple(categories), reply=reply)

    async def _run_streaming(
        self,
        channel: ProgressChannel,
        case_id: str,
        letter_id: str,
        pipeline: str,
        work: Callable[[], Awaitable[T]],
    ) -> T | None:
        """Run ``work`` holding the letter; failures end the channel with ``error``."""
        stage = "setup"
        try:
            async with self.runs.run(case_id, letter_id, pipeline):
                return await work()
        except RejoinderError as exc:
            stage = channel.events[-1].stage if channel.events else stage
            logger.error("%s run for %s/%s failed at %s: %s", pipeline, case_id, letter_id, stage, exc.message)
            if not channel.closed:
                await channel.fail(exc, stage=stage)
        except Exception as exc:
            stage = channel.events[-1].stage if channel.events else stage
            logger.exception("%s run for %s/%s crashed at %s", pipeline, case_id, letter_id, stage)
            if not channel.closed:
                await channel.fail(f"Unexpected error during {pipeline}: {type(exc).__name__}", stage=stage)
        return None
