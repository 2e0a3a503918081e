"""Command-line entry point for the Rejoinder pipeline."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from api.logging_config import configure_logging
from orchestrator.exceptions import RejoinderError
from orchestrator.progress import (
    DRAFT_PROGRESS,
    LETTER_PROGRESS,
    REQUEST_PROGRESS,
    UPLOAD_PROGRESS,
    ProgressChannel,
    ProgressEvent,
)
from orchestrator.service import PipelineService
from orchestrator.storage.json_repository import JsonCaseRepository


def print_event(event: ProgressEvent) -> None:
    """Print one progress event as a single line."""
    if event.type == "progress":
        print(f"[{event.progress:3d}%] {event.stage}: {event.message}")
    elif event.type == "complete":
        print(f"✓ {event.message}")
    elif event.type == "cancel":
        print(f"- {event.message}")
    else:
        print(f"✗ {event.stage}: {event.message}", file=sys.stderr)


def _channel(name: str, quiet: bool) -> ProgressChannel:
    return ProgressChannel(name, listener=None if quiet else print_event)


def _read_document(parser: argparse.ArgumentParser, path: Path) -> bytes:
    if not path.is_file():
        parser.error(f"Document '{path}' was not found")
    return path.read_bytes()


def _write_or_print(content: str, output: Path | None) -> None:
    if output is None:
        print(content)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    print(f"Saved to {output}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rejoinder",
        description="Turn an opponent's discovery objections into a rebuttal letter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a case and import a set of interrogatories
  rejoinder cases --new "Doe v. Acme" --court "Superior Court" --case-number 24-CV-1
  rejoinder import-requests doe-v-acme interrogatories.pdf

  # Pull objections from the response, draft replies, build the letter
  rejoinder extract doe-v-acme rog-set1 responses.pdf
  rejoinder draft-all doe-v-acme rog-set1
  rejoinder assemble doe-v-acme rog-set1 --output letter.html
        """,
    )
    parser.add_argument("--data-dir", type=Path, help="Data directory (default: REJOINDER_DATA_DIR or ~/.rejoinder)")
    parser.add_argument("--log-level", help="Log level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--quiet", action="store_true", help="Do not print progress events")

    commands = parser.add_subparsers(dest="command", required=True)

    cases = commands.add_parser("cases", help="List cases, or create one with --new")
    cases.add_argument("--new", metavar="NAME", help="Create a case with this name")
    cases.add_argument("--case-id", help="Identifier for the new case (default: derived from the name)")
    cases.add_argument("--court", help="Court for the new case")
    cases.add_argument("--case-number", help="Case number for the new case")

    import_requests = commands.add_parser("import-requests", help="Import a request letter into a case")
    import_requests.add_argument("case_id")
    import_requests.add_argument("document", type=Path, help="Request letter (PDF or .txt)")
    import_requests.add_argument("--description", help="Letter description used in the response")
    import_requests.add_argument("--response-date", help="Date of the opponent's response")
    import_requests.add_argument("--recipient", action="append", default=[], help="Recipient e-mail (repeatable)")
    import_requests.add_argument("--salutation", help="Names for the letter salutation")

    extract = commands.add_parser("extract", help="Extract objections from the opponent's response")
    extract.add_argument("case_id")
    extract.add_argument("letter_id")
    extract.add_argument("document", type=Path, help="Response document (PDF or .txt)")

    draft = commands.add_parser("draft", help="Draft the reply to one request")
    draft.add_argument("case_id")
    draft.add_argument("letter_id")
    draft.add_argument("request_id", type=int)
    draft.add_argument("--context", help="Extra facts for the drafter")

    draft_all = commands.add_parser("draft-all", help="Draft replies for every request with an objection")
    draft_all.add_argument("case_id")
    draft_all.add_argument("letter_id")
    draft_all.add_argument("--context", help="Extra facts for the drafter")
    draft_all.add_argument("--overwrite", action="store_true", help="Redraft requests that already have a reply")

    assemble = commands.add_parser("assemble", help="Assemble the response letter")
    assemble.add_argument("case_id")
    assemble.add_argument("letter_id")
    assemble.add_argument("--output", type=Path, help="Write the letter HTML here instead of stdout")

    show_version = commands.add_parser("show-version", help="Print a stored letter version")
    show_version.add_argument("case_id")
    show_version.add_argument("version_id", type=int)
    show_version.add_argument("--output", type=Path, help="Write the letter HTML here instead of stdout")

    return parser


async def main_async(argv: Sequence[str] | None = None, service: PipelineService | None = None) -> int:
    """Run one command and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if service is None:
        repository = JsonCaseRepository(args.data_dir) if args.data_dir else None
        service = PipelineService(repository=repository)

    try:
        return await _dispatch(parser, args, service)
    except RejoinderError as exc:
        print(f"✗ {exc.message}", file=sys.stderr)
        return 1


async def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace, service: PipelineService) -> int:
    if args.command == "cases":
        if args.new:
            case_data = {
                key: value
                for key, value in (("court", args.court), ("caseNumber", args.case_number))
                if value
            }
            case = service.create_case({"caseId": args.case_id, "caseName": args.new, "caseData": case_data})
            print(f"✓ Created case '{case.case_id}' ({case.case_name})")
            return 0

        summaries = service.list_cases()
        if not summaries:
            print("No cases found.")
        for summary in summaries:
            print(
                f"{summary['caseId']}: {summary['caseName']} "
                f"({summary['letters']} letters, {summary['versions']} versions)"
            )
        return 0

    if args.command == "import-requests":
        letter = await service.import_request_letter(
            args.case_id,
            _read_document(parser, args.document),
            args.document.name,
            description=args.description,
            response_date=args.response_date,
            recipient_emails=args.recipient,
            salutation_names=args.salutation,
            channel=_channel(REQUEST_PROGRESS, args.quiet),
        )
        if letter is None:
            return 1
        print(f"Letter id: {letter.id}")
        return 0

    if args.command == "extract":
        updated = await service.extract_objections_stream(
            args.case_id,
            args.letter_id,
            _read_document(parser, args.document),
            args.document.name,
            channel=_channel(UPLOAD_PROGRESS, args.quiet),
        )
        return 1 if updated is None else 0

    if args.command == "draft":
        payload = {"context": args.context} if args.context else None
        draft = await service.draft_reply(args.case_id, args.letter_id, args.request_id, payload)
        print(f"Categories: {', '.join(draft.categories)}")
        print(draft.reply)
        return 0

    if args.command == "draft-all":
        result = await service.draft_all_stream(
            args.case_id,
            args.letter_id,
            {"context": args.context, "overwrite": args.overwrite},
            channel=_channel(DRAFT_PROGRESS, args.quiet),
        )
        if result is None:
            return 1
        for failure in result["failed"]:
            print(f"✗ Request {failure['id']}: {failure['error']}", file=sys.stderr)
        return 1 if result["failed"] else 0

    if args.command == "assemble":
        version = await service.assemble_stream(
            args.case_id,
            args.letter_id,
            channel=_channel(LETTER_PROGRESS, args.quiet),
        )
        if version is None:
            return 1
        print(f"Version {version.id} ({version.strategy})")
        _write_or_print(version.content, args.output)
        return 0

    if args.command == "show-version":
        version = service.get_version(args.case_id, args.version_id)
        print(f"Version {version.id} of letter {version.letter_id}, generated {version.generated_at} ({version.strategy})")
        _write_or_print(version.content, args.output)
        return 0

    parser.error(f"Unknown command '{args.command}'")
    return 2


def main(argv: Sequence[str] | None = None) -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main_async(argv)))


if __name__ == "__main__":
    main()
