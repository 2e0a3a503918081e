"""Letter Factory - from an opponent's objections to a rebuttal letter.

The stages are plain async functions over data handed to them; none of them
touch storage:

- Extraction: response document text -> objection per request id
- Deconstruction: objection text -> taxonomy category keys
- Drafting: category keys -> escaped HTML refutation fragment
- Assembly: qualifying requests -> complete letter (single pass or modular)

Usage:
    from letter_factory import load_taxonomy, classify_objection, draft_refutations

    taxonomy = load_taxonomy()
    keys = await classify_objection(llm, objection, taxonomy.categories)
    reply = await draft_refutations(
        llm,
        taxonomy,
        keys,
        DisputeContext(request_text=request.text, objection_text=objection),
    )
"""

from letter_factory.assembler import (
    AssemblyResult,
    LetterAssembler,
    request_topic,
    strip_code_fences,
)
from letter_factory.completeness import (
    CompletenessReport,
    check_completeness,
    ensure_complete,
)
from letter_factory.deconstruction import classify_objection
from letter_factory.drafting import DisputeContext, draft_refutations
from letter_factory.extraction import (
    ExtractedObjection,
    ExtractedRequest,
    extract_objections,
    extract_requests,
    merge_objections,
)
from letter_factory.parsing import DecodeOutcome, DecodeResult, decode_payload, parse_structured
from letter_factory.registry import Section, SectionType, get_section_template
from letter_factory.taxonomy import ObjectionTaxonomy, TaxonomyEntry, load_taxonomy

__all__ = [
    # Stages
    "extract_objections",
    "extract_requests",
    "merge_objections",
    "classify_objection",
    "draft_refutations",
    "LetterAssembler",
    # Results and inputs
    "AssemblyResult",
    "DisputeContext",
    "ExtractedObjection",
    "ExtractedRequest",
    "CompletenessReport",
    "check_completeness",
    "ensure_complete",
    "request_topic",
    "strip_code_fences",
    # Parsing
    "DecodeOutcome",
    "DecodeResult",
    "decode_payload",
    "parse_structured",
    # Registry and taxonomy
    "Section",
    "SectionType",
    "get_section_template",
    "ObjectionTaxonomy",
    "TaxonomyEntry",
    "load_taxonomy",
]
