"""Prompts for the objection pipeline and the response letter.

Each prompt states exactly what the model must return. Letter prompts embed
the HTML skeleton the model fills in between ``TEMPLATE_BEGIN`` and
``TEMPLATE_END`` so the section markers checked by the completeness
validator are always requested.
"""

from __future__ import annotations

import html
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from letter_factory.taxonomy import TaxonomyEntry
    from orchestrator.models import Request, UserProfile

TEMPLATE_BEGIN = "--- BEGIN TEMPLATE ---"
TEMPLATE_END = "--- END TEMPLATE ---"

NO_OBJECTIONS_ENVELOPE = '{"error": "No objections found in document"}'

# =============================================================================
# EXTRACTION PROMPTS
# =============================================================================

EXTRACTION_PROMPT = """You are a data extraction expert. Your task is to find objections to specific interrogatory requests in a legal document.

--- Original Requests ---
{requests}
--- End of Original Requests ---

--- Raw Text from Opponent's Response Document ---
{raw_text}
--- End of Raw Text ---

INSTRUCTIONS:
1. For each numbered request above, find the corresponding objection/response in the opponent's document.
2. Return a JSON array of objects, where each object has:
   - "id": the request number (as a number)
   - "objection": the complete text of the objection/response for that specific request
3. If no objection is found for a request, set "objection" to null.
4. Ensure each objection is matched to the correct request number.
5. Include ONLY the actual objection text, not the original request text.
6. Maintain the exact wording of each objection.
7. IMPORTANT: If you cannot find ANY objections in the document, return {no_objections}

Return ONLY the JSON array or error object.
"""

REQUEST_EXTRACTION_PROMPT = """You are a data extraction expert. Your task is to extract interrogatory requests from a legal document.

--- Raw Text from Request Document ---
{raw_text}
--- End of Raw Text ---

INSTRUCTIONS:
1. Find all interrogatory requests in the document.
2. For each request extract the request number and the complete text of the request.
3. Return a JSON array of objects, where each object has:
   - "id": the request number (as a number)
   - "text": the complete text of the request
4. Include ONLY actual interrogatory requests.
5. Maintain the exact wording of each request.

Return ONLY the JSON array.
"""

# =============================================================================
# CLASSIFICATION AND DRAFTING PROMPTS
# =============================================================================

DECONSTRUCTOR_PROMPT = """Analyze the following legal objection text. Identify every distinct legal objection made from the following list: [{category_keys}].
Return your findings as a JSON array of strings. For example: ["vague", "overly broad", "work product"].
Do not explain yourself. Respond ONLY with the JSON array.

Objection Text to Analyze: "{objection_text}"
"""

DRAFTER_PROMPT = """You are an expert legal assistant. Your task is to draft a single, persuasive paragraph refuting a specific discovery objection, following a precise chain of thought.

--- RULE TO APPLY ---
- Objection Type: "{category}"
- Core Argument: "{argument}"
- Relevant Cases: [{citations}]
--- END OF RULE ---

--- DISPUTE CONTEXT ---
- Plaintiff's Request: "{request_text}"
- Full Text of Defendant's Objection: "{objection_text}"
--- END OF CONTEXT ---

--- ADDITIONAL USER-PROVIDED CONTEXT TO CONSIDER ---
{context}
--- END OF ADDITIONAL CONTEXT ---

INSTRUCTIONS:
1. **Integrate Context:** Consider the additional user-provided context. If it contains specific facts or case law, use it to make the argument more specific.
2. **State the Law:** Begin by stating the Core Argument for the specified Objection Type. You MUST cite one or more of the Relevant Cases if provided, or cases from the user's context.
3. **Apply to Facts:** Explain WHY the Defendant's Objection is improper in the context of the specific Plaintiff's Request, directly refuting their reasoning.
4. **Demand Action:** Conclude the paragraph with a professional instruction, like "Please supplement your response."
5. **Final Output:** Provide ONLY the single, complete legal paragraph.

Draft the paragraph now.
"""

# =============================================================================
# LETTER SECTION TEMPLATES
# =============================================================================

LETTERHEAD_HTML = """<header class="letterhead">
    <p class="letterhead-title">{org}</p>
    <p class="contact-info">{org_address}</p>
    <p class="contact-info">Voice: {phone} &bull; E-mail: {email}</p>{bar_number}
</header>"""

HEADER_HTML = """{letterhead}

<p class="date">{letter_date}</p>

<div class="recipient-info">
    <p><strong>VIA EMAIL ONLY:</strong></p>
    {recipients}
</div>

<div class="case-caption">
    <p>
        <span class="caption-label">RE:</span>
        <span class="caption-text">
            <strong>Discovery Dispute</strong><br>
            <em>{case_caption}</em><br>
            {case_info}
        </span>
    </p>
</div>

<p class="salutation">Dear {salutation_names}:</p>

<div class="main-body">
    <p>I have received your Response to {letter_description} dated {response_date}.</p>
    <p>I am writing to address several perceived deficiencies in the Response. This letter gives you a detailed description of the deficiencies and seeks to obtain your voluntary compliance with your disclosure obligations without filing a motion to compel.</p>

    <h2 class="interrogatory-heading">Interrogatories:</h2>
</div>"""

REQUEST_SECTION_HTML = """<h3 class="interrogatory-subheading">Interrogatory Number {request_id}</h3>
<p>We asked for information about {topic}. You asserted various objections, which I will discuss in turn, but then answered the Interrogatory as stated:</p>

<blockquote class="response-quote">
    <p class="no-indent">{objection}</p>
</blockquote>

<div class="legal-argument">
    {reply}
</div>"""

CONCLUSION_HTML = """<p class="conclusion">I look forward to receiving your supplemental discovery responses by the close of business on {deadline}.</p>

<div class="signature-block">
    {signature}
</div>

<p class="author-initials">{initials}/km</p>"""

DEFAULT_SIGNATURE_HTML = """<p>Sincerely yours,</p>
    <div class="signature-space"></div>
    <p>{org}</p>
    <div class="signature-space"></div>
    <p>{name}</p>"""

# =============================================================================
# LETTER PROMPTS
# =============================================================================

HEADER_SECTION_PROMPT = """Generate a professional legal letter header following exact formatting standards for US courts.

**Data:**
- Date: "{letter_date}"
- Case Caption: "{case_caption}"
- Case Info: "{case_info}"
- Salutation Names: "{salutation_names}"
- Response Date: "{response_date}"

**Generate the complete HTML header section with this exact structure:**

{template_begin}
{template}
{template_end}

Return ONLY the complete, raw HTML for this entire header section. Do not wrap it in markdown or add any explanations.
"""

REQUEST_SECTION_PROMPT = """Generate a professional legal interrogatory section following exact formatting standards.

**Data:**
- Request Number: {request_id}
- Request Topic: "{topic}"
- Opponent's Response: "{objection}"

**Generate the complete HTML section with this exact structure:**

{template_begin}
{template}
{template_end}

Keep the rebuttal inside the legal-argument block exactly as given. Return ONLY the raw HTML for this single request section. Do not wrap it in markdown or add any explanations.
"""

CONCLUSION_SECTION_PROMPT = """Generate a professional legal letter conclusion following exact formatting standards.

**Data:**
- Attorney Name: "{name}"
- Firm Name: "{org}"
- Closing Date: "{deadline}"

**Generate the complete HTML conclusion with this exact structure:**

{template_begin}
{template}
{template_end}

Return ONLY the raw HTML for this conclusion section. Do not wrap it in markdown or add any explanations.
"""

COMPLETE_LETTER_PROMPT = """Generate a complete professional legal discovery dispute letter following exact US court formatting standards.

**Case Information:**
- Case Name: "{case_name}"
- Case Number: "{case_number}"
- Court: "{court}"
- Letter Description: "{letter_description}"
- Response Date: "{response_date}"

**User Profile (use these exact values for letterhead and signature):**
- Attorney Name: "{name}"
- Firm Name: "{org}"
- Firm Address: "{org_address}"
- Firm Phone: "{phone}"
- Firm Email: "{email}"
- Bar Number: "{bar_number}"

**Requests with Objections ({count} total):**
{request_list}

**Generate a complete legal letter with this exact structure:**

{template_begin}
<div class="letter-container">
{template}
</div>
{template_end}

**Formatting Requirements:**
- Professional legal document standards
- Keep every CSS class shown in the structure
- IMPORTANT: Generate ALL interrogatory sections ({count} total)

Return the complete HTML document. Ensure ALL interrogatory sections are included.
"""


# =============================================================================
# PROMPT BUILDERS
# =============================================================================

def _esc(value: str | None, default: str = "") -> str:
    return html.escape(value.strip() if value and value.strip() else default)


def _multiline(value: str) -> str:
    return html.escape(value.strip()).replace("\n", "<br>")


def format_requests(requests: Sequence[Request]) -> str:
    """Render requests as ``Request <id>: <text>`` blocks."""
    return "\n\n".join(f"Request {request.id}: {request.text}" for request in requests)


def build_extraction_prompt(requests: Sequence[Request], raw_text: str) -> str:
    return EXTRACTION_PROMPT.format(
        requests=format_requests(requests),
        raw_text=raw_text,
        no_objections=NO_OBJECTIONS_ENVELOPE,
    )


def build_request_extraction_prompt(raw_text: str) -> str:
    return REQUEST_EXTRACTION_PROMPT.format(raw_text=raw_text)


def build_deconstructor_prompt(objection_text: str, category_keys: Sequence[str]) -> str:
    return DECONSTRUCTOR_PROMPT.format(
        category_keys=", ".join(category_keys),
        objection_text=objection_text,
    )


def build_drafter_prompt(
    category: str,
    entry: TaxonomyEntry,
    request_text: str,
    objection_text: str,
    context: str | None = None,
) -> str:
    return DRAFTER_PROMPT.format(
        category=category,
        argument=entry.argument,
        citations=", ".join(entry.citations),
        request_text=request_text,
        objection_text=objection_text,
        context=context.strip() if context and context.strip() else "None provided.",
    )


def render_letterhead(profile: UserProfile) -> str:
    bar_number = ""
    if profile.bar_number.strip():
        bar_number = f'\n    <p class="contact-info">Bar Number: {_esc(profile.bar_number)}</p>'
    return LETTERHEAD_HTML.format(
        org=_esc(profile.org, "Law Offices of [Attorney Name]"),
        org_address=_esc(profile.org_address, "Address Line 1, City, State ZIP"),
        phone=_esc(profile.phone, "Phone"),
        email=_esc(profile.email, "Email"),
        bar_number=bar_number,
    )


def render_header(
    profile: UserProfile,
    *,
    letter_date: str,
    recipient_emails: Sequence[str],
    case_caption: str,
    case_info: str,
    salutation_names: str,
    response_date: str,
    letter_description: str,
) -> str:
    recipients = "\n    ".join(f"<p>{_esc(email)}</p>" for email in recipient_emails)
    return HEADER_HTML.format(
        letterhead=render_letterhead(profile),
        letter_date=_esc(letter_date),
        recipients=recipients,
        case_caption=_esc(case_caption),
        case_info=_esc(case_info),
        salutation_names=_esc(salutation_names, "Counsel"),
        letter_description=_esc(letter_description, "our Interrogatories"),
        response_date=_esc(response_date),
    )


def render_request_section(request: Request, topic: str) -> str:
    return REQUEST_SECTION_HTML.format(
        request_id=request.id,
        topic=_esc(topic),
        objection=_multiline(request.objection or ""),
        reply=(request.reply or "").strip(),
    )


def render_conclusion(profile: UserProfile, deadline: str) -> str:
    if profile.signature.strip():
        signature = _multiline(profile.signature)
    else:
        signature = DEFAULT_SIGNATURE_HTML.format(
            org=_esc(profile.org, "Law Offices of [Attorney Name]"),
            name=_esc(profile.name, "Attorney Name"),
        )
    return CONCLUSION_HTML.format(
        deadline=_esc(deadline),
        signature=signature,
        initials=_esc(profile.initials),
    )


def build_header_prompt(profile: UserProfile, **framing: str | Sequence[str]) -> str:
    """Build the header-section prompt; ``framing`` is passed to ``render_header``."""
    return HEADER_SECTION_PROMPT.format(
        letter_date=framing["letter_date"],
        case_caption=framing["case_caption"],
        case_info=framing["case_info"],
        salutation_names=framing["salutation_names"],
        response_date=framing["response_date"],
        template_begin=TEMPLATE_BEGIN,
        template=render_header(profile, **framing),
        template_end=TEMPLATE_END,
    )


def build_request_section_prompt(request: Request, topic: str) -> str:
    return REQUEST_SECTION_PROMPT.format(
        request_id=request.id,
        topic=topic,
        objection=(request.objection or "").strip(),
        template_begin=TEMPLATE_BEGIN,
        template=render_request_section(request, topic),
        template_end=TEMPLATE_END,
    )


def build_conclusion_prompt(profile: UserProfile, deadline: str) -> str:
    return CONCLUSION_SECTION_PROMPT.format(
        name=profile.name or "Attorney Name",
        org=profile.org or "Law Offices of [Attorney Name]",
        deadline=deadline,
        template_begin=TEMPLATE_BEGIN,
        template=render_conclusion(profile, deadline),
        template_end=TEMPLATE_END,
    )


def build_complete_letter_prompt(
    profile: UserProfile,
    *,
    case_name: str,
    case_number: str,
    court: str,
    sections: Sequence[tuple[Request, str]],
    deadline: str,
    **framing: str | Sequence[str],
) -> str:
    """Build the single-pass prompt.

    ``sections`` pairs each qualifying request with its topic; ``framing`` is
    the same keyword set ``render_header`` takes.
    """
    body = "\n\n".join(render_request_section(request, topic) for request, topic in sections)
    template = "\n\n".join(
        [
            render_header(profile, **framing),
            body,
            render_conclusion(profile, deadline),
        ]
    )
    return COMPLETE_LETTER_PROMPT.format(
        case_name=case_name,
        case_number=case_number,
        court=court,
        letter_description=framing["letter_description"],
        response_date=framing["response_date"],
        name=profile.name or "Attorney Name",
        org=profile.org or "Law Offices of [Attorney Name]",
        org_address=profile.org_address or "Address",
        phone=profile.phone or "Phone",
        email=profile.email or "Email",
        bar_number=profile.bar_number,
        count=len(sections),
        request_list="\n".join(f"Request {request.id}: {topic}" for request, topic in sections),
        template_begin=TEMPLATE_BEGIN,
        template=template,
        template_end=TEMPLATE_END,
    )
