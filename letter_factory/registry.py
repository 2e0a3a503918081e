"""Section registry - the parts a modular response letter is built from."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from letter_factory.constants import MAX_TOKENS_SECTION


class SectionType(Enum):
    """Discriminator for the modular letter sections."""
    HEADER = "header"
    REQUEST = "request"
    CONCLUSION = "conclusion"


@dataclass(frozen=True)
class SectionTemplate:
    """Template definition for a letter section."""
    type: SectionType
    name: str
    # CSS classes a complete letter must carry for this section
    required_classes: tuple[str, ...]
    max_tokens: int = MAX_TOKENS_SECTION


@dataclass(slots=True)
class Section:
    """A generated section of the response letter."""

    type: SectionType
    html: str
    request_id: int | None = None

    def render(self) -> str:
        return self.html.strip()


# =============================================================================
# SECTION TYPES REGISTRY
# =============================================================================

SECTION_TEMPLATES: dict[SectionType, SectionTemplate] = {

    SectionType.HEADER: SectionTemplate(
        type=SectionType.HEADER,
        name="Letter Header",
        required_classes=("letterhead", "salutation"),
    ),

    SectionType.REQUEST: SectionTemplate(
        type=SectionType.REQUEST,
        name="Interrogatory Section",
        required_classes=("legal-argument",),
    ),

    SectionType.CONCLUSION: SectionTemplate(
        type=SectionType.CONCLUSION,
        name="Conclusion",
        required_classes=("conclusion", "signature-block"),
    ),
}

# Marker wrapping the assembled letter.
LETTER_CONTAINER_CLASS = "letter-container"


def get_section_template(section_type: str | SectionType) -> SectionTemplate:
    """Get the template for a section type.

    Args:
        section_type: ``"header"``, ``"request"`` or ``"conclusion"``

    Returns:
        The SectionTemplate for that type

    Raises:
        ValueError: If the section type is not found
    """
    try:
        key = section_type if isinstance(section_type, SectionType) else SectionType(section_type)
    except ValueError:
        available = ", ".join(t.value for t in SectionType)
        raise ValueError(
            f"Unknown section type: '{section_type}'. "
            f"Available types: {available}"
        ) from None
    return SECTION_TEMPLATES[key]

