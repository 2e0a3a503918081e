"""Objection taxonomy - canonical objection categories and their rebuttals.

The taxonomy is loaded once at startup from a YAML file and passed
explicitly into the deconstruction and drafting stages. It is immutable.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from letter_factory.constants import FALLBACK_CATEGORY

logger = logging.getLogger("rejoinder.letter_factory.taxonomy")

DEFAULT_TAXONOMY_PATH = Path(__file__).resolve().parent / "objection_library.yaml"


@dataclass(frozen=True, slots=True)
class TaxonomyEntry:
    """Legal argument and supporting citations for one objection category."""

    category: str
    argument: str
    citations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "argument": self.argument,
            "citations": list(self.citations),
        }


class ObjectionTaxonomy(Mapping[str, TaxonomyEntry]):
    """Read-only mapping of category key to ``TaxonomyEntry``.

    Iteration order is the order of the source file. The fallback entry is
    always present and is returned by ``resolve`` for unknown keys.
    """

    def __init__(
        self,
        entries: Mapping[str, TaxonomyEntry],
        fallback_category: str = FALLBACK_CATEGORY,
    ) -> None:
        if fallback_category not in entries:
            raise ValueError(
                f"Taxonomy must define the fallback category '{fallback_category}'"
            )
        self._entries = MappingProxyType(dict(entries))
        self.fallback_category = fallback_category

    def __getitem__(self, key: str) -> TaxonomyEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def fallback(self) -> TaxonomyEntry:
        return self._entries[self.fallback_category]

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def resolve(self, category: str) -> TaxonomyEntry:
        """Return the entry for ``category`` or the fallback entry."""
        entry = self._entries.get(category)
        if entry is None:
            logger.debug("Unknown objection category '%s', using fallback", category)
            return self.fallback
        return entry

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        fallback_category: str = FALLBACK_CATEGORY,
    ) -> ObjectionTaxonomy:
        """Build a taxonomy from ``{category: {argument, cases}}``.

        ``citations`` is accepted as an alias of ``cases``.
        """
        entries: dict[str, TaxonomyEntry] = {}
        for category, raw in data.items():
            if not isinstance(raw, Mapping):
                raise ValueError(f"Taxonomy entry '{category}' must be a mapping")
            argument = str(raw.get("argument") or "").strip()
            if not argument:
                raise ValueError(f"Taxonomy entry '{category}' has no argument")
            citations = raw.get("cases", raw.get("citations")) or []
            if isinstance(citations, str):
                citations = [citations]
            entries[str(category)] = TaxonomyEntry(
                category=str(category),
                argument=argument,
                citations=tuple(str(c) for c in citations),
            )
        return cls(entries, fallback_category=fallback_category)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in self._entries.items()}


def load_taxonomy(path: str | Path | None = None) -> ObjectionTaxonomy:
    """Load the taxonomy from YAML.

    Args:
        path: File to load. Defaults to ``REJOINDER_TAXONOMY_PATH`` or the
            bundled ``objection_library.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a valid taxonomy.
    """
    resolved = Path(path or os.getenv("REJOINDER_TAXONOMY_PATH") or DEFAULT_TAXONOMY_PATH)
    if not resolved.is_file():
        raise FileNotFoundError(f"Taxonomy file '{resolved}' does not exist")

    data = yaml.safe_load(resolved.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or not data:
        raise ValueError(f"Taxonomy file '{resolved}' must contain a non-empty mapping")

    taxonomy = ObjectionTaxonomy.from_dict(data)
    logger.info("Loaded %d objection categories from %s", len(taxonomy), resolved)
    return taxonomy
