"""Data models for the email content parser."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Cta:
    """A call-to-action: an anchor with visible label text and a destination."""

    label: str
    href: str


@dataclass(frozen=True)
class EmailPreview:
    """Structured content extracted from a rendered email preview.

    Sequences are tuples so a parsed preview cannot be mutated after the
    parser hands it back.
    """

    subject: Optional[str] = None
    preheader: Optional[str] = None
    body_paragraphs: tuple[str, ...] = field(default_factory=tuple)
    ctas: tuple[Cta, ...] = field(default_factory=tuple)
    links: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to JSON-compatible primitives (tuples become lists)."""
        data = asdict(self)
        data["body_paragraphs"] = list(self.body_paragraphs)
        data["ctas"] = [asdict(cta) for cta in self.ctas]
        data["links"] = list(self.links)
        return data
