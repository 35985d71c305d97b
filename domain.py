from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

TITLES = "titles"
BULLETS = "bullets"
DESCRIPTION = "description"
BACKEND = "backend"
RESEARCH = "research"
DOCUMENT = "document"

# Canonical order inside a variant block
LISTING_SECTIONS: Tuple[str, ...] = (TITLES, BULLETS, DESCRIPTION, BACKEND)


@dataclass
class GenerationRequest:
    instructions: str
    input: str
    token_budget: int
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None
    timeout_s: float = 40.0
    web_search: bool = False
    stage: str = "initial"  # used for logging only


@dataclass
class GenerationResult:
    text: str
    sources: List[str] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass
class Section:
    """A named span of the document: one heading line plus its body.

    Offsets are absolute positions in ``Document.text``; ``body`` is the raw
    text between the end of the heading line and ``end``.
    """
    kind: str
    start: int
    body_start: int
    end: int
    heading: str
    body: str

    @property
    def empty(self) -> bool:
        return not self.body.strip()

    def lines(self) -> List[str]:
        return [ln.strip() for ln in self.body.splitlines() if ln.strip()]


@dataclass
class Title:
    raw: str
    prefix: str
    text: str
    annotated_count: Optional[int] = None


@dataclass
class Bullet:
    raw: str
    label: str = ""
    body: str = ""
    well_formed: bool = False


@dataclass
class VariantBlock:
    label: Optional[str]
    index: int
    start: int
    end: int
    sections: Dict[str, Section] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"Variant {self.label}" if self.label else "Listing"

    def section(self, kind: str) -> Optional[Section]:
        return self.sections.get(kind)


@dataclass
class Document:
    text: str
    blocks: List[VariantBlock] = field(default_factory=list)
    research: Optional[Section] = None
    # (start, end) of the single line allowed to carry reference URLs
    sources_span: Optional[Tuple[int, int]] = None

    def labels(self) -> List[Optional[str]]:
        return [b.label for b in self.blocks]


@dataclass(frozen=True)
class Violation:
    variant: Optional[str]
    section: str
    rule: str
    observed: Any = None
    block_index: Optional[int] = None

    def describe(self) -> str:
        where = f"Variant {self.variant}" if self.variant else "Listing"
        if self.block_index is None:
            where = "Document"
        obs = f" (observed: {self.observed})" if self.observed is not None else ""
        return f"{where} / {self.section}: {self.rule}{obs}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "section": self.section,
            "rule": self.rule,
            "observed": self.observed,
        }


@dataclass
class ValidationReport:
    violations: List[Violation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    def section_kinds(self) -> List[str]:
        """Failing listing-section kinds in canonical order."""
        present = {v.section for v in self.violations}
        return [k for k in LISTING_SECTIONS if k in present]

    def blocks_failing(self, kind: str) -> List[int]:
        idx = {v.block_index for v in self.violations if v.section == kind and v.block_index is not None}
        return sorted(idx)

    def for_block(self, block_index: int, kind: Optional[str] = None) -> List[Violation]:
        return [
            v for v in self.violations
            if v.block_index == block_index and (kind is None or v.section == kind)
        ]

    def describe(self) -> str:
        return "\n".join(f"- {v.describe()}" for v in self.violations)


@dataclass
class StageState:
    name: str
    status: str = "pending"  # pending | ok | accepted | discarded | failed | skipped
    duration_ms: float = 0.0
    violations_before: Optional[int] = None
    violations_after: Optional[int] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.name,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 1),
            "violations_before": self.violations_before,
            "violations_after": self.violations_after,
            "detail": self.detail,
        }


@dataclass
class ListingResult:
    text: str
    report: ValidationReport
    stages: List[StageState] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    profile: str = ""
    language: str = ""

    @property
    def valid(self) -> bool:
        return self.report.valid

    def to_payload(self) -> Dict[str, Any]:
        return {
            "output": self.text,
            "valid": self.valid,
            "violations": [v.to_dict() for v in self.report.violations],
            "passes": [s.to_dict() for s in self.stages],
            "sources": list(self.sources),
            "profile": self.profile,
            "language": self.language,
        }
