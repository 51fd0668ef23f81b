"""Data models for content risk analysis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple


class RiskLevel(str, Enum):
    """Risk severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class SourceKind(str, Enum):
    """Where in a document a fragment was found."""

    POPUP = "popup"
    MODAL = "modal"
    LINK = "link"
    CHECKBOX = "checkbox"
    EMBEDDED = "embedded"


# Extracts must be strictly longer than this to be worth classifying.
MIN_TEXT_LENGTH: dict[SourceKind, int] = {
    SourceKind.POPUP: 100,
    SourceKind.MODAL: 100,
    SourceKind.CHECKBOX: 100,
    SourceKind.EMBEDDED: 200,
    SourceKind.LINK: 200,
}

# Heading-anchored regions are reported as embedded but need more text.
HEADING_MIN_TEXT_LENGTH = 300


class Fingerprint(NamedTuple):
    """Identity of a fragment for dedup and caching: exact origin and text."""

    origin: str
    text: str

    def key(self) -> str:
        """Flat string form, used as the key of the persisted mapping."""
        return f"{self.origin}\n{self.text}"


@dataclass(frozen=True)
class Fragment:
    """A candidate legal-text region found in a document."""

    id: str
    origin: str
    title: str
    text: str
    extracted_at: datetime
    source_kind: SourceKind
    locator_hints: tuple[str, ...] = ()

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(self.origin, self.text)

    @property
    def min_length(self) -> int:
        return MIN_TEXT_LENGTH[self.source_kind]

    @property
    def is_admissible(self) -> bool:
        return len(self.text) > self.min_length

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "origin": self.origin,
            "title": self.title,
            "text": self.text,
            "extracted_at": self.extracted_at.isoformat(),
            "source_kind": self.source_kind.value,
            "locator_hints": list(self.locator_hints),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Fragment:
        return cls(
            id=data["id"],
            origin=data["origin"],
            title=data["title"],
            text=data["text"],
            extracted_at=datetime.fromisoformat(data["extracted_at"]),
            source_kind=SourceKind(data["source_kind"]),
            locator_hints=tuple(data.get("locator_hints", ())),
        )


def is_same_content(existing: Fragment, current: Fragment) -> bool:
    """Whether a cached fragment can stand in for a newly detected one."""
    return existing.text == current.text and existing.title == current.title


@dataclass(frozen=True)
class RiskCategory:
    """One scored dimension of an assessment."""

    name: str
    level: RiskLevel
    description: str
    impact: str
    evidence: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "evidence", tuple(self.evidence))

    @property
    def is_concern(self) -> bool:
        return self.level in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "level": self.level.value,
            "description": self.description,
            "evidence": list(self.evidence),
            "impact": self.impact,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RiskCategory:
        return cls(
            name=data["name"],
            level=RiskLevel(data["level"]),
            description=data["description"],
            impact=data["impact"],
            evidence=tuple(data.get("evidence", ())),
        )


@dataclass(frozen=True)
class RiskAssessment:
    """Classifier output for the text of one fragment.

    Instances are shared by every reader of a cached result; sequence fields
    are stored as tuples.
    """

    overall: RiskLevel
    categories: tuple[RiskCategory, ...]
    summary: str
    key_points: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    analysis_version: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "categories", tuple(self.categories))
        object.__setattr__(self, "key_points", tuple(self.key_points))
        object.__setattr__(self, "recommendations", tuple(self.recommendations))

    def category(self, name: str) -> RiskCategory:
        for cat in self.categories:
            if cat.name == name:
                return cat
        raise KeyError(name)

    @property
    def concerns(self) -> list[RiskCategory]:
        """Categories rated high or critical, in category order."""
        return [c for c in self.categories if c.is_concern]

    def to_dict(self) -> dict:
        return {
            "overall": self.overall.value,
            "categories": [c.to_dict() for c in self.categories],
            "summary": self.summary,
            "key_points": list(self.key_points),
            "recommendations": list(self.recommendations),
            "analysis_version": self.analysis_version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RiskAssessment:
        return cls(
            overall=RiskLevel(data["overall"]),
            categories=tuple(RiskCategory.from_dict(c) for c in data["categories"]),
            summary=data["summary"],
            key_points=tuple(data.get("key_points", ())),
            recommendations=tuple(data.get("recommendations", ())),
            analysis_version=data.get("analysis_version", ""),
        )


@dataclass(frozen=True)
class AnalysisResult:
    """A fragment together with its assessment and how it was produced."""

    fragment: Fragment
    assessment: RiskAssessment
    processing_time_ms: float
    engine_used: str
    confidence: float

    @property
    def fingerprint(self) -> Fingerprint:
        return self.fragment.fingerprint

    @property
    def is_cache_hit(self) -> bool:
        return self.processing_time_ms == 0

    def to_dict(self) -> dict:
        return {
            "fragment": self.fragment.to_dict(),
            "assessment": self.assessment.to_dict(),
            "processing_time_ms": round(self.processing_time_ms, 3),
            "engine_used": self.engine_used,
            "confidence": round(self.confidence, 3),
        }

    @classmethod
    def from_dict(cls, data: dict) -> AnalysisResult:
        return cls(
            fragment=Fragment.from_dict(data["fragment"]),
            assessment=RiskAssessment.from_dict(data["assessment"]),
            processing_time_ms=float(data["processing_time_ms"]),
            engine_used=data["engine_used"],
            confidence=float(data["confidence"]),
        )
