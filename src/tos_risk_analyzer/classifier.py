"""Rule-based risk classification for terms-of-service and privacy text.

Scores a text along seven fixed categories using curated pattern tables and
aggregates them into an overall level. Everything here is pure: the same
text always produces the same ``RiskAssessment``, and classification never
raises. No ML dependencies are required.

Each category is a severity ladder. Patterns are grouped into tiers ordered
from most to least severe; the first tier with any match sets the level and
contributes one evidence line per matching pattern. Lower tiers are only
consulted when nothing above them matched. Two categories deviate:

- **User Rights** starts at *high* and improves as rights-granting terms are
  found (3+ distinct terms: low, 1-2: medium). It never reaches critical.
- **Dispute Resolution** is critical only when binding arbitration appears
  together with a class-action or jury-trial waiver.

Example::

    classifier = RuleBasedClassifier()
    assessment = classifier.classify(text)
    print(assessment.overall.value, assessment.summary)
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .models import RiskAssessment, RiskCategory, RiskLevel

ANALYSIS_VERSION = "2.1.0"
MAX_KEY_POINTS = 5

DATA_COLLECTION = "Data Collection"
DATA_SHARING = "Data Sharing"
USER_RIGHTS = "User Rights"
ACCOUNT_TERMINATION = "Account Termination"
LIABILITY = "Liability & Warranties"
CHANGES_TO_TERMS = "Changes to Terms"
DISPUTE_RESOLUTION = "Dispute Resolution"

CATEGORY_ORDER: tuple[str, ...] = (
    DATA_COLLECTION,
    DATA_SHARING,
    USER_RIGHTS,
    ACCOUNT_TERMINATION,
    LIABILITY,
    CHANGES_TO_TERMS,
    DISPUTE_RESOLUTION,
)


@runtime_checkable
class Classifier(Protocol):
    """Anything that turns fragment text into a ``RiskAssessment``."""

    def classify(self, text: str) -> RiskAssessment: ...


# ---------------------------------------------------------------------------
# Pattern library
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Pattern:
    """A labelled, case-insensitive pattern. ``label`` is used in evidence."""

    label: str
    regex: re.Pattern[str]

    def search(self, text: str) -> bool:
        return self.regex.search(text) is not None


def _p(label: str, regex: str | None = None) -> _Pattern:
    source = regex if regex is not None else re.escape(label)
    return _Pattern(label=label, regex=re.compile(source, re.IGNORECASE))


@dataclass(frozen=True)
class _Tier:
    level: RiskLevel
    patterns: tuple[_Pattern, ...]
    # Evidence template, formatted with the pattern label
    evidence: str


@dataclass(frozen=True)
class _CategoryRules:
    name: str
    description: str
    impact: dict[RiskLevel, str]
    tiers: tuple[_Tier, ...] = ()


# A modification verb whose object is the terms themselves, then up to three words
_CHANGE_VERB = (
    r"\b(?:change|modify|amend|update|revise)\w* (?:\w+ ){0,2}?"
    r"(?:terms|agreement|polic(?:y|ies)|conditions)\b,? (?:\w+ ){0,3}?"
)

_RULES: dict[str, _CategoryRules] = {
    DATA_COLLECTION: _CategoryRules(
        name=DATA_COLLECTION,
        description="What personal information is collected",
        impact={
            RiskLevel.LOW: "Limited data collection",
            RiskLevel.MEDIUM: "Moderate privacy implications",
            RiskLevel.HIGH: "High privacy risk",
            RiskLevel.CRITICAL: "Critical data collection risk",
        },
        tiers=(
            _Tier(
                RiskLevel.CRITICAL,
                (
                    _p("biometric data", r"\bbiometric (?:data|information|identifiers?)"),
                    _p("genetic data", r"\bgenetic (?:data|information)"),
                    _p("financial information", r"\bfinancial (?:information|data)"),
                    _p("social security", r"\bsocial security(?: numbers?)?"),
                    _p("sensitive personal", r"\bsensitive personal (?:data|information)"),
                    _p("health information", r"\bhealth (?:information|data)"),
                    _p("medical records", r"\bmedical records?"),
                ),
                "Collects {}",
            ),
            _Tier(
                RiskLevel.HIGH,
                (
                    _p("precise location", r"\bprecise (?:geo)?location"),
                    _p("device fingerprint", r"\bdevice fingerprint(?:s|ing)?"),
                    _p("personal preferences"),
                    _p("behavioral data", r"\bbehaviou?ral (?:data|information)"),
                    _p("advertising id", r"\badvertising id(?:entifiers?|s)?\b"),
                    _p("facial recognition"),
                ),
                "Collects {}",
            ),
            _Tier(
                RiskLevel.MEDIUM,
                (
                    _p("personal information", r"\bpersonal (?:information|data)"),
                    _p("collect data", r"\bcollect(?:s|ed|ing)? (?:your |certain )?data"),
                    _p("tracking", r"\btracking\b"),
                    _p("cookies", r"\bcookies?\b"),
                    _p("ip address", r"\bip address(?:es)?"),
                    _p("approximate location"),
                    _p("device information"),
                ),
                "Collects {}",
            ),
        ),
    ),
    DATA_SHARING: _CategoryRules(
        name=DATA_SHARING,
        description="How your data is shared with others",
        impact={
            RiskLevel.LOW: "Minimal data sharing",
            RiskLevel.MEDIUM: "Limited sharing for service delivery",
            RiskLevel.HIGH: "Extensive data sharing with third parties",
            RiskLevel.CRITICAL: "Data may be sold for profit",
        },
        tiers=(
            _Tier(
                RiskLevel.CRITICAL,
                (
                    _p(
                        "sell your data",
                        r"\bsell(?:s|ing)? (?:your |users' |user )?(?:personal )?(?:data|information)",
                    ),
                    _p("monetize data", r"\bmoneti[sz](?:e|es|ing) (?:your )?(?:personal )?data"),
                ),
                "May {}",
            ),
            _Tier(
                RiskLevel.HIGH,
                (
                    _p("third parties", r"\bthird[\s-]part(?:y|ies)\b"),
                    _p("share with partners", r"\bshare (?:\w+ ){0,3}with (?:our |trusted )?partners"),
                    _p("affiliate companies", r"\baffiliated? compan(?:y|ies)|\bour affiliates\b"),
                    _p("advertising networks", r"\badvertising (?:networks?|partners)"),
                    _p("data brokers", r"\bdata brokers?"),
                ),
                "Shares data with {}",
            ),
            _Tier(
                RiskLevel.MEDIUM,
                (
                    _p("service providers", r"\bservice providers?"),
                    _p("analytics", r"\banalytics\b"),
                    _p("marketing purposes"),
                ),
                "Data shared for {}",
            ),
        ),
    ),
    USER_RIGHTS: _CategoryRules(
        name=USER_RIGHTS,
        description="Your rights regarding your personal data",
        impact={
            RiskLevel.LOW: "Strong user rights and control",
            RiskLevel.MEDIUM: "Some user rights provided",
            RiskLevel.HIGH: "Limited user rights and control",
            RiskLevel.CRITICAL: "No user rights provided",
        },
    ),
    ACCOUNT_TERMINATION: _CategoryRules(
        name=ACCOUNT_TERMINATION,
        description="How your account can be terminated",
        impact={
            RiskLevel.LOW: "Fair termination process",
            RiskLevel.MEDIUM: "Termination with reasonable cause",
            RiskLevel.HIGH: "Account can be terminated without notice",
            RiskLevel.CRITICAL: "Immediate termination without recourse",
        },
        tiers=(
            _Tier(
                RiskLevel.HIGH,
                (
                    _p(
                        "terminate without notice",
                        r"\bterminat\w* (?:\w+ ){0,4}without (?:any |prior )?notice",
                    ),
                    _p(
                        "suspend immediately",
                        r"\bsuspend\w* (?:\w+ ){0,3}immediately|\bimmediately suspend",
                    ),
                    _p("at our sole discretion", r"\b(?:at|in) our sole discretion"),
                    _p("for any reason"),
                    _p("no refund", r"\bno refunds?\b|\bwithout (?:a |any )?refund|\bnon-refundable"),
                ),
                "Can {}",
            ),
            _Tier(
                RiskLevel.MEDIUM,
                (
                    _p("terminate for cause", r"\bterminat\w* (?:\w+ ){0,4}for cause"),
                    _p("reasonable notice"),
                    _p("violation of terms", r"\bviolat\w* (?:of )?(?:these |our |the )?terms"),
                ),
                "May {}",
            ),
        ),
    ),
    LIABILITY: _CategoryRules(
        name=LIABILITY,
        description="Service liability and warranty terms",
        impact={
            RiskLevel.LOW: "Standard liability terms",
            RiskLevel.MEDIUM: "Some limitations on liability",
            RiskLevel.HIGH: "Limited recourse if service fails",
            RiskLevel.CRITICAL: "No recourse if service fails",
        },
        tiers=(
            _Tier(
                RiskLevel.HIGH,
                (
                    _p("no liability", r"\bno liability\b"),
                    _p("disclaim all warranties", r"\bdisclaim\w* (?:any and )?all warranties"),
                    _p("use at your own risk", r"\bat your (?:own|sole) risk"),
                    _p("exclude damages", r"\bexclu\w* (?:\w+ ){0,3}damages"),
                    _p("limitation of liability", r"\blimitations? of liability"),
                    _p(
                        "as is basis",
                        r"\bas[\s-]is basis|[\"'“]as[\s-]is[\"'”]|\bas[\s-]is and as[\s-]available",
                    ),
                ),
                "Contains {} clause",
            ),
        ),
    ),
    CHANGES_TO_TERMS: _CategoryRules(
        name=CHANGES_TO_TERMS,
        description="How terms can be modified",
        impact={
            RiskLevel.LOW: "Stable terms",
            RiskLevel.MEDIUM: "Changes with notification",
            RiskLevel.HIGH: "Terms can change without notice",
            RiskLevel.CRITICAL: "Terms can change retroactively without notice",
        },
        tiers=(
            _Tier(
                RiskLevel.HIGH,
                (
                    _p(
                        "change without notice",
                        _CHANGE_VERB + r"without (?:any |prior |advance )?notice",
                    ),
                    _p("modify at any time", _CHANGE_VERB + r"at any time"),
                    _p("sole discretion to change", r"\bsole discretion to (?:change|modify|amend|update)"),
                ),
                "Can {}",
            ),
            _Tier(
                RiskLevel.MEDIUM,
                (
                    _p("reasonable notice"),
                    _p("notify of changes", r"\bnotify (?:you )?(?:of|about) (?:any )?(?:material )?changes"),
                    _p("email notification", r"\be-?mail notifications?"),
                ),
                "Will provide {}",
            ),
        ),
    ),
    DISPUTE_RESOLUTION: _CategoryRules(
        name=DISPUTE_RESOLUTION,
        description="Arbitration and legal venue clauses",
        impact={
            RiskLevel.LOW: "Standard court venue terms",
            RiskLevel.MEDIUM: "Some arbitration provisions",
            RiskLevel.HIGH: "Mandatory arbitration limits legal options",
            RiskLevel.CRITICAL: "Arbitration + class-action waiver severely restricts rights",
        },
        tiers=(
            _Tier(
                RiskLevel.HIGH,
                (
                    _p("arbitration", r"\barbitrat(?:ion|or|e)\b"),
                    _p("venue", r"\bvenue\b"),
                    _p("governing law", r"\bgoverning law|\bgoverned by the laws? of"),
                    _p("limitation period", r"\blimitation period|\bstatute of limitations"),
                ),
                "Contains {}",
            ),
        ),
    ),
}

# User Rights: terms that grant control over personal data
_RIGHTS_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        "right to delete",
        r"\bright to (?:delete|erasure|be forgotten)|\brequest (?:the )?delet(?:e|ion)"
        r"|\bdelete your (?:personal )?(?:data|information|account)",
    ),
    _p("data portability", r"\bportability\b"),
    _p("opt out", r"\bopt[\s-]?out\b|\bunsubscribe"),
    _p(
        "access your data",
        r"\baccess (?:to )?your (?:personal )?(?:data|information)|\bright (?:of|to) access",
    ),
    _p("correct inaccurate", r"\bcorrect (?:any )?inaccura|\bright to (?:rectification|correct)"),
    _p("withdraw consent", r"\bwithdraw (?:your )?consent"),
)

# User Rights: qualifiers that weaken a right; recorded as evidence only
_LIMITED_RIGHTS_PATTERNS: tuple[_Pattern, ...] = (
    _p("contact us to"),
    _p("upon request"),
    _p("reasonable efforts"),
)

# Dispute Resolution: critical only as binding arbitration plus a waiver
_BINDING_ARBITRATION = _p("binding arbitration", r"\bbinding (?:individual )?arbitration")
_DISPUTE_WAIVERS: tuple[_Pattern, ...] = (
    _p(
        "class action waiver",
        r"\bclass[\s-]action waiver|\bwaive\w*\b.{0,80}?\bclass[\s-]actions?"
        r"|\bnot (?:participate|bring)\b.{0,40}?\bclass[\s-]action",
    ),
    _p("jury trial waiver", r"\bwaive\w*\b.{0,80}?\bjury trial|\bjury[\s-]trial waiver"),
)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def calculate_overall_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Aggregate category levels into an overall level.

    Rules are checked in order and the first match wins:

    1. any critical -> critical
    2. two or more high -> high
    3. one high -> high
    4. three or more medium -> high (breadth of concern escalates)
    5. any medium -> medium
    6. otherwise low
    """
    levels = list(levels)
    high_count = levels.count(RiskLevel.HIGH)
    medium_count = levels.count(RiskLevel.MEDIUM)

    if RiskLevel.CRITICAL in levels:
        return RiskLevel.CRITICAL
    if high_count >= 2:
        return RiskLevel.HIGH
    if high_count >= 1:
        return RiskLevel.HIGH
    if medium_count >= 3:
        return RiskLevel.HIGH
    if medium_count >= 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class RuleBasedClassifier:
    """Deterministic, pattern-table classifier for legal text.

    Stateless and thread-safe: a single instance may be shared between the
    event loop and worker threads.
    """

    analysis_version = ANALYSIS_VERSION

    def classify(self, text: str) -> RiskAssessment:
        """Assess ``text`` across all seven categories.

        Args:
            text: Plain text of a fragment. Matching is case-insensitive.

        Returns:
            A complete ``RiskAssessment``. Text with no matches yields the
            low-risk baseline (with User Rights at its default of high).
        """
        categories = (
            self._evaluate_ladder(_RULES[DATA_COLLECTION], text),
            self._evaluate_ladder(_RULES[DATA_SHARING], text),
            self._evaluate_user_rights(text),
            self._evaluate_ladder(_RULES[ACCOUNT_TERMINATION], text),
            self._evaluate_ladder(_RULES[LIABILITY], text),
            self._evaluate_ladder(_RULES[CHANGES_TO_TERMS], text),
            self._evaluate_dispute_resolution(text),
        )
        overall = calculate_overall_risk(c.level for c in categories)

        return RiskAssessment(
            overall=overall,
            categories=categories,
            summary=self._generate_summary(categories, overall),
            key_points=tuple(self._extract_key_points(categories)),
            recommendations=tuple(self._generate_recommendations(categories)),
            analysis_version=self.analysis_version,
        )

    # ------------------------------------------------------------------
    # Category evaluation
    # ------------------------------------------------------------------

    def _evaluate_ladder(self, rules: _CategoryRules, text: str) -> RiskCategory:
        level = RiskLevel.LOW
        evidence: list[str] = []
        for tier in rules.tiers:
            hits = [p for p in tier.patterns if p.search(text)]
            if hits:
                level = tier.level
                evidence = [tier.evidence.format(p.label) for p in hits]
                break
        return self._build_category(rules, level, evidence)

    def _evaluate_user_rights(self, text: str) -> RiskCategory:
        rules = _RULES[USER_RIGHTS]
        evidence: list[str] = []

        rights_count = 0
        for pattern in _RIGHTS_PATTERNS:
            if pattern.search(text):
                rights_count += 1
                evidence.append(f"Provides {pattern.label}")
        for pattern in _LIMITED_RIGHTS_PATTERNS:
            if pattern.search(text):
                evidence.append(f"Limited: {pattern.label}")

        # Absence of rights terms is not proof of absent rights, so the
        # ceiling is high rather than critical.
        if rights_count >= 3:
            level = RiskLevel.LOW
        elif rights_count >= 1:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.HIGH
        return self._build_category(rules, level, evidence)

    def _evaluate_dispute_resolution(self, text: str) -> RiskCategory:
        rules = _RULES[DISPUTE_RESOLUTION]

        if _BINDING_ARBITRATION.search(text):
            waivers = [p for p in _DISPUTE_WAIVERS if p.search(text)]
            if waivers:
                evidence = [f"Contains {_BINDING_ARBITRATION.label}"]
                evidence.extend(f"Contains {p.label}" for p in waivers)
                return self._build_category(rules, RiskLevel.CRITICAL, evidence)

        return self._evaluate_ladder(rules, text)

    @staticmethod
    def _build_category(
        rules: _CategoryRules, level: RiskLevel, evidence: list[str]
    ) -> RiskCategory:
        return RiskCategory(
            name=rules.name,
            level=level,
            description=rules.description,
            impact=rules.impact[level],
            evidence=tuple(evidence),
        )

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_summary(categories: Sequence[RiskCategory], overall: RiskLevel) -> str:
        concern_names = ", ".join(c.name for c in categories if c.is_concern)

        if overall == RiskLevel.CRITICAL:
            return (
                f"Critical privacy concerns identified ({concern_names}). This service may "
                "sell your personal data or has extremely restrictive terms."
            )
        if overall == RiskLevel.HIGH:
            if not concern_names:
                # Reached through breadth of medium concerns alone
                concern_names = ", ".join(c.name for c in categories if c.level == RiskLevel.MEDIUM)
            return (
                f"High risk terms detected. Major concerns: {concern_names}. "
                "Review carefully before accepting."
            )
        if overall == RiskLevel.MEDIUM:
            return (
                "Moderate privacy and terms concerns. Some data collection and sharing "
                "occurs, but with reasonable protections."
            )
        return "Generally acceptable terms with standard privacy practices and user protections."

    @staticmethod
    def _extract_key_points(categories: Sequence[RiskCategory]) -> list[str]:
        points: list[str] = []
        for category in categories:
            if category.is_concern:
                points.append(f"⚠️ {category.name}: {category.impact}")
            elif category.level == RiskLevel.MEDIUM:
                points.append(f"ⓘ {category.name}: {category.impact}")
        return points[:MAX_KEY_POINTS]

    @staticmethod
    def _generate_recommendations(categories: Sequence[RiskCategory]) -> list[str]:
        levels = {c.name: c.level for c in categories}
        recommendations: list[str] = []

        if levels.get(DATA_SHARING) == RiskLevel.CRITICAL:
            recommendations.append("Consider avoiding this service if privacy is important to you")
        elif levels.get(DATA_SHARING) == RiskLevel.HIGH:
            recommendations.append("Review privacy settings to limit data sharing where possible")

        if levels.get(DATA_COLLECTION) == RiskLevel.HIGH:
            recommendations.append("Provide only necessary information during signup")

        if levels.get(USER_RIGHTS) == RiskLevel.HIGH:
            recommendations.append("Consider exercising your data rights if available")

        if not recommendations:
            recommendations.append("Terms appear reasonable, but always review privacy settings")

        return recommendations
