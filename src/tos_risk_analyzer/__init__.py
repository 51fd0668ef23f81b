"""TOS Risk Analyzer -- terms-of-service and privacy-policy risk analysis."""

__version__ = "2.1.0"

from .cache import FingerprintCache
from .classifier import (
    ANALYSIS_VERSION,
    CATEGORY_ORDER,
    Classifier,
    RuleBasedClassifier,
    calculate_overall_risk,
)
from .config import AnalyzerSettings, build_orchestrator, build_pipeline
from .detector import FragmentDetector, ObservationSession
from .document import (
    Document,
    Element,
    MutableDocument,
    MutationSource,
    load_document,
    parse_document,
)
from .engines import (
    ClassificationEngine,
    EngineReply,
    LocalEngine,
    WorkerEngine,
    create_engine,
)
from .errors import (
    AnalysisError,
    BelowMinimumLength,
    ClassificationFailed,
    ClassificationTimeout,
    ClassifierUnavailable,
    DetectionSkipped,
    DocumentLoadError,
    SelectorError,
    TosRiskError,
)
from .models import (
    AnalysisResult,
    Fingerprint,
    Fragment,
    RiskAssessment,
    RiskCategory,
    RiskLevel,
    SourceKind,
    is_same_content,
)
from .orchestrator import AnalysisOrchestrator, SeenFingerprints
from .pipeline import ContentRiskPipeline
from .resolvers import FileLinkResolver, HttpLinkResolver, LinkResolver

__all__ = [
    # Core
    "ContentRiskPipeline",
    "AnalyzerSettings",
    "build_orchestrator",
    "build_pipeline",
    # Models
    "AnalysisResult",
    "Fingerprint",
    "Fragment",
    "RiskAssessment",
    "RiskCategory",
    "RiskLevel",
    "SourceKind",
    "is_same_content",
    # Documents
    "Document",
    "Element",
    "MutableDocument",
    "MutationSource",
    "load_document",
    "parse_document",
    # Detection
    "FragmentDetector",
    "ObservationSession",
    "LinkResolver",
    "HttpLinkResolver",
    "FileLinkResolver",
    # Classification
    "ANALYSIS_VERSION",
    "CATEGORY_ORDER",
    "Classifier",
    "RuleBasedClassifier",
    "calculate_overall_risk",
    "ClassificationEngine",
    "EngineReply",
    "LocalEngine",
    "WorkerEngine",
    "create_engine",
    # Orchestration
    "AnalysisOrchestrator",
    "FingerprintCache",
    "SeenFingerprints",
    # Errors
    "TosRiskError",
    "AnalysisError",
    "BelowMinimumLength",
    "ClassificationFailed",
    "ClassificationTimeout",
    "ClassifierUnavailable",
    "DetectionSkipped",
    "DocumentLoadError",
    "SelectorError",
]
