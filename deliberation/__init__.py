"""
Deliberation Engine - Multi-Model Council

Several models answer the same question, rank each other's anonymized
answers, and a chairman model writes one final answer weighted by the
Borda consensus.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .council import DeliberationCouncil
from .config import DEFAULT_CONFIG, load_config
from .errors import (
    ErrorKind,
    CouncilError,
    GatewayError,
    DeliberationFailed,
    InvalidDeliberationRequest,
    BudgetExceeded,
)
from .session import DeliberationSession, SessionState, SessionStore
from .models import CouncilMember, ModelManager
from .collector import Collector, CollectionResult, ModelResponse
from .anonymizer import Anonymizer, AnonymizedEntry, AnonymizationResult
from .review import PeerReviewer, PeerRanking, RejectedRanking, parse_ranking, validate_ranking
from .voting import RankAggregator, AggregateRanking, BordaScheme, ScoredModel, BiasReportEntry
from .consensus import ChairmanSynthesizer, SynthesisResult
from .costs import CostController, CostEstimate, estimate_session_cost
from .persistence import AuditSink, CouncilDatabase, JsonAuditSink, MemoryAuditSink, CompositeSink

# Backend imports
from .backends import (
    LLMBackend,
    OllamaBackend,
    OpenRouterBackend,
    BackendManager
)

__all__ = [
    # Core
    "DeliberationCouncil",
    "DEFAULT_CONFIG",
    "load_config",

    # Errors
    "ErrorKind",
    "CouncilError",
    "GatewayError",
    "DeliberationFailed",
    "InvalidDeliberationRequest",
    "BudgetExceeded",

    # Sessions
    "DeliberationSession",
    "SessionState",
    "SessionStore",

    # Models
    "CouncilMember",
    "ModelManager",

    # Stages
    "Collector",
    "CollectionResult",
    "ModelResponse",
    "Anonymizer",
    "AnonymizedEntry",
    "AnonymizationResult",
    "PeerReviewer",
    "PeerRanking",
    "RejectedRanking",
    "parse_ranking",
    "validate_ranking",
    "RankAggregator",
    "AggregateRanking",
    "BordaScheme",
    "ScoredModel",
    "BiasReportEntry",
    "ChairmanSynthesizer",
    "SynthesisResult",

    # Costs
    "CostController",
    "CostEstimate",
    "estimate_session_cost",

    # Persistence
    "AuditSink",
    "CouncilDatabase",
    "JsonAuditSink",
    "MemoryAuditSink",
    "CompositeSink",

    # Backends
    "LLMBackend",
    "OllamaBackend",
    "OpenRouterBackend",
    "BackendManager",
]
