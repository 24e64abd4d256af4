from .errors import (
    ParseError,
    ProviderError,
    QuotaExceeded,
    RateStoreUnavailable,
    SessionError,
    StaleClaimError,
    TerminalStateError,
    TransientProviderError,
    TurnViolation,
    ValidationError,
)
from .invoker import InvocationState, ModelInvoker
from .orchestrator import NarrativeOrchestrator, SessionView
from .ports import CharacterStorePort, CounterStorePort, EventLogPort, IllustrationPort, NarrativeModelPort
from .rate_limit import InMemorySlidingWindow, RateLimiter
from .rules import (
    apply_damage,
    apply_rest,
    classify_roll,
    merge_character_update,
    normalize_attributes,
    roll_d20,
)
from .tool_actions import ToolActionParser
from .turns import TurnScheduler, fold_turn_round, rank_participants
from .types import (
    CharacterState,
    ExchangeResult,
    ModelReply,
    NarrativeRequest,
    RollOutcome,
    RollResult,
    SessionEvent,
    SessionState,
    TurnRound,
)

__all__ = [
    "NarrativeOrchestrator",
    "SessionView",
    "TurnScheduler",
    "fold_turn_round",
    "rank_participants",
    "ToolActionParser",
    "ModelInvoker",
    "InvocationState",
    "RateLimiter",
    "InMemorySlidingWindow",
    "normalize_attributes",
    "classify_roll",
    "roll_d20",
    "apply_damage",
    "apply_rest",
    "merge_character_update",
    "NarrativeModelPort",
    "IllustrationPort",
    "EventLogPort",
    "CharacterStorePort",
    "CounterStorePort",
    "CharacterState",
    "ExchangeResult",
    "ModelReply",
    "NarrativeRequest",
    "RollOutcome",
    "RollResult",
    "SessionEvent",
    "SessionState",
    "TurnRound",
    "SessionError",
    "ValidationError",
    "TurnViolation",
    "TerminalStateError",
    "ParseError",
    "ProviderError",
    "QuotaExceeded",
    "TransientProviderError",
    "StaleClaimError",
    "RateStoreUnavailable",
]
