from .config import InvokerConfig, ProviderConfig, RateLimitConfig, SessionConfig
from .core.invoker import ModelInvoker
from .core.orchestrator import NarrativeOrchestrator
from .core.ports import CharacterStorePort, CounterStorePort, EventLogPort, IllustrationPort, NarrativeModelPort
from .core.rate_limit import RateLimiter
from .core.tool_actions import ToolActionParser
from .core.turns import TurnScheduler
from .providers.openai_compat import OpenAICompatibleModel

__all__ = [
    "NarrativeOrchestrator",
    "TurnScheduler",
    "ToolActionParser",
    "ModelInvoker",
    "RateLimiter",
    "OpenAICompatibleModel",
    "InvokerConfig",
    "ProviderConfig",
    "RateLimitConfig",
    "SessionConfig",
    "NarrativeModelPort",
    "IllustrationPort",
    "EventLogPort",
    "CharacterStorePort",
    "CounterStorePort",
]
