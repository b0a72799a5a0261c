"""
Coding-agent providers.

The spawn engine runs a CLI process, adapters speak each CLI's dialect and
strategies combine one or two providers per request. run_ai() is the
public entry point.
"""

from ticket_swarm.providers.adapters import (
    ClaudeAdapter,
    CodexAdapter,
    check_provider_available,
    get_adapter,
    select_output,
)
from ticket_swarm.providers.spawn import LogContext, spawn
from ticket_swarm.providers.strategies import (
    ProviderInvoker,
    is_garbage_output,
    is_rate_limited,
    pick_best_output,
    provider_label,
    run_ai,
)

__all__ = [
    "ClaudeAdapter",
    "CodexAdapter",
    "LogContext",
    "ProviderInvoker",
    "check_provider_available",
    "get_adapter",
    "is_garbage_output",
    "is_rate_limited",
    "pick_best_output",
    "provider_label",
    "run_ai",
    "select_output",
    "spawn",
]
