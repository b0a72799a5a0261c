"""
Executor: applies a vetted cheatsheet to a working directory.

The executor does no planning of its own and never retries; the pipeline
owns the retry loop.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ticket_swarm.complexity import turn_factor_for
from ticket_swarm.models import InvocationRequest, InvocationResult, Mode
from ticket_swarm.providers.strategies import run_ai

if TYPE_CHECKING:
    from ticket_swarm.config import TicketSwarmConfig
    from ticket_swarm.logger import RunLogger
    from ticket_swarm.models import Ticket
    from ticket_swarm.providers.strategies import ProviderInvoker

logger = logging.getLogger(__name__)

EXECUTOR_LABEL = "executor"

EXECUTOR_RULES = """You are a code executor. Your job is to follow the cheatsheet below exactly and make the specified code changes.

## Rules

1. **Follow the cheatsheet exactly.** Do not explore, plan, or think about alternatives. The cheatsheet is your complete instruction set.
2. **Do not modify files not mentioned in the cheatsheet.** If a file is not listed, do not touch it.
3. **If a step is unclear, do your best interpretation and move on.** Do not stop to ask questions.
4. **Do not run git commands** (git add, git commit, git push, git tag, etc.).
5. **Do not run deployment scripts.**
6. **Do not modify Dockerfiles** (FROM lines, base images, etc.).
7. **Do not run docker commands.**
8. **Package manager installs are allowed** for dependency management.
9. **Do not run tests or lint** unless the cheatsheet explicitly says to.
10. **Do not hand-edit lock files.** Use the package manager instead.

## Shell Commands: redirect long output

Any command that may produce more than a few lines of output MUST be redirected to a log file:

```bash
# CORRECT
npm install > /tmp/npm-install.log 2>&1 && echo "OK" || echo "FAIL: $(tail -5 /tmp/npm-install.log)"

# WRONG
npm install
```

## Output Format

When you are done, you MUST end with this exact format:

**FILES CHANGED:** <list of files you modified or created>
**SUMMARY:** <2-3 sentences of what was done>
**RISKS:** <anything the reviewer should pay attention to>"""


def build_executor_prompt(cheatsheet: str) -> str:
    return f"{EXECUTOR_RULES}\n\n---\n\n## Cheatsheet\n\n{cheatsheet}"


def execute(
    cheatsheet: str,
    clone_dir: str | Path,
    config: TicketSwarmConfig,
    ticket_key: Optional[str] = None,
    invoker: Optional[ProviderInvoker] = None,
    run_logger: Optional[RunLogger] = None,
    ticket: Optional[Ticket] = None,
) -> InvocationResult:
    """
    Run the write-capable agent on the clone with the cheatsheet.

    When the ticket is given, its complexity raises the turn budget.

    Raises:
        LLMError: When the configured strategy propagates a worker failure.
    """
    request = InvocationRequest(
        prompt=build_executor_prompt(cheatsheet),
        working_dir=str(clone_dir),
        mode=Mode.EXECUTE,
        label=EXECUTOR_LABEL,
        ticket_key=ticket_key,
        log_dir=config.agent.log_dir,
        turn_factor=turn_factor_for(ticket, config, Mode.EXECUTE) if ticket else 1.0,
    )
    logger.info("Executing cheatsheet (%d chars) in %s", len(cheatsheet), clone_dir)
    return run_ai(request, config, invoker=invoker, run_logger=run_logger)
