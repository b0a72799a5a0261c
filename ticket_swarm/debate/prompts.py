"""
Prompt templates for the debate roles and the evaluator judge.
"""

from __future__ import annotations

CHEATSHEET_START = "=== CHEATSHEET START ==="
CHEATSHEET_END = "=== CHEATSHEET END ==="
FEEDBACK_MARKER = "=== FEEDBACK ==="
APPROVED = "APPROVED"
REJECTED = "REJECTED"


def proposer_prompt(
    base_context: str,
    round_number: int,
    previous_proposal: str = "",
    critique: str = "",
    feedback: str = "",
) -> str:
    """Prompt for the proposer. Round 1 explores, later rounds revise."""
    if round_number == 1:
        prompt = (
            f"{base_context}\n\n"
            "You are the Proposer. Explore the codebase using Read/Glob/Grep tools. "
            "Propose a detailed implementation strategy for this ticket. "
            "List every file to change, what to change, and in what order. "
            "For core logic changes, provide exact code snippets. "
            "For boilerplate, provide directional guidance."
        )
        if feedback:
            prompt += f"\n\n## Previous Feedback\n{feedback}"
        return prompt

    return (
        f"{base_context}\n\n"
        f"## Your Previous Proposal\n{previous_proposal}\n\n"
        f"## Critic's Critique\n{critique}\n\n"
        "The Critic reviewed your approach. Respond to their points. "
        "Revise your strategy or defend it with evidence from the codebase. "
        "Converge toward a final unified plan."
    )


def critic_prompt(
    base_context: str,
    round_number: int,
    proposal: str,
    previous_critique: str = "",
) -> str:
    """Prompt for the critic. Round 1 counter-proposes, later rounds converge."""
    if round_number == 1:
        return (
            f"{base_context}\n\n"
            f"## Proposer's Proposal\n{proposal}\n\n"
            "You are the Critic. Read the Proposer's proposal. "
            "Explore the codebase to verify their claims. "
            "Critique: what did they miss? What's wrong? What's a better approach? "
            "Propose your own complete strategy."
        )

    return (
        f"{base_context}\n\n"
        f"## Proposer's Latest Proposal\n{proposal}\n\n"
        f"## Your Previous Critique\n{previous_critique}\n\n"
        "The Proposer responded. Continue refining toward one agreed plan "
        "instead of reopening settled points. "
        "Focus on producing a final cheatsheet."
    )


def judge_prompt(transcript: str, ticket_context: str, force: bool) -> str:
    """Prompt asking the judge to approve with a cheatsheet or reject with feedback."""
    if force:
        instruction = (
            "You MUST produce a cheatsheet even if the debate output is imperfect. "
            "Do your best."
        )
    else:
        instruction = (
            "Only approve if the debate output contains a clear, actionable "
            "implementation plan."
        )

    return f"""You are a quality evaluator for an AI code implementation debate.

## Ticket Context
{ticket_context}

## Debate Output
{transcript}

## Your Task
{instruction}

Evaluate the debate output and either:
1. Write "{APPROVED}" followed by a clean, actionable cheatsheet extracted from the debate, OR
2. Write "{REJECTED}" followed by specific feedback about what's missing.

The cheatsheet must be:
- A step-by-step implementation guide
- Reference specific files and code changes
- Be self-contained (readable by someone who hasn't seen the debate)

Format your cheatsheet between {CHEATSHEET_START} and {CHEATSHEET_END} markers.
Format your feedback after {FEEDBACK_MARKER} marker."""
