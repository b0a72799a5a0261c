"""
Ticket Swarm - resumable ticket-to-pull-request pipeline driven by coding-agent CLIs.

Two agents debate an implementation plan (the cheatsheet), a judge gates it,
and an executor agent applies it to a fresh clone. Progress is checkpointed
per ticket so long runs can be resumed after a crash.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
