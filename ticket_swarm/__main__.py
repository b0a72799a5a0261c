"""
Entry point for running ticket_swarm as a module.

Allows running as: python -m ticket_swarm
"""

from ticket_swarm.cli import cli_main

if __name__ == "__main__":
    cli_main()
