"""
CLI Module - Command-line interface for the Estimate Engine.

Provides management commands for:
- Inspecting an estimate as a given actor
- Re-materializing and verifying totals
- Cloning an estimate into a new version
"""

from .estimate_commands import estimates, register_commands

__all__ = ['estimates', 'register_commands']
