"""
sbox - Docker sandbox orchestrator for Claude Code.

Bridges host-side configuration (credentials, shared agents and plugins,
tool profiles, environment variables) into isolated Docker sandboxes or
plain containers that only see an explicit workspace mount.
"""

__version__ = "0.1.0"
