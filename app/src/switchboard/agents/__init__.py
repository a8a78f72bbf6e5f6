"""
Switchboard Agents — agent composition and the code-keyed agent set.

AgentManager lives in ``switchboard.agents.manager``; it depends on the
provider registry, which itself builds Agents from this package.
"""

from switchboard.agents.agent import Agent, AgentBuilder

__all__ = ["Agent", "AgentBuilder"]
