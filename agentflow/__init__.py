"""
AgentFlow - Step-by-step execution engine for visual agent workflows.

Validate a node/edge graph, linearize it into a plan, run it one node at a
time with human-in-the-loop pauses, and watch the state as it changes.
"""

__version__ = "1.0.0"
