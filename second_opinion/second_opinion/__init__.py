"""
Second Opinion - a validation partner for coding agents.

Second Opinion exposes a handful of review tools over MCP:
- Validate a chain of thinking before code gets written
- Analyze the impact of a proposed change
- Check the assumptions a change relies on
- Map the dependencies a change touches
- Optimize the overall approach for a task

Each tool gathers local file context, asks a configured LLM provider
for a structured verdict and records the answer in a session.
"""

__version__ = "0.1.0"
