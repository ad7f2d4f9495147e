"""AgentRelay - email an operator from a terminal agent and resume on reply."""

__version__ = "0.1.0"
