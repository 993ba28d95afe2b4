"""
Teams Copilot Bot.
Microsoft Teams bot that plans user requests with an LLM and executes actions,
serializing turns per conversation through Azure Blob Storage leases.
"""

__version__ = "1.0.0"
