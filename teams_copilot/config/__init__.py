"""
Configuration modules for the Teams Copilot Bot.
"""
from .settings import BotSettings, LEASE_DURATION_SECONDS, TESTTOOL_ENVIRONMENT

__all__ = ['BotSettings', 'LEASE_DURATION_SECONDS', 'TESTTOOL_ENVIRONMENT']
