"""Microsoft Teams Bot Framework surface: webhook routes, bot orchestrator, commands and actions."""
