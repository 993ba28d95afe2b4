"""Teams Copilot Bot services."""
