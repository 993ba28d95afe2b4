"""Utility helpers for the Teams Copilot Bot."""
