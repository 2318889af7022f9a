"""Feedback adapters for orchestrator events."""

from assesscam.feedback.status import ConsoleStatusReporter

__all__ = ["ConsoleStatusReporter"]
