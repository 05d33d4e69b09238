"""Support ticket lifecycle and assignment service."""
