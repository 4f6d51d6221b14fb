"""Conversation state machine, tool loop and data model."""
