"""
Core modules for bmad-chat.

This package contains the agent catalog, the chat session state machine,
and token/cost accounting.
"""
