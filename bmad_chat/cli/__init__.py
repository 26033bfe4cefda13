"""
Command-line interface for bmad-chat.
"""
