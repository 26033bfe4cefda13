"""
Configuration loading for bmad-chat.
"""
