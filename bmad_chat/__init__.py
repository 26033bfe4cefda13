"""
bmad-chat: chat with BMAD-METHOD agent personas from the command line.
"""

__version__ = "0.1.0"
