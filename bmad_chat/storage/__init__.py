"""
Flat-file storage for exported conversations and usage statistics.
"""
