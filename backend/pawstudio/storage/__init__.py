"""
Object storage (Backblaze B2).
"""
