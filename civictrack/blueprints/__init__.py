"""
CivicTrack workflow engine
Blueprint registry.
"""
