"""
Provider webhook module.

Receives signed status pushes from verification providers.
"""
