"""
Core package: logging setup and the client-side messaging core.
"""
