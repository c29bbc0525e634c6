"""
Tests for the HipoTrack messaging core.
"""
