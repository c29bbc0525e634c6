"""
Startup entry points for HipoTrack.
"""
