"""
Backend access for HipoTrack.

``interfaces`` defines what the messaging core needs; ``client`` and
``realtime`` implement it against a Supabase project.
"""
