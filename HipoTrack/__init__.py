r"""
    __  ___            ______                __
   / / / (_)___  ____ /_  __/________ ______/ /__
  / /_/ / / __ \/ __ \ / / / ___/ __ `/ ___/ //_/
 / __  / / /_/ / /_/ // / / /  / /_/ / /__/ ,<
/_/ /_/_/ .___/\____//_/ /_/   \__,_/\___/_/|_|
       /_/

HipoTrack Project - Mortgage application tracking, messaging core.

Client-side conversation directory, message synchronization and
optimistic sending over a hosted Supabase backend.
"""

__version__ = "1.0.0"
