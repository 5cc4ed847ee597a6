"""
WaniKani Cache

A local, offline-capable cache of a WaniKani account: subjects, assignments,
the user profile and reviews waiting to be submitted.
"""

from . import errors
from . import resources
from . import db
from . import cache_info
from . import codec
from . import client
from . import sync
from . import reviews
from . import report
from . import answers
from . import config

__version__ = "0.1.0"
__all__ = [
    "errors", "resources", "db", "cache_info", "codec", "client",
    "sync", "reviews", "report", "answers", "config",
]
