"""
Incident Atlas

Point-to-region resolution and deduplicated incident statistics over the
open-data crime feeds of NYC and San Francisco.
"""

__version__ = "0.1.0"
