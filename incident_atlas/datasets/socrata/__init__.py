"""
Incident Atlas - Socrata Datasets

SoQL client, per-schema row adapters and the event provider for the NYC
Open Data and DataSF incident feeds.
"""

from incident_atlas.datasets.socrata.adapters import ADAPTERS, SCHEMAS, get_adapter, parse_point
from incident_atlas.datasets.socrata.client import SocrataClient, SoqlQuery
from incident_atlas.datasets.socrata.provider import SocrataEventProvider

__all__ = [
    "ADAPTERS",
    "SCHEMAS",
    "get_adapter",
    "parse_point",
    "SocrataClient",
    "SoqlQuery",
    "SocrataEventProvider",
]
