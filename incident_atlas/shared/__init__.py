from incident_atlas.shared.config import (
    CityConfig,
    DatasetConfig,
    Settings,
    get_city_config,
    get_config,
)

__all__ = [
    "get_config",
    "get_city_config",
    "Settings",
    "CityConfig",
    "DatasetConfig",
]
