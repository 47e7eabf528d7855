"""
Spatial Index Warmup
Builds the H3 region index of every configured city and reports its size

Usage:
    python scripts/warm_spatial_index.py               # All configured cities
    python scripts/warm_spatial_index.py --city nyc    # One city
"""

import argparse
import json
import logging

from incident_atlas.regions import SpatialRegionResolver
from incident_atlas.shared.config import get_config

config = get_config()

# Set up logging
logging.basicConfig(
    level=config.logging.level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def warm(cities=None):
    """
    Build the spatial index of the given cities

    Args:
        cities: City ids to build (None = every configured city)

    Returns:
        Resolver statistics after the build
    """
    resolver = SpatialRegionResolver(config)
    targets = cities or resolver.cities
    logger.info(f"Building spatial index for {targets} at resolution {resolver.resolution}...")

    for city in targets:
        index = resolver.get_index(city)
        if index is None:
            logger.warning(f"Skipping unknown city: {city}")
            continue
        logger.info(
            f"{city}: {len(index.catalog)} regions, {index.total_cells} cells "
            f"in {index.build_seconds:.2f}s"
        )

    return resolver.stats()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Build the spatial region index")
    parser.add_argument("--city", action="append", help="City id (repeatable)")
    args = parser.parse_args()

    stats = warm(args.city)

    print("\n=== Spatial Index ===")
    print(json.dumps(stats, indent=2))
