"""
Geocell Service - H3 coarse-location bucketing

Raw coordinates never leave this module: callers get a resolution-7 cell id
(the device's "coarse location") and compare regions via the resolution-4
parent cell. Every failure returns None so the caller can take its
fail-open branch; nothing here raises.
"""
import logging
from typing import Optional

import h3

from trustcircle.config import settings

logger = logging.getLogger(__name__)

GEOCODE_UNAVAILABLE = "geocode_unavailable"


class GeocellService:
    """Service for converting locations to H3 cells and comparing regions"""

    def __init__(
        self,
        cell_resolution: int = settings.H3_CELL_RESOLUTION,
        region_resolution: int = settings.H3_REGION_RESOLUTION
    ):
        self.cell_resolution = cell_resolution
        self.region_resolution = region_resolution

    def cell_for(self, lat: Optional[float], lon: Optional[float]) -> Optional[str]:
        """Coarse location cell for a coordinate pair, or None"""
        if lat is None or lon is None:
            return None
        try:
            return h3.latlng_to_cell(lat, lon, self.cell_resolution)
        except Exception as e:
            logger.warning(f"Geocell lookup failed for ({lat}, {lon}): {e}")
            return None

    def region_of(self, cell: Optional[str]) -> Optional[str]:
        """Enclosing region cell of a geocell, or None if it cannot be resolved"""
        if not cell:
            return None
        try:
            if not h3.is_valid_cell(cell):
                logger.warning(f"Invalid geocell: {cell}")
                return None
            if h3.get_resolution(cell) < self.region_resolution:
                logger.warning(f"Geocell {cell} is coarser than the region resolution")
                return None
            return h3.cell_to_parent(cell, self.region_resolution)
        except Exception as e:
            logger.warning(f"Region resolution failed for {cell}: {e}")
            return None

    def is_valid_region(self, zone_id: Optional[str]) -> bool:
        if not zone_id:
            return False
        try:
            return h3.is_valid_cell(zone_id) and h3.get_resolution(zone_id) == self.region_resolution
        except Exception:
            return False


# Singleton instance
geocell_service = GeocellService()
