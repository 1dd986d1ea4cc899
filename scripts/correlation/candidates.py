"""
Candidate selection: narrows the delivery search space for one trip.

Deliveries for the whole run window are loaded once into a DeliveryIndex
(keyed by date) so selecting candidates for a trip is a handful of dict
lookups instead of a query per trip.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import List, Dict, Iterable, Set

from .config import CorrelationConfig, COMBINED_CARRIER
from .models import Trip, Delivery

logger = logging.getLogger(__name__)


class DeliveryIndex:
    """In-memory index of deliveries by delivery date."""

    def __init__(self, deliveries: Iterable[Delivery] = ()):
        self._by_date: Dict[date, List[Delivery]] = defaultdict(list)
        self._keys: Set[str] = set()
        for delivery in deliveries:
            self.add(delivery)

    def add(self, delivery: Delivery):
        if delivery.delivery_key in self._keys:
            logger.debug(f"Skipping duplicate delivery key {delivery.delivery_key}")
            return
        self._keys.add(delivery.delivery_key)
        self._by_date[delivery.delivery_date].append(delivery)

    def __len__(self) -> int:
        return len(self._keys)

    def between(self, start: date, end: date) -> List[Delivery]:
        """Deliveries dated start..end inclusive, ordered by date then key."""
        result = []
        day = start
        while day <= end:
            result.extend(sorted(self._by_date.get(day, []), key=lambda d: d.delivery_key))
            day += timedelta(days=1)
        return result


class CandidateSelector:
    """
    Selects deliveries within the date tolerance of a trip whose carrier
    matches the trip's fleet. Deliveries carried as "Combined" are
    candidates for every fleet unless include_combined_carrier is off.
    Trips with no fleet are not carrier-filtered.
    """

    def __init__(self, index: DeliveryIndex, config: CorrelationConfig):
        self.index = index
        self.config = config

    def _carrier_allowed(self, trip: Trip, delivery: Delivery) -> bool:
        carriers = self.config.carriers_for_fleet(trip.fleet)
        if not carriers:
            return True
        carrier = (delivery.carrier or "").strip().lower()
        if not carrier:
            return False
        if self.config.include_combined_carrier and carrier == COMBINED_CARRIER.lower():
            return True
        return carrier in {c.lower() for c in carriers}

    def select(self, trip: Trip) -> List[Delivery]:
        tolerance = timedelta(days=self.config.date_tolerance_days)
        window = self.index.between(trip.trip_date - tolerance, trip.trip_date + tolerance)
        return [d for d in window if self._carrier_allowed(trip, d)]
