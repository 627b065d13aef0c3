"""
Synthetic data generator for the Provider Planning Engine.
Produces providers, weekly windows, bookings and absences from a seed so
demo runs and tests are reproducible.
"""

import logging
import random
from datetime import date, time, timedelta
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from models import Absence, Availability, Booking, BookingStatus, Provider

logger = logging.getLogger(__name__)

# Sample city centre (Lyon); addresses are scattered around it
CITY_CENTRE = (45.7640, 4.8357)

STREETS = [
    "rue des Lilas", "avenue Jean Jaures", "rue Garibaldi", "cours Lafayette",
    "rue de la Republique", "quai Claude Bernard", "boulevard des Belges",
    "rue Paul Bert", "avenue Berthelot", "rue Duguesclin",
]

CLIENT_NAMES = [
    "M. Durand", "Mme Martin", "M. Bernard", "Mme Petit", "M. Robert",
    "Mme Richard", "M. Moreau", "Mme Simon", "M. Laurent", "Mme Michel",
]

ABSENCE_REASONS = ["vacation", "sick_leave", "training", "personal"]

# Typical weekly templates: (day_of_week, start, end)
WEEK_TEMPLATES = [
    [(d, time(9, 0), time(12, 0)) for d in range(5)] + [(d, time(14, 0), time(18, 0)) for d in range(5)],
    [(d, time(8, 0), time(16, 0)) for d in range(4)],
    [(d, time(10, 0), time(19, 0)) for d in (1, 2, 3, 4, 5)],
]


class DataGenerator:
    def __init__(self, seed: Optional[int] = 42):
        self.rng = random.Random(seed)
        self.coordinates: Dict[str, Tuple[float, float]] = {}

    def _validated(self, model_class: Type[BaseModel], items: List[Dict[str, Any]]) -> List[Any]:
        """Build models from raw dicts, skipping invalid ones."""
        valid_items = []
        for i, item in enumerate(items):
            try:
                valid_items.append(model_class(**item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid {model_class.__name__} {i}: {e.json()}")
        return valid_items

    def generate_addresses(self, count: int = 20) -> List[str]:
        """Random street addresses with coordinates within ~8 km of the centre."""
        addresses = []
        for _ in range(count):
            address = f"{self.rng.randint(1, 120)} {self.rng.choice(STREETS)}, Lyon"
            if address in self.coordinates:
                continue
            lat = CITY_CENTRE[0] + self.rng.uniform(-0.07, 0.07)
            lon = CITY_CENTRE[1] + self.rng.uniform(-0.1, 0.1)
            self.coordinates[address] = (round(lat, 5), round(lon, 5))
            addresses.append(address)
        return addresses

    def generate_providers(self, count: int = 3) -> List[Provider]:
        items = []
        for i in range(1, count + 1):
            home = self.generate_addresses(1)
            items.append({
                "id": f"prov_{i:02d}",
                "name": f"Provider {i}",
                "home_address": home[0] if home else None,
            })
        return self._validated(Provider, items)

    def generate_weekly_availabilities(self, provider: Provider) -> List[Availability]:
        """One of the weekly templates; windows never overlap within a template."""
        template = self.rng.choice(WEEK_TEMPLATES)
        items = [{
            "provider_id": provider.id,
            "day_of_week": day,
            "start_time": start,
            "end_time": end,
            "is_recurring": True,
        } for day, start, end in template]
        return self._validated(Availability, items)

    def generate_bookings(
        self,
        provider: Provider,
        windows: List[Availability],
        start_date: date,
        days: int = 7,
        fill_rate: float = 0.6
    ) -> List[Booking]:
        """
        Walk each window of each day and place bookings back to back with a
        travel buffer, keeping roughly `fill_rate` of the window busy.
        """
        addresses = self.generate_addresses(15) or [provider.home_address or "Lyon"]
        items = []
        counter = 1
        for offset in range(days):
            day = start_date + timedelta(days=offset)
            for window in windows:
                if not window.applies_on(day):
                    continue
                current, window_end = window.bounds_on(day)
                while True:
                    duration = self.rng.choice([45, 60, 90])
                    end = current + timedelta(minutes=duration)
                    if end > window_end:
                        break
                    if self.rng.random() < fill_rate:
                        items.append({
                            "id": f"bk_{provider.id}_{counter:03d}",
                            "provider_id": provider.id,
                            "scheduled_start": current,
                            "duration_minutes": duration,
                            "address": self.rng.choice(addresses),
                            "status": self.rng.choice([BookingStatus.CONFIRMED] * 4 + [BookingStatus.PENDING]),
                            "preferred_time": self.rng.random() < 0.15,
                            "client_name": self.rng.choice(CLIENT_NAMES),
                        })
                        counter += 1
                    current = end + timedelta(minutes=self.rng.choice([15, 30]))
        return self._validated(Booking, items)

    def generate_absences(self, provider: Provider, start_date: date, horizon_days: int = 60,
                          count: int = 1) -> List[Absence]:
        """Non-overlapping absences placed after the booked week."""
        items = []
        cursor = start_date + timedelta(days=14)
        for _ in range(count):
            first = cursor + timedelta(days=self.rng.randint(0, max(0, horizon_days // 2)))
            last = first + timedelta(days=self.rng.randint(0, 6))
            items.append({
                "provider_id": provider.id,
                "start_date": first,
                "end_date": last,
                "reason": self.rng.choice(ABSENCE_REASONS),
            })
            cursor = last + timedelta(days=2)
        return self._validated(Absence, items)

    def generate_dataset(self, provider_count: int = 3, start_date: Optional[date] = None,
                         days: int = 7) -> Dict[str, Any]:
        """Everything needed to seed a `PlanningState`."""
        if start_date is None:
            today = date.today()
            start_date = today - timedelta(days=today.weekday())

        providers = self.generate_providers(provider_count)
        availabilities, bookings, absences = [], [], []
        for provider in providers:
            windows = self.generate_weekly_availabilities(provider)
            availabilities.extend(windows)
            bookings.extend(self.generate_bookings(provider, windows, start_date, days))
            absences.extend(self.generate_absences(provider, start_date))

        logger.info(
            f"Generated {len(providers)} providers, {len(availabilities)} windows, "
            f"{len(bookings)} bookings, {len(absences)} absences"
        )
        return {
            "start_date": start_date,
            "providers": providers,
            "availabilities": availabilities,
            "bookings": bookings,
            "absences": absences,
            "coordinates": dict(self.coordinates),
        }
