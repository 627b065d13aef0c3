"""
Main Execution Script for the Provider Planning Engine.
Seeds an in-memory store, then prints a weekly planning report per provider
and exports dashboard JSON plus CSV schedules.
"""

import os
import sys
import logging
from datetime import date, timedelta
import json
from typing import Any, Dict, Optional

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from generators.data_factory import DataGenerator
from models import Absence, Availability, Booking, Provider
from planning import (
    AvailabilityService,
    FlatRateTravelEstimator,
    HaversineTravelEstimator,
    PlanningState,
    SchedulingSettings,
)
from planning.export import schedule_to_dict

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
CACHE_FILENAME = "planning_data.json"
USE_CACHE = True  # Set to False to force new generation
EXPORT_DIR = "exports"
RANDOM_SEED = 42
# ---------------------


def save_planning_data(data: Dict[str, Any], filename: str):
    """Helper to save generated data so runs can be replayed."""
    serializable = {"start_date": data["start_date"].isoformat(), "coordinates": data["coordinates"]}
    for key in ("providers", "availabilities", "bookings", "absences"):
        serializable[key] = [item.model_dump(mode='json') for item in data[key]]

    with open(filename, 'w') as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"Saved planning data to {filename}")


def load_planning_data(filename: str) -> Optional[Dict[str, Any]]:
    """
    Helper to load JSON data and reconstruct Pydantic objects.
    """
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        logger.warning(f"Cache file {filename} not found or invalid. Falling back to Generator.")
        return None

    logger.info(f"Loading cached data from {filename}...")

    # Re-hydrate Pydantic models from the JSON dicts
    loaded = {
        "start_date": date.fromisoformat(data["start_date"]),
        "providers": [Provider(**item) for item in data.get('providers', [])],
        "availabilities": [Availability(**item) for item in data.get('availabilities', [])],
        "bookings": [Booking(**item) for item in data.get('bookings', [])],
        "absences": [Absence(**item) for item in data.get('absences', [])],
        "coordinates": {k: tuple(v) for k, v in data.get('coordinates', {}).items()},
    }
    logger.info(f"Cache Loaded: {len(loaded['providers'])} providers, {len(loaded['bookings'])} bookings.")
    return loaded


def seed_state(data: Dict[str, Any]) -> PlanningState:
    state = PlanningState()
    for provider in data["providers"]:
        state.add_provider(provider)
    for window in data["availabilities"]:
        state.save_availability(window)
    for booking in data["bookings"]:
        state.add_booking(booking)
    for absence in data["absences"]:
        state.save_absence(absence)
    return state


def export_dashboard_data(service: AvailabilityService, provider_ids, week_start: date, filename: str):
    """
    Serializes the week of every provider into a JSON format for a frontend.
    """
    logger.info(f"Exporting dashboard data to {filename}...")

    week_end = week_start + timedelta(days=6)
    data = {"week_start": week_start.isoformat(), "providers": {}}
    for provider_id in provider_ids:
        schedule = service.get_weekly_schedule(provider_id, week_start)
        entry = schedule_to_dict(schedule)
        entry["stats"] = vars(service.get_planning_stats(provider_id, week_start, week_end)).copy()
        entry["stats"].pop("period_start")
        entry["stats"].pop("period_end")
        entry["capacity"] = [
            {
                "date": day.date.isoformat(),
                "occupancy_rate": day.occupancy_rate,
                "free_minutes": day.free_minutes,
                "largest_free_block_minutes": day.largest_free_block_minutes,
            }
            for day in service.analyze_capacity(provider_id, week_start, week_end).days
        ]
        data["providers"][provider_id] = entry

    os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
    with open(filename, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info("Dashboard data exported.")


def print_provider_report(service: AvailabilityService, provider_id: str, week_start: date):
    week_end = week_start + timedelta(days=6)
    stats = service.get_planning_stats(provider_id, week_start, week_end)
    report = service.generate_conflict_report(provider_id, week_start, week_end)
    balance = service.balance_weekly_workload(provider_id, week_start)
    optimization = service.optimize_schedule(provider_id, week_start, week_end)

    print("\n" + "=" * 50)
    print(f"WEEKLY REPORT: {provider_id} ({week_start} to {week_end})")
    print("=" * 50)
    print(f"Bookings:            {stats.total_bookings}")
    print(f"Occupancy:           {stats.occupancy_rate}%")
    print(f"Conflicts:           {report.total} {report.by_severity}")
    print(f"Balance score:       {balance.balance_score}")
    print(f"Travel saved (opt.): {round(optimization.time_saved_minutes)} min")

    for recommendation in service.suggest_optimizations(provider_id, week_start, week_end):
        print(f"  [{recommendation.priority}] {recommendation.message}")

    next_slot = service.find_next_available_slot(provider_id, 60, after=service.clock())
    if next_slot:
        print(f"Next free hour:      {next_slot.start:%a %d %b %H:%M}")


def main():
    logger.info("Starting Provider Planning Engine demo...")

    # --- PHASE 1: DATA ACQUISITION (Cache vs. Generator) ---
    data = load_planning_data(CACHE_FILENAME) if USE_CACHE else None
    if data is None:
        data = DataGenerator(seed=RANDOM_SEED).generate_dataset(provider_count=3)
        save_planning_data(data, CACHE_FILENAME)

    if not data["providers"]:
        logger.error("No providers available. Exiting.")
        return

    # --- PHASE 2: ENGINE SETUP ---
    state = seed_state(data)
    travel = HaversineTravelEstimator(data["coordinates"], fallback=FlatRateTravelEstimator())
    service = AvailabilityService(state, state, travel, SchedulingSettings.from_env())

    # --- PHASE 3: REPORTING ---
    week_start = data["start_date"]
    print(state.get_statistics())
    for provider in data["providers"]:
        print_provider_report(service, provider.id, week_start)

    # --- PHASE 4: EXPORT ---
    provider_ids = [p.id for p in data["providers"]]
    export_dashboard_data(service, provider_ids, week_start, os.path.join(EXPORT_DIR, "dashboard_data.json"))
    for provider_id in provider_ids:
        path = os.path.join(EXPORT_DIR, f"schedule_{provider_id}.csv")
        with open(path, 'w', newline='') as f:
            f.write(service.export_schedule_csv(provider_id, week_start, week_start + timedelta(days=6)))
        logger.info(f"Schedule exported to {path}")

    print("\nPlanning run complete.")


if __name__ == "__main__":
    main()
