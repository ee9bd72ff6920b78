import csv
import os
import random
import threading
import time
from typing import Dict, List

import pandas as pd

from common.settings import Settings, configure_logging
from dispatch.dispatcher import DispatchCoordinator
from dispatch.exceptions import ActiveRideExists
from drivers.models import DriverAvailability
from store.memory import InMemoryDocumentStore


def load_drivers(filepath="mock_drivers_100.csv") -> List[DriverAvailability]:
    drivers = []

    # Resolve the correct path depending on where the user runs the script from.
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    absolute_path = os.path.join(base_dir, filepath)

    with open(absolute_path, 'r') as file:
        reader = csv.DictReader(file)
        for row in reader:
            drivers.append(
                DriverAvailability.new(
                    row['driver_id'],
                    float(row['lat']),
                    float(row['lon']),
                    is_online=row['is_online'] == "True",
                    vehicle_type=row['vehicle_type'],
                    rating=float(row['rating']),
                )
            )
    return drivers


def load_requests(filepath="mock_ride_requests.csv", limit=30) -> pd.DataFrame:
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    df = pd.read_csv(os.path.join(base_dir, filepath))
    return df.head(limit)


def race_for_ride(coordinator: DispatchCoordinator, ride_id: str, driver_ids: List[str]) -> Dict[str, bool]:
    """
    Every candidate taps "Accept" at the same moment; the store's
    compare-and-set decides who gets the ride.
    """
    barrier = threading.Barrier(len(driver_ids))
    outcome: Dict[str, bool] = {}

    def tap(driver_id: str):
        barrier.wait()
        outcome[driver_id] = coordinator.accept_ride(ride_id, driver_id).success

    threads = [threading.Thread(target=tap, args=(driver_id,)) for driver_id in driver_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcome


def run_simulation(racers_per_ride=3):
    configure_logging("WARNING")
    print("=== STARTING END-TO-END DISPATCH SIMULATION ===")

    # 1. Load Data
    drivers = load_drivers()
    requests_df = load_requests(limit=30)
    print(f"Loaded {len(requests_df)} Ride Requests and {len(drivers)} Drivers.\n")

    # 2. Configure System (always in-memory here, whatever STORE_URL says)
    coordinator = DispatchCoordinator.from_settings(Settings.from_env(), store=InMemoryDocumentStore())

    for driver in drivers:
        if driver.is_online:
            coordinator.go_online(driver.driver_id, driver.location, driver.vehicle_type, driver.rating)

    busy = set()
    results = []
    start_time = time.time()

    # 3. Request, match, race, drive, pay
    for row in requests_df.itertuples(index=False):
        try:
            ride = coordinator.request_ride(
                row.rider_id,
                (row.pickup_lat, row.pickup_lon),
                (row.drop_lat, row.drop_lon),
                pickup_address=row.pickup_address,
                drop_address=row.drop_address,
                payment_method=row.payment_method,
            )
        except ActiveRideExists:
            continue

        available = [d for d in drivers if d.is_online and d.driver_id not in busy]
        candidates = coordinator.matcher.rank_candidates(ride.pickup, available)[:racers_per_ride]

        if not candidates:
            coordinator.cancel_ride(ride.id, row.rider_id, "No drivers nearby")
            results.append([ride.id, ride.distance_km, float(ride.fare), "NO_DRIVERS", "", "", ""])
            print(f"[FAILED] Ride {ride.id[:8]} -> No online drivers within range.")
            continue

        outcome = race_for_ride(coordinator, ride.id, [c.driver.driver_id for c in candidates])
        winners = [driver_id for driver_id, won in outcome.items() if won]
        assert len(winners) == 1, f"ride {ride.id} assigned {len(winners)} times"
        winner = winners[0]

        coordinator.start_ride(ride.id, winner)
        split = coordinator.complete_ride(ride.id, winner)
        coordinator.record_payment(ride.id, winner, row.payment_method)
        coordinator.rate_driver(ride.id, row.rider_id, random.randint(3, 5))

        # 40% of drivers are still on the trip when the next request comes in
        if random.random() < 0.4:
            busy.add(winner)

        results.append([ride.id, ride.distance_km, float(split.gross_fare), winner, len(outcome),
                        float(split.platform_cut), float(split.driver_earnings)])
        print(f"[SUCCESS] Ride {ride.id[:8]} ({ride.distance_km} km, {split.gross_fare}) -> {winner} "
              f"won a race of {len(outcome)}")

    # 4. Save results next to the scripts folder
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "dispatch_results.csv")
    pd.DataFrame(
        results,
        columns=["ride_id", "distance_km", "fare", "driver_id", "racers", "platform_cut", "driver_earnings"],
    ).to_csv(output_path, index=False)

    completed = [r for r in results if r[3] != "NO_DRIVERS"]
    stats = coordinator.engine.cache_stats()

    print("\n=== SIMULATION COMPLETE ===")
    print(f"Rides Completed: {len(completed)} / {len(results)} in {time.time() - start_time:.2f}s")
    print(f"Platform Revenue: {sum(r[5] for r in completed):.2f}")
    print(f"Distance cache: {stats.size} entries, {stats.hits} hits, {stats.misses} misses")
    print(f"Results written to '{output_path}'.")

    coordinator.close()


if __name__ == "__main__":
    run_simulation()
