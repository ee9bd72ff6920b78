import uuid
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd


def generate_mock_ride_requests(num_requests=200, num_hotspots=15, output_file="mock_ride_requests.csv"):
    """
    Generates ride requests for the dispatch simulation.
    Pickups cluster around a fixed set of 'hotspots' (stations, malls, offices)
    so many riders compete for the same nearby drivers, which is what makes
    the accept race interesting.
    """
    CENTER_LAT = 12.975526
    CENTER_LON = 77.606949

    # 1. Hotspots within ~5km of the center (roughly 0.05 degrees)
    hotspots = []
    for hotspot_index in range(num_hotspots):
        hotspots.append({
            "name": f"Hotspot {hotspot_index+1}",
            "lat": CENTER_LAT + np.random.uniform(-0.05, 0.05),
            "lon": CENTER_LON + np.random.uniform(-0.05, 0.05),
        })

    data = []
    now = datetime.now(timezone.utc)

    # 2. Requests
    for request_index in range(num_requests):
        hotspot = hotspots[np.random.randint(0, len(hotspots))]

        # Short urban trips: drop within ~1-8km of the pickup
        drop_lat = hotspot["lat"] + np.random.uniform(-0.07, 0.07)
        drop_lon = hotspot["lon"] + np.random.uniform(-0.07, 0.07)

        data.append({
            "request_id": f"r_{str(uuid.uuid4())[:8]}",
            "created_at": (now - timedelta(minutes=int(np.random.randint(0, 30)))).isoformat(),
            "rider_id": f"rider_{str(request_index+1).zfill(4)}",
            "pickup_lat": np.round(hotspot["lat"] + np.random.uniform(-0.002, 0.002), 6),
            "pickup_lon": np.round(hotspot["lon"] + np.random.uniform(-0.002, 0.002), 6),
            "drop_lat": np.round(drop_lat, 6),
            "drop_lon": np.round(drop_lon, 6),
            "pickup_address": hotspot["name"],
            "drop_address": f"Drop {request_index+1}",
            "payment_method": np.random.choice(["cash", "upi", "card"], p=[0.5, 0.4, 0.1]),
        })

    # 3. Save to CSV
    df = pd.DataFrame(data)
    df = df.sort_values("created_at").reset_index(drop=True)
    df.to_csv(output_file, index=False)

    print(f"Generated {len(df)} ride requests around {num_hotspots} hotspots into '{output_file}'.")

    print("\nBusiest pickups (drivers will race here):")
    counts = df["pickup_address"].value_counts().head(5)
    for name, count in counts.items():
        print(f"  {name}: {count} requests")

    return df


if __name__ == "__main__":
    generate_mock_ride_requests()
