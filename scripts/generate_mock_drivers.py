import csv
import random

VEHICLE_TYPES = ["bike", "auto", "car"]


def generate_mock_drivers(filename="mock_drivers_100.csv", count=100):
    # Scatter drivers around Bengaluru city center (MG Road)
    base_lat = 12.975526
    base_lon = 77.606949

    with open(filename, mode='w', newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["driver_id", "lat", "lon", "is_online", "vehicle_type", "rating"])

        for i in range(count):
            driver_id = f"DRV-{str(i+1).zfill(3)}"

            # roughly +/- 12km; some land outside the 10km matching radius on purpose
            lat = base_lat + (random.random() - 0.5) * 0.22
            lon = base_lon + (random.random() - 0.5) * 0.22

            # 80% chance of being online
            is_online = random.random() < 0.8

            # Bikes dominate the fleet
            vehicle_type = random.choices(VEHICLE_TYPES, weights=[0.6, 0.25, 0.15])[0]

            rating = round(random.uniform(3.5, 5.0), 1)

            writer.writerow([driver_id, round(lat, 6), round(lon, 6), is_online, vehicle_type, rating])

    print(f"Successfully generated {count} mock drivers into '{filename}'.")


if __name__ == "__main__":
    generate_mock_drivers()
