"""Unit conversion and display formatting for distances."""

KM_TO_MILES = 0.621371


def km_to_miles(km: float) -> float:
    return km * KM_TO_MILES


def format_distance(km: float, unit: str = "km", decimals: int = 2) -> str:
    """
    format_distance(1.2) -> "1.20 km"
    format_distance(1.2, unit="mi") -> "0.75 mi"
    """
    if unit == "mi":
        value = km_to_miles(km)
    elif unit == "km":
        value = km
    else:
        raise ValueError(f"Unsupported unit label: {unit!r}")

    return f"{value:.{decimals}f} {unit}"
