import logging
from typing import Any, Dict, List, Optional

import httpx

from agrisense import config

logger = logging.getLogger(__name__)


class WeatherError(Exception):
    """Weather provider failed or returned an unusable payload."""


# WMO weather interpretation codes; first entry containing the code wins.
WEATHER_CONDITIONS = [
    ((0,), "Clear Sky"),
    ((1, 2, 3), "Partly Cloudy"),
    ((45, 48), "Foggy"),
    ((51, 53, 55), "Drizzle"),
    ((56, 57), "Freezing Drizzle"),
    ((61, 63, 65), "Rain"),
    ((66, 67), "Freezing Rain"),
    ((71, 73, 75, 77), "Snow"),
    ((80, 81, 82), "Rain Showers"),
    ((85, 86), "Snow Showers"),
    ((95,), "Thunderstorm"),
    ((96, 99), "Thunderstorm with Hail"),
]

GENERAL_TIPS = [
    "Perfect weather for watering crops early morning",
    "Consider applying fertilizer before evening",
    "Good conditions for pest control spray",
    "Monitor plants for heat stress in afternoon",
]


def open_http_client(timeout: float) -> httpx.Client:
    return httpx.Client(timeout=timeout)


def condition_label(code: Optional[int]) -> str:
    if code is None:
        return "Unknown"
    for codes, label in WEATHER_CONDITIONS:
        if code in codes:
            return label
    return "Unknown"


def _float_or_none(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def validate_coordinates(lat: float, lon: float) -> None:
    if not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ValueError(f"Invalid coordinates: lat={lat!r}, lon={lon!r}")


def fetch_current_weather(lat: float, lon: float) -> Dict[str, Any]:
    """Current conditions from the Open-Meteo forecast API (no key needed)."""
    validate_coordinates(lat, lon)
    url = config.get_env("OPEN_METEO_URL", config.OPEN_METEO_URL)
    params = {
        "latitude": lat,
        "longitude": lon,
        "current": "temperature_2m,relative_humidity_2m,wind_speed_10m,precipitation,uv_index,weather_code",
        "wind_speed_unit": "kmh",
        "timezone": "auto",
    }
    try:
        with open_http_client(20.0) as client:
            resp = client.get(url, params=params)
            resp.raise_for_status()
            raw = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise WeatherError(f"Weather API error: {e}")

    current = raw.get("current") or {}
    if not current:
        raise WeatherError("Weather API returned no current conditions")
    code = current.get("weather_code")
    return {
        "temperature": _float_or_none(current.get("temperature_2m")),
        "humidity": _float_or_none(current.get("relative_humidity_2m")),
        "windSpeed": _float_or_none(current.get("wind_speed_10m")),
        "precipitation": _float_or_none(current.get("precipitation")) or 0.0,
        "uvIndex": _float_or_none(current.get("uv_index")),
        "weatherCode": int(code) if code is not None else None,
        "time": current.get("time"),
    }


def reverse_geocode(lat: float, lon: float) -> Optional[str]:
    """Best-effort place name for coordinates; None when the lookup fails."""
    url = config.get_env("REVERSE_GEOCODE_URL", config.REVERSE_GEOCODE_URL)
    params = {"latitude": lat, "longitude": lon, "localityLanguage": "en"}
    try:
        with open_http_client(10.0) as client:
            resp = client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Reverse geocoding failed for %s,%s: %s", lat, lon, e)
        return None

    place = data.get("city") or data.get("locality") or data.get("principalSubdivision")
    country = data.get("countryName")
    if place and country:
        return f"{place}, {country}"
    return place or country or None


def farming_tips(weather: Dict[str, Any]) -> List[str]:
    """Rule-based advisories from current conditions."""
    tips: List[str] = []
    temp = weather.get("temperature")
    humidity = weather.get("humidity")
    wind = weather.get("windSpeed")
    rain = weather.get("precipitation") or 0.0
    uv = weather.get("uvIndex")

    if temp is not None and temp >= 35:
        tips.append("Extreme heat: irrigate early morning or late evening and shade sensitive seedlings.")
    elif temp is not None and temp >= 30:
        tips.append("Hot conditions: monitor plants for heat stress in the afternoon.")
    if temp is not None and temp <= 5:
        tips.append("Frost risk: cover tender crops overnight.")
    elif temp is not None and temp <= 10:
        tips.append("Cool weather: delay transplanting sensitive seedlings.")

    if humidity is not None and humidity >= 80:
        tips.append("High humidity favours fungal disease; inspect leaves and improve air flow.")
    elif humidity is not None and humidity <= 30:
        tips.append("Dry air: check soil moisture and water more frequently.")

    if wind is not None and wind >= 20:
        tips.append("Strong wind: postpone spraying pesticides or fertilizer.")

    if rain > 0:
        tips.append("Rain detected: skip irrigation today and check field drainage.")
    elif temp is not None and 15 <= temp < 30 and (wind is None or wind < 20):
        tips.append("Good conditions for pest control spray.")

    if uv is not None and uv >= 8:
        tips.append("Very high UV: schedule field work outside midday hours.")

    return tips or list(GENERAL_TIPS)


def weather_report(lat: float, lon: float) -> Dict[str, Any]:
    current = fetch_current_weather(lat, lon)
    current["condition"] = condition_label(current.get("weatherCode"))
    return {
        "location": reverse_geocode(lat, lon),
        "current": current,
        "tips": farming_tips(current),
    }
