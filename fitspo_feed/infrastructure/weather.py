"""
OpenWeather client for tagging posts with current conditions
"""
import httpx
from typing import Optional
import logging

from ..config import settings
from ..domain.models import WeatherReading
from ..domain.repositories import IWeatherLookup

logger = logging.getLogger(__name__)


class OpenWeatherClient(IWeatherLookup):
    """Current weather lookup; failures yield no reading"""

    def __init__(self):
        self.timeout = httpx.Timeout(5.0, connect=3.0)
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(timeout=self.timeout)
        logger.info("Weather client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            logger.info("Weather client closed")

    async def current(self, latitude: float, longitude: float) -> Optional[WeatherReading]:
        """Icon code and Celsius temperature at the coordinates"""
        if not self.client or not settings.OPENWEATHER_API_KEY:
            return None

        try:
            response = await self.client.get(
                settings.OPENWEATHER_URL,
                params={
                    "lat": latitude,
                    "lon": longitude,
                    "appid": settings.OPENWEATHER_API_KEY,
                    "units": "metric",
                }
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Weather lookup failed for ({latitude}, {longitude}): {e}")
            return None

        if not isinstance(body, dict):
            logger.warning(f"Unexpected weather payload for ({latitude}, {longitude})")
            return None

        weather = body.get("weather")
        first = weather[0] if isinstance(weather, list) and weather else None
        icon = first.get("icon") if isinstance(first, dict) else None
        main = body.get("main")
        temp = main.get("temp") if isinstance(main, dict) else None
        if icon is None:
            return None
        return WeatherReading(icon=icon, temp=float(temp) if isinstance(temp, (int, float)) else None)


# Global weather client instance
weather_client = OpenWeatherClient()


async def get_weather_client() -> OpenWeatherClient:
    """Dependency for getting weather client instance"""
    return weather_client
