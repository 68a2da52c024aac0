"""Real-time farm data tools: weather, irrigation advice, and mandi prices."""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
import msgspec

from khet.ai.providers.base import BackendError
from khet.ai.tools import ToolCall, ToolRegistry, ToolSkipped
from khet.config import Settings
from khet.utils.clock import now_ms

logger = logging.getLogger(__name__)

WEATHER_TTL_MS = 10 * 60 * 1000
FORECAST_WINDOW = 24  # 3-hour slots, i.e. the next 72 hours
PRICE_RECORD_LIMIT = 100

COMMODITIES = ("wheat", "rice", "cotton", "sugarcane", "onion", "potato", "tomato", "maize", "soybean", "turmeric", "chilli", "coriander", "groundnut")

CROP_COEFFICIENTS: dict[str, float] = {"wheat": 1.15, "rice": 1.20, "cotton": 1.15, "sugarcane": 1.25, "tomato": 1.15, "potato": 1.15, "maize": 1.20}
DEFAULT_CROP_COEFFICIENT = 1.10
EXTRATERRESTRIAL_RADIATION = 38.0  # MJ/m2/day
DAILY_TEMPERATURE_RANGE = 10.0  # degrees C


class GeoLocation(msgspec.Struct, frozen=True):
  lat: float
  lon: float
  name: str | None = None
  state: str | None = None
  country: str | None = None


class OwmMain(msgspec.Struct, frozen=True):
  temp: float
  humidity: float = 0


class OwmWind(msgspec.Struct, frozen=True):
  speed: float = 0


class OwmCondition(msgspec.Struct, frozen=True):
  description: str = ""


class OwmCurrent(msgspec.Struct, frozen=True):
  main: OwmMain
  wind: OwmWind = msgspec.field(default_factory=OwmWind)
  weather: list[OwmCondition] = msgspec.field(default_factory=list)


class OwmSlot(msgspec.Struct, frozen=True):
  dt: int
  main: OwmMain
  rain: dict[str, float] | None = None


class OwmForecast(msgspec.Struct, frozen=True):
  slots: list[OwmSlot] = msgspec.field(default_factory=list, name="list")


class PriceRecord(msgspec.Struct, frozen=True):
  state: str | None = None
  district: str | None = None
  market: str | None = None
  commodity: str | None = None
  variety: str | None = None
  arrival_date: str | None = None
  min_price: str | float | None = None
  max_price: str | float | None = None
  modal_price: str | float | None = None


class PriceRecords(msgspec.Struct, frozen=True):
  records: list[PriceRecord] = msgspec.field(default_factory=list)


class ScraperReply(msgspec.Struct, frozen=True):
  success: bool = False
  data: Any = None
  error: str | None = None


@dataclass(frozen=True)
class WeatherSnapshot:
  location: str
  temp: float
  humidity: float
  wind_speed: float
  conditions: str
  rain_next_72h_mm: float

  def to_dict(self) -> dict[str, Any]:
    return {
      "location": self.location,
      "temp": round(self.temp),
      "humidity": self.humidity,
      "wind_speed": self.wind_speed,
      "conditions": self.conditions,
      "rain_next_72h_mm": round(self.rain_next_72h_mm, 2),
    }


def reference_evapotranspiration(temp: float) -> float:
  """Hargreaves ET0 in mm/day from the mean temperature alone.

  Radiation and the daily temperature range are fixed at typical values for
  Indian plains, so the result is an estimate for scheduling, not a measurement.
  """
  return 0.0023 * 0.408 * EXTRATERRESTRIAL_RADIATION * (temp + 17.8) * math.sqrt(DAILY_TEMPERATURE_RANGE)


def irrigation_recommendation(crop_et: float, upcoming_rain: float, temp: float) -> dict[str, Any]:
  net_need = max(0.0, crop_et - upcoming_rain)
  if net_need < 2:
    return {"action": "no_irrigation", "message": "No irrigation needed. Sufficient rainfall expected.", "water_mm": 0, "timing": "none"}
  if net_need < 5:
    return {"action": "light_irrigation", "message": "Light irrigation recommended in 2-3 days.", "water_mm": round(net_need), "timing": "evening"}
  timing = "early_morning_or_evening" if temp > 30 else "morning"
  return {"action": "irrigation_needed", "message": "Irrigation needed within 24 hours.", "water_mm": round(net_need), "timing": timing}


def find_commodity(query: str, crops: tuple[str, ...]) -> str:
  for commodity in COMMODITIES:
    if re.search(rf"\b{commodity}\b", query, re.IGNORECASE):
      return commodity
  return crops[0].lower() if crops else "wheat"


def _as_price(value: str | float | None) -> float | None:
  if value is None or value == "":
    return None
  try:
    return float(value)
  except (TypeError, ValueError):
    return None


def summarize_prices(commodity: str, records: list[PriceRecord]) -> dict[str, Any]:
  """Reduce mandi records to the numbers the advisor needs."""
  modal = [price for price in (_as_price(record.modal_price) for record in records) if price is not None]
  markets = [
    {"market": record.market, "district": record.district, "state": record.state, "modal_price": _as_price(record.modal_price), "date": record.arrival_date}
    for record in records[:5]
  ]
  summary: dict[str, Any] = {"commodity": commodity, "records": len(records), "markets": markets}
  if modal:
    summary.update(average_modal_price=round(sum(modal) / len(modal), 2), lowest_modal_price=min(modal), highest_modal_price=max(modal))
  return summary


async def _request(client: httpx.AsyncClient, method: str, url: str, *, source: str, **kwargs: Any) -> httpx.Response:
  try:
    response = await client.request(method, url, **kwargs)
    response.raise_for_status()
  except httpx.HTTPStatusError as e:
    logger.warning("%s returned %s", source, e.response.status_code)
    raise BackendError(f"{source} error {e.response.status_code}", status_code=e.response.status_code, user_message=f"{source} is unavailable right now.") from e
  except httpx.RequestError as e:
    logger.warning("%s request failed: %s", source, e)
    raise BackendError(f"{source} request failed: {e}", user_message=f"Could not reach {source}.") from e
  return response


def _decode(response: httpx.Response, struct_type: Any, *, source: str) -> Any:
  try:
    return msgspec.json.decode(response.content, type=struct_type)
  except msgspec.DecodeError as exc:
    raise BackendError(f"{source} returned an unexpected payload: {exc}", status_code=response.status_code) from exc


class WeatherClient:
  """OpenWeather current conditions and 3-hourly forecast, cached per place for ten minutes."""

  def __init__(self, api_key: str, client: httpx.AsyncClient, *, base_url: str = "https://api.openweathermap.org") -> None:
    self._api_key = api_key
    self._client = client
    self._base_url = base_url.rstrip("/")
    self._geo_cache: dict[str, GeoLocation] = {}
    self._weather_cache: dict[str, tuple[int, WeatherSnapshot]] = {}

  async def geocode(self, place: str) -> GeoLocation | None:
    key = place.strip().lower()
    if key in self._geo_cache:
      return self._geo_cache[key]
    response = await _request(self._client, "GET", f"{self._base_url}/geo/1.0/direct", source="Weather service", params={"q": place, "limit": "1", "appid": self._api_key})
    found = _decode(response, list[GeoLocation], source="Weather service")
    if not found:
      return None
    self._geo_cache[key] = found[0]
    return found[0]

  async def snapshot(self, place: str) -> WeatherSnapshot:
    cache_key = place.strip().lower()
    cached = self._weather_cache.get(cache_key)
    if cached is not None and now_ms() - cached[0] < WEATHER_TTL_MS:
      return cached[1]

    location = await self.geocode(place)
    if location is None:
      raise ToolSkipped("weather", f"Location '{place}' not found")

    params = {"lat": str(location.lat), "lon": str(location.lon), "appid": self._api_key, "units": "metric"}
    current_response, forecast_response = await asyncio.gather(
      _request(self._client, "GET", f"{self._base_url}/data/2.5/weather", source="Weather service", params=params),
      _request(self._client, "GET", f"{self._base_url}/data/2.5/forecast", source="Weather service", params=params),
    )
    current = _decode(current_response, OwmCurrent, source="Weather service")
    forecast = _decode(forecast_response, OwmForecast, source="Weather service")
    rain = sum((slot.rain or {}).get("3h", 0.0) for slot in forecast.slots[:FORECAST_WINDOW])

    snapshot = WeatherSnapshot(
      location=location.name or place,
      temp=current.main.temp,
      humidity=current.main.humidity,
      wind_speed=current.wind.speed,
      conditions=", ".join(condition.description for condition in current.weather if condition.description),
      rain_next_72h_mm=rain,
    )
    self._weather_cache[cache_key] = (now_ms(), snapshot)
    return snapshot


class MarketPriceClient:
  """Mandi prices from the data.gov.in APMC resource and an optional Agmarknet scraper service."""

  def __init__(self, client: httpx.AsyncClient, *, api_key: str | None, prices_url: str, scraper_url: str | None = None) -> None:
    self._client = client
    self._api_key = api_key
    self._prices_url = prices_url
    self._scraper_url = scraper_url

  @property
  def has_apmc(self) -> bool:
    return bool(self._api_key)

  @property
  def has_agmarknet(self) -> bool:
    return bool(self._scraper_url)

  async def apmc_prices(self, commodity: str, state: str | None = None) -> dict[str, Any]:
    params = {"api-key": self._api_key or "", "format": "json", "limit": str(PRICE_RECORD_LIMIT), "filters[commodity]": commodity.title()}
    if state:
      params["filters[state]"] = state
    response = await _request(self._client, "GET", self._prices_url, source="Mandi price service", params=params, headers={"Accept": "application/json"})
    payload = _decode(response, PriceRecords, source="Mandi price service")
    return {**summarize_prices(commodity, payload.records), "source": "APMC"}

  async def agmarknet_prices(self, commodity: str, state: str) -> dict[str, Any]:
    assert self._scraper_url is not None
    today = time.strftime("%d-%b-%Y")
    body = {"commodity": commodity.title(), "state": state, "district": "", "market": "", "dateFrom": today, "dateTo": today}
    response = await _request(self._client, "POST", self._scraper_url, source="Agmarknet scraper", json=body)
    reply = _decode(response, ScraperReply, source="Agmarknet scraper")
    if not reply.success:
      raise BackendError(reply.error or "Agmarknet scraper reported a failure.", user_message="Agmarknet prices are unavailable right now.")
    return {"commodity": commodity, "state": state, "data": reply.data, "source": "Agmarknet"}


class FarmDataTools:
  """Owns the HTTP client behind the farm data tools and exposes them as a ToolRegistry.

  Only tools whose backend is configured are registered; the sequencer reports
  the rest as skipped.
  """

  def __init__(self, client: httpx.AsyncClient, *, weather: WeatherClient | None, market: MarketPriceClient) -> None:
    self._client = client
    self._weather = weather
    self._market = market

  @classmethod
  def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> FarmDataTools:
    http = client or httpx.AsyncClient(timeout=settings.tool_timeout_seconds, headers={"User-Agent": "Khet-AI/1.0"})
    weather = WeatherClient(settings.openweather_api_key, http, base_url=settings.openweather_base_url) if settings.openweather_api_key else None
    market = MarketPriceClient(http, api_key=settings.data_gov_api_key, prices_url=settings.data_gov_prices_url, scraper_url=settings.agmarknet_scraper_url)
    return cls(http, weather=weather, market=market)

  def registry(self) -> ToolRegistry:
    registry = ToolRegistry()
    if self._weather is not None:
      registry.register("get_current_weather", self.current_weather)
      registry.register("get_weather_irrigation_advice", self.irrigation_advice)
    if self._market.has_apmc:
      registry.register("get_market_prices", self.market_prices)
    if self._market.has_agmarknet:
      registry.register("get_agmarknet_prices", self.agmarknet_prices)
    logger.info("Farm data tools available: %s", ", ".join(registry.names) or "none")
    return registry

  async def _snapshot(self, call: ToolCall) -> WeatherSnapshot:
    assert self._weather is not None
    if not call.location:
      raise ToolSkipped(call.name, "No location given for a weather lookup")
    try:
      return await self._weather.snapshot(call.location)
    except ToolSkipped as exc:
      raise ToolSkipped(call.name, exc.reason) from exc

  async def current_weather(self, call: ToolCall) -> dict[str, Any]:
    return (await self._snapshot(call)).to_dict()

  async def irrigation_advice(self, call: ToolCall) -> dict[str, Any]:
    snapshot = await self._snapshot(call)
    crop = call.crops[0].lower() if call.crops else "rice"
    et0 = reference_evapotranspiration(snapshot.temp)
    crop_et = et0 * CROP_COEFFICIENTS.get(crop, DEFAULT_CROP_COEFFICIENT)
    return {
      "crop": crop,
      "recommendation": irrigation_recommendation(crop_et, snapshot.rain_next_72h_mm, snapshot.temp),
      "et0_mm": round(et0, 2),
      "crop_et_mm": round(crop_et, 2),
      "upcoming_rain_mm": round(snapshot.rain_next_72h_mm, 2),
      "temperature": round(snapshot.temp),
      "humidity": snapshot.humidity,
    }

  async def market_prices(self, call: ToolCall) -> dict[str, Any]:
    return await self._market.apmc_prices(find_commodity(call.query, call.crops), call.location)

  async def agmarknet_prices(self, call: ToolCall) -> dict[str, Any]:
    if not call.location:
      raise ToolSkipped(call.name, "No state given for an Agmarknet lookup")
    return await self._market.agmarknet_prices(find_commodity(call.query, call.crops), call.location)

  async def close(self) -> None:
    await self._client.aclose()
