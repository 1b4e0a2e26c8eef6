# MAIN FastAPI app: city suggest, details and nearest-city lookup over the GeoCity DB.

import logging
import os
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from geodata import (
    DEFAULT_LANG,
    DEFAULT_SUGGEST_LIMIT,
    CityDetail,
    GeoCityDatabaseNotFound,
    available_languages,
    dataset_metadata,
    fetch_nearest_city,
    get_city_detail,
    resolve_database_path,
    suggest_cities,
)

# ---------- Logging ----------
LOGGER = logging.getLogger("geocity")
if not LOGGER.handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="GeoCity API")


# ---------- Models ----------
class CoordinateModel(BaseModel):
    lat: float
    lon: float


class CityDetailModel(BaseModel):
    id: int
    name: str
    country: str
    country_code: str
    coordinates: CoordinateModel
    elevation: int | None = None
    population: int
    timezone: str | None = None


class NearestCityResponse(BaseModel):
    city: CityDetailModel
    request_coordinates: CoordinateModel
    distance_km: float = Field(..., description="Great-circle distance from the query point in kilometers.")


class CityResultModel(BaseModel):
    id: int
    name: str
    country: str
    country_code: str
    population: int


class SuggestResponse(BaseModel):
    results: list[CityResultModel]


class LanguagesResponse(BaseModel):
    languages: list[str]


class HealthResponse(BaseModel):
    status: str
    dataset: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


# ---------- Helpers ----------
def _get_database_path() -> Path:
    try:
        return resolve_database_path()
    except GeoCityDatabaseNotFound as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _detail_model(detail: CityDetail) -> CityDetailModel:
    return CityDetailModel(
        id=detail.id,
        name=detail.name,
        country=detail.country,
        country_code=detail.country_code,
        coordinates=CoordinateModel(lat=detail.lat, lon=detail.lon),
        elevation=detail.elevation,
        population=detail.population,
        timezone=detail.timezone,
    )


# ---------- Routes ----------
@app.get("/health", response_model=HealthResponse)
async def health():
    try:
        dataset_path = resolve_database_path()
    except GeoCityDatabaseNotFound:
        return HealthResponse(status="degraded")
    return HealthResponse(status="ok", dataset=dataset_path.name, metadata=dataset_metadata(dataset_path))


@app.get("/api/v1/suggest", response_model=SuggestResponse)
async def suggest(
    q: str = Query(..., description="Part of a city name in any loaded language."),
    lang: str = Query(DEFAULT_LANG, max_length=8, description="Language for the returned names."),
    limit: int = Query(DEFAULT_SUGGEST_LIMIT, ge=1, le=100),
):
    dataset_path = _get_database_path()
    try:
        results = suggest_cities(q, lang=lang, limit=limit, db_path=dataset_path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SuggestResponse(results=[CityResultModel(**vars(item)) for item in results])


@app.get("/api/v1/nearest", response_model=NearestCityResponse)
async def nearest(
    lat: float = Query(..., ge=-90.0, le=90.0, description="Latitude in decimal degrees."),
    lon: float = Query(..., ge=-180.0, le=180.0, description="Longitude in decimal degrees."),
    lang: str = Query(DEFAULT_LANG, max_length=8),
):
    dataset_path = _get_database_path()
    LOGGER.info("nearest: lat=%.6f lon=%.6f lang=%s dataset=%s", lat, lon, lang, dataset_path.name)
    result = fetch_nearest_city(lat, lon, lang=lang, db_path=dataset_path)
    if result is None:
        raise HTTPException(status_code=404, detail="No cities loaded")
    return NearestCityResponse(
        city=_detail_model(result.city),
        request_coordinates=CoordinateModel(lat=lat, lon=lon),
        distance_km=round(result.distance_km, 3),
    )


@app.get("/api/v1/city/{city_id}", response_model=CityDetailModel)
async def city_detail(city_id: int, lang: str = Query(DEFAULT_LANG, max_length=8)):
    dataset_path = _get_database_path()
    detail = get_city_detail(city_id, lang=lang, db_path=dataset_path)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"City {city_id} not found")
    return _detail_model(detail)


@app.get("/api/v1/languages", response_model=LanguagesResponse)
async def languages():
    dataset_path = _get_database_path()
    return LanguagesResponse(languages=available_languages(dataset_path))


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Run the GeoCity FastAPI app.")
    parser.add_argument("--host", default=os.getenv("GEOCITY_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("GEOCITY_PORT", "8080")))
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("GEOCITY_RELOAD", "false").lower() in {"1", "true", "yes"},
        help="Enable autoreload (default: disabled unless GEOCITY_RELOAD=1).",
    )
    parser.add_argument(
        "--no-reload",
        dest="reload",
        action="store_false",
        help="Disable autoreload regardless of environment defaults.",
    )
    args = parser.parse_args()

    certfile = os.getenv("GEOCITY_SSL_CERT")
    keyfile = os.getenv("GEOCITY_SSL_KEY")

    ssl_kwargs = {}
    if certfile or keyfile:
        if not (certfile and keyfile):
            raise RuntimeError("Both GEOCITY_SSL_CERT and GEOCITY_SSL_KEY must be set for HTTPS.")
        ssl_kwargs = {
            "ssl_certfile": certfile,
            "ssl_keyfile": keyfile,
        }

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        **ssl_kwargs,
    )
