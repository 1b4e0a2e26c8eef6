"""Storage and geospatial lookups for the GeoCity SQLite dataset."""

from __future__ import annotations

import math
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

from geonames_parser import City, CityTranslation, Country, CountryTranslation

BASE_DIR = Path(__file__).parent.resolve()

DEFAULT_DATABASE_NAME = "geocity.db"
DEFAULT_DATABASE_PATHS: tuple[Path, ...] = (
    BASE_DIR / "data" / DEFAULT_DATABASE_NAME,
    Path.cwd() / "data" / DEFAULT_DATABASE_NAME,
)

EARTH_RADIUS_KM = 6371.0
# Half-width, in degrees, of the box used to prefilter nearest-city candidates.
NEAREST_SEARCH_MARGIN_DEG = 2.0

DEFAULT_LANG = "en"
DEFAULT_SUGGEST_LIMIT = 10
MIN_QUERY_LENGTH = 2

CITY_INSERT_CHUNK = 100
TRANSLATION_INSERT_CHUNK = 500


class GeoCityDatabaseNotFound(RuntimeError):
    """Raised when the configured GeoCity database cannot be located on disk."""


def default_database_path() -> Path:
    """Where the ingestion writes the database unless told otherwise."""
    env_value = os.getenv("GEOCITY_DB")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return Path("data") / DEFAULT_DATABASE_NAME


def resolve_database_path() -> Path:
    """Return the path to an existing GeoCity database."""
    env_value = os.getenv("GEOCITY_DB")
    if env_value:
        candidate = Path(env_value).expanduser().resolve()
        if candidate.exists():
            return candidate
        raise GeoCityDatabaseNotFound(
            f"Database specified by GEOCITY_DB not found: {candidate}"
        )

    for candidate in DEFAULT_DATABASE_PATHS:
        if candidate.exists():
            return candidate

    raise GeoCityDatabaseNotFound(
        f"Unable to locate {DEFAULT_DATABASE_NAME}. "
        "Run scripts/ingest.py or set GEOCITY_DB to the absolute database path."
    )


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


# ---------------------------------------------------------------------------
# Geospatial search
# ---------------------------------------------------------------------------
def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    # Rounding can push ``a`` just outside [0, 1] for (near-)antipodal points.
    a = min(max(a, 0.0), 1.0)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


@dataclass(frozen=True)
class NearestCity:
    city: City
    distance_km: float


def _in_search_box(city: City, lat: float, lon: float) -> bool:
    return (
        lat - NEAREST_SEARCH_MARGIN_DEG <= city.lat <= lat + NEAREST_SEARCH_MARGIN_DEG
        and lon - NEAREST_SEARCH_MARGIN_DEG <= city.lon <= lon + NEAREST_SEARCH_MARGIN_DEG
    )


def _pick_nearest(lat: float, lon: float, candidates: Iterable[City]) -> NearestCity | None:
    nearest: City | None = None
    min_distance = math.inf
    for city in candidates:
        distance = haversine_km(lat, lon, city.lat, city.lon)
        if distance < min_distance:
            min_distance = distance
            nearest = city
    if nearest is None:
        return None
    return NearestCity(city=nearest, distance_km=min_distance)


def find_nearest_city(lat: float, lon: float, cities: Sequence[City]) -> NearestCity | None:
    """Return the city closest to (lat, lon).

    Only cities within ``NEAREST_SEARCH_MARGIN_DEG`` of the query in both axes
    are measured; if none qualify, every city is. Ties go to the first city
    encountered. ``None`` only when ``cities`` is empty.
    """
    candidates = [city for city in cities if _in_search_box(city, lat, lon)]
    if not candidates:
        candidates = list(cities)
    return _pick_nearest(lat, lon, candidates)


# ---------------------------------------------------------------------------
# Schema and bulk loading
# ---------------------------------------------------------------------------
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS countries (
  code TEXT PRIMARY KEY,
  name_default TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS cities (
  id INTEGER PRIMARY KEY,
  country_code TEXT NOT NULL,
  name_default TEXT NOT NULL,
  population INTEGER NOT NULL,
  lat REAL NOT NULL,
  lon REAL NOT NULL,
  elevation INTEGER,
  timezone TEXT
);
CREATE TABLE IF NOT EXISTS city_translations (
  city_id INTEGER NOT NULL,
  lang TEXT NOT NULL,
  name TEXT NOT NULL,
  PRIMARY KEY (city_id, lang)
);
CREATE TABLE IF NOT EXISTS country_translations (
  country_code TEXT NOT NULL,
  lang TEXT NOT NULL,
  name TEXT NOT NULL,
  PRIMARY KEY (country_code, lang)
);
CREATE TABLE IF NOT EXISTS metadata (
  key TEXT PRIMARY KEY,
  value TEXT
);
CREATE INDEX IF NOT EXISTS idx_cities_lat_lon ON cities(lat, lon);
CREATE INDEX IF NOT EXISTS idx_cities_population ON cities(population);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)


def clear_dataset(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DELETE FROM city_translations;
        DELETE FROM country_translations;
        DELETE FROM cities;
        DELETE FROM countries;
        """
    )


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def insert_countries(conn: sqlite3.Connection, countries: Sequence[Country]) -> None:
    conn.executemany(
        "INSERT OR REPLACE INTO countries (code, name_default) VALUES (?, ?)",
        [(country.code, country.name_default) for country in countries],
    )
    conn.commit()


def insert_cities(conn: sqlite3.Connection, cities: Sequence[City]) -> None:
    insert_sql = (
        "INSERT OR REPLACE INTO cities "
        "(id, country_code, name_default, population, lat, lon, elevation, timezone) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
    )
    for chunk in _chunks(cities, CITY_INSERT_CHUNK):
        conn.executemany(
            insert_sql,
            [
                (c.id, c.country_code, c.name_default, c.population, c.lat, c.lon, c.elevation, c.timezone)
                for c in chunk
            ],
        )
    conn.commit()


def insert_city_translations(conn: sqlite3.Connection, translations: Sequence[CityTranslation]) -> None:
    for chunk in _chunks(translations, TRANSLATION_INSERT_CHUNK):
        conn.executemany(
            "INSERT OR REPLACE INTO city_translations (city_id, lang, name) VALUES (?, ?, ?)",
            [(t.city_id, t.lang, t.name) for t in chunk],
        )
    conn.commit()


def insert_country_translations(conn: sqlite3.Connection, translations: Sequence[CountryTranslation]) -> None:
    for chunk in _chunks(translations, TRANSLATION_INSERT_CHUNK):
        conn.executemany(
            "INSERT OR REPLACE INTO country_translations (country_code, lang, name) VALUES (?, ?, ?)",
            [(t.country_code, t.lang, t.name) for t in chunk],
        )
    conn.commit()


class SQLiteTranslationSink:
    """Batch sink writing one kind of translation ("city" or "country")."""

    def __init__(self, conn: sqlite3.Connection, kind: str) -> None:
        if kind not in {"city", "country"}:
            raise ValueError("kind must be 'city' or 'country'")
        self.conn = conn
        self.kind = kind
        self.written = 0

    def __call__(self, batch: Sequence) -> None:
        if self.kind == "city":
            insert_city_translations(self.conn, batch)
        else:
            insert_country_translations(self.conn, batch)
        self.written += len(batch)


def write_metadata(conn: sqlite3.Connection, items: Mapping[str, object]) -> None:
    conn.executemany(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        [(key, str(value)) for key, value in items.items()],
    )
    conn.commit()


def dataset_metadata(db_path: Path | None = None) -> dict[str, str]:
    """Return metadata key/value pairs stored in the dataset."""
    dataset_path = db_path or resolve_database_path()
    with connect(dataset_path) as conn:
        try:
            rows = conn.execute("SELECT key, value FROM metadata").fetchall()
        except sqlite3.OperationalError:
            return {}
    return {row["key"]: row["value"] for row in rows}


# ---------------------------------------------------------------------------
# Localized read side
# ---------------------------------------------------------------------------
@dataclass
class CityDetail:
    id: int
    name: str
    country: str
    country_code: str
    lat: float
    lon: float
    population: int
    elevation: int | None
    timezone: str | None


@dataclass
class CitySuggestion:
    id: int
    name: str
    country: str
    country_code: str
    population: int


@dataclass
class NearestCityDetail:
    city: CityDetail
    distance_km: float


def _row_to_city(row: sqlite3.Row) -> City:
    return City(
        id=row["id"],
        country_code=row["country_code"],
        name_default=row["name_default"],
        population=row["population"],
        lat=row["lat"],
        lon=row["lon"],
        elevation=row["elevation"],
        timezone=row["timezone"],
    )


def _city_name(conn: sqlite3.Connection, city: City, lang: str) -> str:
    row = conn.execute(
        """
        SELECT COALESCE(
          (SELECT name FROM city_translations WHERE city_id = ? AND lang = ?),
          (SELECT name FROM city_translations WHERE city_id = ? AND lang = 'en')
        ) AS name
        """,
        (city.id, lang, city.id),
    ).fetchone()
    return row["name"] or city.name_default


def _country_name(conn: sqlite3.Connection, country_code: str, lang: str) -> str:
    row = conn.execute(
        """
        SELECT COALESCE(
          (SELECT name FROM country_translations WHERE country_code = ? AND lang = ?),
          (SELECT name FROM country_translations WHERE country_code = ? AND lang = 'en'),
          (SELECT name_default FROM countries WHERE code = ?)
        ) AS name
        """,
        (country_code, lang, country_code, country_code),
    ).fetchone()
    return row["name"] or country_code


def _city_detail(conn: sqlite3.Connection, city: City, lang: str) -> CityDetail:
    return CityDetail(
        id=city.id,
        name=_city_name(conn, city, lang),
        country=_country_name(conn, city.country_code, lang),
        country_code=city.country_code,
        lat=city.lat,
        lon=city.lon,
        population=city.population,
        elevation=city.elevation,
        timezone=city.timezone,
    )


def fetch_nearest_city(
    lat: float,
    lon: float,
    *,
    lang: str = DEFAULT_LANG,
    db_path: Path | None = None,
) -> NearestCityDetail | None:
    """Nearest persisted city with localized names, or ``None`` for an empty dataset."""
    dataset_path = db_path or resolve_database_path()
    margin = NEAREST_SEARCH_MARGIN_DEG
    with connect(dataset_path) as conn:
        rows = conn.execute(
            "SELECT * FROM cities WHERE lat BETWEEN ? AND ? AND lon BETWEEN ? AND ? ORDER BY rowid",
            (lat - margin, lat + margin, lon - margin, lon + margin),
        ).fetchall()
        if not rows:
            rows = conn.execute("SELECT * FROM cities ORDER BY rowid").fetchall()

        nearest = _pick_nearest(lat, lon, (_row_to_city(row) for row in rows))
        if nearest is None:
            return None
        return NearestCityDetail(
            city=_city_detail(conn, nearest.city, lang or DEFAULT_LANG),
            distance_km=nearest.distance_km,
        )


def get_city_detail(
    city_id: int,
    *,
    lang: str = DEFAULT_LANG,
    db_path: Path | None = None,
) -> CityDetail | None:
    dataset_path = db_path or resolve_database_path()
    with connect(dataset_path) as conn:
        row = conn.execute("SELECT * FROM cities WHERE id = ?", (city_id,)).fetchone()
        if row is None:
            return None
        return _city_detail(conn, _row_to_city(row), lang or DEFAULT_LANG)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def suggest_cities(
    query: str,
    *,
    lang: str = DEFAULT_LANG,
    limit: int = DEFAULT_SUGGEST_LIMIT,
    db_path: Path | None = None,
) -> list[CitySuggestion]:
    """Cities whose default or translated name contains ``query``, most populous first."""
    if len(query) < MIN_QUERY_LENGTH:
        raise ValueError(f"query must be at least {MIN_QUERY_LENGTH} characters")
    lang = lang or DEFAULT_LANG
    if limit <= 0:
        limit = DEFAULT_SUGGEST_LIMIT

    sql = """
      SELECT
        c.id,
        COALESCE(ct.name, ct_en.name, c.name_default) AS name,
        COALESCE(cnt_t.name, cnt_en.name, cnt.name_default, c.country_code) AS country,
        c.country_code,
        c.population
      FROM cities c
      LEFT JOIN countries cnt ON c.country_code = cnt.code
      LEFT JOIN city_translations ct ON c.id = ct.city_id AND ct.lang = ?
      LEFT JOIN city_translations ct_en ON c.id = ct_en.city_id AND ct_en.lang = 'en'
      LEFT JOIN country_translations cnt_t ON c.country_code = cnt_t.country_code AND cnt_t.lang = ?
      LEFT JOIN country_translations cnt_en ON c.country_code = cnt_en.country_code AND cnt_en.lang = 'en'
      WHERE LOWER(c.name_default) LIKE '%' || LOWER(?) || '%' ESCAPE '\\'
         OR EXISTS (
           SELECT 1 FROM city_translations search_ct
           WHERE search_ct.city_id = c.id
             AND LOWER(search_ct.name) LIKE '%' || LOWER(?) || '%' ESCAPE '\\'
         )
      ORDER BY c.population DESC, c.id
      LIMIT ?
    """
    pattern = _escape_like(query)
    dataset_path = db_path or resolve_database_path()
    with connect(dataset_path) as conn:
        rows = conn.execute(sql, (lang, lang, pattern, pattern, limit)).fetchall()
    return [
        CitySuggestion(
            id=row["id"],
            name=row["name"],
            country=row["country"],
            country_code=row["country_code"],
            population=row["population"],
        )
        for row in rows
    ]


def available_languages(db_path: Optional[Path] = None) -> list[str]:
    dataset_path = db_path or resolve_database_path()
    with connect(dataset_path) as conn:
        rows = conn.execute(
            """
            SELECT DISTINCT lang FROM (
              SELECT lang FROM city_translations
              UNION
              SELECT lang FROM country_translations
            ) ORDER BY lang
            """
        ).fetchall()
    return [row["lang"] for row in rows]
