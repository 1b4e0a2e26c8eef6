"""Parsers for the GeoNames country, city and alternate-name extracts.

The GeoNames dump ships three tab-separated files we care about:

* ``countryInfo.txt``  - one row per country, ``#``-prefixed header comments
* ``cities1000.txt``   - one row per populated place (often as ``cities1000.zip``)
* ``alternateNames.txt`` - multilingual names for every geoname id
  (often as ``alternateNames.zip`` / ``alternateNamesV2.zip``)

This module resolves where each extract lives, parses the two small ones into
records and derives the identifier index used to classify alternate names.
The streaming alternate-name pass itself lives in :mod:`alternate_names`.
"""

from __future__ import annotations

import io
import logging
import os
import re
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Sequence, TextIO, Union

LOGGER = logging.getLogger("geocity.parser")

COUNTRY_FILE_NAME = "countryInfo.txt"
CITY_FILE_NAME = "cities1000.txt"
CITY_ARCHIVE_NAME = "cities1000.zip"
ALTERNATE_NAMES_FILE_NAME = "alternateNames.txt"
ALTERNATE_NAMES_ARCHIVE_NAME = "alternateNames.zip"
ALTERNATE_NAMES_MEMBER_SUFFIXES: tuple[str, ...] = (
    "alternateNames.txt",
    "alternateNamesV2.txt",
)

DEFAULT_DATA_DIR = Path("data")
DEFAULT_BATCH_SIZE = 10_000
DEFAULT_MIN_POPULATION = 10_000

COUNTRY_MIN_FIELDS = 17
CITY_MIN_FIELDS = 19


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class GeoNamesIngestError(RuntimeError):
    """Base class for fatal ingestion failures."""


class SourceNotFoundError(GeoNamesIngestError):
    """Raised when neither the archive nor the plain extract exists."""


class SourceReadError(GeoNamesIngestError):
    """Raised when an extract cannot be opened or read."""


class SinkError(GeoNamesIngestError):
    """Raised when a batch sink fails; ``sink`` is ``"city"`` or ``"country"``."""

    def __init__(self, sink: str, message: str) -> None:
        super().__init__(message)
        self.sink = sink


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Country:
    code: str
    name_default: str
    # Only used to link alternate names to the country; never persisted.
    geoname_id: int = 0


@dataclass(frozen=True)
class City:
    id: int
    country_code: str
    name_default: str
    population: int
    lat: float
    lon: float
    elevation: int | None = None
    timezone: str | None = None


@dataclass(frozen=True)
class CityTranslation:
    city_id: int
    lang: str
    name: str


@dataclass(frozen=True)
class CountryTranslation:
    country_code: str
    lang: str
    name: str


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------
_INTEGER_FIELD = re.compile(r"[+-]?[0-9]+")


def parse_int(value: str) -> int | None:
    """Decimal integer field, or ``None``. Rejects blanks, underscores and non-ASCII digits."""
    if not _INTEGER_FIELD.fullmatch(value):
        return None
    return int(value)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def _env_int(key: str, default: int) -> int:
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s=%r; using %d", key, value, default)
        return default


def split_languages(raw: Optional[str]) -> frozenset[str]:
    """Turn ``"en, ru,,de"`` into ``{"en", "ru", "de"}``."""
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class ParserConfig:
    """Settings shared by every stage of one ingestion run."""

    data_dir: Path = DEFAULT_DATA_DIR
    batch_size: int = DEFAULT_BATCH_SIZE
    min_population: int = DEFAULT_MIN_POPULATION
    # Empty means every language is accepted.
    allowed_languages: frozenset[str] = field(default_factory=frozenset)

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size if self.batch_size > 0 else DEFAULT_BATCH_SIZE

    @classmethod
    def from_env(cls) -> "ParserConfig":
        data_dir = os.getenv("GEOCITY_DATA_DIR", "").strip()
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
            batch_size=_env_int("GEOCITY_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            min_population=_env_int("GEOCITY_MIN_POPULATION", DEFAULT_MIN_POPULATION),
            allowed_languages=split_languages(os.getenv("GEOCITY_ALLOWED_LANGUAGES")),
        )


# ---------------------------------------------------------------------------
# Sources: a plain file or one member of a zip archive
# ---------------------------------------------------------------------------
def _iter_lines(handle: TextIO, source_name: str) -> Iterator[str]:
    # Rows end at "\n" only; a lone "\r" inside a field is data.
    try:
        for line in handle:
            if line.endswith("\n"):
                line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
            yield line
    except (OSError, UnicodeDecodeError, zipfile.BadZipFile) as exc:
        raise SourceReadError(f"failed to read {source_name}: {exc}") from exc


@dataclass(frozen=True)
class PlainFileSource:
    path: Path

    @property
    def name(self) -> str:
        return str(self.path)

    @contextmanager
    def open_lines(self) -> Iterator[Iterator[str]]:
        try:
            handle = self.path.open("r", encoding="utf-8", newline="\n")
        except OSError as exc:
            raise SourceReadError(f"failed to open {self.name}: {exc}") from exc
        with handle:
            yield _iter_lines(handle, self.name)


@dataclass(frozen=True)
class ZipMemberSource:
    archive: Path
    member: str

    @property
    def name(self) -> str:
        return f"{self.archive}!{self.member}"

    @contextmanager
    def open_lines(self) -> Iterator[Iterator[str]]:
        try:
            archive = zipfile.ZipFile(self.archive)
        except (OSError, zipfile.BadZipFile) as exc:
            raise SourceReadError(f"failed to open {self.archive}: {exc}") from exc
        with archive:
            try:
                raw = archive.open(self.member)
            except (OSError, KeyError, zipfile.BadZipFile) as exc:
                raise SourceReadError(f"failed to open {self.name}: {exc}") from exc
            with io.TextIOWrapper(raw, encoding="utf-8", newline="\n") as handle:
                yield _iter_lines(handle, self.name)


StreamSource = Union[PlainFileSource, ZipMemberSource]


def select_archive_member(names: Iterable[str], preferred_suffixes: Sequence[str] = ()) -> str | None:
    """Pick the member to read: preferred suffixes in order, then any ``.txt``."""
    candidates = [name for name in names if not name.endswith("/")]
    for suffix in (*preferred_suffixes, ".txt"):
        for name in candidates:
            if name.endswith(suffix):
                return name
    return None


def resolve_source(
    data_dir: Path,
    *,
    plain_name: str,
    archive_name: str | None = None,
    preferred_suffixes: Sequence[str] = (),
) -> StreamSource:
    """Locate an extract, preferring the zip archive over the plain file."""
    if archive_name:
        archive_path = data_dir / archive_name
        if archive_path.exists():
            try:
                with zipfile.ZipFile(archive_path) as archive:
                    member = select_archive_member(archive.namelist(), preferred_suffixes)
            except (OSError, zipfile.BadZipFile) as exc:
                raise SourceReadError(f"failed to open {archive_path}: {exc}") from exc
            if member is None:
                raise SourceNotFoundError(f"no .txt file found in {archive_path}")
            LOGGER.info("Using %s from %s", member, archive_path)
            return ZipMemberSource(archive_path, member)

    plain_path = data_dir / plain_name
    if not plain_path.exists():
        checked = f"{data_dir / archive_name} and {plain_path}" if archive_name else str(plain_path)
        raise SourceNotFoundError(f"{plain_name} not found (checked {checked})")
    LOGGER.info("Using %s", plain_path)
    return PlainFileSource(plain_path)


# ---------------------------------------------------------------------------
# Countries
# ---------------------------------------------------------------------------
def parse_countries_from_lines(lines: Iterable[str]) -> list[Country]:
    countries: list[Country] = []
    for line in lines:
        if line.startswith("#"):
            continue
        parts = line.split("\t")
        if len(parts) < COUNTRY_MIN_FIELDS:
            continue

        code = parts[0]
        name = parts[4]
        geoname_id = parse_int(parts[16]) or 0

        if code and name:
            countries.append(Country(code=code, name_default=name, geoname_id=geoname_id))
    return countries


def parse_countries(config: ParserConfig) -> list[Country]:
    """Parse ``countryInfo.txt`` from the configured data directory."""
    source = resolve_source(config.data_dir, plain_name=COUNTRY_FILE_NAME)
    with source.open_lines() as lines:
        countries = parse_countries_from_lines(lines)
    LOGGER.info("Parsed %d countries from %s", len(countries), source.name)
    return countries


# ---------------------------------------------------------------------------
# Cities
# ---------------------------------------------------------------------------
def _parse_city(parts: list[str], min_population: int) -> City | None:
    city_id = parse_int(parts[0])
    population = parse_int(parts[14])
    if city_id is None or population is None:
        return None
    if population < min_population:
        return None

    try:
        lat = float(parts[4])
        lon = float(parts[5])
    except ValueError:
        return None

    elevation = parse_int(parts[15])

    return City(
        id=city_id,
        country_code=parts[8],
        name_default=parts[1],
        population=population,
        lat=lat,
        lon=lon,
        elevation=elevation,
        timezone=parts[17] or None,
    )


def parse_cities_from_lines(lines: Iterable[str], min_population: int) -> list[City]:
    cities: list[City] = []
    for line in lines:
        parts = line.split("\t")
        if len(parts) < CITY_MIN_FIELDS:
            continue
        city = _parse_city(parts, min_population)
        if city is not None:
            cities.append(city)
    return cities


def parse_cities(config: ParserConfig) -> list[City]:
    """Parse the city extract, dropping places below ``config.min_population``."""
    source = resolve_source(
        config.data_dir,
        plain_name=CITY_FILE_NAME,
        archive_name=CITY_ARCHIVE_NAME,
    )
    with source.open_lines() as lines:
        cities = parse_cities_from_lines(lines, config.min_population)
    LOGGER.info(
        "Parsed %d cities with population >= %d from %s",
        len(cities), config.min_population, source.name,
    )
    return cities


# ---------------------------------------------------------------------------
# Identifier index
# ---------------------------------------------------------------------------
def build_city_id_set(cities: Iterable[City]) -> frozenset[int]:
    return frozenset(city.id for city in cities)


def build_country_code_set(countries: Iterable[Country]) -> frozenset[str]:
    return frozenset(country.code for country in countries)


def build_country_geoname_map(countries: Iterable[Country]) -> Mapping[int, str]:
    """Map each country's geoname id to its code, skipping unset (0) ids."""
    mapping = {country.geoname_id: country.code for country in countries if country.geoname_id != 0}
    return MappingProxyType(mapping)


@dataclass(frozen=True)
class IdentifierIndex:
    """Lookups used to classify alternate-name rows. Never mutated once built."""

    city_ids: frozenset[int] = frozenset()
    country_codes: frozenset[str] = frozenset()
    country_codes_by_geoname_id: Mapping[int, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_records(cls, countries: Sequence[Country], cities: Sequence[City]) -> "IdentifierIndex":
        return cls(
            city_ids=build_city_id_set(cities),
            country_codes=build_country_code_set(countries),
            country_codes_by_geoname_id=build_country_geoname_map(countries),
        )

    def country_code_for(self, geoname_id: int) -> str | None:
        """Return the country code for ``geoname_id`` if it names a known country."""
        code = self.country_codes_by_geoname_id.get(geoname_id)
        if code is not None and code in self.country_codes:
            return code
        return None
