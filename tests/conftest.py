"""Shared fixtures: tiny GeoNames extracts written under tmp_path."""

import zipfile

import pytest


def _tsv(fields):
    return "\t".join(str(value) for value in fields)


def country_row(code, name, geoname_id):
    fields = [""] * 19
    fields[0] = code
    fields[1] = code + "X"
    fields[4] = name
    fields[16] = geoname_id
    return _tsv(fields)


def city_row(geoname_id, name, lat, lon, country, population, elevation="", timezone="Europe/Berlin"):
    fields = [""] * 19
    fields[0] = geoname_id
    fields[1] = name
    fields[2] = name
    fields[4] = lat
    fields[5] = lon
    fields[6] = "P"
    fields[7] = "PPL"
    fields[8] = country
    fields[14] = population
    fields[15] = elevation
    fields[17] = timezone
    fields[18] = "2024-01-01"
    return _tsv(fields)


def alt_row(record_id, geoname_id, lang, name, preferred=0, short=0, colloquial=0, historic=0):
    return _tsv([record_id, geoname_id, lang, name, preferred, short, colloquial, historic])


COUNTRY_LINES = [
    "# GeoNames country info",
    "#ISO\tISO3\tISO-Numeric\tfips\tCountry",
    country_row("DE", "Germany", 2921044),
    country_row("GB", "United Kingdom", 2635167),
    country_row("FR", "France", 3017382),
]

CITY_LINES = [
    city_row(2950159, "Berlin", 52.52437, 13.41053, "DE", 3426354, elevation=74),
    city_row(2852458, "Potsdam", 52.39886, 13.06566, "DE", 159456, elevation=""),
    city_row(2643743, "London", 51.50853, -0.12574, "GB", 8961989, timezone="Europe/London"),
    city_row(2988507, "Paris", 48.85341, 2.3488, "FR", 2138551, timezone="Europe/Paris"),
    city_row(999, "Tiny Village", 52.0, 13.0, "DE", 500),
]

ALTERNATE_NAME_LINES = [
    alt_row(1, 2950159, "en", "Berlin"),
    alt_row(2, 2950159, "ru", "Берлин", preferred=1),
    alt_row(3, 2950159, "link", "https://en.wikipedia.org/wiki/Berlin"),
    alt_row(4, 2921044, "ru", "Германия"),
    alt_row(5, 2921044, "en", "Germany", preferred=1),
    alt_row(6, 2643743, "ru", "Лондон"),
    alt_row(7, 2643743, "en", "Londinium", historic=1),
    alt_row(8, 2988507, "fr", "Paris"),
    alt_row(9, 999, "en", "Tiny Village"),
]


@pytest.fixture
def data_dir(tmp_path):
    """A data directory holding plain-text versions of all three extracts."""
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "countryInfo.txt").write_text("\n".join(COUNTRY_LINES) + "\n", encoding="utf-8")
    (directory / "cities1000.txt").write_text("\n".join(CITY_LINES) + "\n", encoding="utf-8")
    (directory / "alternateNames.txt").write_text("\n".join(ALTERNATE_NAME_LINES) + "\n", encoding="utf-8")
    return directory


@pytest.fixture
def write_zip():
    """Write a zip archive with the given {member: text} contents."""

    def _write(path, members):
        with zipfile.ZipFile(path, "w") as archive:
            for name, text in members.items():
                archive.writestr(name, text)
        return path

    return _write
