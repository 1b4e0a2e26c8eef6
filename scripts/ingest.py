"""Entry point for the GeoCity GeoNames ingestion pipeline.

Reads ``countryInfo.txt``, ``cities1000`` and ``alternateNames`` from the data
directory (plain ``.txt`` or the ``.zip`` published by GeoNames) and loads
countries, cities and their translations into the SQLite dataset served by
``main.py``. Use ``tools/download_geonames.py`` to fetch the extracts.
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sqlite3
import time
from datetime import datetime, timezone

from alternate_names import process_alternate_names
from geodata import (
    SQLiteTranslationSink,
    clear_dataset,
    connect,
    create_schema,
    default_database_path,
    insert_cities,
    insert_countries,
    write_metadata,
)
from geonames_parser import (
    GeoNamesIngestError,
    IdentifierIndex,
    ParserConfig,
    parse_cities,
    parse_countries,
    split_languages,
)

LOGGER = logging.getLogger("geocity.ingest")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = ParserConfig.from_env()
    parser = argparse.ArgumentParser(
        description="Load the GeoNames extracts into the GeoCity SQLite database.",
    )
    parser.add_argument(
        "--data-dir",
        type=pathlib.Path,
        default=defaults.data_dir,
        help="Directory holding the GeoNames extracts (default: $GEOCITY_DATA_DIR or data/).",
    )
    parser.add_argument(
        "--db",
        type=pathlib.Path,
        default=None,
        help="SQLite database to write (default: $GEOCITY_DB or data/geocity.db).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=defaults.batch_size,
        help="Translations per bulk insert; <= 0 means 10000.",
    )
    parser.add_argument(
        "--min-population",
        type=int,
        default=defaults.min_population,
        help="Skip cities with a smaller population.",
    )
    parser.add_argument(
        "--languages",
        default=",".join(sorted(defaults.allowed_languages)),
        help="Comma-separated language codes to keep (default: all).",
    )
    parser.add_argument(
        "--keep-existing",
        action="store_true",
        help="Do not clear existing rows before loading.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every batch flush.")
    return parser.parse_args(argv)


def run_ingestion(config: ParserConfig, db_path: pathlib.Path, *, keep_existing: bool = False) -> dict[str, int]:
    """Run the whole pipeline; fatal errors propagate to the caller.

    An escaping error carries the name of the stage it came from in its
    ``ingest_stage`` attribute.
    """
    started = time.monotonic()
    stage = "countries"
    try:
        LOGGER.info("Parsing countries...")
        countries = parse_countries(config)
        stage = "cities"
        LOGGER.info("Parsing cities...")
        cities = parse_cities(config)

        stage = "insert"
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = connect(db_path)
        try:
            create_schema(conn)
            if not keep_existing:
                clear_dataset(conn)

            LOGGER.info("Inserting %d countries and %d cities...", len(countries), len(cities))
            insert_countries(conn, countries)
            insert_cities(conn, cities)

            index = IdentifierIndex.from_records(countries, cities)
            city_sink = SQLiteTranslationSink(conn, "city")
            country_sink = SQLiteTranslationSink(conn, "country")

            stage = "alternate names"
            LOGGER.info("Parsing alternate names (streaming, batch size %d)...", config.effective_batch_size)
            stats = process_alternate_names(config, index, city_sink, country_sink)

            stage = "metadata"
            summary = {
                "countries": len(countries),
                "cities": len(cities),
                "city_translations": city_sink.written,
                "country_translations": country_sink.written,
                "alternate_name_rows": stats.rows_read,
            }
            write_metadata(
                conn,
                {
                    **summary,
                    "generated_at": datetime.now(timezone.utc).isoformat(),
                    "min_population": config.min_population,
                    "allowed_languages": ",".join(sorted(config.allowed_languages)) or "all",
                },
            )
        finally:
            conn.close()
    except (GeoNamesIngestError, sqlite3.Error, OSError) as exc:
        exc.ingest_stage = stage
        raise

    LOGGER.info(
        "Data import completed in %.1fs: %d countries, %d cities, %d city translations, %d country translations",
        time.monotonic() - started,
        summary["countries"],
        summary["cities"],
        summary["city_translations"],
        summary["country_translations"],
    )
    return summary


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ParserConfig(
        data_dir=args.data_dir,
        batch_size=args.batch_size,
        min_population=args.min_population,
        allowed_languages=split_languages(args.languages),
    )
    db_path = args.db or default_database_path()
    LOGGER.info("GeoCity ingestion: data=%s db=%s", config.data_dir, db_path)

    try:
        run_ingestion(config, db_path, keep_existing=args.keep_existing)
    except GeoNamesIngestError as exc:
        LOGGER.error("Ingestion failed during %s: %s", getattr(exc, "ingest_stage", "startup"), exc)
        if exc.__cause__ is not None:
            LOGGER.error("caused by: %r", exc.__cause__)
        return 1
    except (sqlite3.Error, OSError) as exc:
        LOGGER.error(
            "Ingestion failed during %s writing %s: %s", getattr(exc, "ingest_stage", "startup"), db_path, exc
        )
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
