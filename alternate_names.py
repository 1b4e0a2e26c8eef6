"""Streaming pass over the GeoNames alternate-name extract.

``alternateNames.txt`` is by far the largest file in the dump, so it is never
held in memory. Each row is classified against an :class:`IdentifierIndex`,
deduplicated per ``(entity, language)`` inside the current batch window and
handed to a sink once the batch is full. At most one batch per sink is
resident at any time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Hashable, Iterable, NamedTuple, Optional, Protocol, Sequence, TypeVar

from geonames_parser import (
    ALTERNATE_NAMES_ARCHIVE_NAME,
    ALTERNATE_NAMES_FILE_NAME,
    ALTERNATE_NAMES_MEMBER_SUFFIXES,
    DEFAULT_BATCH_SIZE,
    CityTranslation,
    CountryTranslation,
    IdentifierIndex,
    ParserConfig,
    SinkError,
    parse_int,
    resolve_source,
)

LOGGER = logging.getLogger("geocity.alternate_names")

# isolanguage values that are identifiers or links rather than languages.
TECHNICAL_LANGUAGE_CODES = frozenset(
    {"link", "post", "iata", "icao", "faac", "fr_1793", "abbr", "wkdt"}
)

MIN_FIELDS = 4

RecordT = TypeVar("RecordT")


class CityTranslationSink(Protocol):
    def __call__(self, batch: Sequence[CityTranslation]) -> None: ...


class CountryTranslationSink(Protocol):
    def __call__(self, batch: Sequence[CountryTranslation]) -> None: ...


class AlternateName(NamedTuple):
    geoname_id: int
    lang: str
    name: str
    is_preferred: bool


def _flag(parts: list[str], position: int) -> bool:
    return len(parts) > position and parts[position] == "1"


def parse_alternate_name(
    line: str, allowed_languages: frozenset[str] = frozenset()
) -> AlternateName | None:
    """Return the usable part of one row, or ``None`` if the row is rejected."""
    parts = line.split("\t")
    if len(parts) < MIN_FIELDS:
        return None

    geoname_id = parse_int(parts[1])
    if geoname_id is None:
        return None

    lang = parts[2]
    name = parts[3]
    if not lang or not name:
        return None

    if _flag(parts, 6) or _flag(parts, 7):  # colloquial, historic
        return None

    if lang in TECHNICAL_LANGUAGE_CODES:
        return None

    # "zh-CN", "en_GB" and friends collapse to their base language.
    lang = lang[:2]
    if allowed_languages and lang not in allowed_languages:
        return None

    return AlternateName(geoname_id, lang, name, _flag(parts, 4))


class TranslationBatch(Generic[RecordT]):
    """Insertion-ordered batch with at most one record per dedup key.

    The first record for a key claims its slot. A later record for the same key
    replaces it only when it is a preferred name; anything else is dropped.
    """

    def __init__(self) -> None:
        self._records: list[RecordT] = []
        self._positions: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._records)

    def add(self, key: Hashable, record: RecordT, *, preferred: bool) -> None:
        position = self._positions.get(key)
        if position is None:
            self._positions[key] = len(self._records)
            self._records.append(record)
        elif preferred:
            self._records[position] = record

    def drain(self) -> tuple[RecordT, ...]:
        """Hand over the current records and start a fresh window."""
        records = tuple(self._records)
        self._records = []
        self._positions = {}
        return records


@dataclass
class TranslationStats:
    rows_read: int = 0
    rows_rejected: int = 0
    city_translations: int = 0
    country_translations: int = 0
    city_batches: int = 0
    country_batches: int = 0


def _flush(batch: TranslationBatch, sink, kind: str) -> int:
    records = batch.drain()
    LOGGER.debug("Flushing %d %s translations", len(records), kind)
    try:
        sink(records)
    except Exception as exc:
        raise SinkError(kind, f"{kind} translation sink failed: {exc}") from exc
    return len(records)


def process_alternate_names_from_lines(
    lines: Iterable[str],
    index: IdentifierIndex,
    *,
    city_sink: Optional[CityTranslationSink],
    country_sink: Optional[CountryTranslationSink] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    allowed_languages: frozenset[str] = frozenset(),
) -> TranslationStats:
    """Classify, deduplicate and batch alternate-name rows into the sinks.

    A row whose geoname id is both a known city and a known country's geoname
    id is emitted to both sinks.
    """
    if batch_size <= 0:
        batch_size = DEFAULT_BATCH_SIZE

    stats = TranslationStats()
    city_batch: TranslationBatch[CityTranslation] = TranslationBatch()
    country_batch: TranslationBatch[CountryTranslation] = TranslationBatch()

    for line in lines:
        stats.rows_read += 1
        row = parse_alternate_name(line, allowed_languages)
        if row is None:
            stats.rows_rejected += 1
            continue

        if city_sink is not None and row.geoname_id in index.city_ids:
            city_batch.add(
                (row.geoname_id, row.lang),
                CityTranslation(city_id=row.geoname_id, lang=row.lang, name=row.name),
                preferred=row.is_preferred,
            )
            if len(city_batch) >= batch_size:
                stats.city_translations += _flush(city_batch, city_sink, "city")
                stats.city_batches += 1

        if country_sink is not None:
            country_code = index.country_code_for(row.geoname_id)
            if country_code is not None:
                country_batch.add(
                    (country_code, row.lang),
                    CountryTranslation(country_code=country_code, lang=row.lang, name=row.name),
                    preferred=row.is_preferred,
                )
                if len(country_batch) >= batch_size:
                    stats.country_translations += _flush(country_batch, country_sink, "country")
                    stats.country_batches += 1

    if len(city_batch) and city_sink is not None:
        stats.city_translations += _flush(city_batch, city_sink, "city")
        stats.city_batches += 1
    if len(country_batch) and country_sink is not None:
        stats.country_translations += _flush(country_batch, country_sink, "country")
        stats.country_batches += 1

    return stats


def process_alternate_names(
    config: ParserConfig,
    index: IdentifierIndex,
    city_sink: Optional[CityTranslationSink],
    country_sink: Optional[CountryTranslationSink] = None,
) -> TranslationStats:
    """Stream the alternate-name extract from ``config.data_dir`` into the sinks."""
    source = resolve_source(
        config.data_dir,
        plain_name=ALTERNATE_NAMES_FILE_NAME,
        archive_name=ALTERNATE_NAMES_ARCHIVE_NAME,
        preferred_suffixes=ALTERNATE_NAMES_MEMBER_SUFFIXES,
    )
    with source.open_lines() as lines:
        stats = process_alternate_names_from_lines(
            lines,
            index,
            city_sink=city_sink,
            country_sink=country_sink,
            batch_size=config.effective_batch_size,
            allowed_languages=config.allowed_languages,
        )
    LOGGER.info(
        "Processed %d alternate-name rows from %s: %d city / %d country translations",
        stats.rows_read, source.name, stats.city_translations, stats.country_translations,
    )
    return stats
