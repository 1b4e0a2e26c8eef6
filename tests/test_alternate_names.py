"""Tests for the streaming alternate-name pass."""

import pytest

from alternate_names import (
    TranslationBatch,
    parse_alternate_name,
    process_alternate_names,
    process_alternate_names_from_lines,
)
from conftest import alt_row
from geonames_parser import (
    CityTranslation,
    CountryTranslation,
    IdentifierIndex,
    ParserConfig,
    SinkError,
    SourceNotFoundError,
)


class RecordingSink:
    def __init__(self):
        self.batches = []

    def __call__(self, batch):
        self.batches.append(batch)

    @property
    def records(self):
        return [record for batch in self.batches for record in batch]


def city_index(*city_ids):
    return IdentifierIndex(city_ids=frozenset(city_ids))


SCENARIO_ROWS = [
    alt_row(1, 100, "en", "London"),
    alt_row(2, 100, "ru", "Лондон"),
    alt_row(3, 100, "link", "url"),
    alt_row(4, 100, "en", "Londres", colloquial=1),
    alt_row(5, 100, "en", "Old London", historic=1),
    alt_row(7, 200, "en", "Paris", preferred=1),
    alt_row(8, 200, "en", "Parigi"),
]


# ── Row filtering ─────────────────────────────────────


def test_london_paris_scenario():
    sink = RecordingSink()

    process_alternate_names_from_lines(SCENARIO_ROWS, city_index(100, 200), city_sink=sink)

    assert sink.records == [
        CityTranslation(100, "en", "London"),
        CityTranslation(100, "ru", "Лондон"),
        CityTranslation(200, "en", "Paris"),
    ]


def test_london_paris_scenario_with_allow_list():
    sink = RecordingSink()

    process_alternate_names_from_lines(
        SCENARIO_ROWS + [alt_row(9, 200, "fr", "Paris")],
        city_index(100, 200),
        city_sink=sink,
        allowed_languages=frozenset({"en", "ru"}),
    )

    assert len(sink.records) == 3
    assert all(record.lang != "fr" for record in sink.records)


def test_short_rows_are_skipped_silently():
    sink = RecordingSink()
    lines = ["", "1", "1\t100", "1\t100\ten", alt_row(2, 100, "en", "Kept")]

    stats = process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert sink.records == [CityTranslation(100, "en", "Kept")]
    assert stats.rows_read == 5
    assert stats.rows_rejected == 4


def test_four_field_rows_are_accepted():
    assert parse_alternate_name("1\t100\ten\tName") == (100, "en", "Name", False)


@pytest.mark.parametrize(
    "line",
    [
        alt_row(1, "x100", "en", "Bad id"),
        alt_row(1, "1_00", "en", "Underscored id"),
        alt_row(1, " 100", "en", "Padded id"),
        alt_row(1, "\u0661\u0660\u0660", "en", "Arabic-Indic digits"),
        alt_row(1, 100, "", "No language"),
        alt_row(1, 100, "en", ""),
        alt_row(1, 100, "en", "Colloquial", preferred=1, colloquial=1),
        alt_row(1, 100, "en", "Historic", preferred=1, historic=1),
        alt_row(1, 100, "post", "10115"),
        alt_row(1, 100, "iata", "TXL"),
        alt_row(1, 100, "icao", "EDDT"),
        alt_row(1, 100, "faac", "XYZ"),
        alt_row(1, 100, "fr_1793", "Commune"),
        alt_row(1, 100, "abbr", "B"),
        alt_row(1, 100, "wkdt", "Q64"),
    ],
)
def test_rejected_rows(line):
    assert parse_alternate_name(line) is None


def test_locale_variants_collapse_to_base_language():
    sink = RecordingSink()
    lines = [alt_row(1, 100, "zh-CN", "北京"), alt_row(2, 100, "en_GB", "Peking")]

    process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert sink.records == [CityTranslation(100, "zh", "北京"), CityTranslation(100, "en", "Peking")]


def test_allow_list_applies_to_truncated_code():
    assert parse_alternate_name(alt_row(1, 100, "en-US", "X"), frozenset({"en"})) is not None
    assert parse_alternate_name(alt_row(1, 100, "de", "X"), frozenset({"en"})) is None
    assert parse_alternate_name(alt_row(1, 100, "de", "X"), frozenset()) is not None


def test_unknown_entities_are_ignored():
    sink = RecordingSink()
    process_alternate_names_from_lines([alt_row(1, 300, "en", "Elsewhere")], city_index(100), city_sink=sink)
    assert sink.batches == []


# ── Deduplication ─────────────────────────────────────


def test_later_preferred_overrides_earlier_non_preferred():
    sink = RecordingSink()
    lines = [alt_row(1, 100, "en", "First"), alt_row(2, 100, "en", "Second", preferred=1)]

    process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert sink.records == [CityTranslation(100, "en", "Second")]


def test_later_non_preferred_never_overrides():
    sink = RecordingSink()
    lines = [
        alt_row(1, 100, "en", "First", preferred=1),
        alt_row(2, 100, "en", "Second"),
        alt_row(3, 100, "de", "Erste"),
        alt_row(4, 100, "de", "Zweite"),
    ]

    process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert sink.records == [CityTranslation(100, "en", "First"), CityTranslation(100, "de", "Erste")]


def test_later_preferred_overrides_earlier_preferred():
    sink = RecordingSink()
    lines = [alt_row(1, 100, "en", "First", preferred=1), alt_row(2, 100, "en", "Second", preferred=1)]

    process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert sink.records == [CityTranslation(100, "en", "Second")]


def test_override_keeps_original_position():
    sink = RecordingSink()
    lines = [
        alt_row(1, 100, "en", "London"),
        alt_row(2, 100, "ru", "Лондон"),
        alt_row(3, 100, "en", "London, UK", preferred=1),
    ]

    process_alternate_names_from_lines(lines, city_index(100), city_sink=sink)

    assert [record.lang for record in sink.records] == ["en", "ru"]
    assert sink.records[0].name == "London, UK"


def test_translation_batch_drain_resets_window():
    batch = TranslationBatch()
    batch.add((1, "en"), "a", preferred=False)
    batch.add((1, "en"), "b", preferred=False)
    assert batch.drain() == ("a",)
    assert len(batch) == 0

    batch.add((1, "en"), "c", preferred=False)
    assert batch.drain() == ("c",)


# ── Batching ──────────────────────────────────────────


def test_batch_size_law():
    sink = RecordingSink()
    lines = [alt_row(i, 100 + i, "en", f"City {i}") for i in range(25)]

    stats = process_alternate_names_from_lines(
        lines, city_index(*range(100, 125)), city_sink=sink, batch_size=10
    )

    assert [len(batch) for batch in sink.batches] == [10, 10, 5]
    assert stats.city_batches == 3
    assert stats.city_translations == 25


def test_exact_multiple_has_no_trailing_empty_batch():
    sink = RecordingSink()
    lines = [alt_row(i, 100 + i, "en", f"City {i}") for i in range(20)]

    process_alternate_names_from_lines(lines, city_index(*range(100, 120)), city_sink=sink, batch_size=10)

    assert [len(batch) for batch in sink.batches] == [10, 10]


def test_non_positive_batch_size_uses_default():
    sink = RecordingSink()
    lines = [alt_row(i, 100 + i, "en", f"City {i}") for i in range(30)]

    process_alternate_names_from_lines(lines, city_index(*range(100, 130)), city_sink=sink, batch_size=0)

    assert [len(batch) for batch in sink.batches] == [30]


def test_dedup_window_resets_after_flush():
    sink = RecordingSink()
    lines = [
        alt_row(1, 100, "en", "One"),
        alt_row(2, 101, "en", "Two"),
        alt_row(3, 100, "en", "One again"),
    ]

    process_alternate_names_from_lines(lines, city_index(100, 101), city_sink=sink, batch_size=2)

    assert sink.batches == [
        (CityTranslation(100, "en", "One"), CityTranslation(101, "en", "Two")),
        (CityTranslation(100, "en", "One again"),),
    ]


def test_batches_are_immutable_sequences():
    sink = RecordingSink()
    process_alternate_names_from_lines([alt_row(1, 100, "en", "X")], city_index(100), city_sink=sink)
    assert isinstance(sink.batches[0], tuple)


# ── Countries ─────────────────────────────────────────


def test_country_translations_go_to_country_sink():
    index = IdentifierIndex(
        city_ids=frozenset({100}),
        country_codes=frozenset({"DE"}),
        country_codes_by_geoname_id={2921044: "DE"},
    )
    city_sink, country_sink = RecordingSink(), RecordingSink()
    lines = [
        alt_row(1, 2921044, "en", "Germany"),
        alt_row(2, 2921044, "de", "Deutschland", preferred=1),
        alt_row(3, 2921044, "en", "Federal Republic of Germany"),
        alt_row(4, 100, "de", "Berlin"),
    ]

    process_alternate_names_from_lines(lines, index, city_sink=city_sink, country_sink=country_sink)

    assert country_sink.records == [
        CountryTranslation("DE", "en", "Germany"),
        CountryTranslation("DE", "de", "Deutschland"),
    ]
    assert city_sink.records == [CityTranslation(100, "de", "Berlin")]


def test_country_rows_ignored_without_country_sink():
    index = IdentifierIndex(
        country_codes=frozenset({"DE"}),
        country_codes_by_geoname_id={2921044: "DE"},
    )
    city_sink = RecordingSink()

    process_alternate_names_from_lines([alt_row(1, 2921044, "en", "Germany")], index, city_sink=city_sink)

    assert city_sink.batches == []


def test_colliding_identifier_is_emitted_to_both_sinks():
    index = IdentifierIndex(
        city_ids=frozenset({42}),
        country_codes=frozenset({"ZZ"}),
        country_codes_by_geoname_id={42: "ZZ"},
    )
    city_sink, country_sink = RecordingSink(), RecordingSink()

    process_alternate_names_from_lines(
        [alt_row(1, 42, "en", "Both")], index, city_sink=city_sink, country_sink=country_sink
    )

    assert city_sink.records == [CityTranslation(42, "en", "Both")]
    assert country_sink.records == [CountryTranslation("ZZ", "en", "Both")]


def test_sinks_flush_independently():
    index = IdentifierIndex(
        city_ids=frozenset({1, 2, 3}),
        country_codes=frozenset({"DE"}),
        country_codes_by_geoname_id={9: "DE"},
    )
    city_sink, country_sink = RecordingSink(), RecordingSink()
    lines = [alt_row(i, i, "en", f"City {i}") for i in (1, 2, 3)] + [alt_row(4, 9, "en", "Germany")]

    process_alternate_names_from_lines(
        lines, index, city_sink=city_sink, country_sink=country_sink, batch_size=2
    )

    assert [len(batch) for batch in city_sink.batches] == [2, 1]
    assert [len(batch) for batch in country_sink.batches] == [1]


# ── Failures ──────────────────────────────────────────


def test_city_sink_failure_aborts_the_pass():
    calls = []

    def failing_sink(batch):
        calls.append(batch)
        raise RuntimeError("disk full")

    consumed = []

    def lines():
        for i in range(10):
            consumed.append(i)
            yield alt_row(i, 100 + i, "en", f"City {i}")

    with pytest.raises(SinkError) as excinfo:
        process_alternate_names_from_lines(lines(), city_index(*range(100, 110)), city_sink=failing_sink, batch_size=2)

    assert excinfo.value.sink == "city"
    assert "city" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert len(calls) == 1
    assert consumed == [0, 1]


def test_country_sink_failure_is_labelled():
    index = IdentifierIndex(country_codes=frozenset({"DE"}), country_codes_by_geoname_id={9: "DE"})

    def failing_sink(batch):
        raise ValueError("constraint failed")

    with pytest.raises(SinkError) as excinfo:
        process_alternate_names_from_lines(
            [alt_row(1, 9, "en", "Germany")], index, city_sink=None, country_sink=failing_sink
        )

    assert excinfo.value.sink == "country"
    assert "constraint failed" in str(excinfo.value)


# ── Sources ───────────────────────────────────────────


def test_process_from_plain_file(data_dir):
    index = IdentifierIndex(city_ids=frozenset({2950159, 2643743}))
    sink = RecordingSink()

    stats = process_alternate_names(ParserConfig(data_dir=data_dir), index, sink)

    assert sink.records == [
        CityTranslation(2950159, "en", "Berlin"),
        CityTranslation(2950159, "ru", "Берлин"),
        CityTranslation(2643743, "ru", "Лондон"),
    ]
    assert stats.rows_read == 9


def test_process_from_zip_picks_alternate_names_member(tmp_path, write_zip):
    write_zip(
        tmp_path / "alternateNames.zip",
        {
            "iso-languagecodes.txt": "ISO 639-3\tISO 639-2\n",
            "alternateNamesV2.txt": alt_row(1, 100, "en", "Zipped") + "\n",
        },
    )
    sink = RecordingSink()

    process_alternate_names(ParserConfig(data_dir=tmp_path), city_index(100), sink)

    assert sink.records == [CityTranslation(100, "en", "Zipped")]


def test_carriage_return_inside_a_name_stays_one_row(tmp_path):
    (tmp_path / "alternateNames.txt").write_bytes(b"1\t100\ten\tLon\rdon\t1\t0\t0\t0\n")
    sink = RecordingSink()

    stats = process_alternate_names(ParserConfig(data_dir=tmp_path), city_index(100), sink)

    assert stats.rows_read == 1
    assert sink.records == [CityTranslation(100, "en", "Lon\rdon")]


def test_missing_alternate_names_is_fatal(tmp_path):
    with pytest.raises(SourceNotFoundError):
        process_alternate_names(ParserConfig(data_dir=tmp_path), city_index(100), RecordingSink())
