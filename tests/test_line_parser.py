import logging

import pytest

from doof.models.bulk_add import DraftEntry
from doof.services.line_parser import find_duplicates, parse, parse_segment


def test_parse_name_description_and_tags():
    entries = parse("Joe's Pizza, NYC #italian;")
    assert entries == [
        DraftEntry(
            raw_text="Joe's Pizza, NYC #italian",
            name="Joe's Pizza",
            description_hint="NYC",
            location_hint="",
            tags=frozenset({"italian"}),
            line_number=1,
        )
    ]


@pytest.mark.parametrize("raw", ["", "   ", "\n\n", ";;\n ; "])
def test_parse_blank_input_yields_nothing(raw):
    assert parse(raw) == []


def test_parse_splits_lines_and_segments_in_order():
    raw = "Katz's Deli, pastrami, Manhattan\nJoe's Pizza; Shake Shack, burgers, NYC #Burgers #Fast\n"
    entries = parse(raw)
    assert [e.name for e in entries] == ["Katz's Deli", "Joe's Pizza", "Shake Shack"]
    assert [e.line_number for e in entries] == [1, 2, 2]
    assert entries[0].description_hint == "pastrami"
    assert entries[0].location_hint == "Manhattan"
    assert entries[2].tags == frozenset({"burgers", "fast"})


def test_parse_drops_tag_only_and_nameless_segments(caplog):
    caplog.set_level(logging.WARNING, logger="doof.services.line_parser")
    entries = parse("#pizza #late; , just a description ; Lucali, , Brooklyn")
    assert [e.name for e in entries] == ["Lucali"]
    assert entries[0].location_hint == "Brooklyn"
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 2


def test_parse_folds_extra_fields_into_location():
    entry = parse_segment("Lucali, pizza, Carroll Gardens, Brooklyn, NY")
    assert entry.name == "Lucali"
    assert entry.description_hint == "pizza"
    assert entry.location_hint == "Carroll Gardens, Brooklyn, NY"


def test_parse_collapses_whitespace_and_ignores_inline_hash():
    entry = parse_segment("  Bar   #1 Noodles ,  late   night  ")
    assert entry.name == "Bar Noodles"
    assert entry.tags == frozenset({"1"})
    assert entry.description_hint == "late night"

    inline = parse_segment("Pier#57, seafood")
    assert inline.name == "Pier#57"
    assert inline.tags == frozenset()


def test_parse_respects_custom_field_order():
    entries = parse("Brooklyn, Lucali, pizza", field_order=("location_hint", "name", "description_hint"))
    assert entries[0].name == "Lucali"
    assert entries[0].location_hint == "Brooklyn"
    assert entries[0].description_hint == "pizza"


@pytest.mark.parametrize(
    "raw",
    [
        "Joe's Pizza, NYC #italian",
        "Katz's Deli, pastrami on rye, Lower East Side, New York #deli #classic",
        "Shake Shack",
        "Lucali, , Brooklyn #Pizza",
        "Joe #a#b",
        "Joe's Pizza #late#Cheap, slices",
    ],
)
def test_render_then_parse_keeps_fields(raw):
    first = parse(raw)[0]
    again = parse(first.render())[0]
    assert (again.name, again.description_hint, again.location_hint) == (
        first.name,
        first.description_hint,
        first.location_hint,
    )
    assert again.tags == first.tags


def test_find_duplicates_is_case_insensitive():
    entries = parse("Joe's Pizza\nKatz's Deli\njoe's pizza, again\nJOE'S PIZZA")
    assert find_duplicates(entries) == {2: 0, 3: 0}


def test_hash_joined_tags_are_removed_whole():
    assert parse("#a#b") == []

    entry = parse_segment("Joe #a#b, slices")
    assert entry.name == "Joe"
    assert entry.description_hint == "slices"
    assert entry.tags == frozenset({"a", "b"})
