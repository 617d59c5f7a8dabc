import pytest

from eventsync.categories import categorise_text, map_marriner, map_ticketmaster, map_whatson
from eventsync.errors import ValidationError
from eventsync.normalise import (
    clean_text,
    listing_key,
    normalise_price,
    normalise_price_range,
    normalise_title,
    normalise_venue,
    slugify,
    validate_event,
)


def test_normalise_title_drops_stop_words_and_punctuation():
    assert normalise_title("The Jazz Night - LIVE!") == "jazz night"
    assert normalise_title("Jazz Night") == "jazz night"
    assert normalise_title("The Show") == "the show"


def test_normalise_venue_strips_trailing_geography():
    assert normalise_venue("Forum Melbourne") == "forum"
    assert normalise_venue("Hamer Hall, Melbourne VIC") == "hamer hall"


def test_normalise_venue_keeps_name_that_is_only_geography():
    assert normalise_venue("Melbourne") == "melbourne"


def test_listing_key_ignores_case_and_punctuation():
    assert listing_key("Jazz Night!", "The Forum") == listing_key("jazz night", "the forum")
    assert listing_key("Jazz Night", "") == "jazz-night::unknown"


def test_slugify():
    assert slugify("Hamilton: The Musical!") == "hamilton-the-musical"


@pytest.mark.parametrize("raw,expected", [
    ("49.999", 50.0),
    (25, 25.0),
    (-3, None),
    ("n/a", None),
    (None, None),
])
def test_normalise_price(raw, expected):
    assert normalise_price(raw) == expected


def test_normalise_price_range_swaps_inverted_bounds():
    assert normalise_price_range(80, 40) == (40.0, 80.0)
    assert normalise_price_range(None, 40) == (None, 40.0)


def test_clean_text_strips_tags_and_truncates():
    assert clean_text("<p>Hello   <b>world</b></p>") == "Hello world"
    assert len(clean_text("x" * 1000, max_length=10)) == 10


def test_validate_event_requires_title_and_start(make_event):
    assert validate_event(make_event()).title == "Jazz Night"
    with pytest.raises(ValidationError):
        validate_event(make_event(title="  "))
    with pytest.raises(ValidationError):
        validate_event(make_event(start=None))


def test_map_ticketmaster():
    assert map_ticketmaster("Music", "Jazz") == ("music", "Jazz & Blues")
    assert map_ticketmaster("Arts & Theatre", "Theatre", title="Wicked the Musical") == ("theatre", "Musicals")
    assert map_ticketmaster(None, None) == ("other", "Community Events")


def test_map_whatson_and_marriner():
    assert map_whatson("music", "Late Night Jazz") == ("music", "Jazz & Blues")
    assert map_whatson("comedy", "Stand up") == ("theatre", "Comedy Shows")
    assert map_marriner("Moulin Rouge! The Musical", "Regent Theatre") == ("theatre", "Musicals")
    assert map_marriner("Something Else", "Princess Theatre") == ("theatre", "Drama")


def test_categorise_text_matches_whole_words():
    assert categorise_text("Candlelight: Tribute to Queen") == "music"
    assert categorise_text("Immersive Van Gogh") == "arts"
    # "party" contains "art" but is not an arts keyword
    assert categorise_text("Rooftop party") == "other"
