"""
Category mapping.

Every source has its own taxonomy (Ticketmaster segments/genres, What's On
tags, free text titles). These helpers map them onto the shared set of
categories: music, theatre, arts, family, sports, other.
"""

import re
from typing import Optional

Category = tuple[str, Optional[str]]

# (keywords in the lower-cased title, subcategory); first hit wins
_THEATRE_TITLE_RULES = [
    (("musical",), "Musicals"),
    (("opera",), "Opera"),
    (("ballet", "dance"), "Ballet & Dance"),
    (("comedy",), "Comedy Shows"),
    (("cabaret",), "Cabaret"),
    (("shakespeare",), "Shakespeare"),
    (("experimental",), "Experimental"),
]

_MUSIC_TITLE_RULES = [
    (("classical", "orchestra", "symphony"), "Classical & Orchestra"),
    (("jazz", "blues"), "Jazz & Blues"),
    (("rock", "alternative", "indie"), "Rock & Alternative"),
    (("pop", "electronic", "edm"), "Pop & Electronic"),
    (("hip hop", "rap", "r&b", "rnb"), "Hip Hop & R&B"),
    (("country", "folk"), "Country & Folk"),
    (("metal", "punk"), "Metal & Punk"),
    (("world music", "ethnic"), "World Music"),
]

_TM_MUSIC_GENRES = {
    "Rock": "Rock & Alternative", "Alternative": "Rock & Alternative",
    "Pop": "Pop & Electronic", "Electronic": "Pop & Electronic",
    "Jazz": "Jazz & Blues", "Blues": "Jazz & Blues",
    "Classical": "Classical & Orchestra", "Orchestra": "Classical & Orchestra",
    "Symphony": "Classical & Orchestra",
    "Hip-Hop/Rap": "Hip Hop & R&B", "R&B": "Hip Hop & R&B", "Hip Hop": "Hip Hop & R&B",
    "Country": "Country & Folk", "Folk": "Country & Folk",
    "Metal": "Metal & Punk", "Punk": "Metal & Punk",
    "World": "World Music",
}

_TM_SPORT_GENRES = {
    "Football": "AFL", "AFL": "AFL", "Cricket": "Cricket", "Soccer": "Soccer",
    "Basketball": "Basketball", "Tennis": "Tennis", "Rugby": "Rugby",
    "Motor Sports": "Motorsports", "Racing": "Motorsports",
}

DEFAULT_CATEGORY: Category = ("other", "Community Events")


def _match_title(title: str, rules, default: Optional[str]) -> Optional[str]:
    lowered = title.lower()
    for keywords, subcategory in rules:
        if any(k in lowered for k in keywords):
            return subcategory
    return default


def map_ticketmaster(
    segment: Optional[str],
    genre: Optional[str],
    sub_genre: Optional[str] = None,
    title: str = "",
) -> Category:
    if segment == "Music":
        return "music", _TM_MUSIC_GENRES.get(genre or "", "Pop & Electronic")
    if segment == "Sports":
        return "sports", _TM_SPORT_GENRES.get(genre or "", "Other Sports")
    if segment == "Arts & Theatre":
        return "theatre", _match_title(title, _THEATRE_TITLE_RULES, "Drama")
    if segment == "Film":
        return "arts", "Film & Cinema"
    if segment == "Miscellaneous":
        if genre == "Family":
            return "family", "Family Entertainment"
        if "comedy festival" in title.lower():
            return "arts", "Comedy Festival"
    return DEFAULT_CATEGORY


def map_whatson(tag: str, title: str) -> Category:
    lowered = title.lower()
    if tag == "theatre":
        return "theatre", _match_title(title, _THEATRE_TITLE_RULES[:-1], "Drama")
    if tag == "music":
        return "music", _match_title(title, _MUSIC_TITLE_RULES, "Pop & Electronic")
    if tag in ("festival", "festivals"):
        return "arts", "Comedy Festival" if "comedy" in lowered else "Cultural Festivals"
    if tag in ("family", "family-and-kids"):
        rules = [
            (("kids", "children"), "Kids Shows"),
            (("circus", "magic"), "Circus & Magic"),
            (("education",), "Educational"),
        ]
        return "family", _match_title(title, rules, "Family Entertainment")
    if tag in ("arts", "art", "film"):
        rules = [
            (("film", "cinema", "movie"), "Film & Cinema"),
            (("exhibition", "gallery"), "Art Exhibitions"),
            (("book", "author", "poetry"), "Literary Events"),
            (("market", "fair"), "Markets & Fairs"),
        ]
        return "arts", _match_title(title, rules, "Cultural Festivals")
    if tag == "comedy":
        return "theatre", "Comedy Shows"
    if tag == "sport":
        return "sports", "Other Sports"
    return DEFAULT_CATEGORY


def map_marriner(title: str, venue: str) -> Category:
    lowered = title.lower()
    if "musical" in lowered:
        return "theatre", "Musicals"
    if "opera" in lowered:
        return "theatre", "Opera"
    if any(k in lowered for k in ("ballet", "nutcracker", "dance")):
        return "theatre", "Ballet & Dance"
    if "comedy" in lowered or "Comedy" in venue:
        return "theatre", "Comedy Shows"
    if "cabaret" in lowered:
        return "theatre", "Cabaret"
    if "shakespeare" in lowered:
        return "theatre", "Shakespeare"
    if any(k in lowered for k in ("concert", "symphony", "orchestra")):
        return "music", "Classical & Orchestra"
    if "jazz" in lowered or "blues" in lowered:
        return "music", "Jazz & Blues"
    if "rock" in lowered or "alternative" in lowered:
        return "music", "Rock & Alternative"
    if "pop" in lowered:
        return "music", "Pop & Electronic"
    # Marriner venues are theatres
    return "theatre", "Drama"


_KEYWORD_CATEGORIES = [
    ("music", ("candlelight", "concert", "music", "symphony", "orchestra", "jazz",
               "rock", "pop", "band", "classical", "tribute")),
    ("theatre", ("theatre", "musical", "play", "opera", "ballet", "performance",
                 "show", "dance")),
    ("arts", ("exhibition", "gallery", "art", "museum", "immersive", "experience")),
    ("family", ("family", "kids", "children", "interactive", "workshop")),
    ("sports", ("sport", "game", "match", "race", "tournament")),
]


def categorise_text(title: str, description: str = "") -> str:
    """Guess a category from free text by whole-word keyword hits."""
    text = f"{title} {description}".lower()
    for category, keywords in _KEYWORD_CATEGORIES:
        if re.search(r"\b(" + "|".join(keywords) + r")\b", text):
            return category
    return "other"
