import pytest

from library.titles import (
    confidence_percent,
    fuzzy_threshold,
    normalize_title,
    normalized_similarity,
    super_normalize_title,
    title_similarity,
)


@pytest.mark.parametrize(
    "title",
    [
        "Grand Theft Auto V",
        "GTA 5",
        "Grand Theft Auto V (PC)",
        "grand theft auto v",
    ],
)
def test_gta_variants_share_a_key(title):
    assert normalize_title(title) == "grand theft auto 5"


def test_edition_suffix_is_removed():
    plain = "The Witcher 3: Wild Hunt"
    goty = "The Witcher 3: Wild Hunt - Game of the Year Edition"
    assert normalize_title(goty) == normalize_title(plain) == "witcher 3 wild hunt"
    assert title_similarity(plain, goty) == 1.0


def test_leading_article_exposed_by_edition_removal():
    assert normalize_title("Deluxe The Game") == "game"


@pytest.mark.parametrize(
    "title",
    [
        "The Witcher 3: Wild Hunt - GOTY",
        "FINAL FANTASY VII REMAKE",
        "Tom Clancy's Rainbow Six Siege",
        "Deluxe The Game",
        "COD MW II",
        "Far Cry 6",
        "Doom (2016)",
        "The The The The The The The Game",
        "Deluxe The Deluxe The Deluxe The Deluxe The Deluxe The Deluxe The Game",
    ],
)
def test_normalize_is_idempotent(title):
    once = normalize_title(title)
    assert normalize_title(once) == once


def test_abbreviations_expand():
    assert normalize_title("TLOU Part II") == "last of us part 2"
    assert normalize_title("The Last of Us Part II") == "last of us part 2"
    assert normalize_title("FF VII") == "final fantasy 7"


def test_unicode_roman_numerals_and_invisible_characters():
    assert normalize_title("Final Fantasy " + chr(0x2166)) == "final fantasy 7"
    assert normalize_title("Hal" + chr(0x200B) + "o") == "halo"
    assert normalize_title("Dark" + chr(0x00A0) + "Souls") == "dark souls"
    assert normalize_title("Rainbow Six" + chr(0x00AE) + " Siege") == "rainbow six siege"


def test_lone_i_is_not_a_numeral():
    assert normalize_title("I Am Setsuna") == "i am setsuna"


def test_years_and_platforms_are_dropped():
    assert normalize_title("Doom (2016)") == "doom"
    assert normalize_title("Doom 2016") == "doom"
    assert normalize_title("Minecraft PS4 Edition") == "minecraft"


def test_empty_titles():
    assert normalize_title("") == ""
    assert normalize_title(None) == ""
    assert normalized_similarity("", "halo") == 0.0


def test_super_normalize_strips_digits():
    assert super_normalize_title("Doom 2") == "doom"
    # too short once the digits are gone
    assert super_normalize_title("Ape 2") == "ape 2"


def test_identical_titles_score_one():
    assert title_similarity("Halo", "Halo") == 1.0
    assert normalized_similarity("celeste", "celeste") == 1.0


def test_unrelated_short_titles_stay_below_threshold():
    score = normalized_similarity("halo", "zelda")
    assert score < fuzzy_threshold("halo", "zelda")


def test_sequel_numbers_match_through_super_normalization():
    score = title_similarity("The Elder Scrolls V: Skyrim", "Elder Scrolls Skyrim")
    assert score >= 0.85


def test_fuzzy_threshold_depends_on_shortest_title():
    assert fuzzy_threshold("abcd", "abcdefghijkl") == 0.85
    assert fuzzy_threshold("abcdefgh", "abcdefghijkl") == 0.70
    assert fuzzy_threshold("abcdefghij", "abcdefghijkl") == 0.60


def test_confidence_percent_is_clamped():
    assert confidence_percent(1.2) == 100
    assert confidence_percent(0.674) == 67
    assert confidence_percent(-0.1) == 0


def test_repeated_leading_articles_are_all_removed():
    assert normalize_title("The The The The The The The Game") == "game"
