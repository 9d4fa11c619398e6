import json

import pytest

from platforms.dto import (
    PlatformEntry,
    parse_epic_game,
    parse_platform_rows,
    parse_psn_title,
    parse_steam_game,
    parse_xbox_title,
    steam_capsule_url,
)
from platforms.exports import export_fetchers


def test_parse_steam_game():
    entry = parse_steam_game(
        {
            "appid": 1145360,
            "name": "Hades",
            "playtime_forever": 754,
            "rtime_last_played": 1700000000,
        }
    )

    assert entry.platform == "steam"
    assert entry.platform_id == "1145360"
    assert entry.playtime_hours == 12.6
    assert entry.cover_url == steam_capsule_url(1145360)
    assert entry.last_played_at == "2023-11-14T22:13:20+00:00"
    assert entry.platform_label == "Steam"


def test_parse_steam_game_without_play_history():
    entry = parse_steam_game({"appid": 10, "name": "Counter-Strike"})

    assert entry.playtime_hours == 0.0
    assert entry.last_played_at is None


def test_parse_psn_title_sums_trophies():
    entry = parse_psn_title(
        {
            "npCommunicationId": "NPWR12345_00",
            "trophyTitleName": "Astro Bot",
            "trophyTitlePlatform": "PS5",
            "trophyTitleIconUrl": "https://example.invalid/astro.png",
            "earnedTrophies": {"bronze": 10, "silver": 3, "gold": 1, "platinum": 0},
            "definedTrophies": {"bronze": 30, "silver": 10, "gold": 4, "platinum": 1},
            "progress": 35,
            "lastUpdatedDateTime": "2024-09-10T18:00:00Z",
        }
    )

    assert entry.platform_id == "NPWR12345_00"
    assert entry.achievements_earned == 14
    assert entry.achievements_total == 45
    assert entry.completion_percentage == 35.0
    assert entry.platform_label == "PS5"
    assert entry.last_played_at == "2024-09-10T18:00:00+00:00"


def test_parse_xbox_title():
    entry = parse_xbox_title(
        {
            "titleId": "1234",
            "name": "Halo Infinite",
            "devices": ["XboxOne", "XboxSeriesXS"],
            "displayImage": "https://example.invalid/halo.png",
            "achievement": {
                "currentAchievements": 12,
                "totalAchievements": 119,
                "progressPercentage": 10,
            },
            "titleHistory": {"lastTimePlayed": "2024-02-01T12:00:00.0000000Z"},
        }
    )

    assert entry.platform_id == "1234"
    assert (entry.achievements_earned, entry.achievements_total) == (12, 119)
    assert entry.completion_percentage == 10.0
    assert entry.platform_label == "Xbox (Xbox One)"


def test_parse_epic_game_falls_back_to_app_name():
    entry = parse_epic_game({"appName": "Fortnite", "title": "Fortnite"})

    assert entry.platform_id == "Fortnite"
    assert entry.platform_label == "PC"


def test_parse_platform_rows_skips_invalid_rows():
    rows = [
        {"appid": 1, "name": "Portal"},
        {"appid": 2},
        "not a row",
    ]

    entries = parse_platform_rows("steam", rows)

    assert [entry.title for entry in entries] == ["Portal"]


def test_parse_platform_rows_rejects_unknown_platform():
    with pytest.raises(ValueError):
        parse_platform_rows("gog", [])


def test_with_achievements_derives_completion():
    entry = PlatformEntry("steam", "1", "Hades")

    assert entry.with_achievements(1, 3).completion_percentage == 33.0
    assert entry.with_achievements(3, 0).completion_percentage == 0.0


def test_export_fetchers_read_user_files(tmp_path):
    user_dir = tmp_path / "user-1"
    user_dir.mkdir()
    (user_dir / "steam.json").write_text(
        json.dumps({"games": [{"appid": 1, "name": "Portal"}]}), encoding="utf-8"
    )
    (user_dir / "epic.json").write_text(
        json.dumps([{"catalogItemId": "abc", "title": "Hades"}]), encoding="utf-8"
    )

    fetchers = export_fetchers(tmp_path, "user-1")

    assert sorted(fetchers) == ["epic", "steam"]
    assert [entry.title for entry in fetchers["steam"]()] == ["Portal"]
    assert [entry.platform_id for entry in fetchers["epic"]()] == ["abc"]
    assert export_fetchers(tmp_path, "someone-else") == {}
