"""
Tests for release classification and scoring
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from gamekeeper.clients import normalize_search_query
from gamekeeper.releases import (
    category_name, classify_release, classify_releases, detect_quality, quality_rank, seeder_health,
)


def _game(title='Foo', platform=None, year=None):
    return SimpleNamespace(title=title, platform=platform, year=year)


class TestQuality:

    @pytest.mark.parametrize('title, expected', [
        ('Foo.v1.2-CODEX', 'Scene'),
        ('Foo-RUNE', 'Scene'),
        ('Foo [FitGirl Repack]', 'Repack'),
        ('Foo-DODI', 'Repack'),
        ('Foo.v1.0.GOG', 'GOG'),
        ('Foo DRM-Free', 'DRM-Free'),
        ('Foo Steam Rip', 'Steam'),
        ('Foo', None),
        ('', None),
        (None, None),
    ])
    def test_detect_quality(self, title, expected):
        assert detect_quality(title) == expected

    def test_ranking_order(self):
        assert quality_rank('Scene') < quality_rank('Repack') < quality_rank('DRM-Free') < quality_rank('GOG')
        assert quality_rank(None) == -1
        assert quality_rank('Steam') == -1


class TestCategoryAndSeeders:

    def test_first_recognized_category_wins(self):
        assert category_name([4050]) == 'PC/Games'
        assert category_name([9999, 1130, 4050]) == 'Console/Switch'

    def test_unknown_category_is_surfaced_raw(self):
        assert category_name([9999]) == '9999'

    def test_no_category(self):
        assert category_name([]) is None
        assert category_name(None) is None

    @pytest.mark.parametrize('seeders, expected', [
        (25, 'healthy'), (20, 'healthy'), (19, 'marginal'), (5, 'marginal'), (4, 'risky'), (0, 'risky'),
        (None, None), ('lots', None),
    ])
    def test_seeder_health(self, seeders, expected):
        assert seeder_health(seeders) == expected


class TestClassifyRelease:

    def test_fields_are_filled(self):
        classified = classify_release({'title': 'Foo v1.2-CODEX', 'seeders': 30, 'categories': [4050]})
        assert classified['quality'] == 'Scene'
        assert classified['category_name'] == 'PC/Games'
        assert classified['seeder_health'] == 'healthy'
        assert classified['score'] is None

    def test_input_is_not_mutated(self):
        raw = {'title': 'Foo-CODEX'}
        classify_release(raw)
        assert 'quality' not in raw

    def test_malformed_input_degrades(self):
        classified = classify_release({'title': None, 'seeders': 'abc', 'categories': None})
        assert classified['quality'] is None
        assert classified['category_name'] is None
        assert classified['seeder_health'] is None

        assert classify_release({'title': 123})['quality'] is None
        assert classify_release({'title': 'Foo', 'categories': 4050})['category_name'] == 'PC/Games'
        assert classify_release({'title': 'Foo', 'categories': 'junk'})['category_name'] == 'junk'

    def test_scoring_orders_best_first(self):
        good = {'title': 'Foo v1.2-CODEX', 'seeders': 30, 'size': 10 * 1024 ** 3}
        bad = {'title': 'Bar Something', 'seeders': 1, 'size': 10 * 1024 ** 3}
        ranked = classify_releases([bad, good], _game())
        assert ranked[0]['title'] == 'Foo v1.2-CODEX'
        assert ranked[0]['match_confidence'] == 'high'
        assert ranked[1]['match_confidence'] == 'low'

    def test_wrong_platform_is_penalized(self):
        pc = classify_release({'title': 'Foo PC', 'seeders': 30, 'size': 10 * 1024 ** 3}, _game(platform='PC'))
        ps5 = classify_release({'title': 'Foo PS5', 'seeders': 30, 'size': 10 * 1024 ** 3}, _game(platform='PC'))
        assert ps5['score'] < pc['score']
        assert ps5['match_confidence'] == 'low'

    def test_old_releases_lose_points(self):
        base = {'title': 'Foo-CODEX', 'seeders': 30, 'size': 10 * 1024 ** 3}
        fresh = classify_release(dict(base, published_at=datetime.utcnow()), _game())
        stale = classify_release(dict(base, published_at=datetime.utcnow() - timedelta(days=1000)), _game())
        assert fresh['score'] - stale['score'] == 20


class TestSearchQuery:

    def test_normalize_search_query(self):
        assert normalize_search_query("Assassin's Creed IV") == 'Assassins Creed 4'
        assert normalize_search_query('Final Fantasy VII Remake') == 'Final Fantasy 7 Remake'
        assert normalize_search_query('Vampire Survivors') == 'Vampire Survivors'
