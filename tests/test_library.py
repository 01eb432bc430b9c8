"""
Tests for title cleaning, folder matching and library scans
"""
import os

import pytest

from gamekeeper import db
from gamekeeper.errors import AmbiguousMatch, NotFound
from gamekeeper.library import (
    add_folder, auto_match, clean_title, delete_folder, delete_game, import_completed_download,
    match_folder, parse_folder_name, scan_library, set_primary_folder,
)
from gamekeeper.models import Game, GameFolder, GameUpdate, GrabbedRelease, LibraryFile

NAMES = [
    'Foo.Bar.v1.2.3-CODEX',
    'The Witcher 3 Wild Hunt (2015) [GOG]',
    'Cyberpunk.2077.Update.v2.1-GOG',
    'Foo_Game_x64_MULTi10',
    'Some Game [FitGirl Repack] (v1.0.4)',
    'Elden.Ring.Build.12345-RUNE',
    '',
]


def _primary_count(game_id):
    return GameFolder.query.filter_by(game_id=game_id, is_primary=True).count()


class TestCleanTitle:

    @pytest.mark.parametrize('name', NAMES)
    def test_is_idempotent(self, name):
        once = clean_title(name)
        assert clean_title(once) == once

    @pytest.mark.parametrize('name, expected', [
        ('Foo.Bar.v1.2.3-CODEX', 'Foo Bar'),
        ('The Witcher 3 Wild Hunt (2015) [GOG]', 'The Witcher 3 Wild Hunt'),
        ('Cyberpunk.2077.Update.v2.1-GOG', 'Cyberpunk 2077'),
        ('Foo_Game_x64_MULTi10', 'Foo Game'),
        ('Elden.Ring.Build.12345-RUNE', 'Elden Ring'),
    ])
    def test_strips_release_noise(self, name, expected):
        assert clean_title(name) == expected

    def test_parse_folder_name(self):
        assert parse_folder_name('Foo (2021)') == {'title': 'Foo', 'year': 2021, 'version': None}
        parsed = parse_folder_name('Foo.Bar.v1.2.3-CODEX')
        assert parsed['title'] == 'Foo Bar'
        assert parsed['version'] == '1.2.3'


class TestAutoMatch:

    def test_two_confident_candidates_are_ambiguous(self, app, fakes):
        """autoMatch("Foo", 2021) with two Foo (2021) candidates creates nothing"""
        fakes.metadata.candidates = [
            {'id': 1, 'title': 'Foo', 'year': 2021, 'developer': 'Studio A'},
            {'id': 2, 'title': 'Foo', 'year': 2021, 'developer': 'Studio B'},
        ]
        with pytest.raises(AmbiguousMatch) as excinfo:
            auto_match('Foo', 2021, folder_path='/games/Foo (2021)')
        assert len(excinfo.value.candidates) == 2
        assert Game.query.count() == 0
        assert GameFolder.query.count() == 0

    def test_year_mismatch_is_not_confident(self, app, fakes):
        fakes.metadata.candidates = [{'id': 1, 'title': 'Foo', 'year': 2019}]
        with pytest.raises(AmbiguousMatch):
            auto_match('Foo', 2021)
        assert Game.query.count() == 0

    def test_single_candidate_creates_game_with_primary_folder(self, app, fakes):
        fakes.metadata.candidates = [
            {'id': 7, 'title': 'Foo', 'year': 2021, 'platforms': ['PC (Microsoft Windows)']},
            {'id': 8, 'title': 'Foo 2', 'year': 2023},
        ]
        game = auto_match('Foo', 2021, folder_path='/games/Foo.v1.0-CODEX')
        assert game.igdb_id == 7
        assert game.status == 'downloaded'
        assert game.platform == 'PC (Microsoft Windows)'
        assert game.primary_folder.folder_path == '/games/Foo.v1.0-CODEX'
        assert game.installed_version == '1.0'
        assert game.installed_quality == 'Scene'

    def test_existing_igdb_game_is_reused(self, app, fakes, make_game):
        existing = make_game(igdb_id=7)
        fakes.metadata.candidates = [{'id': 7, 'title': 'Foo', 'year': 2021}]
        game = auto_match('Foo', 2021, folder_path='/games/Foo')
        assert game.id == existing.id
        assert Game.query.count() == 1


class TestFolders:

    def test_first_folder_is_primary_and_only_one_primary(self, app, make_game):
        game = make_game()
        first = add_folder(game.id, '/games/Foo.v1.0-CODEX')
        second = add_folder(game.id, '/games/Foo.v1.1-GOG')
        assert first.is_primary is True
        assert second.is_primary is False
        assert _primary_count(game.id) == 1

        set_primary_folder(game.id, second.id)
        assert _primary_count(game.id) == 1
        assert db.session.get(GameFolder, second.id).is_primary is True
        assert game.installed_version == '1.1'
        assert game.installed_quality == 'GOG'

    def test_delete_primary_does_not_promote(self, app, make_game):
        game = make_game()
        first = add_folder(game.id, '/games/Foo A')
        add_folder(game.id, '/games/Foo B')
        delete_folder(game.id, first.id)
        assert GameFolder.query.filter_by(game_id=game.id).count() == 1
        assert _primary_count(game.id) == 0

    def test_folder_added_after_primary_deleted_is_not_promoted(self, app, make_game):
        game = make_game()
        first = add_folder(game.id, '/games/Foo A v1.0')
        add_folder(game.id, '/games/Foo B v1.5')
        delete_folder(game.id, first.id)

        third = add_folder(game.id, '/games/Foo C v2.0')

        assert third.is_primary is False
        assert _primary_count(game.id) == 0
        assert game.installed_version == '1.0'

    def test_folder_of_another_game_is_not_found(self, app, make_game):
        game = make_game()
        other = make_game(title='Bar')
        folder = add_folder(other.id, '/games/Bar')
        with pytest.raises(NotFound):
            set_primary_folder(game.id, folder.id)

    def test_rematch_moves_folder(self, app, make_game):
        first = make_game(title='Update')
        second = make_game(title='Update Simulator')
        match_folder('/games/Update.Simulator-CODEX', 'Update.Simulator-CODEX', {'game_id': first.id})
        match_folder('/games/Update.Simulator-CODEX', 'Update.Simulator-CODEX', {'game_id': second.id})
        folder = GameFolder.query.filter_by(folder_path='/games/Update.Simulator-CODEX').one()
        assert folder.game_id == second.id
        assert folder.is_primary is True
        assert GameFolder.query.filter_by(game_id=first.id).count() == 0

    def test_match_adds_store(self, app, make_game):
        game = make_game()
        match_folder('/games/Foo', 'Foo', {'game_id': game.id}, store='GOG')
        assert game.store_set == {'GOG'}
        assert game.status == 'downloaded'

    def test_delete_game_keeps_scan_rows(self, app, make_game):
        game = make_game()
        db.session.add(LibraryFile(folder_path='/games/Foo', parsed_title='Foo', matched_game_id=game.id))
        db.session.commit()
        add_folder(game.id, '/games/Foo')
        delete_game(game.id)
        assert Game.query.count() == 0
        assert GameFolder.query.count() == 0
        assert LibraryFile.query.one().matched_game_id is None


class TestScan:

    def test_scan_upserts_and_drops_vanished_folders(self, app, make_library, tmp_path):
        for name in ('Foo (2021)', 'Bar.v1.0-CODEX', '_downloads'):
            os.makedirs(tmp_path / name)
        make_library(tmp_path)

        stats = scan_library()
        assert stats['scanned'] == 2
        assert stats['unmatched'] == 2
        foo = LibraryFile.query.filter_by(folder_path=str(tmp_path / 'Foo (2021)')).one()
        assert foo.parsed_title == 'Foo'
        assert foo.parsed_year == 2021

        os.rmdir(tmp_path / 'Bar.v1.0-CODEX')
        stats = scan_library()
        assert stats['scanned'] == 1
        assert LibraryFile.query.count() == 1

    def test_auto_scan_matches_and_queues_ambiguous(self, app, fakes, make_library, tmp_path):
        os.makedirs(tmp_path / 'Foo (2021)')
        os.makedirs(tmp_path / 'Unknown Thing')
        make_library(tmp_path)
        fakes.metadata.candidates = [{'id': 1, 'title': 'Foo', 'year': 2021}]

        stats = scan_library(auto=True)
        assert stats['matched'] == 1
        assert stats['ambiguous'] == 1
        assert stats['unmatched'] == 1
        assert Game.query.one().title == 'Foo'


class TestImportCompletedDownload:

    def test_version_update_replaces_primary(self, app, make_game):
        game = make_game(status='downloading')
        add_folder(game.id, '/games/Foo.v1.0-CODEX')
        update = GameUpdate(game_id=game.id, update_type='version', title='Foo.v1.2-CODEX', version='1.2',
                            download_url='magnet:?xt=urn:btih:' + 'c' * 40)
        db.session.add(update)
        db.session.flush()
        grab = GrabbedRelease(game_id=game.id, guid='x', title='Foo.v1.2-CODEX', quality='Scene',
                              download_url=update.download_url, status='completed', update_id=update.id)
        db.session.add(grab)
        db.session.commit()

        folder = import_completed_download(grab, '/downloads/Foo.v1.2-CODEX')
        assert folder.is_primary is True
        assert _primary_count(game.id) == 1
        assert game.installed_version == '1.2'
        assert game.status == 'downloaded'

    def test_plain_grab_keeps_existing_primary(self, app, make_game):
        game = make_game(status='downloading')
        add_folder(game.id, '/games/Foo.v1.0-CODEX')
        grab = GrabbedRelease(game_id=game.id, guid='x', title='Foo Soundtrack', download_url='magnet:x',
                              status='completed')
        db.session.add(grab)
        db.session.commit()

        folder = import_completed_download(grab, '/downloads/Foo Soundtrack')
        assert folder.is_primary is False
        assert game.installed_version == '1.0'

    def test_import_after_primary_deleted_is_not_promoted(self, app, make_game):
        game = make_game(status='downloading')
        first = add_folder(game.id, '/games/Foo.v1.0-CODEX')
        add_folder(game.id, '/games/Foo.v1.1-CODEX')
        delete_folder(game.id, first.id)
        grab = GrabbedRelease(game_id=game.id, guid='x', title='Foo.v1.2-CODEX', download_url='magnet:x',
                              status='completed')
        db.session.add(grab)
        db.session.commit()

        imported = import_completed_download(grab, '/downloads/Foo.v1.2-CODEX')

        assert imported.is_primary is False
        assert _primary_count(game.id) == 0
        assert game.status == 'downloaded'
