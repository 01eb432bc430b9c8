"""
Tests for the download reconciler and manual download actions
"""
import pytest

from gamekeeper import db
from gamekeeper.downloads import (
    cancel_download, import_download, list_downloads, pause_download, reconcile_downloads,
)
from gamekeeper.errors import NotFound
from gamekeeper.models import DownloadHistoryEntry, GameFolder

from conftest import HASH_A, HASH_B


def _download(torrent_hash=HASH_A, progress=0.5, state='downloading', **fields):
    data = {
        'hash': torrent_hash,
        'name': 'Foo v1.2-CODEX',
        'size': 10 * 1024 ** 3,
        'progress': progress,
        'state': state,
        'save_path': '/downloads',
        'content_path': '/downloads/Foo v1.2-CODEX',
        'category': 'gamekeeper',
    }
    data.update(fields)
    return data


class TestReconcile:

    def test_completed_download_is_imported(self, app, fakes, downloading_grab):
        """progress 1.0 in a completed state closes the history entry and imports the folder"""
        fakes.download_client.downloads = [_download(HASH_A.upper(), progress=1.0, state='completed')]

        stats = reconcile_downloads()

        assert stats['completed'] == 1
        grab = downloading_grab
        assert grab.status == 'completed'
        entry = DownloadHistoryEntry.query.filter_by(release_id=grab.id).one()
        assert entry.status == 'completed'
        assert entry.completed_at is not None
        folder = GameFolder.query.filter_by(folder_path='/downloads/Foo v1.2-CODEX').one()
        assert folder.game_id == grab.game_id
        assert folder.is_primary is True
        assert grab.game.status == 'downloaded'
        assert grab.game.installed_version == '1.2'
        assert ('completed', 'Downloaded: Foo') in fakes.notifier.events

    @pytest.mark.parametrize('state', ['stalledUP', 'pausedUP', 'uploading'])
    def test_seeding_states_count_as_completed(self, app, fakes, downloading_grab, state):
        fakes.download_client.downloads = [_download(progress=1.0, state=state)]
        reconcile_downloads()
        assert downloading_grab.status == 'completed'

    def test_content_path_falls_back_to_save_path_and_name(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = [_download(progress=1.0, state='stalledUP', content_path=None)]
        reconcile_downloads()
        assert GameFolder.query.one().folder_path.endswith('Foo v1.2-CODEX')

    def test_progress_is_recorded(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = [_download(progress=0.5)]
        reconcile_downloads()
        entry = DownloadHistoryEntry.query.one()
        assert entry.progress == 50.0
        assert downloading_grab.status == 'downloading'

    def test_error_state_fails_the_release_only(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = [_download(progress=0.3, state='missingFiles')]
        reconcile_downloads()
        assert downloading_grab.status == 'failed'
        assert DownloadHistoryEntry.query.one().status == 'failed'
        assert downloading_grab.game.status == 'downloading'

    def test_unreachable_client_changes_nothing(self, app, fakes, downloading_grab):
        fakes.download_client.unreachable = True
        stats = reconcile_downloads()
        assert stats['skipped'] is True
        assert downloading_grab.status == 'downloading'
        assert downloading_grab.missed_polls == 0

    def test_missing_hash_fails_after_threshold(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = []
        reconcile_downloads()
        reconcile_downloads()
        assert downloading_grab.status == 'downloading'
        reconcile_downloads()
        assert downloading_grab.status == 'failed'
        assert downloading_grab.error == 'removed from download client'

    def test_reappearing_hash_resets_missed_polls(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = []
        reconcile_downloads()
        fakes.download_client.downloads = [_download()]
        reconcile_downloads()
        assert downloading_grab.missed_polls == 0

    def test_untracked_downloads_are_ignored(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = [_download(), _download(HASH_B, progress=1.0, state='stalledUP')]
        stats = reconcile_downloads()
        assert stats['completed'] == 0
        assert GameFolder.query.count() == 0

    def test_nothing_tracked_skips_the_client(self, app, fakes):
        fakes.download_client.unreachable = True
        assert reconcile_downloads()['tracked'] == 0


class TestDownloadActions:

    def test_list_links_games(self, app, fakes, downloading_grab):
        fakes.download_client.downloads = [_download(), _download(HASH_B)]
        listed = {d['hash']: d for d in list_downloads()}
        assert listed[HASH_A]['gameId'] == downloading_grab.game_id
        assert listed[HASH_B]['gameId'] is None

    def test_pause_and_cancel_forward_to_client(self, app, fakes):
        pause_download(HASH_A)
        cancel_download(HASH_A, delete_files=True)
        assert fakes.download_client.actions == [('pause', HASH_A), ('cancel', HASH_A, True)]

    def test_import_orphaned_download(self, app, fakes, make_game):
        game = make_game(status='wanted')
        fakes.download_client.downloads = [_download(HASH_B, progress=1.0, state='stalledUP')]
        folder = import_download(HASH_B, game.id)
        assert folder.folder_path == '/downloads/Foo v1.2-CODEX'
        assert folder.version == '1.2'
        assert game.status == 'downloaded'

    def test_import_unknown_hash(self, app, fakes, make_game):
        game = make_game()
        with pytest.raises(NotFound):
            import_download(HASH_B, game.id)
        assert db.session.query(GameFolder).count() == 0
