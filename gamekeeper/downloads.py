# /gamekeeper/gamekeeper/downloads.py
#
# The download reconciler: polls the download client and moves grabbed
# releases through downloading -> completed / failed.

# --- Standard Library Imports ---
import os
from datetime import datetime

# --- Third-Party Library Imports ---
from flask import current_app

# --- Local Application Imports ---
from . import db
from .clients import get_download_client, get_notifier
from .errors import AdapterUnavailable, GamekeeperError, NotFound
from .library import get_game_or_404, import_completed_download, import_folder
from .models import DownloadHistoryEntry, GrabbedRelease
from .releases import detect_quality
from .util import format_bytes, parse_version

# qBittorrent state vocabulary.
COMPLETED_STATES = {'uploading', 'stalledUP', 'pausedUP', 'stoppedUP', 'queuedUP', 'forcedUP', 'checkingUP', 'completed'}
ERROR_STATES = {'error', 'missingFiles'}


def _content_path(download):
    if download.get('content_path'):
        return download['content_path']
    if download.get('save_path') and download.get('name'):
        return os.path.join(download['save_path'], download['name'])
    return None


def _history_entry(grab):
    entry = grab.latest_history
    if entry is None:
        entry = DownloadHistoryEntry(release=grab, status='downloading', progress=0)
        db.session.add(entry)
    return entry


def _fail(grab, entry, reason):
    grab.status = 'failed'
    grab.error = reason
    entry.status = 'failed'
    current_app.logger.warning(f"Download of '{grab.title}' failed: {reason}")


def reconcile_downloads():
    """
    One reconciliation pass. When the download client cannot be reached the
    pass is skipped and nothing changes.
    """
    stats = {'tracked': 0, 'completed': 0, 'failed': 0, 'skipped': False}
    tracked = GrabbedRelease.query.filter(
        GrabbedRelease.status == 'downloading',
        GrabbedRelease.torrent_hash.isnot(None),
    ).all()
    stats['tracked'] = len(tracked)
    if not tracked:
        return stats

    try:
        downloads = get_download_client().list()
    except AdapterUnavailable as e:
        current_app.logger.warning(f"Reconciler: download client unavailable, skipping this cycle. {e}")
        stats['skipped'] = True
        return stats

    by_hash = {d['hash'].lower(): d for d in downloads if d.get('hash')}
    threshold = int(current_app.config.get('RECONCILE_MISSING_THRESHOLD', 3))
    finished = []

    for grab in tracked:
        entry = _history_entry(grab)
        download = by_hash.get(grab.torrent_hash.lower())

        if download is None:
            grab.missed_polls += 1
            if grab.missed_polls >= threshold:
                _fail(grab, entry, "removed from download client")
                stats['failed'] += 1
            continue

        grab.missed_polls = 0
        state = download.get('state')
        progress = download.get('progress') or 0.0

        if state in ERROR_STATES:
            _fail(grab, entry, f"download client reported '{state}'")
            stats['failed'] += 1
        elif progress >= 1 and state in COMPLETED_STATES:
            entry.status = 'completed'
            entry.progress = 100
            entry.completed_at = datetime.utcnow()
            grab.status = 'completed'
            finished.append((grab, _content_path(download)))
            stats['completed'] += 1
        else:
            entry.status = 'downloading'
            entry.progress = round(progress * 100, 1)

    db.session.commit()

    notifier = get_notifier()
    for grab, path in finished:
        current_app.logger.info(f"Reconciler: '{grab.title}' finished downloading to '{path}'.")
        try:
            import_completed_download(grab, path)
        except GamekeeperError as e:
            db.session.rollback()
            current_app.logger.error(f"Import of '{grab.title}' failed: {e.message}")
        notifier.notify('completed', f"Downloaded: {grab.game.title}", f"{grab.title} ({format_bytes(grab.size)})")
    for grab in tracked:
        if grab.status == 'failed':
            notifier.notify('failed', f"Download failed: {grab.game.title}", grab.error)
    return stats


# --- Live view and manual actions ---

def serialize_download(download, game_id=None):
    return {
        'hash': download.get('hash'),
        'name': download.get('name'),
        'size': download.get('size'),
        'progress': download.get('progress'),
        'downloadSpeed': download.get('download_speed'),
        'uploadSpeed': download.get('upload_speed'),
        'eta': download.get('eta'),
        'state': download.get('state'),
        'savePath': download.get('save_path'),
        'contentPath': download.get('content_path'),
        'category': download.get('category'),
        'gameId': game_id,
    }


def list_downloads():
    """Everything the download client holds, linked to games through grabbed releases."""
    downloads = get_download_client().list()
    hashes = [d['hash'] for d in downloads if d.get('hash')]
    game_ids = {}
    if hashes:
        grabs = GrabbedRelease.query.filter(GrabbedRelease.torrent_hash.in_(hashes)).all()
        game_ids = {g.torrent_hash.lower(): g.game_id for g in grabs}
    return [serialize_download(d, game_ids.get((d.get('hash') or '').lower())) for d in downloads]


def list_categories():
    return get_download_client().list_categories()


def pause_download(torrent_hash):
    get_download_client().pause(torrent_hash)
    current_app.logger.info(f"Paused download {torrent_hash}.")


def resume_download(torrent_hash):
    get_download_client().resume(torrent_hash)
    current_app.logger.info(f"Resumed download {torrent_hash}.")


def cancel_download(torrent_hash, delete_files=False):
    """Removes the torrent. The grab row is failed by the reconciler once the hash stays missing."""
    get_download_client().cancel(torrent_hash, delete_files=delete_files)
    current_app.logger.info(f"Cancelled download {torrent_hash} (delete files: {delete_files}).")


def import_download(torrent_hash, game_id):
    """Imports a download that has no grab record, or whose import failed, into the given game."""
    game = get_game_or_404(game_id)
    download = next((d for d in get_download_client().list()
                     if (d.get('hash') or '').lower() == torrent_hash.lower()), None)
    if download is None:
        raise NotFound('Download', torrent_hash)
    path = _content_path(download)
    if not path:
        raise NotFound('Download content path', torrent_hash)

    grab = GrabbedRelease.query.filter(GrabbedRelease.torrent_hash == torrent_hash.lower(),
                                       GrabbedRelease.game_id == game.id).first()
    if grab is not None and grab.status != 'completed':
        entry = _history_entry(grab)
        entry.status = 'completed'
        entry.progress = 100
        entry.completed_at = datetime.utcnow()
        grab.status = 'completed'

    name = download.get('name') or os.path.basename(path)
    return import_folder(game, path, version=parse_version(name), quality=detect_quality(name))
