# /gamekeeper/gamekeeper/models.py

from . import db
from datetime import datetime
from functools import cmp_to_key

from .util import compare_versions

GAME_STATUSES = ('wanted', 'downloading', 'downloaded')
UPDATE_POLICIES = ('notify', 'auto', 'ignore')
GRAB_STATUSES = ('pending', 'downloading', 'completed', 'failed')
ACTIVE_GRAB_STATUSES = ('pending', 'downloading')
UPDATE_TYPES = ('version', 'dlc', 'better_release')
UPDATE_STATUSES = ('pending', 'grabbed', 'dismissed')


def _iso(value):
    return value.isoformat() if value else None


class Library(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String, nullable=False)
    path = db.Column(db.String, nullable=False, unique=True)
    platform = db.Column(db.String, nullable=True)
    monitored = db.Column(db.Boolean, default=True, nullable=False)
    download_enabled = db.Column(db.Boolean, default=True, nullable=False)
    download_category = db.Column(db.String, nullable=True)
    priority = db.Column(db.Integer, default=0, nullable=False)

    games = db.relationship('Game', backref='library', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'platform': self.platform,
            'monitored': self.monitored,
            'downloadEnabled': self.download_enabled,
            'downloadCategory': self.download_category,
            'priority': self.priority,
        }


class Game(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    igdb_id = db.Column(db.Integer, unique=True, nullable=True)

    # --- Core Info ---
    title = db.Column(db.String, nullable=False)
    year = db.Column(db.Integer, nullable=True)
    platform = db.Column(db.String, nullable=True)
    cover_url = db.Column(db.String, nullable=True)
    summary = db.Column(db.Text, nullable=True)
    developer = db.Column(db.String, nullable=True)
    publisher = db.Column(db.String, nullable=True)
    # Stored as a comma-separated string
    stores = db.Column(db.String, nullable=True)

    # --- Lifecycle ---
    status = db.Column(db.String, default='wanted', nullable=False)
    monitored = db.Column(db.Boolean, default=True, nullable=False)
    library_id = db.Column(db.Integer, db.ForeignKey('library.id'), nullable=True)
    installed_version = db.Column(db.String, nullable=True)
    installed_quality = db.Column(db.String, nullable=True)
    update_policy = db.Column(db.String, default='notify', nullable=False)
    last_update_check = db.Column(db.DateTime, nullable=True)
    added_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    folders = db.relationship('GameFolder', backref='game', lazy=True, cascade="all, delete-orphan",
                              order_by='GameFolder.added_at')
    grabbed_releases = db.relationship('GrabbedRelease', backref='game', lazy=True, cascade="all, delete-orphan")
    updates = db.relationship('GameUpdate', backref='game', lazy=True, cascade="all, delete-orphan")

    @property
    def store_set(self):
        if not self.stores:
            return set()
        return {s.strip() for s in self.stores.split(',') if s.strip()}

    @store_set.setter
    def store_set(self, values):
        cleaned = sorted({v.strip() for v in values if v and v.strip()})
        self.stores = ','.join(cleaned) or None

    @property
    def primary_folder(self):
        return next((f for f in self.folders if f.is_primary), None)

    @property
    def update_available(self):
        return any(u.status == 'pending' for u in self.updates)

    @property
    def latest_version(self):
        """Highest version among the pending version updates."""
        versions = [u.version for u in self.updates
                    if u.status == 'pending' and u.update_type == 'version' and u.version]
        return max(versions, key=cmp_to_key(compare_versions)) if versions else None

    def to_dict(self, include_folders=True):
        data = {
            'id': self.id,
            'igdbId': self.igdb_id,
            'title': self.title,
            'year': self.year,
            'platform': self.platform,
            'coverUrl': self.cover_url,
            'summary': self.summary,
            'developer': self.developer,
            'publisher': self.publisher,
            'stores': sorted(self.store_set),
            'status': self.status,
            'monitored': self.monitored,
            'libraryId': self.library_id,
            'installedVersion': self.installed_version,
            'installedQuality': self.installed_quality,
            'updatePolicy': self.update_policy,
            'updateAvailable': self.update_available,
            'latestVersion': self.latest_version,
            'lastUpdateCheck': _iso(self.last_update_check),
            'addedAt': _iso(self.added_at),
        }
        if include_folders:
            data['folders'] = [f.to_dict() for f in self.folders]
        return data

    def __repr__(self):
        return f'<Game {self.title}>'


class GameFolder(db.Model):
    __tablename__ = 'game_folder'

    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    folder_path = db.Column(db.String, nullable=False, unique=True)
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    version = db.Column(db.String, nullable=True)
    quality = db.Column(db.String, nullable=True)
    added_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'gameId': self.game_id,
            'folderPath': self.folder_path,
            'isPrimary': self.is_primary,
            'version': self.version,
            'quality': self.quality,
            'addedAt': _iso(self.added_at),
        }


class GrabbedRelease(db.Model):
    __tablename__ = 'grabbed_release'
    # Only one active grab per (game, release guid). Inserting the pending row
    # is the compare-and-set that serializes concurrent grabs.
    __table_args__ = (
        db.Index(
            'uq_grabbed_release_active', 'game_id', 'guid', unique=True,
            sqlite_where=db.text("status IN ('pending', 'downloading')"),
            postgresql_where=db.text("status IN ('pending', 'downloading')"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    guid = db.Column(db.String, nullable=False)
    title = db.Column(db.String, nullable=False)
    indexer = db.Column(db.String, nullable=True)
    quality = db.Column(db.String, nullable=True)
    size = db.Column(db.BigInteger, nullable=True)
    download_url = db.Column(db.String, nullable=True)
    torrent_hash = db.Column(db.String, nullable=True, index=True)
    status = db.Column(db.String, default='pending', nullable=False)
    dry_run = db.Column(db.Boolean, default=False, nullable=False)
    error = db.Column(db.String, nullable=True)
    missed_polls = db.Column(db.Integer, default=0, nullable=False)
    update_id = db.Column(db.Integer, db.ForeignKey('game_update.id'), nullable=True)
    grabbed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    history = db.relationship('DownloadHistoryEntry', backref='release', lazy=True, cascade="all, delete-orphan")
    update = db.relationship('GameUpdate', foreign_keys=[update_id])

    @property
    def latest_history(self):
        return max(self.history, key=lambda h: h.id) if self.history else None

    def to_dict(self):
        entry = self.latest_history
        return {
            'id': self.id,
            'gameId': self.game_id,
            'guid': self.guid,
            'title': self.title,
            'indexer': self.indexer,
            'quality': self.quality,
            'size': self.size,
            'torrentHash': self.torrent_hash,
            'status': self.status,
            'dryRun': self.dry_run,
            'error': self.error,
            'updateId': self.update_id,
            'grabbedAt': _iso(self.grabbed_at),
            'progress': entry.progress if entry else None,
            'completedAt': _iso(entry.completed_at) if entry else None,
        }


class DownloadHistoryEntry(db.Model):
    __tablename__ = 'download_history'

    id = db.Column(db.Integer, primary_key=True)
    release_id = db.Column(db.Integer, db.ForeignKey('grabbed_release.id'), nullable=False)
    status = db.Column(db.String, default='downloading', nullable=False)
    progress = db.Column(db.Float, default=0, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'releaseId': self.release_id,
            'status': self.status,
            'progress': self.progress,
            'completedAt': _iso(self.completed_at),
        }


class GameUpdate(db.Model):
    __tablename__ = 'game_update'
    # Never two pending updates for the same (game, download url).
    __table_args__ = (
        db.Index(
            'uq_game_update_pending', 'game_id', 'download_url', unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    update_type = db.Column(db.String, nullable=False)
    guid = db.Column(db.String, nullable=True)
    title = db.Column(db.String, nullable=False)
    version = db.Column(db.String, nullable=True)
    size = db.Column(db.BigInteger, nullable=True)
    quality = db.Column(db.String, nullable=True)
    seeders = db.Column(db.Integer, nullable=True)
    download_url = db.Column(db.String, nullable=False)
    indexer = db.Column(db.String, nullable=True)
    detected_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    status = db.Column(db.String, default='pending', nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'gameId': self.game_id,
            'updateType': self.update_type,
            'title': self.title,
            'version': self.version,
            'size': self.size,
            'quality': self.quality,
            'seeders': self.seeders,
            'downloadUrl': self.download_url,
            'indexer': self.indexer,
            'detectedAt': _iso(self.detected_at),
            'status': self.status,
        }


class LibraryFile(db.Model):
    """A folder seen during a library scan. Unmatched rows are the manual resolution queue."""
    __tablename__ = 'library_file'

    id = db.Column(db.Integer, primary_key=True)
    folder_path = db.Column(db.String, nullable=False, unique=True)
    library_id = db.Column(db.Integer, db.ForeignKey('library.id'), nullable=True)
    parsed_title = db.Column(db.String, nullable=True)
    parsed_year = db.Column(db.Integer, nullable=True)
    parsed_version = db.Column(db.String, nullable=True)
    matched_game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='SET NULL'), nullable=True)
    ignored = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'folderPath': self.folder_path,
            'libraryId': self.library_id,
            'parsedTitle': self.parsed_title,
            'parsedYear': self.parsed_year,
            'parsedVersion': self.parsed_version,
            'matchedGameId': self.matched_game_id,
            'ignored': self.ignored,
        }


class Setting(db.Model):
    key = db.Column(db.String, primary_key=True)
    value = db.Column(db.String, nullable=True)
