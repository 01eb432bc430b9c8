# /gamekeeper/gamekeeper/library.py
#
# The catalog side: cleaning folder names, matching folders to games,
# primary folder bookkeeping, library scans and importing finished downloads.

# --- Standard Library Imports ---
import os
import re

# --- Third-Party Library Imports ---
import PTN
from flask import current_app

# --- Local Application Imports ---
from . import db
from .clients import get_metadata_provider, get_setting
from .errors import AdapterUnavailable, AmbiguousMatch, NotFound, ValidationError
from .models import GAME_STATUSES, UPDATE_POLICIES, Game, GameFolder, Library, LibraryFile
from .releases import detect_quality
from .util import parse_version, simplify_text

IGNORE_FOLDERS = {'_downloads', '@eaDir', '$RECYCLE.BIN', 'System Volume Information'}

ANNOTATION_RE = re.compile(r'\[[^\]]*\]|\([^)]*\)|\{[^}]*\}')
VERSION_RES = [
    re.compile(r'\bv\d+(?:\.\d+)*[a-z]?\b', re.IGNORECASE),
    re.compile(r'\b(?:version|build|update|patch)[\s._]?\d+(?:\.\d+)*\b', re.IGNORECASE),
    re.compile(r'\b\d+\.\d+\.\d+(?:\.\d+)*\b'),
    re.compile(r'\bu\d+\b', re.IGNORECASE),
]
RELEASE_TOKEN_RE = re.compile(
    r'\b(?:'
    r'codex|plaza|rune|tenoke|flt|skidrow|reloaded|empress|razor1911|tinyiso|hoodlum|darksiders|'
    r'fitgirl|dodi|elamigos|kaoskrew|gog|p2p|'
    r'update|patch|crackfix|repack|proper|'
    r'win(?:32|64)?|x86 64|x86|x64|amd64|linux|macos|osx|nsw|ps4|ps5|'
    r'multi\d*'
    r')\b',
    re.IGNORECASE,
)


def _clean_pass(name):
    text = ANNOTATION_RE.sub(' ', name)
    for pattern in VERSION_RES:
        text = pattern.sub(' ', text)
    text = re.sub(r'[._\-+]', ' ', text)
    text = RELEASE_TOKEN_RE.sub(' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def clean_title(name):
    """
    Reduces a folder or release name to a searchable title.
    'Foo.Bar.v1.2.3-CODEX' -> 'Foo Bar'. Case is preserved.
    Applying it twice gives the same result as applying it once.
    """
    if not name:
        return ''
    cleaned = _clean_pass(name)
    while True:
        again = _clean_pass(cleaned)
        if again == cleaned:
            return cleaned
        cleaned = again


def parse_folder_name(name):
    """Splits a folder name into title, year and version."""
    year = None
    match = re.search(r'\((\d{4})\)', name or '')
    if match:
        year = int(match.group(1))
    elif name:
        parsed_year = PTN.parse(name).get('year')
        if isinstance(parsed_year, int):
            year = parsed_year

    title = clean_title(name)
    if year and title.endswith(str(year)):
        title = title[:-4].strip()
    return {'title': title, 'year': year, 'version': parse_version(name)}


# --- Games ---

def get_game_or_404(game_id):
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFound('Game', game_id)
    return game


def add_game(data):
    """Adds a game to the catalog from validated input. Reuses an existing row with the same IGDB id."""
    igdb_id = data.get('igdb_id')
    game = Game.query.filter_by(igdb_id=igdb_id).first() if igdb_id else None
    if game:
        current_app.logger.info(f"Game '{game.title}' (IGDB {igdb_id}) is already in the catalog.")
        return game

    game = Game(igdb_id=igdb_id, title=data['title'])
    _apply_game_fields(game, data)
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(f"Added '{game.title}' to the catalog.")
    return game


def update_game(game_id, data):
    game = get_game_or_404(game_id)
    _apply_game_fields(game, data)
    db.session.commit()
    return game


def _apply_game_fields(game, data):
    simple_fields = ('title', 'year', 'platform', 'cover_url', 'summary', 'developer', 'publisher',
                     'monitored', 'installed_version', 'installed_quality')
    for field in simple_fields:
        if data.get(field) is not None:
            setattr(game, field, data[field])
    if data.get('status') is not None:
        if data['status'] not in GAME_STATUSES:
            raise ValidationError(f"Unknown game status '{data['status']}'")
        game.status = data['status']
    if data.get('update_policy') is not None:
        if data['update_policy'] not in UPDATE_POLICIES:
            raise ValidationError(f"Unknown update policy '{data['update_policy']}'")
        game.update_policy = data['update_policy']
    if data.get('library_id') is not None:
        if not db.session.get(Library, data['library_id']):
            raise NotFound('Library', data['library_id'])
        game.library_id = data['library_id']
    if data.get('stores') is not None:
        game.store_set = data['stores']


def delete_game(game_id):
    """Removes the game and its folder, grab and update rows. Nothing on disk is touched."""
    game = get_game_or_404(game_id)
    LibraryFile.query.filter_by(matched_game_id=game.id).update({'matched_game_id': None})
    title = game.title
    db.session.delete(game)
    db.session.commit()
    current_app.logger.info(f"Deleted '{title}' from the catalog.")


# --- Matching ---

def _upsert_game_from_candidate(candidate, library_id=None):
    game = None
    if candidate.get('game_id'):
        game = get_game_or_404(candidate['game_id'])
    elif candidate.get('id'):
        game = Game.query.filter_by(igdb_id=candidate['id']).first()

    if game is None:
        if not candidate.get('title'):
            raise ValidationError("A match candidate needs a title or an existing game id")
        game = Game(igdb_id=candidate.get('id'), title=candidate['title'])
        db.session.add(game)
        current_app.logger.info(f"Creating '{candidate['title']}' from a folder match.")

    for field, key in (('year', 'year'), ('cover_url', 'cover'), ('summary', 'summary'),
                       ('developer', 'developer'), ('publisher', 'publisher')):
        if getattr(game, field) is None and candidate.get(key) is not None:
            setattr(game, field, candidate[key])
    if game.platform is None and candidate.get('platforms'):
        game.platform = candidate['platforms'][0]
    if library_id and game.library_id is None:
        game.library_id = library_id
    return game


def _attach_folder(game, path, version=None, quality=None, make_primary=False):
    folder = GameFolder.query.filter_by(folder_path=path).first()
    if folder is None:
        folder = GameFolder(folder_path=path, is_primary=False)
        folder.game = game
        db.session.add(folder)
    elif folder.game_id != game.id:
        current_app.logger.info(f"Moving folder '{path}' from game {folder.game_id} to '{game.title}'.")
        folder.is_primary = False
        folder.game = game

    if version is not None:
        folder.version = version
    if quality is not None:
        folder.quality = quality

    # Only the first folder becomes primary on its own; after a primary is
    # deleted the operator picks the next one.
    if make_primary or not [f for f in game.folders if f is not folder]:
        for other in game.folders:
            other.is_primary = False
        folder.is_primary = True
        game.installed_version = folder.version
        game.installed_quality = folder.quality
    return folder


def _mark_library_file(path, game):
    library_file = LibraryFile.query.filter_by(folder_path=path).first()
    if library_file:
        library_file.matched_game_id = game.id


def match_folder(path, folder_name, candidate, store=None, library_id=None):
    """
    Operator-chosen match of a folder to a game. A folder that already belongs
    to another game is moved. Returns the game.
    """
    if not path:
        raise ValidationError("A folder path is required")
    folder_name = folder_name or os.path.basename(os.path.normpath(path))
    game = _upsert_game_from_candidate(candidate, library_id)
    game.status = 'downloaded'
    if store:
        game.store_set = game.store_set | {store}
    db.session.flush()

    _attach_folder(game, path, version=parse_version(folder_name), quality=detect_quality(folder_name))
    _mark_library_file(path, game)
    db.session.commit()
    current_app.logger.info(f"Matched folder '{folder_name}' to '{game.title}'.")
    return game


def auto_match(parsed_title, parsed_year=None, folder_path=None, library_id=None):
    """
    Matches a parsed title against the metadata provider. Exactly one
    candidate with an equal normalized title (and year, when known) is
    accepted; anything else raises AmbiguousMatch and creates nothing.
    """
    title = clean_title(parsed_title)
    if not title:
        raise AmbiguousMatch(parsed_title or '')
    candidates = get_metadata_provider().search(title)
    wanted = simplify_text(title)
    confident = [
        c for c in candidates
        if simplify_text(c.get('title')) == wanted and (parsed_year is None or c.get('year') == parsed_year)
    ]
    if len(confident) != 1:
        current_app.logger.info(
            f"Auto-match for '{title}' ({parsed_year}) found {len(confident)} confident candidates; leaving unmatched.")
        raise AmbiguousMatch(title, confident or candidates[:10])

    candidate = confident[0]
    if folder_path:
        return match_folder(folder_path, os.path.basename(os.path.normpath(folder_path)), candidate,
                            library_id=library_id)

    game = _upsert_game_from_candidate(candidate, library_id)
    db.session.commit()
    return game


# --- Folders ---

def list_folders(game_id):
    return get_game_or_404(game_id).folders


def add_folder(game_id, path, version=None, quality=None):
    game = get_game_or_404(game_id)
    name = os.path.basename(os.path.normpath(path))
    folder = _attach_folder(game, path, version=version or parse_version(name),
                            quality=quality or detect_quality(name))
    _mark_library_file(path, game)
    db.session.commit()
    return folder


def _get_folder(game_id, folder_id):
    get_game_or_404(game_id)
    folder = GameFolder.query.filter_by(id=folder_id, game_id=game_id).first()
    if not folder:
        raise NotFound('Folder', folder_id)
    return folder


def set_primary_folder(game_id, folder_id):
    """Makes the folder the game's only primary and copies its version and quality onto the game."""
    folder = _get_folder(game_id, folder_id)
    game = folder.game
    for other in game.folders:
        other.is_primary = other.id == folder.id
    game.installed_version = folder.version
    game.installed_quality = folder.quality
    db.session.commit()
    return folder


def delete_folder(game_id, folder_id):
    """Forgets the folder. The files stay on disk and no other folder is promoted."""
    folder = _get_folder(game_id, folder_id)
    LibraryFile.query.filter_by(folder_path=folder.folder_path).update({'matched_game_id': None})
    db.session.delete(folder)
    db.session.commit()


# --- Scanning ---

def _scan_roots(library_id=None):
    if library_id is not None:
        library = db.session.get(Library, library_id)
        if not library:
            raise NotFound('Library', library_id)
        return [(library.id, library.path)]
    libraries = Library.query.filter_by(monitored=True).order_by(Library.priority.desc()).all()
    if libraries:
        return [(library.id, library.path) for library in libraries]
    library_path = get_setting('library_path')
    return [(None, library_path)] if library_path else []


def scan_library(library_id=None, auto=False):
    """
    Walks the top-level folders of the monitored libraries and refreshes the
    LibraryFile queue. With auto=True unmatched folders are auto-matched.
    """
    stats = {'scanned': 0, 'unmatched': 0, 'matched': 0, 'ambiguous': 0}
    scanned_library_ids = []

    for root_library_id, root in _scan_roots(library_id):
        current_app.logger.info(f"--- Starting Library Scan on Path: '{root}' ---")
        if not os.path.isdir(root):
            current_app.logger.error(f"Library path '{root}' not found or is not a directory.")
            continue
        scanned_library_ids.append(root_library_id)

        seen = set()
        with os.scandir(root) as it:
            for entry in it:
                if not entry.is_dir() or entry.name in IGNORE_FOLDERS or entry.name.startswith('.'):
                    continue
                seen.add(entry.path)
                stats['scanned'] += 1
                library_file = LibraryFile.query.filter_by(folder_path=entry.path).first()
                if library_file is None:
                    parsed = parse_folder_name(entry.name)
                    library_file = LibraryFile(
                        folder_path=entry.path, library_id=root_library_id,
                        parsed_title=parsed['title'], parsed_year=parsed['year'],
                        parsed_version=parsed['version'],
                    )
                    db.session.add(library_file)
                if library_file.matched_game_id is None:
                    folder = GameFolder.query.filter_by(folder_path=entry.path).first()
                    if folder:
                        library_file.matched_game_id = folder.game_id

        stale = LibraryFile.query.filter_by(library_id=root_library_id).all()
        for library_file in stale:
            if library_file.folder_path not in seen:
                db.session.delete(library_file)
    db.session.commit()

    if auto:
        for library_file in list_unmatched(scanned_library_ids):
            try:
                auto_match(library_file.parsed_title, library_file.parsed_year,
                           folder_path=library_file.folder_path, library_id=library_file.library_id)
                stats['matched'] += 1
            except AmbiguousMatch:
                stats['ambiguous'] += 1
            except AdapterUnavailable as e:
                current_app.logger.warning(f"Auto-match stopped: {e}")
                break

    stats['unmatched'] = len(list_unmatched(scanned_library_ids))
    current_app.logger.info(f"Library scan finished: {stats}")
    return stats


def list_unmatched(library_ids=None):
    query = LibraryFile.query.filter(LibraryFile.matched_game_id.is_(None), LibraryFile.ignored.is_(False))
    if library_ids is not None and None not in library_ids:
        query = query.filter(LibraryFile.library_id.in_(library_ids))
    return query.order_by(LibraryFile.folder_path).all()


def set_library_file_ignored(library_file_id, ignored=True):
    library_file = db.session.get(LibraryFile, library_file_id)
    if not library_file:
        raise NotFound('Library file', library_file_id)
    library_file.ignored = ignored
    db.session.commit()
    return library_file


# --- Importing ---

def import_folder(game, path, version=None, quality=None, make_primary=False):
    """Attaches a downloaded folder to the game and marks the game downloaded."""
    folder = _attach_folder(game, path, version=version, quality=quality, make_primary=make_primary)
    game.status = 'downloaded'
    _mark_library_file(path, game)
    db.session.commit()
    current_app.logger.info(f"Imported '{path}' into '{game.title}' (primary: {folder.is_primary}).")
    return folder


def import_completed_download(grab, path):
    """
    Post-processing for a finished grab. The new folder replaces the primary
    when the grab came from a version or better_release update.
    """
    if not path:
        raise ValidationError(f"No content path for '{grab.title}'")
    replaces_primary = grab.update is not None and grab.update.update_type in ('version', 'better_release')
    version = parse_version(grab.title) or (grab.update.version if grab.update else None)
    return import_folder(grab.game, path, version=version, quality=grab.quality, make_primary=replaces_primary)
