# /gamekeeper/gamekeeper/routes.py

from flask import Blueprint, current_app, jsonify, request

from . import db
from . import downloads, library, releases, updates
from .clients import get_bool_setting, get_download_client, get_indexer, get_metadata_provider
from .errors import AdapterUnavailable, InvalidState, NotFound, ValidationError
from .models import Game, GrabbedRelease, Library, LibraryFile
from .schemas import (
    AutoMatchIn, FolderIn, GameCreate, GameUpdateIn, GrabIn, ImportDownloadIn, LibraryIn,
    LibraryUpdateIn, MatchFolderIn, PolicyIn, ScanIn, parse_payload,
)
from .util import to_bool

api = Blueprint('api', __name__, url_prefix='/api')


def ok(data=None, status=200):
    return jsonify({'success': True, 'data': data}), status


def _body():
    return request.get_json(silent=True)


# --- Games ---

@api.route('/games', methods=['GET'])
def list_games():
    query = Game.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    games = query.order_by(Game.title).all()
    return ok([g.to_dict(include_folders=False) for g in games])


@api.route('/games', methods=['POST'])
def create_game():
    payload = parse_payload(GameCreate, _body())
    game = library.add_game(payload.model_dump())
    return ok(game.to_dict(), 201)


@api.route('/games/<int:game_id>', methods=['GET'])
def get_game(game_id):
    return ok(library.get_game_or_404(game_id).to_dict())


@api.route('/games/<int:game_id>', methods=['PUT'])
def edit_game(game_id):
    payload = parse_payload(GameUpdateIn, _body())
    game = library.update_game(game_id, payload.model_dump(exclude_none=True))
    return ok(game.to_dict())


@api.route('/games/<int:game_id>', methods=['DELETE'])
def remove_game(game_id):
    library.delete_game(game_id)
    return ok()


@api.route('/games/<int:game_id>/policy', methods=['PUT'])
def change_policy(game_id):
    payload = parse_payload(PolicyIn, _body())
    game = updates.set_update_policy(game_id, payload.policy)
    return ok(game.to_dict(include_folders=False))


@api.route('/games/<int:game_id>/folders', methods=['GET'])
def game_folders(game_id):
    return ok([f.to_dict() for f in library.list_folders(game_id)])


@api.route('/games/<int:game_id>/folders', methods=['POST'])
def add_game_folder(game_id):
    payload = parse_payload(FolderIn, _body())
    folder = library.add_folder(game_id, payload.folder_path, payload.version, payload.quality)
    return ok(folder.to_dict(), 201)


@api.route('/games/<int:game_id>/folders/<int:folder_id>/primary', methods=['PUT'])
def make_primary(game_id, folder_id):
    return ok(library.set_primary_folder(game_id, folder_id).to_dict())


@api.route('/games/<int:game_id>/folders/<int:folder_id>', methods=['DELETE'])
def remove_folder(game_id, folder_id):
    library.delete_folder(game_id, folder_id)
    return ok()


@api.route('/games/<int:game_id>/history', methods=['GET'])
def game_history(game_id):
    return ok([g.to_dict() for g in releases.list_grab_history(game_id)])


# --- Search & Grab ---

@api.route('/search/releases/<int:game_id>', methods=['POST'])
def search_for_game(game_id):
    found = releases.search_releases_for_game(game_id)
    return ok([releases.release_to_dict(r) for r in found])


@api.route('/search/releases', methods=['GET'])
def manual_search():
    query = (request.args.get('q') or '').strip()
    if not query:
        raise ValidationError("Query parameter 'q' is required")
    return ok([releases.release_to_dict(r) for r in releases.manual_search(query)])


@api.route('/search/metadata', methods=['GET'])
def metadata_search():
    query = (request.args.get('q') or '').strip()
    if not query:
        raise ValidationError("Query parameter 'q' is required")
    return ok(get_metadata_provider().search(query))


@api.route('/search/grab', methods=['POST'])
def grab():
    payload = parse_payload(GrabIn, _body())
    grabbed = releases.grab_release(payload.game_id, payload.release.model_dump(), dry_run=payload.dry_run)
    return ok(grabbed.to_dict(), 201)


# --- Downloads ---

@api.route('/downloads', methods=['GET'])
def list_downloads():
    return ok(downloads.list_downloads())


@api.route('/downloads/categories', methods=['GET'])
def download_categories():
    return ok(downloads.list_categories())


@api.route('/downloads/reconcile', methods=['POST'])
def reconcile_now():
    return ok(downloads.reconcile_downloads())


@api.route('/downloads/<torrent_hash>', methods=['DELETE'])
def cancel_download(torrent_hash):
    downloads.cancel_download(torrent_hash, delete_files=to_bool(request.args.get('deleteFiles'), False))
    return ok()


@api.route('/downloads/<torrent_hash>/pause', methods=['POST'])
def pause_download(torrent_hash):
    downloads.pause_download(torrent_hash)
    return ok()


@api.route('/downloads/<torrent_hash>/resume', methods=['POST'])
def resume_download(torrent_hash):
    downloads.resume_download(torrent_hash)
    return ok()


@api.route('/downloads/<torrent_hash>/import', methods=['POST'])
def import_download(torrent_hash):
    payload = parse_payload(ImportDownloadIn, _body())
    folder = downloads.import_download(torrent_hash, payload.game_id)
    return ok(folder.to_dict(), 201)


# --- Library ---

@api.route('/library/scan', methods=['POST'])
def scan():
    payload = parse_payload(ScanIn, _body() or {})
    return ok(library.scan_library(payload.library_id, auto=payload.auto))


@api.route('/library/unmatched', methods=['GET'])
def unmatched():
    return ok([f.to_dict() for f in library.list_unmatched()])


@api.route('/library/unmatched/<int:file_id>/ignore', methods=['POST'])
def ignore_unmatched(file_id):
    ignored = to_bool((_body() or {}).get('ignored'), True)
    return ok(library.set_library_file_ignored(file_id, ignored).to_dict())


@api.route('/library/auto-match', methods=['POST'])
def auto_match():
    payload = parse_payload(AutoMatchIn, _body())
    game = library.auto_match(payload.parsed_title, payload.parsed_year,
                              folder_path=payload.folder_path, library_id=payload.library_id)
    return ok(game.to_dict(), 201)


@api.route('/library/match', methods=['POST'])
def match():
    payload = parse_payload(MatchFolderIn, _body())
    game = library.match_folder(payload.folder_path, payload.folder_name, payload.candidate.model_dump(),
                                store=payload.store, library_id=payload.library_id)
    return ok(game.to_dict(), 201)


# --- Libraries ---

def _get_library(library_id):
    found = db.session.get(Library, library_id)
    if not found:
        raise NotFound('Library', library_id)
    return found


@api.route('/libraries', methods=['GET'])
def list_libraries():
    libraries = Library.query.order_by(Library.priority.desc(), Library.name).all()
    return ok([lib.to_dict() for lib in libraries])


@api.route('/libraries', methods=['POST'])
def create_library():
    payload = parse_payload(LibraryIn, _body())
    if Library.query.filter_by(path=payload.path).first():
        raise InvalidState(f"A library already uses the path '{payload.path}'")
    new_library = Library(**payload.model_dump())
    db.session.add(new_library)
    db.session.commit()
    current_app.logger.info(f"Added library '{new_library.name}' at '{new_library.path}'.")
    return ok(new_library.to_dict(), 201)


@api.route('/libraries/<int:library_id>', methods=['PUT'])
def edit_library(library_id):
    existing = _get_library(library_id)
    payload = parse_payload(LibraryUpdateIn, _body())
    for field, value in payload.model_dump(exclude_none=True).items():
        setattr(existing, field, value)
    db.session.commit()
    return ok(existing.to_dict())


@api.route('/libraries/<int:library_id>', methods=['DELETE'])
def remove_library(library_id):
    existing = _get_library(library_id)
    Game.query.filter_by(library_id=library_id).update({'library_id': None})
    LibraryFile.query.filter_by(library_id=library_id).delete()
    db.session.delete(existing)
    db.session.commit()
    return ok()


# --- Updates ---

@api.route('/updates', methods=['GET'])
def list_updates():
    status = request.args.get('status', 'pending')
    game_id = request.args.get('gameId', type=int)
    return ok([u.to_dict() for u in updates.list_updates(status or None, game_id)])


@api.route('/updates', methods=['POST'])
def check_all():
    return ok(updates.check_all_updates())


@api.route('/updates/games/<int:game_id>/check', methods=['POST'])
def check_game(game_id):
    return ok([u.to_dict() for u in updates.check_for_updates(game_id)])


@api.route('/updates/<int:update_id>/grab', methods=['POST'])
def grab_update(update_id):
    return ok(updates.grab_update(update_id).to_dict(), 201)


@api.route('/updates/<int:update_id>/dismiss', methods=['POST'])
def dismiss_update(update_id):
    return ok(updates.dismiss_update(update_id).to_dict())


# --- System ---

def _adapter_status(factory):
    try:
        return factory().test_connection()
    except AdapterUnavailable:
        return False


@api.route('/system/status', methods=['GET'])
def system_status():
    return ok({
        'games': Game.query.count(),
        'activeDownloads': GrabbedRelease.query.filter_by(status='downloading').count(),
        'pendingUpdates': len(updates.list_updates('pending')),
        'unmatchedFolders': len(library.list_unmatched()),
        'dryRun': get_bool_setting('dry_run', False),
        'indexer': _adapter_status(get_indexer),
        'downloadClient': _adapter_status(get_download_client),
    })
