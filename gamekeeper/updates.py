# /gamekeeper/gamekeeper/updates.py
#
# Update detection for owned games and the per-game policy that decides
# what happens to each detected update.

# --- Standard Library Imports ---
import os
import re
from datetime import datetime

# --- Third-Party Library Imports ---
from flask import current_app
from sqlalchemy.exc import IntegrityError

# --- Local Application Imports ---
from . import db
from .clients import get_indexer, get_notifier, normalize_search_query
from .errors import AdapterUnavailable, GamekeeperError, InvalidState, NotFound, ValidationError
from .library import get_game_or_404
from .models import UPDATE_POLICIES, Game, GameUpdate
from .releases import classify_releases, grab_release, quality_rank
from .util import compare_versions, format_bytes, parse_version, simplify_text

MIN_BETTER_RELEASE_SEEDERS = 5

DLC_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'\bDLC\b', r'\bExpansion\b', r'\bSeason Pass\b', r'\bGOTY\b', r'\bGame of the Year\b',
        r'\bDeluxe Edition\b', r'\bComplete Edition\b', r'\bUltimate Edition\b', r'\bGold Edition\b',
        r'\bPremium Edition\b', r"\bCollector'?s Edition\b", r'\bDefinitive Edition\b',
        r'\bLegendary Edition\b',
    )
]
# Applied to whatever follows the game title in the release name.
DLC_SUFFIX_PATTERNS = [
    re.compile(r'^\s+-\s+\w+'),
    re.compile(r'^\s*:\s*\w+'),
    re.compile(r'^\s*\+'),
    re.compile(r'^\s*and\b', re.IGNORECASE),
    re.compile(r'^\s*with\b', re.IGNORECASE),
]


def is_dlc(release_title, game_title):
    if any(p.search(release_title) for p in DLC_PATTERNS):
        return True
    lowered, game_lower = release_title.lower(), game_title.lower()
    position = lowered.find(game_lower)
    if position == -1:
        return False
    after = lowered[position + len(game_lower):]
    return len(after.strip()) > 5 and any(p.search(after) for p in DLC_SUFFIX_PATTERNS)


def _owned_titles(game):
    owned = {simplify_text(g.title) for g in game.grabbed_releases if g.status == 'completed'}
    owned |= {simplify_text(os.path.basename(f.folder_path)) for f in game.folders}
    return owned


def determine_update_type(release, game, pending_better_ranks, owned_titles):
    """Returns 'dlc', 'version', 'better_release' or None. The first that applies wins."""
    title = release['title']
    if is_dlc(title, game.title):
        return 'dlc' if simplify_text(title) not in owned_titles else None

    release_version = parse_version(title)
    if release_version:
        if not game.installed_version or compare_versions(release_version, game.installed_version) > 0:
            return 'version'

    rank = quality_rank(release.get('quality'))
    if release.get('quality') and rank > quality_rank(game.installed_quality):
        seeders = release.get('seeders') or 0
        if seeders >= MIN_BETTER_RELEASE_SEEDERS and not any(r >= rank for r in pending_better_ranks):
            return 'better_release'
    return None


def check_for_updates(game_id):
    """
    Searches the indexer for newer versions, DLC and better releases of an
    owned game and records new GameUpdate rows. Running it twice against the
    same indexer results creates nothing the second time.
    """
    game = get_game_or_404(game_id)
    if not game.monitored or game.status != 'downloaded':
        return []

    current_app.logger.info(f"Checking '{game.title}' for updates.")
    releases = classify_releases(get_indexer().search(normalize_search_query(game.title)), game)

    existing = GameUpdate.query.filter_by(game_id=game.id).all()
    known_urls = {u.download_url for u in existing}
    known_titles = {u.title for u in existing}
    pending_better_ranks = [quality_rank(u.quality) for u in existing
                            if u.update_type == 'better_release' and u.status == 'pending']
    owned_titles = _owned_titles(game)
    game_id, game_title = game.id, game.title

    created = []
    for release in releases:
        if release.get('match_confidence') == 'low':
            continue
        if release['download_url'] in known_urls or release['title'] in known_titles:
            continue
        update_type = determine_update_type(release, game, pending_better_ranks, owned_titles)
        if update_type is None:
            continue

        update = GameUpdate(
            game_id=game_id,
            update_type=update_type,
            guid=release.get('guid'),
            title=release['title'],
            version=parse_version(release['title']),
            size=release.get('size'),
            quality=release.get('quality'),
            seeders=release.get('seeders'),
            download_url=release['download_url'],
            indexer=release.get('indexer'),
        )
        db.session.add(update)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.info(f"    -> '{release['title']}' was recorded concurrently, skipping.")
            game = db.session.get(Game, game_id)
            continue

        known_urls.add(update.download_url)
        known_titles.add(update.title)
        if update_type == 'better_release':
            pending_better_ranks.append(quality_rank(update.quality))
        created.append(update)
        current_app.logger.info(f"    -> New {update_type} update for '{game_title}': {update.title}")

    game.last_update_check = datetime.utcnow()
    db.session.commit()

    for update in created:
        dispatch_update(update)
    return created


def check_all_updates():
    """Batch check over monitored, downloaded games. An unreachable indexer skips the game."""
    games = Game.query.filter(
        Game.monitored.is_(True),
        Game.status == 'downloaded',
        Game.update_policy != 'ignore',
    ).all()
    checked, found = 0, 0
    for game in games:
        try:
            found += len(check_for_updates(game.id))
            checked += 1
        except AdapterUnavailable as e:
            current_app.logger.warning(f"Update check for '{game.title}' skipped: {e}")
    current_app.logger.info(f"Update check finished: {checked} games checked, {found} updates found.")
    return {'checked': checked, 'updatesFound': found}


# --- Policy Dispatcher ---

def dispatch_update(update):
    policy = update.game.update_policy
    if policy == 'ignore':
        return
    if policy == 'notify':
        get_notifier().notify(
            'update', f"Update available: {update.game.title}",
            f"{update.update_type}: {update.title} ({format_bytes(update.size)})")
        return
    if policy == 'auto':
        try:
            grab_update(update.id)
        except GamekeeperError as e:
            current_app.logger.warning(f"Auto-grab of update '{update.title}' failed, leaving it pending: {e.message}")


def _get_update(update_id):
    update = db.session.get(GameUpdate, update_id)
    if not update:
        raise NotFound('Update', update_id)
    return update


def grab_update(update_id):
    update = _get_update(update_id)
    if update.status != 'pending':
        raise InvalidState(f"Update {update_id} is '{update.status}', only pending updates can be grabbed")

    release = {
        'guid': update.guid or update.download_url,
        'title': update.title,
        'indexer': update.indexer,
        'size': update.size,
        'seeders': update.seeders,
        'quality': update.quality,
        'download_url': update.download_url,
    }
    grab = grab_release(update.game_id, release, update_id=update.id)
    update.status = 'grabbed'
    db.session.commit()
    current_app.logger.info(f"Grabbed update '{update.title}'.")
    return grab


def dismiss_update(update_id):
    update = _get_update(update_id)
    if update.status != 'pending':
        raise InvalidState(f"Update {update_id} is '{update.status}', only pending updates can be dismissed")
    update.status = 'dismissed'
    db.session.commit()
    return update


def set_update_policy(game_id, policy):
    if policy not in UPDATE_POLICIES:
        raise ValidationError(f"Unknown update policy '{policy}'")
    game = get_game_or_404(game_id)
    game.update_policy = policy
    db.session.commit()
    return game


def list_updates(status='pending', game_id=None):
    query = GameUpdate.query
    if status:
        query = query.filter_by(status=status)
    if game_id is not None:
        query = query.filter_by(game_id=game_id)
    return query.order_by(GameUpdate.detected_at.desc()).all()
