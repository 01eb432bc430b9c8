# /gamekeeper/gamekeeper/releases.py
#
# Release classification (quality, category, seeder health, score) and the
# grab coordinator that hands a chosen release to the download client.

# --- Standard Library Imports ---
import re
from datetime import datetime

# --- Third-Party Library Imports ---
from flask import current_app
from sqlalchemy.exc import IntegrityError

# --- Local Application Imports ---
from . import db
from .clients import get_bool_setting, get_download_client, get_indexer, get_notifier, get_setting, normalize_search_query
from .errors import AdapterUnavailable, DuplicateGrab, NotFound, ValidationError
from .models import ACTIVE_GRAB_STATUSES, DownloadHistoryEntry, Game, GrabbedRelease
from .util import format_bytes

# --- ENGINE CONSTANTS ---
REPACK_GROUPS = {'FITGIRL', 'DODI', 'ELAMIGOS', 'KAOSKREW'}
SCENE_GROUPS = {'CODEX', 'PLAZA', 'RUNE', 'TENOKE', 'FLT', 'SKIDROW', 'RELOADED', 'EMPRESS',
                'RAZOR1911', 'TINYISO', 'HOODLUM', 'DARKSIDERS'}

# Worst to best.
QUALITY_RANKING = ['Scene', 'Repack', 'DRM-Free', 'GOG']
QUALITY_BONUS = {'GOG': 50, 'DRM-Free': 40, 'Repack': 20, 'Scene': 10}

TORZNAB_CATEGORIES = {
    4000: 'PC (All)', 4010: 'PC/0day', 4020: 'PC/ISO', 4030: 'PC/Mac', 4040: 'PC/Mobile-Other',
    4050: 'PC/Games', 4060: 'PC/Mobile-iOS', 4070: 'PC/Mobile-Android',
    1000: 'Console (All)', 1010: 'Console/NDS', 1020: 'Console/PSP', 1030: 'Console/Wii',
    1040: 'Console/Xbox', 1050: 'Console/Xbox 360', 1060: 'Console/Wii U', 1070: 'Console/Xbox One',
    1080: 'Console/PS3', 1090: 'Console/PS4', 1110: 'Console/3DS', 1120: 'Console/PS Vita',
    1130: 'Console/Switch', 1140: 'Console/Xbox Series X', 1180: 'Console/PS5',
}

PLATFORM_INDICATORS = [
    ('PC', [r'\bPC\b', r'\bWindows\b', r'\bWin(?:32|64)?\b', r'\bGOG\b', r'\bSteam\b']),
    ('Mac', [r'\bMac\b', r'\bmacOS\b', r'\bOSX\b']),
    ('Linux', [r'\bLinux\b']),
    ('PlayStation 4', [r'\bPS4\b', r'\bPlayStation\s*4\b']),
    ('PlayStation 5', [r'\bPS5\b', r'\bPlayStation\s*5\b']),
    ('Xbox One', [r'\bXbox\s*One\b', r'\bXB1\b']),
    ('Xbox Series X|S', [r'\bXbox\s*Series\b', r'\bXSX\b']),
    ('Nintendo Switch', [r'\bSwitch\b', r'\bNSW\b']),
]

PLATFORM_FAMILIES = [
    ['pc', 'windows', 'mac', 'linux'],
    ['playstation', 'ps4', 'ps5', 'psvr'],
    ['xbox', 'xb1', 'xsx', 'xss'],
    ['switch', 'nsw', 'nintendo'],
]


def detect_quality(title):
    """Derives the release quality tier from its title. None when unrecognized."""
    if not isinstance(title, str) or not title:
        return None
    lowered = title.lower()
    tokens = set(re.split(r'[\s._\-\[\]()]+', title.upper()))
    if re.search(r'\bgog\b', lowered):
        return 'GOG'
    if re.search(r'\bdrm[\s._-]?free\b', lowered):
        return 'DRM-Free'
    if re.search(r'\bsteam\b', lowered):
        return 'Steam'
    if 'repack' in lowered or tokens & REPACK_GROUPS:
        return 'Repack'
    if re.search(r'\bscene\b', lowered) or tokens & SCENE_GROUPS:
        return 'Scene'
    return None


def quality_rank(quality):
    """Position in QUALITY_RANKING, -1 for anything unranked."""
    return QUALITY_RANKING.index(quality) if quality in QUALITY_RANKING else -1


def category_name(categories):
    if not categories:
        return None
    if not isinstance(categories, (list, tuple)):
        categories = [categories]
    for raw in categories:
        try:
            name = TORZNAB_CATEGORIES.get(int(raw))
        except (TypeError, ValueError):
            continue
        if name:
            return name
    return str(categories[0])


def seeder_health(seeders):
    if seeders is None:
        return None
    try:
        seeders = int(seeders)
    except (TypeError, ValueError):
        return None
    if seeders >= 20:
        return 'healthy'
    if seeders >= 5:
        return 'marginal'
    return 'risky'


def detect_release_platform(title):
    for platform, patterns in PLATFORM_INDICATORS:
        if any(re.search(p, title, re.IGNORECASE) for p in patterns):
            return platform
    return None


def is_platform_match(game_platform, release_platform):
    def _normalize(p):
        return re.sub(r'[^a-z0-9]', '', p.lower())

    game_p, release_p = _normalize(game_platform), _normalize(release_platform)
    if game_p == release_p:
        return True
    for family in PLATFORM_FAMILIES:
        if any(p in game_p for p in family) and any(p in release_p for p in family):
            return True
    return False


def score_release(release, game):
    """
    Scores a classified release against the game it was searched for.
    Returns (score, confidence) where confidence is high, medium or low.
    """
    score = 100
    confidence = 'medium'
    title = release.get('title') or ''
    title_lower = title.lower()
    game_title_lower = (game.title or '').lower()

    detected = detect_release_platform(title)
    if detected and game.platform:
        if is_platform_match(game.platform, detected):
            score += 10
        else:
            score -= 200
            confidence = 'low'

    if game_title_lower and game_title_lower in title_lower:
        score += 50
        confidence = 'high'
    else:
        game_words = game_title_lower.split()
        matched = [w for w in game_words if len(w) > 3 and w in title_lower]
        if game_words and len(matched) / len(game_words) > 0.5:
            score += 25
        else:
            score -= 50
            confidence = 'low'

    if game.year and str(game.year) in title_lower:
        score += 20

    score += QUALITY_BONUS.get(release.get('quality'), 0)

    seeders = release.get('seeders') or 0
    if seeders < 5:
        score -= 30
    elif seeders >= 20:
        score += 10

    published = release.get('published_at')
    if isinstance(published, datetime) and (datetime.utcnow() - published).days > 730:
        score -= 20

    size_gb = (release.get('size') or 0) / (1024 ** 3)
    if size_gb < 0.1 or size_gb > 200:
        score -= 50

    if score >= 150:
        confidence = 'high'
    elif score < 80:
        confidence = 'low'
    return score, confidence


def classify_release(release, game=None):
    """
    Returns a copy of the release with quality, category_name, seeder_health,
    score and match_confidence filled in. Fields that cannot be derived are None.
    """
    classified = dict(release)
    title = classified.get('title')
    classified['quality'] = classified.get('quality') or detect_quality(title)
    classified['category_name'] = category_name(classified.get('categories'))
    classified['seeder_health'] = seeder_health(classified.get('seeders'))
    classified['score'] = None
    classified['match_confidence'] = None
    if game is not None and isinstance(title, str):
        try:
            classified['score'], classified['match_confidence'] = score_release(classified, game)
        except (TypeError, ValueError) as e:
            current_app.logger.warning(f"Could not score release '{title}': {e}")
    return classified


def classify_releases(releases, game=None):
    classified = [classify_release(r, game) for r in releases]
    return sorted(classified, key=lambda r: r['score'] if r['score'] is not None else float('-inf'), reverse=True)


def release_to_dict(release):
    """JSON view of a classified release."""
    published = release.get('published_at')
    return {
        'guid': release.get('guid'),
        'title': release.get('title'),
        'indexer': release.get('indexer'),
        'size': release.get('size'),
        'sizeHuman': format_bytes(release.get('size')),
        'seeders': release.get('seeders'),
        'categories': release.get('categories') or [],
        'categoryName': release.get('category_name'),
        'publishedAt': published.isoformat() if isinstance(published, datetime) else published,
        'quality': release.get('quality'),
        'seederHealth': release.get('seeder_health'),
        'score': release.get('score'),
        'matchConfidence': release.get('match_confidence'),
        'downloadUrl': release.get('download_url'),
    }


# --- Searching ---

def search_releases_for_game(game_id):
    """Indexer search for a cataloged game, scored and sorted best first."""
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFound('Game', game_id)
    current_app.logger.info(f"Searching releases for '{game.title}'")
    releases = get_indexer().search(normalize_search_query(game.title))
    scored = [r for r in classify_releases(releases, game) if r['score'] > 0]
    current_app.logger.info(f"    -> {len(scored)} candidate releases for '{game.title}'")
    return scored


def manual_search(query):
    return classify_releases(get_indexer().search(normalize_search_query(query)))


# --- Grab Coordinator ---

def resolve_download_target(game):
    """Returns (category, save_path) for a grab of this game."""
    library = game.library
    if library is not None and library.download_enabled:
        category = library.download_category or get_setting('download_category', 'gamekeeper')
        return category, library.path
    return get_setting('download_category', 'gamekeeper'), get_setting('downloads_path')


def _active_grab_exists(game_id, guid):
    return GrabbedRelease.query.filter(
        GrabbedRelease.game_id == game_id,
        GrabbedRelease.guid == guid,
        GrabbedRelease.status.in_(ACTIVE_GRAB_STATUSES),
    ).first() is not None


def grab_release(game_id, release, update_id=None, dry_run=None):
    """
    Records the grab as pending, submits it to the download client and
    advances the record and the game to downloading.
    Raises NotFound, DuplicateGrab or AdapterUnavailable.
    """
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFound('Game', game_id)

    guid = release.get('guid') or release.get('download_url')
    if not guid or not release.get('title'):
        raise ValidationError("A release needs a guid and a title")
    if not release.get('download_url'):
        raise ValidationError(f"Release '{release.get('title')}' has no download url")
    if _active_grab_exists(game_id, guid):
        raise DuplicateGrab(game_id, guid)

    if dry_run is None:
        dry_run = get_bool_setting('dry_run', False)

    grab = GrabbedRelease(
        game_id=game_id,
        guid=guid,
        title=release['title'],
        indexer=release.get('indexer'),
        quality=release.get('quality') or detect_quality(release['title']),
        size=release.get('size'),
        download_url=release['download_url'],
        status='pending',
        dry_run=bool(dry_run),
        update_id=update_id,
    )
    db.session.add(grab)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateGrab(game_id, guid)

    category, save_path = resolve_download_target(game)
    torrent_hash = None
    if dry_run:
        current_app.logger.info(f"DRY RUN: would send '{grab.title}' to the download client (category '{category}').")
    else:
        try:
            torrent_hash = get_download_client().add(grab.download_url, category, save_path)
        except AdapterUnavailable as e:
            grab.status = 'failed'
            grab.error = e.message
            db.session.commit()
            current_app.logger.error(f"Grab of '{grab.title}' for '{game.title}' failed: {e.message}")
            raise
        except Exception as e:
            grab.status = 'failed'
            grab.error = str(e)
            db.session.commit()
            current_app.logger.error(f"Grab of '{grab.title}' for '{game.title}' failed unexpectedly: {e}", exc_info=True)
            raise

    grab.status = 'downloading'
    grab.torrent_hash = torrent_hash
    db.session.add(DownloadHistoryEntry(release=grab, status='downloading', progress=0))
    game.status = 'downloading'
    db.session.commit()
    current_app.logger.info(f"Grabbed '{grab.title}' for '{game.title}' (hash: {torrent_hash or 'n/a'}).")

    get_notifier().notify('grabbed', f"Grabbed: {game.title}",
                          f"{grab.title} ({format_bytes(grab.size)})")
    return grab


def list_grab_history(game_id):
    game = db.session.get(Game, game_id)
    if not game:
        raise NotFound('Game', game_id)
    return GrabbedRelease.query.filter_by(game_id=game_id).order_by(GrabbedRelease.grabbed_at.desc()).all()
