# /gamekeeper/gamekeeper/clients.py
#
# Adapters for the external systems: Jackett (indexer gateway), qBittorrent
# (download client), IGDB (metadata provider) and a Discord-style webhook.
# Every adapter raises AdapterUnavailable for timeouts, connection failures
# and missing configuration.

# --- Standard Library Imports ---
import re
import time
import uuid
from datetime import datetime, timezone

# --- Third-Party Library Imports ---
import requests
from flask import current_app
from qbittorrentapi import Client, exceptions
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# --- Local Application Imports ---
from .errors import AdapterUnavailable
from .models import Setting
from .util import parse_datetime, to_bool

INDEXER_KEY = 'gamekeeper.indexer'
DOWNLOAD_CLIENT_KEY = 'gamekeeper.download_client'
METADATA_KEY = 'gamekeeper.metadata'
NOTIFIER_KEY = 'gamekeeper.notifier'

# --- Global cache for the IGDB token ---
_igdb_access_token = None
_igdb_token_expires = 0


# --- Settings ---

def get_settings_dict():
    """Helper function to get all settings as a dictionary."""
    try:
        return {setting.key: setting.value for setting in Setting.query.all()}
    except Exception as e:
        current_app.logger.error(f"Error fetching settings: {e}")
        return {}


def get_setting(key, default=None):
    """A runtime setting from the settings table, falling back to the app config."""
    value = get_settings_dict().get(key)
    if value is None or value == '':
        value = current_app.config.get(key.upper(), default)
    return default if value is None else value


def get_bool_setting(key, default=False):
    return to_bool(get_setting(key), default)


def _retrying_session(total=3):
    retry_strategy = Retry(
        total=total,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    http = requests.Session()
    http.mount("https://", adapter)
    http.mount("http://", adapter)
    return http


# --- Indexer Gateway ---

ROMAN_NUMERALS = {'II': '2', 'III': '3', 'IV': '4', 'V': '5', 'VI': '6', 'VII': '7', 'VIII': '8', 'IX': '9', 'X': '10'}


def normalize_search_query(query):
    """
    Releases drop apostrophes and spell sequel numbers with digits.
    "Assassin's Creed IV" -> "Assassins Creed 4"
    """
    if not query:
        return ""
    query = query.replace("'", "").replace("’", "")
    query = re.sub(r'\b(VIII|VII|VI|IV|IX|III|II|V|X)\b', lambda m: ROMAN_NUMERALS[m.group(1)], query)
    return re.sub(r'\s+', ' ', query).strip()


class JackettIndexer:
    """Searches every configured Jackett indexer through the aggregate JSON results endpoint."""

    def __init__(self, url, api_key, indexers='all', categories=None, timeout=15, session=None):
        self.url = (url or '').rstrip('/')
        self.api_key = api_key
        self.indexers = (indexers or 'all').replace(',', ';')
        self.categories = categories or []
        self.timeout = timeout
        self.session = session or _retrying_session(total=2)

    def _get(self, path, params=None):
        try:
            response = self.session.get(f"{self.url}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise AdapterUnavailable('indexer', str(e)) from e

    def search(self, query, categories=None, limit=100):
        categories = categories if categories is not None else self.categories
        params = {'apikey': self.api_key, 'Query': query}
        if categories:
            params['Category[]'] = [str(c) for c in categories]
        response = self._get(f"/api/v2.0/indexers/{self.indexers}/results", params=params)
        try:
            payload = response.json()
        except ValueError as e:
            raise AdapterUnavailable('indexer', f"invalid JSON response: {e}") from e

        releases = []
        for item in payload.get('Results', []):
            release = self._map_result(item)
            if release:
                releases.append(release)
        current_app.logger.info(f"Jackett: {len(releases)} results for '{query}'")
        return releases[:limit]

    def test_connection(self):
        try:
            self._get(f"/api/v2.0/indexers/{self.indexers}/results/torznab/api",
                      params={'apikey': self.api_key, 't': 'caps'})
            return True
        except AdapterUnavailable as e:
            current_app.logger.warning(f"Jackett connection test failed: {e}")
            return False

    @staticmethod
    def _map_result(item):
        download_url = item.get('MagnetUri') or item.get('Link')
        title = item.get('Title')
        if not title or not download_url:
            return None
        categories = item.get('Category') or []
        if not isinstance(categories, list):
            categories = [categories]
        return {
            'guid': item.get('Guid') or download_url,
            'title': title,
            'indexer': item.get('Tracker') or item.get('TrackerId') or 'Unknown',
            'size': item.get('Size') or 0,
            'seeders': item.get('Seeders') if item.get('Seeders') is not None else 0,
            'categories': categories,
            'published_at': parse_datetime(item.get('PublishDate')),
            'download_url': download_url,
        }


# --- Download Client Adapter ---

def _hash_from_magnet(locator):
    match = re.search(r'xt=urn:btih:([0-9a-fA-F]{40})', locator or '')
    return match.group(1).lower() if match else None


class QbittorrentAdapter:
    """Thin adapter over qbittorrentapi.Client that speaks in plain download dicts."""

    def __init__(self, host, port, username, password, timeout=15, client=None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                client = Client(
                    host=self.host, port=self.port,
                    username=self.username, password=self.password,
                    REQUESTS_ARGS={'timeout': self.timeout},
                )
                client.auth_log_in()
            except exceptions.APIError as e:
                raise AdapterUnavailable('download client', f"could not log in to qBittorrent: {e}") from e
            self._client = client
        return self._client

    def _call(self, action, *args, **kwargs):
        try:
            return getattr(self.client, action)(*args, **kwargs)
        except exceptions.APIError as e:
            raise AdapterUnavailable('download client', f"{action} failed: {e}") from e

    def add(self, locator, category, save_path=None):
        """Submits a magnet/torrent url and returns the torrent hash."""
        tag = f"gamekeeper-{uuid.uuid4().hex[:12]}"
        result = self._call('torrents_add', urls=locator, category=category, savepath=save_path,
                            tags=f"gamekeeper,{tag}")
        if result != "Ok.":
            raise AdapterUnavailable('download client', f"qBittorrent rejected the torrent: {result}")

        known_hash = _hash_from_magnet(locator)
        if known_hash:
            return known_hash

        # .torrent urls: qBittorrent needs a moment before the torrent shows up.
        for _ in range(5):
            time.sleep(1)
            added = self._call('torrents_info', tag=tag)
            if added:
                return added[0].get('hash').lower()
        raise AdapterUnavailable('download client', "added torrent could not be located")

    def list(self):
        return [self._map_torrent(t) for t in self._call('torrents_info')]

    def pause(self, torrent_hash):
        self._call('torrents_pause', torrent_hashes=torrent_hash)

    def resume(self, torrent_hash):
        self._call('torrents_resume', torrent_hashes=torrent_hash)

    def cancel(self, torrent_hash, delete_files=False):
        self._call('torrents_delete', delete_files=delete_files, torrent_hashes=torrent_hash)

    def list_categories(self):
        return sorted(self._call('torrents_categories').keys())

    def test_connection(self):
        try:
            return bool(self._call('app_version'))
        except AdapterUnavailable as e:
            current_app.logger.warning(f"qBittorrent connection test failed: {e}")
            return False

    @staticmethod
    def _map_torrent(torrent):
        return {
            'hash': (torrent.get('hash') or '').lower(),
            'name': torrent.get('name'),
            'size': torrent.get('size'),
            'progress': torrent.get('progress', 0.0),
            'download_speed': torrent.get('dlspeed', 0),
            'upload_speed': torrent.get('upspeed', 0),
            'eta': torrent.get('eta'),
            'state': torrent.get('state'),
            'save_path': torrent.get('save_path'),
            'content_path': torrent.get('content_path'),
            'category': torrent.get('category'),
        }


# --- Metadata Provider ---

class IGDBProvider:
    """IGDB v4 game search, authenticated with a cached Twitch app token."""

    def __init__(self, client_id, client_secret, timeout=10, session=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.session = session or _retrying_session()

    def _headers(self):
        global _igdb_access_token, _igdb_token_expires

        if not _igdb_access_token or time.time() > (_igdb_token_expires - 60):
            current_app.logger.info("IGDB token is missing or expired. Requesting a new one...")
            auth_params = {'client_id': self.client_id, 'client_secret': self.client_secret,
                           'grant_type': 'client_credentials'}
            try:
                auth_response = self.session.post('https://id.twitch.tv/oauth2/token', params=auth_params,
                                                  timeout=self.timeout)
                auth_response.raise_for_status()
                token_data = auth_response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                raise AdapterUnavailable('metadata provider', f"Twitch authentication failed: {e}") from e
            _igdb_access_token = token_data['access_token']
            _igdb_token_expires = time.time() + token_data['expires_in']

        return {
            'Client-ID': self.client_id,
            'Authorization': f'Bearer {_igdb_access_token}',
            'User-Agent': 'gamekeeper/1.0 (Python/Requests)',
        }

    def search(self, title, limit=20):
        safe_title = title.replace('"', '')
        query_body = (
            f'search "{safe_title}"; '
            f'fields name, first_release_date, platforms.name, cover.url, summary, aggregated_rating, rating, '
            f'involved_companies.company.name, involved_companies.developer, involved_companies.publisher; '
            f'limit {limit};'
        )
        try:
            response = self.session.post('https://api.igdb.com/v4/games', headers=self._headers(),
                                         data=query_body, timeout=self.timeout)
            response.raise_for_status()
            results = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise AdapterUnavailable('metadata provider', f"IGDB search failed: {e}") from e
        return [self._map_game(game) for game in results]

    @staticmethod
    def _map_game(game):
        companies = game.get('involved_companies', [])
        developer = next((c['company']['name'] for c in companies if c.get('developer') and c.get('company')), None)
        publisher = next((c['company']['name'] for c in companies if c.get('publisher') and c.get('company')), None)
        released = game.get('first_release_date')
        cover = game.get('cover', {}).get('url', '').replace('t_thumb', 't_cover_big')
        if cover.startswith('//'):
            cover = f"https:{cover}"
        return {
            'id': game.get('id'),
            'title': game.get('name'),
            'year': datetime.fromtimestamp(released, tz=timezone.utc).year if released else None,
            'platforms': [p.get('name') for p in game.get('platforms', []) if p.get('name')],
            'cover': cover or None,
            'summary': game.get('summary'),
            'developer': developer,
            'publisher': publisher,
            'ratings': {'critic': game.get('aggregated_rating'), 'user': game.get('rating')},
        }


# --- Notifications ---

class WebhookNotifier:
    """Discord-compatible webhook. Failures are logged and dropped."""

    COLORS = {'grabbed': 0x3B82F6, 'completed': 0x22C55E, 'failed': 0xEF4444, 'update': 0xF59E0B}

    def __init__(self, url=None, timeout=5):
        self.url = url
        self.timeout = timeout

    def notify(self, event, title, description=None):
        if not self.url:
            return False
        payload = {'embeds': [{
            'title': title,
            'description': description or '',
            'color': self.COLORS.get(event, 0x6B7280),
            'footer': {'text': f"gamekeeper - {event}"},
        }]}
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            current_app.logger.warning(f"Webhook notification '{event}' failed: {e}")
            return False


# --- Accessors ---

def _http_timeout():
    return float(current_app.config.get('HTTP_TIMEOUT', 15))


def get_indexer():
    """The configured indexer gateway, or the instance injected in app.extensions."""
    injected = current_app.extensions.get(INDEXER_KEY)
    if injected is not None:
        return injected
    settings = get_settings_dict()
    url = settings.get('jackett_url') or current_app.config.get('JACKETT_URL')
    api_key = settings.get('jackett_api_key') or current_app.config.get('JACKETT_API_KEY')
    if not all([url, api_key]):
        raise AdapterUnavailable('indexer', "Jackett is not configured")
    categories = str(get_setting('jackett_categories', '4050'))
    return JackettIndexer(
        url, api_key,
        indexers=get_setting('jackett_indexers', 'all'),
        categories=[c.strip() for c in categories.split(',') if c.strip()],
        timeout=_http_timeout(),
    )


def get_download_client():
    """Helper function to get an authenticated qBittorrent adapter."""
    injected = current_app.extensions.get(DOWNLOAD_CLIENT_KEY)
    if injected is not None:
        return injected
    host = get_setting('qbittorrent_host')
    if not host:
        raise AdapterUnavailable('download client', "qBittorrent is not configured")
    return QbittorrentAdapter(
        host=host,
        port=get_setting('qbittorrent_port', '8080'),
        username=get_setting('qbittorrent_user'),
        password=get_setting('qbittorrent_pass'),
        timeout=float(get_setting('qbittorrent_timeout', _http_timeout())),
    )


def get_metadata_provider():
    injected = current_app.extensions.get(METADATA_KEY)
    if injected is not None:
        return injected
    client_id = get_setting('twitch_client_id')
    client_secret = get_setting('twitch_client_secret')
    if not all([client_id, client_secret]):
        raise AdapterUnavailable('metadata provider', "Twitch API credentials are not configured")
    return IGDBProvider(client_id, client_secret, timeout=_http_timeout())


def get_notifier():
    injected = current_app.extensions.get(NOTIFIER_KEY)
    if injected is not None:
        return injected
    return WebhookNotifier(get_setting('discord_webhook_url'))
