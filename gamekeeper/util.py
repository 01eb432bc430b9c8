# /gamekeeper/gamekeeper/util.py

import re
import unicodedata
from datetime import datetime, timezone

# Ordered: the first pattern that matches wins.
VERSION_PATTERNS = [
    re.compile(r'[._\s-]v(\d+(?:\.\d+)+)', re.IGNORECASE),
    re.compile(r'[._\s-]v(\d+)(?=[._\s-]|$)', re.IGNORECASE),
    re.compile(r'^v(\d+(?:\.\d+)*)', re.IGNORECASE),
    re.compile(r'version[.\s_]?(\d+(?:\.\d+)*)', re.IGNORECASE),
    re.compile(r'[._\s-](\d+\.\d+\.\d+)(?=[._\s-]|$)'),
    re.compile(r'build[.\s_]?(\d+)', re.IGNORECASE),
    re.compile(r'update[.\s_]?(\d+)', re.IGNORECASE),
    re.compile(r'[._\s-]u(\d+)(?=[._\s-]|$)', re.IGNORECASE),
    re.compile(r'[._\s-]r(\d+)(?=[._\s-]|$)', re.IGNORECASE),
    re.compile(r'patch[.\s_]?(\d+(?:\.\d+)*)', re.IGNORECASE),
]


def parse_version(text):
    """
    Extracts a version token from a release or folder name.
    'Foo.v1.2.3-CODEX' -> '1.2.3', 'Foo Build 1234' -> '1234'. Returns None if absent.
    """
    if not text:
        return None
    for pattern in VERSION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def compare_versions(a, b):
    """Numeric dotted comparison. Returns -1, 0 or 1."""
    def _parts(version):
        parts = []
        for piece in str(version).split('.'):
            try:
                parts.append(int(piece))
            except ValueError:
                parts.append(0)
        return parts

    parts_a, parts_b = _parts(a), _parts(b)
    length = max(len(parts_a), len(parts_b))
    parts_a += [0] * (length - len(parts_a))
    parts_b += [0] * (length - len(parts_b))
    if parts_a < parts_b:
        return -1
    if parts_a > parts_b:
        return 1
    return 0


def simplify_text(text):
    """
    Lowercases, folds accents (ö -> o) and strips punctuation so two
    human-written titles can be compared.
    """
    if not text:
        return ''
    text = text.lower()
    text = re.sub(r'[_.:-]', ' ', text)
    text = ''.join(c for c in unicodedata.normalize('NFD', text) if unicodedata.category(c) != 'Mn')
    text = re.sub(r'[^\w\s]', '', text)
    return re.sub(r'\s+', ' ', text).strip()


def format_bytes(size):
    """Converts bytes to a human-readable string (KB, MB, GB)."""
    if size is None:
        return "N/A"
    size = float(size)
    power = 1024
    n = 0
    power_labels = {0: 'B', 1: 'KB', 2: 'MB', 3: 'GB', 4: 'TB'}
    while size >= power and n < len(power_labels) - 1:
        size /= power
        n += 1
    return f"{size:.2f} {power_labels[n]}"


def parse_datetime(value):
    """Parses ISO-8601 strings or unix timestamps into naive UTC datetimes."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
