import json
import uuid
from datetime import datetime, timedelta, timezone


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def iso_in(**delta):
    """ISO timestamp offset from now, e.g. ``iso_in(days=7)`` or ``iso_in(minutes=-30)``."""
    return (datetime.now(timezone.utc) + timedelta(**delta)).isoformat(timespec="milliseconds")


def parse_iso(value):
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id():
    return str(uuid.uuid4())


def json_dumps(obj):
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def json_loads_object(raw, default=None):
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {} if default is None else default
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {} if default is None else default
    return data if isinstance(data, dict) else ({} if default is None else default)
