"""Limit/offset handling shared by the list endpoints."""
from ..errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _as_int(raw, name: str, default: int) -> int:
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


def normalize_pagination(limit_raw, offset_raw, max_limit: int = MAX_LIMIT):
    """Clamp ``limit`` into ``[1, max_limit]`` and ``offset`` to ``>= 0``."""
    limit = _as_int(limit_raw, 'limit', DEFAULT_LIMIT)
    offset = _as_int(offset_raw, 'offset', 0)
    return max(1, min(limit, max_limit)), max(0, offset)


def page_meta(total: int, limit: int, offset: int, returned: int) -> dict:
    return {'total': total, 'limit': limit, 'offset': offset, 'returned': returned}
