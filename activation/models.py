from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(dt):
    """Format a datetime the way the codes document stores it (``...000Z``)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + '%03dZ' % (dt.microsecond // 1000)


def parse_iso(value):
    """Parse a stored timestamp; returns None when it cannot be read."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_FIELDS = ('code', 'note', 'expiresAt', 'active', 'createdAt', 'boundDeviceId', 'boundAt')


@dataclass
class CodeRecord:
    code: str
    note: str = ''
    expiresAt: Optional[str] = None
    # None when the stored record has no active key
    active: Optional[bool] = True
    createdAt: Optional[str] = None
    boundDeviceId: Optional[str] = None
    boundAt: Optional[str] = None
    # keys we don't model are written back untouched
    extra: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data):
        extra = {k: v for k, v in data.items() if k not in _FIELDS}
        record = cls(
            code=str(data.get('code', '')),
            note=data.get('note') or '',
            expiresAt=data.get('expiresAt') or None,
            active=data.get('active'),
            createdAt=data.get('createdAt'),
            boundDeviceId=data.get('boundDeviceId') or None,
            boundAt=data.get('boundAt') or None,
            extra=extra,
        )
        # boundDeviceId and boundAt are set together or not at all
        if record.boundDeviceId and not record.boundAt:
            record.boundAt = to_iso(utcnow())
        elif record.boundAt and not record.boundDeviceId:
            record.boundAt = None
        return record

    def to_dict(self):
        data = dict(self.extra)
        data.update({
            'code': self.code,
            'note': self.note,
            'expiresAt': self.expiresAt,
            'active': self.active,
            'createdAt': self.createdAt,
            'boundDeviceId': self.boundDeviceId,
            'boundAt': self.boundAt,
        })
        if self.active is None:
            del data['active']
        return data

    @property
    def bound(self):
        return self.boundDeviceId is not None

    def is_expired(self, now=None, inclusive=False):
        """True when ``expiresAt`` has passed.

        ``verify`` rejects a code whose expiry is strictly before now; the
        admin listings count a code as expired from the expiry instant on
        (``inclusive=True``). Unreadable expiry values never expire.
        """
        expires = parse_iso(self.expiresAt)
        if expires is None:
            return False
        now = now or utcnow()
        return expires <= now if inclusive else expires < now

    def is_usable(self, now=None):
        return bool(self.active) and not self.is_expired(now, inclusive=True)

    def bind(self, device_id, when=None):
        self.boundDeviceId = device_id
        self.boundAt = to_iso(when or utcnow())

    def unbind(self):
        self.boundDeviceId = None
        self.boundAt = None


@dataclass
class BindingRecord:
    code: str
    deviceId: str
    boundAt: str

    @classmethod
    def from_code(cls, record):
        return cls(code=record.code, deviceId=record.boundDeviceId, boundAt=record.boundAt)

    def to_dict(self):
        return {'deviceId': self.deviceId, 'boundAt': self.boundAt, 'code': self.code}
