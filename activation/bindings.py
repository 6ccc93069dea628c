"""Device binding for activation codes.

A code is either unbound or bound to exactly one device. ``verify`` binds an
unbound code to the calling device and rejects any other device afterwards;
the admin operations (``unbind``, ``rebind``, ``clear``) override that.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .errors import Deactivated, DeviceMismatch, Expired, NotBound, NotFound
from .models import BindingRecord, to_iso, utcnow
from .repository import WritebackResult, find

logger = logging.getLogger(__name__)


class BindingCache:
    """Bindings by code. Strict cache over the registry records."""

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, code):
        with self._lock:
            return self._entries.get(code)

    def put(self, binding):
        with self._lock:
            self._entries[binding.code] = binding

    def invalidate(self, code):
        with self._lock:
            self._entries.pop(code, None)

    def reset(self):
        with self._lock:
            self._entries.clear()

    def values(self):
        with self._lock:
            return list(self._entries.values())

    def __len__(self):
        return len(self._entries)

    def warm(self, records):
        with self._lock:
            self._entries = {r.code: BindingRecord.from_code(r) for r in records if r.bound}


@dataclass
class VerifyResult:
    expiresAt: Optional[str]
    note: str
    boundDeviceId: str
    isNewDevice: bool
    writeback: Optional[WritebackResult] = None

    def meta(self):
        return {
            'expiresAt': self.expiresAt,
            'note': self.note,
            'boundDeviceId': self.boundDeviceId,
            'isNewDevice': self.isNewDevice,
        }


def _require(records, code):
    record = find(records, code)
    if record is None:
        raise NotFound()
    return record


class BindingManager:
    def __init__(self, repository, cache=None):
        self.repository = repository
        self.cache = cache if cache is not None else BindingCache()

    @property
    def registry(self):
        return self.repository.registry

    def warm(self):
        self.cache.warm(self.registry.list('bound'))
        logger.info('Binding cache warmed with %d entries', len(self.cache))

    def _current(self, record):
        cached = self.cache.get(record.code)
        if cached is not None and cached.deviceId == record.boundDeviceId:
            return cached
        if cached is not None:
            # stale entry, the record wins
            self.cache.invalidate(record.code)
        if record.bound:
            binding = BindingRecord.from_code(record)
            self.cache.put(binding)
            return binding
        return None

    def verify(self, code, device_id, now=None):
        """Check ``code`` for ``device_id``, binding it on first use."""
        now = now or utcnow()
        seen = {}

        def _verify(records):
            record = _require(records, code)
            # only an explicit false deactivates
            if record.active is False:
                raise Deactivated()
            if record.is_expired(now):
                raise Expired()
            seen['record'] = record
            binding = self._current(record)
            if binding is not None:
                if binding.deviceId != device_id:
                    raise DeviceMismatch()
                return False
            record.bind(device_id, now)
            return True

        def _remote(records):
            record = find(records, code)
            if record is None:
                return False
            record.bind(device_id, now)
            return True

        bound_at = to_iso(now)
        changed, writeback = self.repository.mutate(
            _verify, 'chore: bind device for %s at %s' % (code, bound_at), remote=_remote)
        record = seen['record']
        if changed:
            logger.info('Device bound: code=%s device=%s at=%s', code, device_id, bound_at)
            self._after_write(record, writeback)
        return VerifyResult(
            expiresAt=record.expiresAt,
            note=record.note,
            boundDeviceId=device_id,
            isNewDevice=changed,
            writeback=writeback if changed else None,
        )

    def unbind(self, code, require_bound=False):
        """Force ``code`` back to unbound. Returns ``(previous_device, writeback)``."""
        previous = {}

        def _unbind(records):
            record = _require(records, code)
            if require_bound and not record.bound:
                raise NotBound()
            previous['device'] = record.boundDeviceId
            record.unbind()
            return True

        def _remote(records):
            record = find(records, code)
            if record is None:
                return False
            record.unbind()
            return True

        self.cache.invalidate(code)
        _, writeback = self.repository.mutate(_unbind, 'chore: unbind %s' % code, remote=_remote)
        logger.info('Device unbound: code=%s previous=%s', code, previous.get('device'))
        return previous.get('device'), writeback

    def rebind(self, code, new_device_id, now=None):
        """Force ``code`` onto ``new_device_id``. Returns ``(previous_device, writeback)``."""
        now = now or utcnow()
        previous = {}

        def _rebind(records):
            record = _require(records, code)
            previous['device'] = record.boundDeviceId
            previous['record'] = record
            record.bind(new_device_id, now)
            return True

        def _remote(records):
            record = find(records, code)
            if record is None:
                return False
            record.bind(new_device_id, now)
            return True

        _, writeback = self.repository.mutate(_rebind, 'chore: rebind %s to %s' % (code, new_device_id),
                                              remote=_remote)
        self._after_write(previous['record'], writeback)
        logger.info('Device rebound: code=%s old=%s new=%s', code, previous['device'], new_device_id)
        return previous['device'], writeback

    def clear(self):
        """Unbind every code."""
        def _clear(records):
            for record in records:
                record.unbind()
            return True

        self.cache.reset()
        _, writeback = self.repository.mutate(_clear, 'chore: clear all bindings')
        logger.info('All bindings cleared')
        return writeback

    def bindings(self):
        return [b.to_dict() for b in self.cache.values()]

    def devices(self):
        return [{
            'code': r.code,
            'note': r.note,
            'boundDeviceId': r.boundDeviceId,
            'boundAt': r.boundAt,
            'expiresAt': r.expiresAt,
            'active': r.active,
        } for r in self.registry.list('bound')]

    def _after_write(self, record, writeback):
        if writeback.updated:
            self.cache.put(BindingRecord.from_code(record))
        else:
            self.cache.invalidate(record.code)
