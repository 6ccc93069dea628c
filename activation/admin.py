import logging
import secrets
import string
from datetime import timedelta

from .errors import GenerationExhausted, InvalidRequest, NotFound
from .models import CodeRecord, to_iso, utcnow
from .repository import find

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MAX_ATTEMPTS = 100


def random_code(prefix='VIP'):
    return '%s-%s' % (prefix, ''.join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH)))


def parse_flag(value):
    """``true`` / ``"true"`` are true, everything else is false."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == 'true'


def _to_int(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest('%s must be an integer' % name) from None


class CodeAdmin:
    """Administrative operations on activation codes."""

    def __init__(self, repository, cache=None, generator=random_code):
        self.repository = repository
        self.cache = cache
        self.generator = generator

    @property
    def registry(self):
        return self.repository.registry

    def generate(self, prefix='VIP', count=1, expiry_days=30, note='', now=None):
        """Create ``count`` new codes; all or nothing.

        Codes are drawn under the registry lock and only the ones actually
        inserted are returned.
        """
        prefix = str(prefix or '').strip() or 'VIP'
        count = _to_int(count, 'count')
        expiry_days = _to_int(expiry_days, 'expiryDays')
        if count < 1:
            raise InvalidRequest('count must be at least 1')
        now = now or utcnow()
        expires_at = to_iso(now + timedelta(days=expiry_days)) if expiry_days > 0 else None
        note = note or '%s activation code - %s' % (prefix, now.strftime('%Y-%m-%d'))
        inserted = []

        def _draw(records, taken):
            for _attempt in range(MAX_ATTEMPTS):
                code = self.generator(prefix)
                if code not in taken and find(records, code) is None:
                    return code
            raise GenerationExhausted()

        def _insert(records):
            taken = {r.code for r in records}
            batch = []
            for _ in range(count):
                code = _draw(records, taken)
                taken.add(code)
                batch.append(CodeRecord(
                    code=code,
                    note=note,
                    expiresAt=expires_at,
                    active=True,
                    createdAt=to_iso(now),
                ))
            records.extend(batch)
            inserted.extend(batch)
            return True

        def _remote(records):
            existing = {r.code for r in records}
            fresh = [r for r in inserted if r.code not in existing]
            records.extend(fresh)
            return bool(fresh)

        _, writeback = self.repository.mutate(_insert, 'chore: generate %d codes' % count, remote=_remote)
        logger.info('Generated %d codes with prefix %s', len(inserted), prefix)
        return [r.code for r in inserted], writeback

    def toggle(self, code, active):
        active = parse_flag(active)

        def _toggle(records):
            record = find(records, code)
            if record is None:
                raise NotFound()
            record.active = active
            return True

        def _remote(records):
            record = find(records, code)
            if record is None:
                return False
            record.active = active
            return True

        _, writeback = self.repository.mutate(
            _toggle, 'chore: %s %s' % ('enable' if active else 'disable', code), remote=_remote)
        logger.info('Code %s %s', code, 'enabled' if active else 'disabled')
        return active, writeback

    def delete(self, code):
        def _delete(records):
            before = len(records)
            records[:] = [r for r in records if r.code != code]
            if len(records) == before:
                raise NotFound()
            return True

        def _remote(records):
            before = len(records)
            records[:] = [r for r in records if r.code != code]
            return len(records) != before

        _, writeback = self.repository.mutate(_delete, 'chore: delete %s' % code, remote=_remote)
        if self.cache is not None:
            self.cache.invalidate(code)
        logger.info('Code %s deleted', code)
        return writeback

    def summary(self, now=None):
        now = now or utcnow()
        return {
            'total': len(self.registry),
            'active': len(self.registry.list('active', now)),
            'expired': len(self.registry.list('expired', now)),
        }
