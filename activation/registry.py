import json
import logging
import os
import threading

from .errors import NotFound
from .models import CodeRecord, utcnow

logger = logging.getLogger(__name__)


def read_document(path):
    """Read a codes document from disk and return its list of code dicts."""
    with open(path, 'r', encoding='utf-8') as f:
        parsed = json.load(f)
    codes = parsed.get('codes') if isinstance(parsed, dict) else None
    return codes if isinstance(codes, list) else []


def dump_document(records):
    return json.dumps({'codes': [r.to_dict() for r in records]}, indent=2, ensure_ascii=False)


class CodeRegistry:
    """All activation codes, held in memory and mirrored to one JSON file."""

    def __init__(self, path):
        self.path = path
        self._records = []
        self._lock = threading.RLock()

    def load(self):
        if not os.path.exists(self.path):
            logger.info('Codes file %s not found, starting empty', self.path)
            self._records = []
            return self
        try:
            codes = read_document(self.path)
        except ValueError as e:
            logger.warning('Codes file %s is not valid JSON (%s), starting empty', self.path, e)
            codes = []
        self._records = [CodeRecord.from_dict(c) for c in codes if isinstance(c, dict)]
        logger.info('Loaded %d codes from %s', len(self._records), self.path)
        return self

    @staticmethod
    def locate(candidates):
        """Return ``(codes, tried)`` from the first readable candidate path."""
        tried = []
        for path in candidates:
            if not os.path.exists(path):
                tried.append({'path': path, 'ok': False, 'reason': 'not exists'})
                continue
            try:
                codes = read_document(path)
            except (OSError, ValueError) as e:
                tried.append({'path': path, 'ok': False, 'reason': str(e)})
                continue
            tried.append({'path': path, 'ok': True})
            return codes, tried
        raise NotFound('codes.json not found or unreadable: %s' % json.dumps(tried))

    def save(self):
        """Rewrite the whole document via a temp file so readers never see a partial one."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        content = dump_document(self._records)
        tmp = self.path + '.tmp'
        with open(tmp, 'w', encoding='utf-8') as f:
            f.write(content)
        os.replace(tmp, self.path)

    # -- queries ----------------------------------------------------------

    def __len__(self):
        return len(self._records)

    def contains(self, code):
        return any(r.code == code for r in self._records)

    def lookup(self, code):
        for record in self._records:
            if record.code == code:
                return record
        raise NotFound()

    def list(self, status=None, now=None):
        now = now or utcnow()
        records = list(self._records)
        if status is None:
            return records
        if status == 'active':
            return [r for r in records if r.is_usable(now)]
        if status == 'expired':
            return [r for r in records if r.is_expired(now, inclusive=True)]
        if status == 'bound':
            return [r for r in records if r.bound]
        raise ValueError('unknown filter %r' % status)

    def codes(self):
        return {r.code for r in self._records}

    # -- mutations --------------------------------------------------------

    def apply(self, mutation):
        """Run ``mutation(records)`` under the lock, saving if it changed anything."""
        with self._lock:
            changed = mutation(self._records)
            if changed:
                self.save()
            return changed

    def insert(self, records):
        def _insert(current):
            current.extend(records)
            return bool(records)
        return self.apply(_insert)

    def update(self, code, mutation):
        with self._lock:
            for record in self._records:
                if record.code == code:
                    mutation(record)
                    self.save()
                    return record
            return None

    def remove(self, code):
        def _remove(current):
            before = len(current)
            current[:] = [r for r in current if r.code != code]
            return len(current) != before
        return self.apply(_remove)

    def replace(self, records):
        with self._lock:
            self._records = list(records)
            self.save()
