import logging
from dataclasses import dataclass
from typing import Optional

from .errors import StoreError
from .models import CodeRecord

logger = logging.getLogger(__name__)


@dataclass
class WritebackResult:
    updated: bool
    error: Optional[str] = None


def find(records, code):
    for record in records:
        if record.code == code:
            return record
    return None


class CodeRepository:
    """Single write path for the codes document.

    A mutation is a callable taking the list of ``CodeRecord`` objects and
    returning True when it changed something. It is applied to the local
    registry first (under the registry lock, followed by a full file
    rewrite) and then written through to the remote store. Remote failures
    are logged and reported, the local change stands.
    """

    def __init__(self, registry, store=None):
        self.registry = registry
        self.store = store

    @property
    def remote_enabled(self):
        return self.store is not None and self.store.configured

    def mutate(self, local, message, remote=None):
        """Apply ``local`` to the registry and ``remote`` (default: ``local``) to the store.

        Returns ``(changed, WritebackResult)``. Nothing is written back when
        the local mutation reports no change.
        """
        changed = self.registry.apply(local)
        if not changed:
            return False, WritebackResult(updated=False)
        return True, self.writeback(remote or local, message)

    def writeback(self, mutation, message):
        if self.store is None:
            return WritebackResult(updated=False, error='Remote store is not configured')

        def _apply(document):
            records = [CodeRecord.from_dict(c) for c in document['codes'] if isinstance(c, dict)]
            if not mutation(records):
                return False
            document['codes'] = [r.to_dict() for r in records]
            return True

        try:
            written = self.store.writeback(_apply, message)
        except StoreError as e:
            logger.warning('Writeback failed (%s): %s', message, e.message)
            return WritebackResult(updated=False, error=e.message)
        if not written:
            logger.warning('Writeback skipped (%s): no matching record in remote document', message)
            return WritebackResult(updated=False, error='Activation code not found in remote document')
        logger.info('Writeback ok: %s', message)
        return WritebackResult(updated=True)

    def sync(self):
        """Replace the local registry with the remote document.

        Returns True on success; failures are logged and leave the local
        registry as it was.
        """
        if not self.remote_enabled:
            return False
        try:
            document, sha = self.store.fetch()
        except StoreError as e:
            logger.warning('Sync from remote store failed: %s', e.message)
            return False
        records = [CodeRecord.from_dict(c) for c in document['codes'] if isinstance(c, dict)]
        self.registry.replace(records)
        logger.info('Synced %d codes from remote revision %s', len(records), sha)
        return True
