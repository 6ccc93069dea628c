"""Remote copy of the codes document, kept in a GitHub repository.

The document is read and written through the GitHub contents API. Each read
returns the blob ``sha``, which must be sent back with the next write; GitHub
rejects the write if the file changed in between.
"""
import base64
import json
import logging
from urllib.parse import quote

import requests

from .errors import Conflict, MalformedDocument, NotConfigured, RemoteNotFound, TransportError

logger = logging.getLogger(__name__)

USER_AGENT = 'activation-server'


class DocumentStore:
    def __init__(self, token='', owner='', repo='', path='api/codes.json', branch='main',
                 api_url='https://api.github.com', timeout=10, max_attempts=3, session=None):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.path = path
        self.branch = branch
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None):
        return cls(
            token=config.get('GITHUB_TOKEN', ''),
            owner=config.get('GITHUB_OWNER', ''),
            repo=config.get('GITHUB_REPO', ''),
            path=config.get('GITHUB_FILE_PATH', 'api/codes.json'),
            branch=config.get('GITHUB_BRANCH', 'main'),
            api_url=config.get('GITHUB_API_URL', 'https://api.github.com'),
            timeout=config.get('STORE_TIMEOUT', 10),
            max_attempts=config.get('STORE_MAX_ATTEMPTS', 3),
            session=session,
        )

    @property
    def configured(self):
        return bool(self.token and self.owner and self.repo)

    @property
    def url(self):
        return '%s/repos/%s/%s/contents/%s' % (self.api_url, self.owner, self.repo, quote(self.path, safe=''))

    def _headers(self):
        return {
            'Authorization': 'token %s' % self.token,
            'Accept': 'application/vnd.github+json',
            'User-Agent': USER_AGENT,
        }

    def _check_configured(self):
        if not self.configured:
            raise NotConfigured('Remote store is not configured: token=%s, owner=%s, repo=%s'
                                % (bool(self.token), self.owner, self.repo))

    def fetch(self):
        """Return ``(document, sha)`` for the current remote file."""
        self._check_configured()
        logger.debug('store.fetch path=%s branch=%s', self.path, self.branch)
        try:
            resp = self.session.get(self.url, params={'ref': self.branch},
                                    headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError('Fetch failed: %s' % e) from e

        if resp.status_code == 404:
            raise RemoteNotFound('Remote file not found: path=%s; branch=%s' % (self.path, self.branch))
        if not resp.ok:
            raise TransportError('Fetch failed: %s %s; path=%s; branch=%s; body=%s'
                                 % (resp.status_code, resp.reason, self.path, self.branch, resp.text))

        try:
            envelope = resp.json()
            sha = envelope.get('sha')
            raw = base64.b64decode(envelope.get('content') or '')
            document = json.loads(raw.decode('utf-8')) if raw.strip() else {}
        except (ValueError, AttributeError) as e:
            raise MalformedDocument('Remote codes document could not be parsed: %s' % e) from e

        if not isinstance(document, dict):
            raise MalformedDocument('Remote codes document is not a JSON object')
        if not isinstance(document.get('codes'), list):
            logger.warning('Remote document at %s has no codes list, treating it as empty', self.path)
            document['codes'] = []
        return document, sha

    def put(self, document, sha, message):
        """Write ``document`` over the revision identified by ``sha``."""
        self._check_configured()
        content = json.dumps(document, indent=2, ensure_ascii=False).encode('utf-8')
        body = {
            'message': message,
            'content': base64.b64encode(content).decode('ascii'),
            'branch': self.branch,
        }
        if sha:
            body['sha'] = sha

        logger.debug('store.put path=%s branch=%s', self.path, self.branch)
        try:
            resp = self.session.put(self.url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError('Write failed: %s' % e) from e

        if resp.status_code == 409 or (resp.status_code == 422 and 'sha' in resp.text):
            raise Conflict('Write rejected, remote revision changed: %s' % resp.text)
        if not resp.ok:
            raise TransportError('Write failed: %s %s; path=%s; branch=%s; body=%s'
                                 % (resp.status_code, resp.reason, self.path, self.branch, resp.text))

        try:
            commit = (resp.json().get('commit') or {}).get('sha')
        except ValueError:
            commit = None
        logger.info('store.put ok path=%s commit=%s', self.path, commit)
        return commit

    def writeback(self, mutation, message):
        """Fetch, apply ``mutation(document)`` and put, retrying on conflict.

        ``mutation`` returns False when there is nothing to write. Returns
        True if a new revision was written.
        """
        last = None
        for attempt in range(1, self.max_attempts + 1):
            document, sha = self.fetch()
            if not mutation(document):
                return False
            try:
                self.put(document, sha, message)
                return True
            except Conflict as e:
                last = e
                logger.info('store.writeback conflict, attempt %d/%d', attempt, self.max_attempts)
        raise Conflict('Gave up after %d attempts: %s' % (self.max_attempts, last.message))
