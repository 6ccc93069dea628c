import os
from dotenv import load_dotenv

load_dotenv()


def _env(*names, default=None):
    for name in names:
        value = os.environ.get(name)
        if value:
            return value.strip()
    return default


class Config:
    # Local copy of the codes document
    CODES_FILE = _env('CODES_FILE', default=os.path.join(os.getcwd(), 'codes.json'))

    # Remote writeback (GitHub contents API); all optional
    GITHUB_TOKEN = _env('GITHUB_TOKEN', default='')
    GITHUB_OWNER = _env('GITHUB_OWNER', 'GITHUB_REPO_OWNER', default='')
    GITHUB_REPO = _env('GITHUB_REPO', 'GITHUB_REPO_NAME', default='')
    GITHUB_FILE_PATH = _env('CODES_FILE_PATH', 'GITHUB_FILE_PATH', default='api/codes.json')
    GITHUB_BRANCH = _env('GITHUB_BRANCH', default='main')
    GITHUB_API_URL = _env('GITHUB_API_URL', default='https://api.github.com')

    STORE_TIMEOUT = float(_env('STORE_TIMEOUT', default='10'))
    STORE_MAX_ATTEMPTS = int(_env('STORE_MAX_ATTEMPTS', default='3'))
    SYNC_ON_START = _env('SYNC_ON_START', default='false').lower() in ('1', 'true', 'yes')

    # Admin endpoints are open when no password is set
    ADMIN_PASSWORD = _env('ADMIN_PASSWORD', default='')

    PORT = int(_env('PORT', default='5000'))
    LOG_LEVEL = _env('LOG_LEVEL', default='INFO')
