import re
import secrets
import string
from urllib.parse import urlparse

ALPHABET = string.ascii_letters + string.digits

CUSTOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Пути, которые заняты роутерами приложения
RESERVED_CODES = {
    "auth", "links", "stats", "data", "docs", "redoc", "openapi.json",
    "favicon.ico", "health", "static",
}


def generate_short_code(length: int = 6) -> str:
    """Генерирует случайный код из алфавита [A-Za-z0-9]."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def is_valid_url(url: str) -> bool:
    """Проверяет, что URL абсолютный и использует http или https."""
    if not url or any(ch.isspace() for ch in url):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_custom_code(code: str) -> bool:
    return bool(CUSTOM_CODE_PATTERN.match(code)) and code not in RESERVED_CODES
