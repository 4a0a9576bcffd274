import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str, default: str) -> list[str]:
    return [item.strip().lower() for item in os.getenv(name, default).split(",") if item.strip()]


ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./shortlinks.db")
REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
DB_TIMEOUT_SECONDS: float = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))

# Сессии администратора
SECRET_KEY: str = os.getenv("SECRET_KEY", "")
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(24 * 60 * 60)))
SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "admin_session")
ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "admin123")

# Генерация коротких кодов
SHORT_CODE_LENGTH: int = int(os.getenv("SHORT_CODE_LENGTH", "6"))
SHORT_CODE_FALLBACK_LENGTH: int = int(os.getenv("SHORT_CODE_FALLBACK_LENGTH", "8"))
SHORT_CODE_MAX_ATTEMPTS: int = int(os.getenv("SHORT_CODE_MAX_ATTEMPTS", "10"))

FETCH_PAGE_TITLE: bool = _get_bool("FETCH_PAGE_TITLE", True)
TITLE_FETCH_TIMEOUT_SECONDS: float = float(os.getenv("TITLE_FETCH_TIMEOUT_SECONDS", "2"))

# domain | domain_path1 | domain_path2
REF_AGG_LEVEL: str = os.getenv("REF_AGG_LEVEL", "domain").lower()

IMPORT_BATCH_SIZE: int = int(os.getenv("IMPORT_BATCH_SIZE", "1000"))
IMPORT_MAX_BATCH_SIZE: int = 10000

CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))

# Заголовки, из которых берутся IP, гео и referer
IP_HEADER: str = os.getenv("IP_HEADER", "cf-connecting-ip").lower()
IP_FALLBACK_HEADERS: list[str] = _get_list(
    "IP_FALLBACK_HEADERS", "x-forwarded-for,x-real-ip,x-client-ip,fastly-client-ip"
)
COUNTRY_HEADER: str = os.getenv("COUNTRY_HEADER", "cf-ipcountry").lower()
CITY_HEADER: str = os.getenv("CITY_HEADER", "").lower()
COUNTRY_NAME_HEADER: str = os.getenv("COUNTRY_NAME_HEADER", "country_name").lower()
COUNTRY_ID_HEADER: str = os.getenv("COUNTRY_ID_HEADER", "country_id").lower()
PROVINCE_NAME_HEADER: str = os.getenv("PROVINCE_NAME_HEADER", "province_name").lower()
PROVINCE_ID_HEADER: str = os.getenv("PROVINCE_ID_HEADER", "province_id").lower()
CITY_NAME_HEADER: str = os.getenv("CITY_NAME_HEADER", "city_name").lower()
CITY_ID_HEADER: str = os.getenv("CITY_ID_HEADER", "city_id").lower()
REFERER_HEADER: str = os.getenv("REFERER_HEADER", "referer").lower()


def is_production() -> bool:
    return ENVIRONMENT.lower() == "production"
