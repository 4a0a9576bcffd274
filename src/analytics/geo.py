import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from src import config


@dataclass
class GeoInfo:
    country: str | None = None
    city: str | None = None
    country_name: str | None = None
    country_id: str | None = None
    province_name: str | None = None
    province_id: str | None = None
    city_name: str | None = None
    city_id: str | None = None


@dataclass
class ClickMetadata:
    """Данные о переходе, уже извлеченные из заголовков запроса."""

    ip_address: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    geo: GeoInfo = field(default_factory=GeoInfo)


class GeoResolver(Protocol):
    def __call__(self, headers: Mapping[str, str]) -> GeoInfo:
        ...


def _header(headers: Mapping[str, str], name: str) -> str | None:
    if not name:
        return None
    return headers.get(name) or None


class HeaderGeoResolver:
    """Берет гео-данные из заголовков, которые проставляет CDN/прокси."""

    def __call__(self, headers: Mapping[str, str]) -> GeoInfo:
        return GeoInfo(
            country=_header(headers, config.COUNTRY_HEADER),
            city=_header(headers, config.CITY_HEADER),
            country_name=_header(headers, config.COUNTRY_NAME_HEADER),
            country_id=_header(headers, config.COUNTRY_ID_HEADER),
            province_name=_header(headers, config.PROVINCE_NAME_HEADER),
            province_id=_header(headers, config.PROVINCE_ID_HEADER),
            city_name=_header(headers, config.CITY_NAME_HEADER),
            city_id=_header(headers, config.CITY_ID_HEADER),
        )


def _is_public(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return not (address.is_private or address.is_loopback or address.is_link_local
                or address.is_reserved or address.is_unspecified or address.is_multicast)


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """
    Возвращает первый публичный IP из основного и резервных заголовков.

    Значения вида "a, b, c" разбираются по запятой, IPv4-mapped IPv6
    приводится к IPv4. Если публичных адресов нет, отдается первое сырое
    значение или "unknown".
    """
    names = [config.IP_HEADER, *config.IP_FALLBACK_HEADERS]
    candidates = []
    for name in names:
        value = headers.get(name) or ""
        candidates.extend(part.strip() for part in value.split(",") if part.strip())

    for candidate in candidates:
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            continue
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped
        if _is_public(address):
            return str(address)

    raw = headers.get(config.IP_HEADER) or headers.get("x-real-ip") or headers.get("x-forwarded-for")
    if not raw:
        return "unknown"
    return raw.split(",")[0].strip()


def referer_from_headers(headers: Mapping[str, str]) -> str:
    return headers.get(config.REFERER_HEADER) or ""


def click_metadata_from_headers(headers: Mapping[str, str], resolver: GeoResolver) -> ClickMetadata:
    return ClickMetadata(
        ip_address=extract_client_ip(headers),
        user_agent=headers.get("user-agent") or "unknown",
        referer=referer_from_headers(headers),
        geo=resolver(headers),
    )


def get_geo_resolver() -> GeoResolver:
    """Зависимость FastAPI; в тестах и при другом CDN подменяется через dependency_overrides."""
    return HeaderGeoResolver()
