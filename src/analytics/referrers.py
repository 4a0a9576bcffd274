import re
from collections import Counter
from collections.abc import Iterable

DOMAIN = "domain"
DOMAIN_PATH1 = "domain_path1"
DOMAIN_PATH2 = "domain_path2"
LEVELS = (DOMAIN, DOMAIN_PATH1, DOMAIN_PATH2)

DIRECT = "direct"
ID_TOKEN = ":id"

PROTOCOL_PATTERN = re.compile(r"^[a-zA-Z]+://")
NUMERIC_PATTERN = re.compile(r"^[0-9]+$")
HEX_ID_PATTERN = re.compile(r"^[0-9a-fA-F-]{8,}$")


def _normalize_segment(segment: str) -> str:
    if NUMERIC_PATTERN.match(segment) or HEX_ID_PATTERN.match(segment):
        return ID_TOKEN
    return segment


def normalize_referrer(referer: str | None, level: str = DOMAIN) -> str:
    """
    Приводит referer к корзине для агрегации.

    Убирает протокол и query-string, делит остаток на host/сегмент1/сегмент2.
    Сегменты из цифр или похожие на hex/UUID (8+ символов) заменяются на ":id".
    Пустой host означает прямой переход ("direct").

    >>> normalize_referrer("https://example.com/posts/12345?utm=x", "domain_path2")
    'example.com/posts/:id'
    """
    if level not in LEVELS:
        raise ValueError(f"Unknown referrer aggregation level: {level}")

    rest = PROTOCOL_PATTERN.sub("", referer or "", count=1).split("?", 1)[0]
    parts = rest.split("/")
    host = parts[0]
    seg1 = parts[1] if len(parts) > 1 else ""
    seg2 = parts[2] if len(parts) > 2 else ""

    result = host or DIRECT
    if level in (DOMAIN_PATH1, DOMAIN_PATH2) and seg1:
        result += "/" + _normalize_segment(seg1)
    if level == DOMAIN_PATH2 and seg2:
        result += "/" + _normalize_segment(seg2)
    return result


def aggregate_referrers(
        rows: Iterable[tuple[str | None, int]],
        level: str = DOMAIN,
        limit: int = 10,
) -> list[tuple[str, int]]:
    """
    Суммирует пары (referer, количество) по нормализованному значению.
    :return: top `limit` корзин по убыванию количества (при равенстве по имени)
    """
    counter: Counter[str] = Counter()
    for referer, count in rows:
        counter[normalize_referrer(referer, level)] += count
    return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:limit]
