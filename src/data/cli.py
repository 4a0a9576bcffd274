import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.data.models import ImportReport
from src.data.services import import_data
from src.database import async_session, engine
from src.exceptions import ShortLinkError
from src.models.models import Base

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"ожидается положительное число, получено {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shortlinks-import",
        description="Восстановление ссылок и кликов из JSON-бэкапа",
    )
    parser.add_argument("file", type=Path, help="файл, полученный из /data/export")
    parser.add_argument(
        "-o", "--overwrite", action="store_true",
        help="перед импортом удалить все существующие ссылки и клики",
    )
    parser.add_argument(
        "-b", "--batch-size", "--batchSize", dest="batch_size", type=_positive_int, default=None,
        help="размер пачки кликов",
    )
    return parser


def load_backup(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


async def restore(
        payload: Any,
        overwrite_existing: bool = False,
        batch_size: int | None = None,
        session_factory: async_sessionmaker = async_session,
) -> ImportReport:
    """Импорт в новой сессии, как POST /data/import."""
    async with session_factory() as session:
        return await import_data(
            session, payload, overwrite_existing=overwrite_existing, batch_size=batch_size,
        )


async def _run(payload: Any, overwrite_existing: bool, batch_size: int | None) -> ImportReport:
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return await restore(payload, overwrite_existing, batch_size)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO
    )
    args = build_parser().parse_args(argv)

    try:
        payload = load_backup(args.file)
        report = asyncio.run(_run(payload, args.overwrite, args.batch_size))
    except (OSError, ValueError) as e:
        logger.error("Не удалось прочитать %s: %s", args.file, e)
        return 1
    except ShortLinkError as e:
        logger.error("Импорт отклонен: %s", e)
        return 1

    for message in report.errors:
        logger.warning(message)
    logger.info(
        "Импортировано ссылок: %d, кликов: %d; пропущено ссылок: %d, кликов: %d",
        report.imported.links, report.imported.click_analytics,
        report.skipped.links, report.skipped.click_analytics,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
