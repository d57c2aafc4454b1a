"""
Logging configuration

Console at settings.log_level, daily files under settings.log_dir.  Cache and
upstream traffic ("[cache] ..." / "[rank_query] ..." messages) also goes to
its own debug-level file so hit/miss churn can be read without request noise.
"""
from loguru import logger
import sys
from ranklens.config import get_settings

settings = get_settings()

TRAFFIC_PREFIXES = ("[cache]", "[rank_query]")


def is_traffic_record(record) -> bool:
    return record["message"].startswith(TRAFFIC_PREFIXES)


def setup_logger(log_dir: str = None):
    """Configure console, application, error and cache-traffic sinks"""
    log_dir = log_dir or settings.log_dir
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=settings.log_level,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )

    logger.add(
        f"{log_dir}/ranklens_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO",
        filter=lambda record: not is_traffic_record(record) or record["level"].no >= 30,
    )

    logger.add(
        f"{log_dir}/cache_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="7 days",
        level="DEBUG",
        filter=is_traffic_record,
    )

    logger.add(
        f"{log_dir}/errors_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="90 days",
        level="ERROR",
    )

    return logger


log = setup_logger()
