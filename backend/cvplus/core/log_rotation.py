"""
日志轮转配置
"""
import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import List

FILE_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# 任务流水线相关日志单独落盘，便于排查卡住的任务
JOB_LOGGERS = ("cvplus.services.job_service", "cvplus.services.job_monitoring")


def _file_formatter() -> logging.Formatter:
    return logging.Formatter(FILE_LOG_FORMAT, datefmt=FILE_DATE_FORMAT)


def setup_file_logging(
    log_dir: str = "logs",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    when: str = "midnight",
    interval: int = 1
) -> List[logging.Handler]:
    """
    设置文件日志轮转

    - cvplus.log: 按大小轮转，INFO 及以上
    - error.log: 按时间轮转，ERROR 及以上
    - jobs.log: 按大小轮转，仅任务处理与监控模块

    Returns:
        已添加的处理器列表
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()

    app_handler = RotatingFileHandler(
        log_path / "cvplus.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    app_handler.setLevel(logging.INFO)
    app_handler.setFormatter(_file_formatter())
    root_logger.addHandler(app_handler)

    error_handler = TimedRotatingFileHandler(
        log_path / "error.log",
        when=when,
        interval=interval,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(_file_formatter())
    root_logger.addHandler(error_handler)

    job_handler = RotatingFileHandler(
        log_path / "jobs.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    job_handler.setLevel(logging.INFO)
    job_handler.setFormatter(_file_formatter())
    for name in JOB_LOGGERS:
        logging.getLogger(name).addHandler(job_handler)

    return [app_handler, error_handler, job_handler]
