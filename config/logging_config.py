"""
日志配置
================================
统一管理项目的日志输出，同时输出到控制台和文件
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

from .settings import LOGS_DIR, LogConfig


def setup_logging(
    name: str = "btc_predictor",
    log_dir: Optional[Path] = None,
    level: Optional[int] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    log_to_file: bool = True
) -> logging.Logger:
    """
    配置日志系统

    挂在根 logger 上，各模块通过 logging.getLogger(__name__) 共享同一套 handler

    Args:
        name: 日志文件名前缀
        log_dir: 日志文件目录，默认为项目的 logs/ 目录
        level: 根日志级别，默认读取 LogConfig.LOG_LEVEL
        console_level: 控制台输出级别
        file_level: 文件输出级别
        log_to_file: 是否写日志文件

    Returns:
        配置好的 logger
    """
    if level is None:
        level = getattr(logging, LogConfig.LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # 清除现有的 handlers（避免重复添加）
    root.handlers.clear()

    # 日志格式
    detailed_format = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_format = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    # 控制台 Handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_format)
    root.addHandler(console_handler)

    logger = logging.getLogger(name)

    if log_to_file:
        if log_dir is None:
            log_dir = LOGS_DIR
        log_dir.mkdir(parents=True, exist_ok=True)

        # 日志文件名包含时间戳
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"{name}_{timestamp}.log"

        # 文件 Handler（详细日志）
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(file_level)
        file_handler.setFormatter(detailed_format)
        root.addHandler(file_handler)

        logger.info(f"日志文件: {log_file}")

    return logger


def get_training_logger() -> logging.Logger:
    """获取训练日志器"""
    return setup_logging("training", level=logging.DEBUG)
