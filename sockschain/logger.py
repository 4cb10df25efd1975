"""
SOCKS5 链式代理 - 日志管理模块

版本: 1.0.0

功能概述:
本模块提供了日志管理功能，包括：
1. 多级别日志记录（DEBUG, INFO, WARNING, ERROR, CRITICAL）
2. 日志轮转（按日期/大小）
3. 结构化日志格式（时间戳、级别、上下文）
4. 配置文件和环境变量支持
5. 按连接尝试隔离的上下文信息（attempt / hop / target）

库代码只通过 logging.getLogger 记录日志，不安装任何处理器；
只有命令行入口调用 LoggerManager().initialize()。

上下文信息保存在 ContextVar 中，每个 asyncio 任务拥有自己的副本，
并发的连接尝试不会互相覆盖。
"""

import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from systemd.journal import JournalHandler
    HAS_JOURNAL = True
except ImportError:
    HAS_JOURNAL = False

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(context)s] - %(message)s"
DEFAULT_CONTEXT_FIELDS = ["attempt", "hop", "target"]

_context: ContextVar[Dict[str, Any]] = ContextVar('sockschain_log_context', default={})


@dataclass
class LogConfig:
    """
    日志配置数据类

    Attributes:
        level: 日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        log_dir: 日志存储目录
        log_file: 日志文件名
        max_bytes: 单个日志文件最大大小（字节）
        backup_count: 保留的备份文件数量
        rotation_type: 轮转类型（size, date, both）
        format_string: 日志格式字符串
        enable_console: 是否输出到控制台
        enable_file: 是否输出到文件
        enable_journal: 是否输出到系统日志
        context_fields: 上下文字段列表
    """
    level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "sockschain.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    rotation_type: str = "size"  # size, date, both
    format_string: str = DEFAULT_FORMAT
    enable_console: bool = True
    enable_file: bool = False
    enable_journal: bool = False
    context_fields: List[str] = field(default_factory=lambda: list(DEFAULT_CONTEXT_FIELDS))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == 'true'


@contextmanager
def log_context(**kwargs):
    """
    在当前任务中临时添加上下文信息，退出时恢复

    Example:
        with log_context(hop=1):
            logger.info("握手中")
    """
    token = _context.set({**_context.get(), **kwargs})
    try:
        yield
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """
    上下文过滤器

    为日志记录添加 record.context 字段，内容来自当前任务的上下文
    """

    def __init__(self, context_fields: Optional[List[str]] = None):
        super().__init__()
        self.context_fields = context_fields or []

    def filter(self, record):
        context_data = _context.get()
        record.context = " | ".join(
            f"{name}={context_data.get(name, '-')}" for name in self.context_fields
        )
        return True


class LogFormatter(logging.Formatter):
    """
    自定义日志格式化器

    支持彩色输出，缺少 context 字段的记录补 "-"
    """

    COLORS = {
        'DEBUG': '\033[36m',      # 青色
        'INFO': '\033[32m',       # 绿色
        'WARNING': '\033[33m',    # 黄色
        'ERROR': '\033[31m',      # 红色
        'CRITICAL': '\033[35m',   # 紫色
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, style='%', use_color=False):
        super().__init__(fmt, datefmt, style)
        self.use_color = use_color

    def format(self, record):
        if not hasattr(record, 'context'):
            record.context = "-"

        levelname = record.levelname
        if self.use_color and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class LoggerManager:
    """
    日志管理器

    管理日志系统的初始化和配置（单例）
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.config = None
            self.context_filter = None
            self._initialized = True

    def config_from_dict(self, log_config: Optional[Dict[str, Any]]) -> LogConfig:
        """
        从配置字典（配置文件的 logging 段）构建日志配置，环境变量优先

        Args:
            log_config: logging 段的内容

        Returns:
            LogConfig: 日志配置对象
        """
        log_config = log_config or {}
        defaults = LogConfig()
        return LogConfig(
            level=os.getenv('LOG_LEVEL', log_config.get('level', defaults.level)),
            log_dir=os.getenv('LOG_DIR', log_config.get('log_dir', defaults.log_dir)),
            log_file=os.getenv('LOG_FILE', log_config.get('log_file', defaults.log_file)),
            max_bytes=int(os.getenv('LOG_MAX_BYTES', log_config.get('max_bytes', defaults.max_bytes))),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', log_config.get('backup_count', defaults.backup_count))),
            rotation_type=os.getenv('LOG_ROTATION_TYPE', log_config.get('rotation_type', defaults.rotation_type)),
            format_string=os.getenv('LOG_FORMAT', log_config.get('format_string', defaults.format_string)),
            enable_console=_env_bool('LOG_ENABLE_CONSOLE', log_config.get('enable_console', defaults.enable_console)),
            enable_file=_env_bool('LOG_ENABLE_FILE', log_config.get('enable_file', defaults.enable_file)),
            enable_journal=_env_bool('LOG_ENABLE_JOURNAL', log_config.get('enable_journal', defaults.enable_journal)),
            context_fields=log_config.get('context_fields', defaults.context_fields),
        )

    def initialize(self, config: Optional[LogConfig] = None, log_config: Optional[Dict[str, Any]] = None):
        """
        初始化日志系统

        Args:
            config: 日志配置对象（可选）
            log_config: 配置文件 logging 段（可选）
        """
        self.config = config or self.config_from_dict(log_config)

        if self.config.enable_file:
            Path(self.config.log_dir).mkdir(parents=True, exist_ok=True)
        self._setup_root_logger()

    def _level(self) -> int:
        return getattr(logging, self.config.level.upper(), logging.INFO)

    def _setup_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())
        root_logger.handlers.clear()

        self.context_filter = ContextFilter(self.config.context_fields)

        if self.config.enable_console:
            self._add_handler(root_logger, logging.StreamHandler(sys.stderr), sys.stderr.isatty())

        if self.config.enable_file:
            self._add_handler(root_logger, self._file_handler(), False)

        if self.config.enable_journal and HAS_JOURNAL:
            self._add_handler(root_logger, JournalHandler(), False)

    def _add_handler(self, logger: logging.Logger, handler: logging.Handler, use_color: bool):
        handler.setLevel(self._level())
        handler.addFilter(self.context_filter)
        handler.setFormatter(LogFormatter(
            fmt=self.config.format_string,
            datefmt='%Y-%m-%d %H:%M:%S',
            use_color=use_color
        ))
        logger.addHandler(handler)

    def _file_handler(self) -> logging.Handler:
        """创建文件处理器（支持轮转）"""
        log_file_path = Path(self.config.log_dir) / self.config.log_file

        if self.config.rotation_type in ['size', 'both']:
            return logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=self.config.max_bytes,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        if self.config.rotation_type == 'date':
            return logging.handlers.TimedRotatingFileHandler(
                filename=log_file_path,
                when='midnight',
                interval=1,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        return logging.FileHandler(filename=log_file_path, encoding='utf-8')

    def set_level(self, level: str):
        """运行时调整日志级别（例如命令行 --debug）"""
        numeric = getattr(logging, level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(numeric)
        for handler in root_logger.handlers:
            handler.setLevel(numeric)


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器（便捷函数）"""
    return logging.getLogger(name)
