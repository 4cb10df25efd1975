"""日志上下文测试"""

import asyncio
import logging

from sockschain.logger import ContextFilter, LogFormatter, LoggerManager, log_context


def make_record():
    return logging.LogRecord('sockschain-test', logging.INFO, __file__, 1, '消息', None, None)


def test_context_filter_fills_missing_fields():
    record = make_record()
    with log_context(attempt='abc123'):
        ContextFilter(['attempt', 'hop']).filter(record)
    assert record.context == 'attempt=abc123 | hop=-'


def test_log_context_restores_outer_values():
    context_filter = ContextFilter(['hop'])
    with log_context(hop=1):
        with log_context(hop=2):
            inner = make_record()
            context_filter.filter(inner)
        outer = make_record()
        context_filter.filter(outer)
    assert inner.context == 'hop=2'
    assert outer.context == 'hop=1'


def test_log_context_isolated_between_tasks():
    context_filter = ContextFilter(['attempt'])

    async def attempt(name):
        with log_context(attempt=name):
            await asyncio.sleep(0)
            record = make_record()
            context_filter.filter(record)
            return record.context

    async def scenario():
        return await asyncio.gather(attempt('a'), attempt('b'))

    assert asyncio.run(scenario()) == ['attempt=a', 'attempt=b']


def test_formatter_restores_levelname():
    record = make_record()
    record.context = '-'
    formatter = LogFormatter('%(levelname)s %(message)s', use_color=True)
    assert '\033[32mINFO' in formatter.format(record)
    assert record.levelname == 'INFO'


def test_environment_overrides_config(monkeypatch):
    monkeypatch.setenv('LOG_LEVEL', 'WARNING')
    monkeypatch.setenv('LOG_ENABLE_CONSOLE', 'false')
    config = LoggerManager().config_from_dict({'level': 'DEBUG', 'enable_file': True, 'log_dir': 'var/log'})
    assert config.level == 'WARNING'
    assert not config.enable_console
    assert config.enable_file
    assert config.log_dir == 'var/log'
