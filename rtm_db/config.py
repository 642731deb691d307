#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration and logging setup for the migration runner.

Settings are resolved with the precedence: explicit overrides (command
line flags) > environment variables > config file (JSON or YAML) >
defaults.
"""
import errno
import json
import logging
import os
import urllib.parse
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_DATABASE_URL = 'postgresql://localhost:5432/travel_manager_dev'
DEFAULT_LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'


class RobustFileHandler(logging.FileHandler):
    """Log file handler for long runs on Windows shares.

    Flushing a file on some Windows mounts fails with EINVAL even though
    the record was written; only that error is ignored.
    """

    def flush(self):
        try:
            super().flush()
        except OSError as e:
            if e.errno != errno.EINVAL:
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=None,
                     log_level=logging.INFO):
    """Attach one handler to ``logger`` and set its level.

    The CLI calls this on the root logger, so every module logger of the
    runner (``rtm_db.migrations.*``) ends up in the same place.

    Args:
        logger: Logger instance or logger name ('' for the root logger)
        log_file: Path of a log file to append to; None logs to stderr
        log_format: Format string (defaults to DEFAULT_LOG_FORMAT)
        log_level: Level constant or name such as 'debug'

    Returns:
        The configured logger
    """
    if isinstance(logger, str):
        logger = logging.getLogger(logger)
    if isinstance(log_level, str):
        log_level = parse_log_level(log_level)

    if log_file:
        handler = RobustFileHandler(
            str(log_file), mode='a', encoding='utf-8', errors='replace'
        )
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(log_level)
    return logger


def parse_log_level(value: str) -> int:
    """Convert 'info', 'DEBUG', ... to a logging constant."""
    level = logging.getLevelName(str(value).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


@dataclass
class Settings:
    """
    Runner settings.

    Attributes:
        database_url: Connection string of the target database
        migrations_dir: Directory holding the numbered .sql scripts
        seed_file: Seed data script for the seed/setup commands
        log_level: Logging level name
        log_file: Append log records to this file instead of stderr
        lock_timeout: Seconds to wait for the migration lock
    """
    database_url: str = DEFAULT_DATABASE_URL
    migrations_dir: Path = Path('migrations')
    seed_file: Path = Path('data/sample-data.sql')
    log_level: str = 'info'
    log_file: Optional[str] = None
    lock_timeout: float = 30.0

    def __post_init__(self):
        self.migrations_dir = Path(self.migrations_dir)
        self.seed_file = Path(self.seed_file)
        self.lock_timeout = float(self.lock_timeout)
        if self.lock_timeout <= 0:
            raise ValueError(
                f"lock_timeout must be positive, got {self.lock_timeout}"
            )


def load_config_file(config_file: str) -> Dict[str, Any]:
    """Load a JSON or YAML config file.

    Args:
        config_file: Path ending in .json, .yaml or .yml

    Returns:
        Configuration dictionary (the ``database`` section is flattened
        into the top level if present)

    Raises:
        ValueError: If the file does not contain a mapping
    """
    with open(config_file, 'r', encoding='utf-8') as fp:
        if config_file.endswith(('.yaml', '.yml')):
            try:
                conf = yaml.safe_load(fp)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {config_file}: {e}") from e
        else:
            conf = json.load(fp)

    if conf is None:
        return {}
    if not isinstance(conf, dict):
        raise ValueError(f"Config file {config_file} must contain a mapping")

    database = conf.pop('database', None)
    if isinstance(database, dict):
        # {"database": {"url": ...}} and {"database_url": ...} are equivalent
        if 'url' in database:
            conf.setdefault('database_url', database['url'])
        for key, value in database.items():
            if key != 'url':
                conf.setdefault(key, value)

    # {"logging": {"level": ..., "file": ...}}
    logging_conf = conf.pop('logging', None)
    if isinstance(logging_conf, dict):
        if 'level' in logging_conf:
            conf.setdefault('log_level', logging_conf['level'])
        if 'file' in logging_conf:
            conf.setdefault('log_file', logging_conf['file'])

    return conf


def database_url_from_env(environ=None) -> Optional[str]:
    """
    Connection string from the environment.

    ``DATABASE_URL`` wins; otherwise one is composed from ``DB_HOST``,
    ``DB_PORT``, ``DB_NAME``, ``DB_USER`` and ``DB_PASSWORD`` when
    ``DB_HOST`` is set.
    """
    environ = os.environ if environ is None else environ

    if environ.get('DATABASE_URL'):
        return environ['DATABASE_URL']

    host = environ.get('DB_HOST')
    if not host:
        return None

    port = environ.get('DB_PORT', '5432')
    name = environ.get('DB_NAME', 'rtm_database')
    user = environ.get('DB_USER')
    password = environ.get('DB_PASSWORD')

    credentials = ''
    if user:
        credentials = urllib.parse.quote(user, safe='')
        if password:
            credentials += ':' + urllib.parse.quote(password, safe='')
        credentials += '@'

    return f'postgresql://{credentials}{host}:{port}/{name}'


def settings_from_env(environ=None) -> Dict[str, Any]:
    """Settings present in the environment."""
    environ = os.environ if environ is None else environ
    values = {}

    database_url = database_url_from_env(environ)
    if database_url:
        values['database_url'] = database_url

    env_names = {
        'migrations_dir': 'RTM_MIGRATIONS_DIR',
        'seed_file': 'RTM_SEED_FILE',
        'log_level': 'RTM_LOG_LEVEL',
        'log_file': 'RTM_LOG_FILE',
        'lock_timeout': 'RTM_LOCK_TIMEOUT',
    }
    for key, env_name in env_names.items():
        if environ.get(env_name):
            values[key] = environ[env_name]

    return values


def load_settings(config_file: Optional[str] = None,
                  environ=None,
                  **overrides) -> Settings:
    """Resolve runner settings.

    Args:
        config_file: Optional JSON/YAML file
        environ: Environment mapping (defaults to os.environ)
        **overrides: Explicit values; None entries are ignored

    Returns:
        Settings instance

    Raises:
        ValueError: On unknown keys or invalid values
    """
    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    if config_file:
        file_values = load_config_file(config_file)
        unknown = set(file_values) - known
        if unknown:
            raise ValueError(
                f"Unknown settings in {config_file}: {', '.join(sorted(unknown))}"
            )
        values.update(file_values)

    values.update(settings_from_env(environ))
    values.update({k: v for k, v in overrides.items() if v is not None})

    parse_log_level(values.get('log_level', Settings.log_level))
    return Settings(**values)
