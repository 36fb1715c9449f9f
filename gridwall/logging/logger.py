"""
Hierarchical logger with automatic name detection.

Features:
- Logger name derived from the caller's module and class (computed once)
- Optional rotating log file per top-level app name
- Structured fields: log.info("Message", key=value) -> "Message [key=value]"
- Connection context (connId, user) stamped onto records by context filter

Usage:
    from gridwall.logging import getLogger

    class Broadcaster:
        def __init__(self):
            self.log = getLogger()  # 'gridwall.server.broadcaster.Broadcaster'

    log = getLogger()  # module-level: 'gridwall.core.layoutDoc'
"""

import inspect, logging, logging.handlers, socket
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone as tz

from .context import installConnectionContextFilter


_hostname = socket.gethostname()
_configured = False
_fileHandlers = {}  # logPath -> handler, shared by every logger of an app
_config = {
    'logDir': None,          # None: console only
    'maxBytes': 10_000_000,
    'backupCount': 5,
    'console': True,
    'level': logging.INFO,
    'utc': False
}


def configureLogging(logDir: Optional[str] = None, maxBytes: int = 10_000_000,
                     backupCount: int = 5, console: bool = True,
                     level: str = 'INFO', utc: bool = False):
    """
    Configure global logging settings (call once at startup, before getLogger).

    Args:
        logDir: Directory for rotating log files (None disables file logging)
        maxBytes: Size per log file before rotation
        backupCount: Rotated files kept per app
        console: Also log to stderr
        level: Minimum level name
        utc: UTC timestamps instead of local time
    """
    global _configured

    _config.update({'logDir': logDir, 'maxBytes': maxBytes, 'backupCount': backupCount,
                    'console': console, 'level': getattr(logging, level.upper(), logging.INFO),
                    'utc': utc})

    if logDir:
        Path(logDir).mkdir(parents=True, exist_ok=True)
    _configured = True


_skippedModules = ('gridwall.logging', 'importlib')


def _ownerClass(frameLocals: dict) -> Optional[str]:
    if 'self' in frameLocals:
        return type(frameLocals['self']).__name__
    if 'cls' in frameLocals and isinstance(frameLocals['cls'], type):
        return frameLocals['cls'].__name__
    return None


def _autoDetectName() -> str:
    """Logger name from the first caller frame outside this package, e.g. 'gridwall.server.gate.AuthorizationGate'"""
    caller = inspect.currentframe().f_back
    try:
        while caller is not None:
            module = inspect.getmodule(caller)
            moduleName = module.__name__ if module else None
            if moduleName and moduleName != '__main__' and not moduleName.startswith(_skippedModules):
                className = _ownerClass(caller.f_locals)
                return f"{moduleName}.{className}" if className else moduleName
            caller = caller.f_back
        return 'unknown'
    finally:
        del caller


class StructuredFormatter(logging.Formatter):
    """
    Formatter that appends structured fields.

    Format: timestamp - hostname - logger.name - level - message [field1=value1, field2=value2]
    """

    _excluded = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'message', 'pathname', 'process', 'processName',
        'relativeCreated', 'thread', 'threadName', 'exc_info',
        'exc_text', 'stack_info', 'hostname', 'asctime', 'taskName'
    }

    def __init__(self, fmt=None, datefmt=None, utc=False):
        super().__init__(fmt, datefmt)
        self.utc = utc

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, tz=tz.utc if self.utc else None)
        if datefmt:
            return stamp.strftime(datefmt)
        return f"{stamp:%Y-%m-%d %H:%M:%S},{int(record.msecs):03d}"

    def format(self, record):
        record.hostname = _hostname

        fields = [f"{key}={value}" for key, value in record.__dict__.items()
                  if key not in self._excluded and not key.startswith('_')]

        # Work on the formatted copy; other handlers see the original msg
        originalMsg = record.msg
        if fields:
            record.msg = f"{originalMsg} [{', '.join(fields)}]"
        try:
            return super().format(record)
        finally:
            record.msg = originalMsg


def getLogger(name: Optional[str] = None) -> logging.Logger:
    """
    Get or create a logger, naming it from the call stack when no name is given.

    The returned logger accepts structured fields as keyword arguments:
        log.warning("[Gate] Unauthorized", action='rotate-stream', role='monitor')
    """
    if not _configured:
        configureLogging()

    if name is None:
        name = _autoDetectName()

    logger = logging.getLogger(name)
    logger.propagate = False

    if not logger.handlers and not hasattr(logger, '_configuredByGridwall'):
        logger.setLevel(_config['level'])

        if _config['logDir']:
            appName = name.split('.')[0]
            logPath = str(Path(_config['logDir']) / f"{appName}.log")
            if logPath not in _fileHandlers:
                fileHandler = logging.handlers.RotatingFileHandler(
                    logPath,
                    maxBytes=_config['maxBytes'],
                    backupCount=_config['backupCount'],
                    encoding='utf-8'
                )
                fileHandler.setLevel(_config['level'])
                fileHandler.setFormatter(StructuredFormatter(
                    '%(asctime)s - %(hostname)s - %(name)s - %(levelname)s - %(message)s',
                    utc=_config['utc']
                ))
                _fileHandlers[logPath] = fileHandler
            logger.addHandler(_fileHandlers[logPath])

        if _config['console']:
            consoleHandler = logging.StreamHandler()
            consoleHandler.setLevel(_config['level'])
            consoleHandler.setFormatter(StructuredFormatter(
                '%(asctime)s %(name)s - %(levelname)s - %(message)s',
                utc=_config['utc']
            ))
            logger.addHandler(consoleHandler)

        installConnectionContextFilter(logger)
        logger._configuredByGridwall = True

    return _wrapLogger(logger)


def _wrapLogger(logger: logging.Logger) -> logging.Logger:
    """
    Let log methods take structured fields as **kwargs.

    log.info("Message", field=value) instead of log.info("Message", extra={'field': value})
    """
    if hasattr(logger, '_isWrapped'):
        return logger

    def wrap(original):
        def method(msg, *args, **kwargs):
            excInfo = kwargs.pop('exc_info', False)
            if kwargs:
                original(msg, *args, extra=kwargs, exc_info=excInfo)
            else:
                original(msg, *args, exc_info=excInfo)
        return method

    logger.debug = wrap(logger.debug)
    logger.info = wrap(logger.info)
    logger.warning = wrap(logger.warning)
    logger.error = wrap(logger.error)
    logger.critical = wrap(logger.critical)
    logger._isWrapped = True

    return logger
