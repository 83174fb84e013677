"""Logging configuration for the studio API and its uvicorn server."""

from __future__ import annotations

import logging.config
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

ROTATE_BYTES = 5 * 1024 * 1024
ROTATE_BACKUPS = 5

_configured_dir: Optional[Path] = None


def _rotating(path: Path, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": formatter,
        "filename": str(path),
        "maxBytes": ROTATE_BYTES,
        "backupCount": ROTATE_BACKUPS,
        "encoding": "utf-8",
        "delay": True,
    }


def _stream(formatter: str, stream: str) -> Dict[str, Any]:
    return {"class": "logging.StreamHandler", "formatter": formatter, "stream": stream}


def _logger(handlers: List[str], level: str) -> Dict[str, Any]:
    return {"handlers": handlers, "level": level, "propagate": False}


def build_logging_config(log_dir: Path, level: str) -> Dict[str, Any]:
    """dictConfig for the ``manga_studio`` package plus uvicorn's own loggers.

    Studio records carry a timestamp and the module name; uvicorn records
    keep the uvicorn format.
    """
    app_log = log_dir / os.getenv("STUDIO_LOG_FILE", "studio.log")
    server_log = log_dir / "studio-server.log"
    access_log = log_dir / os.getenv("STUDIO_ACCESS_LOG_FILE", "studio-access.log")
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "studio": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s %(levelprefix)s %(name)s: %(message)s",
                "use_colors": None,
            },
            "server": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(message)s",
                "use_colors": None,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
            },
        },
        "handlers": {
            "studio_stream": _stream("studio", "ext://sys.stderr"),
            "studio_file": _rotating(app_log, "studio"),
            "server_stream": _stream("server", "ext://sys.stderr"),
            "server_file": _rotating(server_log, "server"),
            "access_stream": _stream("access", "ext://sys.stdout"),
            "access_file": _rotating(access_log, "access"),
        },
        "loggers": {
            "manga_studio": _logger(["studio_stream", "studio_file"], level),
            "uvicorn": _logger(["server_stream", "server_file"], level),
            "uvicorn.error": _logger(["server_stream", "server_file"], level),
            "uvicorn.access": _logger(["access_stream", "access_file"], level),
        },
        "root": {"handlers": ["server_stream", "server_file"], "level": level},
    }


def configure_logging(log_dir: Optional[Path] = None, level: Optional[str] = None) -> Path:
    """Install the handlers once and return the directory the files go to.

    ``STUDIO_LOG_DIR`` and ``STUDIO_LOG_LEVEL`` apply when no argument is given.
    """
    global _configured_dir
    if _configured_dir is not None:
        return _configured_dir

    target = log_dir or Path(os.getenv("STUDIO_LOG_DIR", "logs"))
    target.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(target, (level or os.getenv("STUDIO_LOG_LEVEL", "INFO")).upper()))
    _configured_dir = target
    return target


__all__ = ["configure_logging", "build_logging_config"]
