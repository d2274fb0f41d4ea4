"""structlog setup for secgate.

Call :func:`configure_logging` once per process (the CLI callback does);
modules then log with a module-level ``structlog.get_logger()``.

* JSON lines by default, because the gate runs inside CI and its log is
  read by machines first.  ``--log-text`` / ``SECGATE_LOG_JSON=false``
  switches to the coloured console renderer.
* Everything goes to stderr.  stdout belongs to the CLI's own output.
* :func:`run_logging` binds ``run_id`` into :mod:`structlog.contextvars`
  for the duration of a gate run, so events from worker threads and
  helper modules can be tied back to the report directory.
* Values are scrubbed before rendering: credential-looking strings go
  through :func:`secgate.modules.redact.redact_secrets`, a few key names
  are never printed, and oversized values are clipped.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

from secgate.modules.redact import redact_secrets

# Never rendered, whatever the value looks like.
_SUPPRESSED_KEYS = frozenset({"key", "secret", "password", "token", "credential", "report_key"})

# A single scanner description can run to pages; logs only need the gist.
_MAX_VALUE_CHARS = 1000


def _scrub_secrets(
    _logger: Any,
    _method: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    for name, value in event_dict.items():
        if name in _SUPPRESSED_KEYS:
            event_dict[name] = "[SUPPRESSED]"
        elif isinstance(value, str):
            event_dict[name] = redact_secrets(value)
    return event_dict


def _clip_long_values(
    _logger: Any,
    _method: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    for name, value in event_dict.items():
        if name != "exception" and isinstance(value, str) and len(value) > _MAX_VALUE_CHARS:
            event_dict[name] = value[:_MAX_VALUE_CHARS] + f"... [{len(value) - _MAX_VALUE_CHARS} chars clipped]"
    return event_dict


def _pre_render_chain() -> list[structlog.types.Processor]:
    """Processors shared by structlog events and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _clip_long_values,
        _scrub_secrets,
    ]


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Route structlog through the stdlib root logger.

    Parameters
    ----------
    level:
        Root level name; unknown names fall back to ``INFO``.
    json_output:
        JSON lines when *True*, console rendering otherwise.
    stream:
        Destination, ``sys.stderr`` when omitted.
    """
    out = stream or sys.stderr
    chain = _pre_render_chain()

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=out.isatty())

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


@contextmanager
def run_logging(run_id: str) -> Iterator[None]:
    """Tag every event logged inside the block with *run_id*."""
    structlog.contextvars.bind_contextvars(run_id=run_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("run_id")
