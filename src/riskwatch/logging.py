from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, TextIO

_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


class RiskWatchLogger:
    """Structured JSON logger writing one object per line."""

    def __init__(self, run_id: str, *, level: str = "info", stream: TextIO | None = None):
        self.run_id = run_id
        self.level = level
        self._stream = stream
        self._stage_starts: dict[str, datetime] = {}

    def debug(self, message: str, **kwargs: Any) -> None:
        self._emit("debug", message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._emit("error", message, **kwargs)

    @contextmanager
    def stage(self, name: str, **fields: Any) -> Iterator[None]:
        """Context manager that tracks stage timing."""
        start = datetime.now(timezone.utc)
        self._stage_starts[name] = start
        self.debug("stage_start", stage=name, **fields)
        status = "ok"
        try:
            yield
        except Exception as exc:  # pragma: no cover - pass-through
            status = "error"
            self.error("stage_error", stage=name, error=str(exc), **fields)
            raise
        finally:
            end = datetime.now(timezone.utc)
            duration_ms = int((end - start).total_seconds() * 1000)
            self.info("stage_end", stage=name, duration_ms=duration_ms, status=status, **fields)

    def _enabled(self, level: str) -> bool:
        return _LEVELS[level] >= _LEVELS.get(self.level, 20)

    def _emit(self, level: str, message: str, **kwargs: Any) -> None:
        if not self._enabled(level):
            return
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "run_id": self.run_id,
            "message": message,
        }
        payload.update(self._sanitize(kwargs))

        stream = self._stream or sys.stderr
        stream.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        stream.flush()

    @staticmethod
    def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
        redacted: Dict[str, Any] = {}
        for key, value in fields.items():
            if RiskWatchLogger._is_sensitive_key(key):
                redacted[key] = "***"
            else:
                redacted[key] = value
        return redacted

    @staticmethod
    def _is_sensitive_key(key: str) -> bool:
        lowered = key.lower()
        return any(token in lowered for token in ("secret", "password", "api_key", "apikey", "auth"))
