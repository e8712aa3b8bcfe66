from __future__ import annotations

import json
import sys
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class EventLogger:
    """
    Tiny JSONL logger for the cast feed service.

    Each log line is a single JSON object, so request diagnostics can be grepped
    or parsed without a log schema. Writes go to a stream (stderr by default) or
    to a file opened with `EventLogger.open`.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        session_id: str | None = None,
        request_id: str | None = None,
    ) -> None:
        self._stream = stream if stream is not None else sys.stderr
        self._owns_stream = False
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._request_id = (request_id or "").strip() or None
        self._lock = Lock()

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = False,
        session_id: str | None = None,
    ) -> "EventLogger":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        fp = p.open("w" if overwrite else "a", encoding="utf-8", newline="\n")
        logger = cls(fp, session_id=session_id)
        logger._owns_stream = True
        return logger

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def request_id(self) -> str | None:
        return self._request_id

    def for_request(self, request_id: str | None = None) -> "EventLogger":
        """Return a logger sharing this stream that tags every line with a request id."""
        child = EventLogger(
            self._stream,
            session_id=self._session_id,
            request_id=(request_id or "").strip() or uuid.uuid4().hex[:12],
        )
        child._lock = self._lock
        return child

    def close(self) -> None:
        with self._lock:
            if not self._owns_stream:
                return
            try:
                self._stream.flush()
            finally:
                self._stream.close()
            self._owns_stream = False

    def __enter__(self) -> "EventLogger":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        url: str | None = None,
        **data: Any,
    ) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(
                    traceback.format_exception(
                        type(exc), exc, exc.__traceback__
                    )
                ),
                limit=12000,
            ),
        }
        self.log("ERROR", event, url=url, error=err, **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        ev = (event or "").strip() or "event"

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": lvl,
            "event": ev,
            "session_id": self._session_id,
        }

        if self._request_id:
            record["request_id"] = self._request_id

        u = (url or "").strip()
        if u:
            record["url"] = u

        if data:
            record["data"] = data

        self._write(record)

    def _write(self, record: dict[str, Any]) -> None:
        payload = json.dumps(
            record,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )

        with self._lock:
            if self._stream.closed:
                return
            self._stream.write(payload + "\n")
            self._stream.flush()
