"""Transcript persistence and output layout."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from datetime import datetime, timezone

from .models import TranscriptSegment

logger = logging.getLogger("callassist")

_CALL_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class InvalidCallId(ValueError):
    pass


def utc_now_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def timestamp_slug(dt: datetime | None = None) -> str:
    now = dt or datetime.now()
    return now.strftime("%Y-%m-%d")


def build_call_basename(call_id: str, dt: datetime | None = None) -> str:
    slug = call_id.strip().replace(" ", "-") if call_id else "Call"
    return f"{timestamp_slug(dt)}--{slug}"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def ensure_structure(base_dir: str) -> dict:
    root = base_dir or os.getcwd()
    transcripts = os.path.join(root, "transcripts")
    paths = {
        "root": root,
        "transcripts": transcripts,
        "temp": os.path.join(transcripts, "temp"),
        "history": os.path.join(transcripts, "history"),
        "reports": os.path.join(root, "Reports"),
        "sessions": os.path.join(root, "Sessions"),
        "logs": os.path.join(root, "Logs"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths


def validate_call_id(call_id: object) -> str:
    value = "" if call_id is None else str(call_id).strip()
    if not _CALL_ID_RE.match(value):
        raise InvalidCallId(f"Invalid callId: {call_id!r}")
    return value


class TranscriptStore:
    """File-backed transcript records.

    Each call has at most one ``temp`` record while in progress and one
    ``history`` record once finalized, both stored as
    ``{"transcripts": [{"text", "timestamp"}], "finalizedAt"?, "callId"?}``.
    """

    def __init__(self, base_dir: str) -> None:
        self.temp_dir = os.path.join(base_dir, "temp")
        self.history_dir = os.path.join(base_dir, "history")
        self._lock = threading.Lock()

    def _ensure_dirs(self) -> None:
        ensure_dir(self.temp_dir)
        ensure_dir(self.history_dir)

    def temp_path(self, call_id: str) -> str:
        return os.path.join(self.temp_dir, f"{validate_call_id(call_id)}.json")

    def history_path(self, call_id: str) -> str:
        return os.path.join(self.history_dir, f"{validate_call_id(call_id)}.json")

    @staticmethod
    def _read(path: str) -> dict | None:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None

    @staticmethod
    def _write(path: str, data: dict) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_path, path)

    def append(self, call_id: str, segment: TranscriptSegment) -> dict:
        path = self.temp_path(call_id)
        with self._lock:
            self._ensure_dirs()
            data = self._read(path) or {"transcripts": []}
            data.setdefault("transcripts", []).append(
                {"text": segment.text, "timestamp": segment.timestamp or utc_now_iso()}
            )
            self._write(path, data)
            total = len(data["transcripts"])
        logger.debug("Appended segment %s for call %s", total, call_id)
        return {"success": True, "totalSegments": total}

    def finalize(self, call_id: str) -> dict:
        temp_path = self.temp_path(call_id)
        history_path = self.history_path(call_id)
        with self._lock:
            self._ensure_dirs()
            try:
                data = self._read(temp_path)
            except ValueError as exc:
                logger.warning("Unreadable temp transcript for %s: %s", call_id, exc)
                data = None
            if data is None:
                return {
                    "success": False,
                    "message": "No temp transcript found to finalize",
                }
            data["finalizedAt"] = utc_now_iso()
            data["callId"] = call_id
            self._write(history_path, data)
            os.remove(temp_path)
        logger.info("Finalized transcript for call %s", call_id)
        return {
            "success": True,
            "message": "Transcript finalized and moved to history",
        }

    def get(self, call_id: str) -> dict:
        with self._lock:
            for path in (self.history_path(call_id), self.temp_path(call_id)):
                try:
                    data = self._read(path)
                except ValueError as exc:
                    logger.warning("Unreadable transcript %s: %s", path, exc)
                    continue
                if data is not None:
                    return data
        return {"transcripts": [], "message": "No transcript found"}

    def clear(self) -> dict:
        removed = 0
        failed = 0
        with self._lock:
            for folder in (self.history_dir, self.temp_dir):
                try:
                    names = os.listdir(folder)
                except FileNotFoundError:
                    continue
                for name in names:
                    try:
                        os.remove(os.path.join(folder, name))
                        removed += 1
                    except OSError as exc:
                        failed += 1
                        logger.warning("Clear failed for %s: %s", name, exc)
        logger.info("Cleared %s transcript files (%s failed)", removed, failed)
        if failed:
            return {"success": True, "message": "Files cleared (or none existed)"}
        return {"success": True, "message": "All transcript files cleared"}
