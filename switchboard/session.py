#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# File: session.py
# Description: File backed session store, one JSON file per session id
# Author: Ms. White
# Created: 2025-05-02
# Modified: 2025-06-19 18:12:26

import os
import json
import time
import uuid
import logging
import tempfile
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SESSION_FILE_VERSION = 1


class SessionHandle:
    """Access to the item list of one persisted session.

    Every call reads or rewrites the file, so a handle created in a later
    process sees everything earlier handles appended.
    """

    def __init__(self, store: "SessionStore", session_id: str):
        self.store = store
        self.session_id = session_id

    def append(self, items: List[Dict[str, Any]]):
        """
        Append items to the session.

        Args:
            items (List[Dict]): JSON serializable items, stored in order.
        """
        if not items:
            return
        data = self.store._read_file(self.session_id)
        data["items"].extend(items)
        self.store._save_file(self.session_id, data)

    def list(self) -> List[Dict[str, Any]]:
        return self.store._read_file(self.session_id)["items"]

    def pop(self) -> Optional[Dict[str, Any]]:
        """
        Remove and return the last item.

        Returns:
            Optional[Dict]: The removed item, or None if the session is empty.
        """
        data = self.store._read_file(self.session_id)
        if not data["items"]:
            return None
        item = data["items"].pop()
        self.store._save_file(self.session_id, data)
        return item

    def clear(self):
        """Delete the session file. A later append starts from an empty list."""
        self.store.delete_session(self.session_id)


class SessionStore:
    def __init__(self, directory: str = None):
        """
        Initialize the session store and ensure the sessions directory exists.

        Args:
            directory (str): Base path; files live in '<directory>/sessions'.

        Raises:
            ValueError: If directory is None or not a string.
            OSError: If the directory cannot be created or accessed.
        """
        if not directory or not isinstance(directory, str):
            raise ValueError("Session directory must be a valid non-empty string path.")

        try:
            self.path = Path(os.path.expanduser(directory)) / "sessions"
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to initialize session directory '{directory}': {e}")

    def get_or_create(self, session_id: Optional[str] = None) -> SessionHandle:
        """
        Return a handle for a session, creating its file when missing.

        Args:
            session_id (str, optional): Session id. A new one is generated when omitted.

        Returns:
            SessionHandle: Handle bound to the session id.
        """
        sid = session_id or str(uuid.uuid4())
        if not self._file(sid).exists():
            self._save_file(sid, {"version": SESSION_FILE_VERSION, "sessionId": sid, "items": []})
            logger.debug(f"[SESSION] Created session {sid}")
        return SessionHandle(self, sid)

    def list_sessions(self) -> List[Dict[str, Any]]:
        """
        Return metadata for every session in the directory, newest first.

        Returns:
            List[Dict]: Entries with id, item count and lastModified.
        """
        out = []
        for file in self.path.glob("*.json"):
            try:
                with open(file, "r") as f:
                    d = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"[SESSION] Skipping unreadable session file {file.name}: {e}")
                continue
            out.append({
                "id": d.get("sessionId", file.stem),
                "items": len(d.get("items", [])),
                "lastModified": d.get("lastModified")
            })
        return sorted(out, key=lambda x: x["lastModified"] or "", reverse=True)

    def delete_session(self, session_id: str) -> bool:
        file = self._file(session_id)
        if file.exists():
            file.unlink()
            logger.debug(f"[SESSION] Deleted session {session_id}")
            return True
        return False

    def cleanup_old_sessions(self, days: int = 30) -> int:
        """
        Delete session files not modified within the given number of days.

        Args:
            days (int): Age threshold in days.

        Returns:
            int: Number of sessions removed.
        """
        cutoff = time.time() - days * 86400
        removed = 0
        for file in self.path.glob("*.json"):
            if file.stat().st_mtime < cutoff:
                file.unlink()
                removed += 1
        if removed:
            logger.info(f"[SESSION] Removed {removed} session(s) older than {days} days")
        return removed

    # ---------------------------
    # Internal I/O
    # ---------------------------

    def _file(self, session_id: str) -> Path:
        return self.path / f"{session_id}.json"

    def _read_file(self, session_id: str) -> Dict:
        """
        Load a session file, or an empty session if it does not exist.

        Args:
            session_id (str): ID of the session file to read.

        Returns:
            Dict: Parsed session data.
        """
        file = self._file(session_id)
        if not file.exists():
            return {"version": SESSION_FILE_VERSION, "sessionId": session_id, "items": []}
        with open(file, "r") as f:
            data = json.load(f)
        data.setdefault("items", [])
        return data

    def _save_file(self, session_id: str, data: Dict):
        """
        Write session data to disk through a temporary file and rename.

        Args:
            session_id (str): ID of the session file to write.
            data (Dict): Session content to save.
        """
        data["version"] = SESSION_FILE_VERSION
        data["sessionId"] = session_id
        data["lastModified"] = datetime.now(timezone.utc).isoformat()

        fd, tmp = tempfile.mkstemp(dir=self.path, prefix=f".{session_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self._file(session_id))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
