"""Credit balances and translation history persisted to a JSON file."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Protocol, TypedDict, cast

from .errors import QuotaExceededError
from .types import HistoryItem

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_CREDITS = 20
MAX_HISTORY_PAGE_SIZE = 50


class LedgerEntry(TypedDict, total=False):
    user_id: str
    request_id: str
    credits: int
    source_lang: str
    target_lang: str
    roi_count: int
    char_count: int
    provider: str
    model: str
    items: List[HistoryItem]
    status: Literal["ok", "error"]
    error: Optional[str]
    created_at: float


class HistoryPage(TypedDict):
    items: List[LedgerEntry]
    total: int
    page: int
    per_page: int


class CreditLedger(Protocol):
    def balance(self, user_id: str) -> int:
        ...

    def spend_and_log(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    def record_failure(self, entry: LedgerEntry) -> None:
        ...

    def history(self, user_id: str, page: int = 1, per_page: int = 20) -> HistoryPage:
        ...


class JsonCreditLedger:
    """Debit-and-log as one locked step, idempotent per request id.

    A request id that already produced a successful debit returns the first
    record again; it is never charged twice.
    """

    def __init__(self, path: Path, initial_credits: int = DEFAULT_INITIAL_CREDITS) -> None:
        self._path = path
        self._initial_credits = initial_credits
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = {}
        self._history: List[LedgerEntry] = []
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                raw: Any = json.load(fh)
        except (json.JSONDecodeError, OSError, ValueError):
            logger.warning("Ignoring unreadable ledger file %s", self._path)
            return
        if not isinstance(raw, dict):
            return
        balances = raw.get("balances", {})
        history = raw.get("history", [])
        if isinstance(balances, dict):
            self._balances = {
                str(user): int(credits)
                for user, credits in balances.items()
                if isinstance(credits, (int, float))
            }
        if isinstance(history, list):
            self._history = [cast(LedgerEntry, entry) for entry in history if isinstance(entry, dict)]

    def _persist(self) -> None:
        tmp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump({"balances": self._balances, "history": self._history}, fh, ensure_ascii=False)
            tmp_path.replace(self._path)
        except OSError:
            logger.exception("Failed to persist ledger to %s", self._path)
            tmp_path.unlink(missing_ok=True)
            raise

    def _balance_locked(self, user_id: str) -> int:
        return self._balances.get(user_id, self._initial_credits)

    def balance(self, user_id: str) -> int:
        with self._lock:
            return self._balance_locked(user_id)

    def grant(self, user_id: str, credits: int) -> int:
        with self._lock:
            self._balances[user_id] = self._balance_locked(user_id) + credits
            self._persist()
            return self._balances[user_id]

    def _find_ok(self, user_id: str, request_id: str) -> Optional[LedgerEntry]:
        for entry in self._history:
            if (
                entry.get("request_id") == request_id
                and entry.get("user_id") == user_id
                and entry.get("status") == "ok"
            ):
                return entry
        return None

    def spend_and_log(self, entry: LedgerEntry) -> LedgerEntry:
        user_id = entry["user_id"]
        request_id = entry["request_id"]
        needed = int(entry.get("credits", 0))
        with self._lock:
            existing = self._find_ok(user_id, request_id)
            if existing is not None:
                logger.info("Request %s already charged; skipping debit", request_id)
                return existing
            available = self._balance_locked(user_id)
            if available < needed:
                raise QuotaExceededError("Insufficient credits", reason="insufficient_credits")
            record = cast(LedgerEntry, {**entry, "status": "ok", "error": None, "created_at": time.time()})
            self._balances[user_id] = available - needed
            self._history.append(record)
            self._persist()
        logger.info("Charged %s credits to %s for request %s", needed, user_id, request_id)
        return record

    def record_failure(self, entry: LedgerEntry) -> None:
        record = cast(LedgerEntry, {**entry, "credits": 0, "status": "error", "created_at": time.time()})
        with self._lock:
            self._history.append(record)
            self._persist()

    def history(self, user_id: str, page: int = 1, per_page: int = 20) -> HistoryPage:
        page = max(1, page)
        per_page = max(1, min(MAX_HISTORY_PAGE_SIZE, per_page))
        with self._lock:
            # history is append-only, so reversed insertion order is newest first
            entries = [entry for entry in reversed(self._history) if entry.get("user_id") == user_id]
        start = (page - 1) * per_page
        return {
            "items": entries[start : start + per_page],
            "total": len(entries),
            "page": page,
            "per_page": per_page,
        }


__all__ = ["CreditLedger", "JsonCreditLedger", "LedgerEntry", "HistoryPage", "DEFAULT_INITIAL_CREDITS"]
