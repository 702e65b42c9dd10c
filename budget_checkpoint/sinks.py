"""Checkpoint sink adapters for the external persistence collaborator.

Every adapter is idempotent on ``CheckpointObligation.key``: delivering the same obligation
twice stores it once.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import sqlite3
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Protocol

import httpx

from budget_checkpoint.config import Settings
from budget_checkpoint.errors import SinkDeliveryError
from budget_checkpoint.schema import CheckpointObligation

logger = logging.getLogger(__name__)

HTTP_SINK_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
MAX_RETRY_DELAY_SECONDS = 30.0
IDEMPOTENCY_HEADER = "Idempotency-Key"
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class CheckpointSink(Protocol):
    """Protocol for persistence collaborators receiving obligations."""

    def deliver(self, obligation: CheckpointObligation) -> None:
        """Durably record the obligation or raise ``SinkDeliveryError``."""


class MemorySink:
    """List-backed sink, deduplicated by obligation key."""

    def __init__(self) -> None:
        self._delivered: dict[str, CheckpointObligation] = {}

    def deliver(self, obligation: CheckpointObligation) -> None:
        self._delivered.setdefault(obligation.key, obligation)

    @property
    def obligations(self) -> list[CheckpointObligation]:
        return list(self._delivered.values())


class JsonDirectorySink:
    """Write one JSON file per obligation under a directory."""

    def __init__(self, output_dir: Path | str) -> None:
        self._output_dir = Path(output_dir)

    def path_for(self, obligation: CheckpointObligation) -> Path:
        """Build the deterministic file path for an obligation."""
        return self._output_dir / _obligation_filename(obligation)

    def deliver(self, obligation: CheckpointObligation) -> None:
        output_path = self.path_for(obligation)
        if output_path.exists():
            return
        payload = json.dumps(obligation.to_payload(), indent=2, sort_keys=True) + "\n"
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            temp_path = output_path.with_suffix(".json.tmp")
            temp_path.write_text(payload, encoding="utf-8")
            temp_path.replace(output_path)
        except OSError as error:
            raise SinkDeliveryError(
                f"Could not write checkpoint '{obligation.key}' to '{output_path}': {error}.",
                obligation_key=obligation.key,
            ) from error


class SQLiteCheckpointSink:
    """SQLite-backed sink storing obligation payloads keyed by obligation key."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()

    def _open_connection(self) -> sqlite3.Connection:
        """Open a SQLite connection."""
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        """Create checkpoint table and indexes if missing."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._open_connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoint_obligations (
                    obligation_key TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    tier TEXT NOT NULL,
                    is_emergency INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    recorded_at REAL NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_checkpoint_obligations_session
                ON checkpoint_obligations (session_id, sequence)
                """
            )

    def deliver(self, obligation: CheckpointObligation) -> None:
        try:
            with self._open_connection() as connection:
                connection.execute(
                    """
                    INSERT INTO checkpoint_obligations (
                        obligation_key, session_id, sequence, tier, is_emergency, payload,
                        recorded_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(obligation_key) DO NOTHING
                    """,
                    (
                        obligation.key,
                        obligation.session_id,
                        obligation.sequence,
                        obligation.tier,
                        int(obligation.is_emergency),
                        json.dumps(obligation.to_payload(), sort_keys=True),
                        time.time(),
                    ),
                )
        except sqlite3.Error as error:
            raise SinkDeliveryError(
                f"Could not store checkpoint '{obligation.key}': {error}.",
                obligation_key=obligation.key,
            ) from error

    def get(self, obligation_key: str) -> CheckpointObligation | None:
        """Read one stored obligation by key."""
        with self._open_connection() as connection:
            row = connection.execute(
                "SELECT payload FROM checkpoint_obligations WHERE obligation_key = ?",
                (obligation_key,),
            ).fetchone()
        if row is None:
            return None
        return CheckpointObligation.model_validate_json(row[0])

    def list_for_session(self, session_id: str) -> list[CheckpointObligation]:
        """Return a session's stored obligations in emission order."""
        with self._open_connection() as connection:
            rows = connection.execute(
                """
                SELECT payload FROM checkpoint_obligations
                WHERE session_id = ?
                ORDER BY sequence
                """,
                (session_id,),
            ).fetchall()
        return [CheckpointObligation.model_validate_json(row[0]) for row in rows]


class HttpCheckpointSink:
    """POST obligations to a webhook, retrying 429/5xx responses on the sink side."""

    def __init__(
        self,
        client: httpx.Client,
        endpoint: str,
        *,
        max_attempts: int = HTTP_SINK_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}.")
        self._client = client
        self._endpoint = endpoint
        self._max_attempts = max_attempts

    def deliver(self, obligation: CheckpointObligation) -> None:
        headers = {IDEMPOTENCY_HEADER: obligation.key}
        payload = obligation.to_payload()
        attempt_number = 1
        while True:
            try:
                response = self._client.post(self._endpoint, json=payload, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL) as error:
                raise SinkDeliveryError(
                    f"Checkpoint '{obligation.key}' delivery failed: {error}.",
                    obligation_key=obligation.key,
                ) from error
            # 409 means the receiver already holds this key.
            if response.status_code < 400 or response.status_code == 409:
                return
            if attempt_number >= self._max_attempts or not _should_retry(response.status_code):
                raise SinkDeliveryError(
                    f"Checkpoint '{obligation.key}' delivery failed with status "
                    f"{response.status_code} after {attempt_number} attempt(s).",
                    obligation_key=obligation.key,
                )
            delay_seconds = _retry_delay_seconds(response, attempt_number)
            logger.info(
                "Retrying checkpoint %s in %.2fs (status %d)",
                obligation.key,
                delay_seconds,
                response.status_code,
            )
            _sleep_for_retry(delay_seconds)
            attempt_number += 1


def build_http_client(timeout_seconds: int = 20, *, trust_env: bool = True) -> httpx.Client:
    """Build the HTTP client used by the webhook sink."""
    return httpx.Client(
        headers={"Content-Type": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )


def build_sink(settings: Settings) -> CheckpointSink | None:
    """Pick a sink from settings: webhook, then SQLite, then directory."""
    if settings.webhook_url:
        return HttpCheckpointSink(build_http_client(), settings.webhook_url)
    if settings.sink_db_path is not None:
        return SQLiteCheckpointSink(settings.sink_db_path)
    if settings.sink_dir is not None:
        return JsonDirectorySink(settings.sink_dir)
    return None


def _obligation_filename(obligation: CheckpointObligation) -> str:
    """Build a deterministic, filesystem-safe filename for an obligation."""
    safe_session = UNSAFE_FILENAME_CHARS.sub("_", obligation.session_id)[:64]
    digest = hashlib.sha256(obligation.session_id.encode("utf-8")).hexdigest()[:8]
    return f"{safe_session}__{digest}__{obligation.sequence:04d}__{obligation.tier}.json"


def _should_retry(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _retry_after_header(response: httpx.Response) -> float | None:
    """Read ``Retry-After`` as delta seconds or an HTTP date; ``None`` when unusable."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if math.isfinite(seconds) and seconds >= 0 else None
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _retry_delay_seconds(response: httpx.Response, attempt_number: int) -> float:
    """Honor the receiver's ``Retry-After`` up to a cap, else back off exponentially."""
    requested = _retry_after_header(response)
    if requested is None:
        requested = DEFAULT_RETRY_BACKOFF_SECONDS * 2 ** (attempt_number - 1)
    return min(requested, MAX_RETRY_DELAY_SECONDS)


def _sleep_for_retry(seconds: float) -> None:
    time.sleep(seconds)


def load_obligation_file(path: Path | str) -> CheckpointObligation:
    """Read an obligation previously written by ``JsonDirectorySink``."""
    payload: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    return CheckpointObligation.model_validate(payload)
