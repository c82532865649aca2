"""
Disk cache for the single credential record (access token + expiry).
One record at a time; a new login replaces the whole file atomically.
"""
import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from charge_gateway.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class CredentialRecord:
    access_token: str
    expires_at: float
    client_id: str
    issued_at: float
    token_type: str = "Bearer"

    def expired(self, now: float | None = None, margin: float = 0) -> bool:
        """
        True once now has reached expires_at (minus margin).
        A record expiring exactly now counts as expired.
        """
        if now is None:
            now = time.time()
        return now >= self.expires_at - margin

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CredentialRecord":
        """Raises ValueError if required fields are missing or have the wrong type."""
        if not isinstance(data, dict):
            raise ValueError("credential record must be a JSON object")
        access_token = data.get("access_token")
        client_id = data.get("client_id")
        token_type = data.get("token_type", "Bearer")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token missing")
        if not isinstance(client_id, str):
            raise ValueError("client_id missing")
        if not isinstance(token_type, str):
            raise ValueError("token_type must be a string")
        times = {}
        for key in ("expires_at", "issued_at"):
            value = data.get(key)
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} missing or not a number")
            times[key] = float(value)
        return cls(
            access_token=access_token,
            expires_at=times["expires_at"],
            client_id=client_id,
            issued_at=times["issued_at"],
            token_type=token_type,
        )


class TokenStore:
    """JSON file holding at most one CredentialRecord. No network access."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def load(self) -> CredentialRecord | None:
        """
        Return the cached record, or None if absent, unreadable or malformed.
        Never raises: a bad cache only means the next call logs in again.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Token cache %s unreadable, treating as empty: %s", self.path, e)
            return None
        try:
            return CredentialRecord.from_dict(json.loads(raw))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.warning("Token cache %s malformed, treating as empty: %s", self.path, e)
            return None

    def save(self, record: CredentialRecord) -> None:
        """Write the whole record (temp file + rename). Raises StorageError on failure."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            logger.error("Could not write token cache %s: %s", self.path, e)
            raise StorageError(f"Could not write token cache {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Leftover temp file %s", tmp_name)

    def clear(self) -> None:
        """Remove the cached record. A missing file is not an error."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not remove token cache {self.path}: {e}") from e
