"""
In-memory record of issued verification tokens.

Records live for the lifetime of the process. Django serves requests on
worker threads, so every access goes through a single lock.
"""
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from x402sdk.types import isoformat_z


class DuplicateTokenError(Exception):
    """Raised when a token is stored twice."""

    def __init__(self, token: str):
        super().__init__(f'Verification token already issued: {token}')
        self.token = token


@dataclass(frozen=True)
class VerificationRecord:
    token: str
    payer: str
    amount: int
    chain: str
    issued_at: datetime
    request_id: Optional[str] = None
    transaction: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        data = asdict(self)
        data['issued_at'] = isoformat_z(self.issued_at)
        return {key: value for key, value in data.items() if value is not None}


class VerificationStore:

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, VerificationRecord] = {}
        self._by_request: Dict[str, List[str]] = {}

    def put(self, token: str, record: VerificationRecord) -> None:
        with self._lock:
            if token in self._records:
                raise DuplicateTokenError(token)
            self._records[token] = record
            if record.request_id:
                self._by_request.setdefault(record.request_id, []).append(token)

    def get(self, token: str) -> Optional[VerificationRecord]:
        with self._lock:
            return self._records.get(token)

    def by_request(self, request_id: str) -> List[VerificationRecord]:
        """Return every record minted for ``request_id``, oldest first."""
        with self._lock:
            return [self._records[token] for token in self._by_request.get(request_id, [])]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
