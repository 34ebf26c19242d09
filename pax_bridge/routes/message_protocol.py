"""
Message Protocol Handling Module
Runs sale exchanges against a terminal and keeps one exchange per terminal in flight
"""

import threading
import logging
from contextlib import contextmanager
from typing import Dict, Any, Optional

from .errors import TerminalBusyError
from .field_groups import SaleRequest
from .http_comm import LicenseValidator, PaxHttpClient
from .pax_config import TerminalConfig
from .pax_core import PaxCore, PaxFrame, PaxResponse

logger = logging.getLogger(__name__)

APPROVED_RESPONSE_CODE = "000000"


class TerminalLockRegistry:
    """One lock per terminal address; a busy terminal is refused, not queued"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def is_busy(self, key: str) -> bool:
        return self._lock_for(key).locked()

    @contextmanager
    def hold(self, key: str):
        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            logger.warning(f"Terminal {key} is busy, rejecting new sale")
            raise TerminalBusyError(f"Terminal {key} is already processing a transaction")
        try:
            yield
        finally:
            lock.release()


class SaleProcessor:
    """Main sale processing coordinator"""

    def __init__(
        self,
        pax_core: PaxCore,
        locks: Optional[TerminalLockRegistry] = None,
        license_validator: Optional[LicenseValidator] = None,
    ):
        self.pax_core = pax_core
        self.locks = locks or TerminalLockRegistry()
        self.license_validator = license_validator or LicenseValidator()

    def build_request(self, sale: SaleRequest, terminal: Optional[TerminalConfig] = None) -> Dict[str, Any]:
        """Pack a sale without sending it"""
        frame = self.pax_core.pack_sale_request(sale)
        result = self.describe_frame(frame)
        if terminal is not None:
            result["url"] = PaxHttpClient(terminal).build_url(frame.envelope)
        return result

    @staticmethod
    def describe_frame(frame: PaxFrame) -> Dict[str, Any]:
        return {
            "hex": frame.hex_string,
            "lrc": f"{frame.lrc:02x}",
            "envelope": frame.envelope,
        }

    def process_sale(self, sale: SaleRequest, terminal: TerminalConfig) -> PaxResponse:
        """Run one sale: validate license, pack, send, parse"""
        self.license_validator.validate(terminal.ip)

        frame = self.pax_core.pack_sale_request(sale)

        with self.locks.hold(terminal.key):
            logger.info(f"Sale {sale.invoice_number} awaiting terminal {terminal.key}")
            body = PaxHttpClient(terminal).send(frame.envelope)

        return self.pax_core.parse_response_message(body)

    def relay_envelope(self, envelope: str, terminal: TerminalConfig) -> str:
        """Forward a prebuilt envelope and return the raw Base64 reply"""
        with self.locks.hold(terminal.key):
            return PaxHttpClient(terminal).send(envelope)

    @staticmethod
    def summarize(response: PaxResponse) -> Dict[str, Any]:
        """Response dict with the caller-side approval flag"""
        result = response.to_dict()
        result["approved"] = response.response_code == APPROVED_RESPONSE_CODE
        result["inconclusive"] = not response.status or not response.response_code
        return result
