"""
HTTP Communication Module
Carries PAX envelopes to the terminal as a bare HTTP GET and validates licenses
"""

import socket
import logging
import time
import requests
from typing import Dict, Any, Optional

from .errors import LicenseError, TerminalTimeoutError, TransportError
from .pax_config import TerminalConfig

logger = logging.getLogger(__name__)


class PaxHttpClient:
    """One terminal, one blocking request/response exchange at a time"""

    def __init__(self, config: TerminalConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests

    def build_url(self, envelope: str) -> str:
        """Envelope goes verbatim in the query component"""
        return f"{self.config.base_url}?{envelope}"

    def send(self, envelope: str) -> str:
        """Send one envelope and return the Base64 response body"""
        url = self.build_url(envelope)
        logger.info(f"Sending envelope to {self.config.key} ({len(envelope)} chars)")
        logger.debug(f"Request URL: {url}")

        deadline = time.monotonic() + self.config.timeout
        try:
            r = self.session.get(
                url,
                timeout=(self.config.connect_timeout, self.config.timeout),
                stream=True,
            )
            try:
                text = self._read_body(r, deadline)
            finally:
                r.close()
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout waiting for terminal {self.config.key}: {e}")
            raise self._timeout_error()
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Cannot reach terminal {self.config.key}: {e}")
            raise TransportError(f"Cannot reach terminal {self.config.key}: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Terminal request failed: {e}")
            raise TransportError(f"Terminal request failed: {e}")

        logger.info(f"Terminal response: {r.status_code} - {len(text)} chars")

        if r.status_code != 200:
            raise TransportError(f"Terminal returned HTTP {r.status_code}: {text[:200]}")

        body = text.strip()
        if not body:
            raise TransportError(f"Terminal {self.config.key} returned an empty response")
        logger.debug(f"Response body: {body}")
        return body

    def _read_body(self, r, deadline: float) -> str:
        """Read the streamed reply; the read timeout alone only bounds each socket read"""
        chunks = []
        for chunk in r.iter_content(chunk_size=1024):
            chunks.append(chunk)
            if time.monotonic() > deadline:
                logger.error(f"Terminal {self.config.key} still sending after {self.config.timeout:.0f}s")
                raise self._timeout_error()
        return b"".join(chunks).decode("latin-1")

    def _timeout_error(self) -> TerminalTimeoutError:
        return TerminalTimeoutError(
            f"No response from terminal {self.config.key} within {self.config.timeout:.0f}s. "
            f"Check the terminal before retrying; use a new reference number."
        )

    def test_connection(self) -> bool:
        """Check that the terminal port accepts TCP connections"""
        logger.info(f"Testing TCP connection to {self.config.key}")
        try:
            with socket.create_connection(
                (self.config.ip, self.config.port), timeout=self.config.connect_timeout
            ):
                pass
        except OSError as e:
            logger.error(f"TCP connection failed to {self.config.key}: {e}")
            return False
        logger.info(f"TCP connection successful to {self.config.key}")
        return True


class LicenseValidator:
    """Validates the bridge license against the licensing backend"""

    def __init__(self, license_key: str = "", license_url: str = "", timeout: float = 10):
        self.license_key = license_key
        self.license_url = license_url
        self.timeout = timeout

    def validate(self, terminal_ip: str) -> Dict[str, Any]:
        """Raise LicenseError unless the backend accepts the key"""
        if not self.license_key:
            logger.warning("No license key provided, skipping validation (Development Mode)")
            return {"valid": True, "skipped": True}
        if not self.license_url:
            raise LicenseError("License key is set but no license URL is configured")

        try:
            r = requests.post(
                self.license_url,
                json={"licenseKey": self.license_key, "terminalIp": terminal_ip},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            data = r.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"License validation error: {e}")
            raise LicenseError(f"License Error: {e}")

        if r.status_code != 200 or not data.get("valid"):
            reason = data.get("error") or "License validation failed"
            logger.error(f"License rejected: {reason}")
            raise LicenseError(f"License Error: {reason}")

        logger.info("License validated successfully")
        return data
