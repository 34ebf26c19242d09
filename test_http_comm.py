"""
Unit tests for terminal transport, license validation and sale processing
"""

import base64
import unittest
from unittest.mock import MagicMock, patch

import requests

from pax_bridge.routes.errors import (
    ConfigurationError,
    LicenseError,
    TerminalBusyError,
    TerminalTimeoutError,
    TransportError,
)
from pax_bridge.routes.field_groups import SaleRequest
from pax_bridge.routes.http_comm import LicenseValidator, PaxHttpClient
from pax_bridge.routes.message_protocol import SaleProcessor, TerminalLockRegistry
from pax_bridge.routes.pax_config import TerminalConfig, validate_terminal_config
from pax_bridge.routes.pax_core import PaxCore


def approved_body() -> str:
    frame = b"\x02" + b"\x1c".join([b"0", b"T01", b"1.28", b"000000", b"APPROVED"]) + b"\x03"
    lrc = 0
    for byte in frame[1:]:
        lrc ^= byte
    return base64.b64encode(frame + bytes([lrc])).decode("ascii")


def http_reply(status_code=200, text=""):
    reply = MagicMock()
    reply.status_code = status_code
    reply.text = text
    reply.iter_content.return_value = [text.encode("latin-1")]
    return reply


class TestTerminalConfig(unittest.TestCase):
    """Test cases for terminal address validation"""

    def test_valid(self):
        config = validate_terminal_config("192.168.1.50", "10009", "90")
        self.assertEqual(config.port, 10009)
        self.assertEqual(config.timeout, 90.0)
        self.assertEqual(config.base_url, "http://192.168.1.50:10009/")
        self.assertEqual(validate_terminal_config("pax-a920.local", 10009).ip, "pax-a920.local")

    def test_ipv6_literal_is_bracketed(self):
        config = validate_terminal_config("fe80::1", 10009)
        self.assertEqual(config.base_url, "http://[fe80::1]:10009/")
        self.assertEqual(PaxHttpClient(config).build_url("AAA="), "http://[fe80::1]:10009/?AAA=")

    def test_invalid(self):
        for ip, port, timeout in (
            ("", "10009", None),
            (None, "10009", None),
            ("192.168.1.50", "abc", None),
            ("192.168.1.50", "70000", None),
            ("192.168.1.50", "0", None),
            ("bad host/", "10009", None),
            ("192.168.1.50", "10009", "-5"),
        ):
            with self.assertRaises(ConfigurationError):
                validate_terminal_config(ip, port, timeout)


class TestPaxHttpClient(unittest.TestCase):
    """Test cases for the HTTP GET exchange"""

    def setUp(self):
        self.config = TerminalConfig("192.168.1.50", 10009, timeout=120.0, connect_timeout=5.0)
        self.client = PaxHttpClient(self.config)

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_send_success(self, mock_get):
        """Envelope goes verbatim into the query string"""
        mock_get.return_value = http_reply(200, approved_body() + "\n")
        body = self.client.send("AlQwMBwxLjI4+/==")
        self.assertEqual(body, approved_body())
        mock_get.assert_called_once_with(
            "http://192.168.1.50:10009/?AlQwMBwxLjI4+/==", timeout=(5.0, 120.0), stream=True
        )

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_timeout(self, mock_get):
        """No bytes before the timeout is a transport failure"""
        mock_get.side_effect = requests.exceptions.ReadTimeout("read timed out")
        with self.assertRaises(TerminalTimeoutError):
            self.client.send("AA==")

    @patch("pax_bridge.routes.http_comm.time.monotonic")
    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_slow_reply_hits_overall_deadline(self, mock_get, mock_clock):
        """A reply trickling in past the timeout is still a timeout"""
        reply = http_reply(200, "")
        reply.iter_content.return_value = [b"Al", b"QwMA", b"=="]
        mock_get.return_value = reply
        mock_clock.side_effect = [0.0, 60.0, 121.0, 180.0]
        with self.assertRaises(TerminalTimeoutError):
            self.client.send("AA==")
        reply.close.assert_called_once()

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_connection_refused(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(TransportError) as ctx:
            self.client.send("AA==")
        self.assertNotIsInstance(ctx.exception, TerminalTimeoutError)

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_http_error_status(self, mock_get):
        mock_get.return_value = http_reply(500, "oops")
        with self.assertRaises(TransportError):
            self.client.send("AA==")

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_empty_body(self, mock_get):
        mock_get.return_value = http_reply(200, "  ")
        with self.assertRaises(TransportError):
            self.client.send("AA==")

    @patch("pax_bridge.routes.http_comm.socket.create_connection")
    def test_connection_check(self, mock_connect):
        mock_connect.return_value = MagicMock()
        self.assertTrue(self.client.test_connection())
        mock_connect.side_effect = OSError("unreachable")
        self.assertFalse(self.client.test_connection())


class TestLicenseValidator(unittest.TestCase):
    """Test cases for license validation"""

    def test_skipped_without_key(self):
        result = LicenseValidator().validate("192.168.1.50")
        self.assertTrue(result["skipped"])

    def test_key_without_url(self):
        with self.assertRaises(LicenseError):
            LicenseValidator("KEY-1").validate("192.168.1.50")

    @patch("pax_bridge.routes.http_comm.requests.post")
    def test_valid_license(self, mock_post):
        reply = http_reply(200)
        reply.json.return_value = {"valid": True}
        mock_post.return_value = reply
        result = LicenseValidator("KEY-1", "https://license.example/validate").validate("10.0.0.2")
        self.assertTrue(result["valid"])
        _, kwargs = mock_post.call_args
        self.assertEqual(kwargs["json"], {"licenseKey": "KEY-1", "terminalIp": "10.0.0.2"})

    @patch("pax_bridge.routes.http_comm.requests.post")
    def test_rejected_license(self, mock_post):
        reply = http_reply(403)
        reply.json.return_value = {"valid": False, "error": "expired"}
        mock_post.return_value = reply
        with self.assertRaises(LicenseError) as ctx:
            LicenseValidator("KEY-1", "https://license.example/validate").validate("10.0.0.2")
        self.assertIn("expired", str(ctx.exception))


class TestTerminalLockRegistry(unittest.TestCase):
    """Test cases for per-terminal serialization"""

    def test_busy_terminal_rejected(self):
        locks = TerminalLockRegistry()
        with locks.hold("10.0.0.2:10009"):
            self.assertTrue(locks.is_busy("10.0.0.2:10009"))
            with self.assertRaises(TerminalBusyError):
                with locks.hold("10.0.0.2:10009"):
                    pass
            with locks.hold("10.0.0.3:10009"):
                pass
        self.assertFalse(locks.is_busy("10.0.0.2:10009"))

    def test_released_after_error(self):
        locks = TerminalLockRegistry()
        with self.assertRaises(RuntimeError):
            with locks.hold("t"):
                raise RuntimeError("boom")
        self.assertFalse(locks.is_busy("t"))


class TestSaleProcessor(unittest.TestCase):
    """Test cases for the sale exchange"""

    def setUp(self):
        self.processor = SaleProcessor(PaxCore())
        self.terminal = TerminalConfig("192.168.1.50", 10009)
        self.sale = SaleRequest(amount="19.99", invoice_number="INV-1001")

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_process_sale(self, mock_get):
        mock_get.return_value = http_reply(200, approved_body())
        response = self.processor.process_sale(self.sale, self.terminal)
        self.assertEqual(response.response_code, "000000")
        url = mock_get.call_args[0][0]
        envelope = url.split("?", 1)[1]
        self.assertEqual(envelope, PaxCore().pack_sale_request(self.sale).envelope)
        self.assertFalse(self.processor.locks.is_busy(self.terminal.key))

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_timeout_propagates(self, mock_get):
        mock_get.side_effect = requests.exceptions.ReadTimeout()
        with self.assertRaises(TerminalTimeoutError):
            self.processor.process_sale(self.sale, self.terminal)
        self.assertFalse(self.processor.locks.is_busy(self.terminal.key))

    @patch("pax_bridge.routes.http_comm.requests.get")
    def test_busy_terminal(self, mock_get):
        with self.processor.locks.hold(self.terminal.key):
            with self.assertRaises(TerminalBusyError):
                self.processor.process_sale(self.sale, self.terminal)
        mock_get.assert_not_called()

    def test_build_request(self):
        result = self.processor.build_request(self.sale, self.terminal)
        self.assertTrue(result["hex"].startswith("02 543030 1c 312e3238 1c 3031 1c 31393939 1f 1f 1f 1f 1f 1c"))
        self.assertEqual(result["url"], f"http://192.168.1.50:10009/?{result['envelope']}")

    def test_summarize(self):
        response = PaxCore().parse_response_message(approved_body())
        summary = SaleProcessor.summarize(response)
        self.assertTrue(summary["approved"])
        self.assertFalse(summary["inconclusive"])
        empty = SaleProcessor.summarize(PaxCore().parse_response_message("???"))
        self.assertFalse(empty["approved"])
        self.assertTrue(empty["inconclusive"])


if __name__ == "__main__":
    unittest.main()
