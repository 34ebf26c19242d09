"""
PAX Core Protocol Module
Handles frame assembly, LRC calculation, hex/Base64 encoding and response parsing
"""

import base64
import binascii
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidFieldError
from .field_groups import (
    COMMAND_CREDIT,
    ETX,
    FS,
    PROTOCOL_VERSION,
    STX,
    TRANS_TYPE_SALE,
    US,
    FieldGroup,
    SaleRequest,
    build_field_groups,
)

logger = logging.getLogger(__name__)

TEXT_ENCODING = "latin-1"

# Response positions (top level, split on FS)
RSP_STATUS = 0
RSP_COMMAND = 1
RSP_VERSION = 2
RSP_RESPONSE_CODE = 3
RSP_RESPONSE_MESSAGE = 4
RSP_HOST_INFORMATION = 5
RSP_ACCOUNT_INFORMATION = 8
RSP_TRACE_INFORMATION = 9

_WHITESPACE = re.compile(r"\s+")


def text_to_bytes(value: str) -> bytes:
    """First encoding layer: field text to the terminal's single-byte charset"""
    try:
        return value.encode(TEXT_ENCODING)
    except UnicodeEncodeError:
        logger.error(f"Value cannot be encoded as {TEXT_ENCODING}: {value!r}")
        raise InvalidFieldError(f"Value contains characters the terminal cannot encode: {value!r}")


def bytes_to_hex_token(data: bytes) -> str:
    """Second encoding layer: lowercase hex, two digits per byte, no spaces"""
    return binascii.hexlify(data).decode("ascii")


def hex_token_to_bytes(token: str) -> bytes:
    """Inverse of bytes_to_hex_token"""
    return binascii.unhexlify(token)


def calculate_lrc(data: bytes) -> int:
    """Calculate LRC (Longitudinal Redundancy Check)"""
    lrc = 0
    for byte in data:
        lrc ^= byte
    logger.debug(f"LRC calculated: {lrc:02X}")
    return lrc


def hex_to_base64(hex_string: str) -> str:
    """Transport envelope: space-joined hex tokens -> raw bytes -> Base64"""
    clean = _WHITESPACE.sub("", hex_string)
    if len(clean) % 2:
        logger.warning(f"Discarding trailing odd hex digit in envelope: {clean[-1]!r}")
        clean = clean[:-1]
    return base64.b64encode(binascii.unhexlify(clean)).decode("ascii")


def base64_to_hex(envelope: str) -> str:
    """Inverse of hex_to_base64, one hex pair per byte joined with spaces"""
    data = base64.b64decode(envelope)
    return " ".join(bytes_to_hex_token(data[i : i + 1]) for i in range(len(data)))


def build_group_tokens(group: FieldGroup) -> List[bytes]:
    """Value tokens of one group with US between them.

    Every key keeps its position: an empty value adds no token but its
    separator stays, so an all-empty group of n keys yields n - 1 US bytes.
    """
    values = group.wire_values()
    tokens: List[bytes] = []
    for index, value in enumerate(values):
        if index:
            tokens.append(bytes([US]))
        if value != "":
            tokens.append(text_to_bytes(value))
    return tokens


def build_frame_tokens(
    groups: List[FieldGroup],
    command: str = COMMAND_CREDIT,
    version: str = PROTOCOL_VERSION,
    transaction_type: str = TRANS_TYPE_SALE,
) -> List[bytes]:
    """Ordered frame tokens from START through END (checksum not included)"""
    tokens = [
        bytes([STX]),
        text_to_bytes(command),
        bytes([FS]),
        text_to_bytes(version),
        bytes([FS]),
        text_to_bytes(transaction_type),
    ]
    for group in groups:
        tokens.append(bytes([FS]))
        tokens.extend(build_group_tokens(group))
    tokens.append(bytes([ETX]))
    return tokens


def raw_frame(tokens: List[bytes]) -> bytes:
    return b"".join(tokens)


def frame_lrc(tokens: List[bytes]) -> int:
    """LRC over every byte after START, END included"""
    return calculate_lrc(raw_frame(tokens)[1:])


def encode_frame(tokens: List[bytes], lrc: int) -> str:
    """Space-joined hex tokens of the frame followed by the checksum byte"""
    return " ".join(bytes_to_hex_token(token) for token in tokens + [bytes([lrc])])


@dataclass(frozen=True)
class PaxFrame:
    """One request frame; raw bytes and hex encoding come from the same tokens"""

    tokens: List[bytes]
    lrc: int

    @property
    def raw(self) -> bytes:
        """Frame bytes including START, END and the checksum byte"""
        return raw_frame(self.tokens) + bytes([self.lrc])

    @property
    def hex_tokens(self) -> List[str]:
        return self.hex_string.split(" ")

    @property
    def hex_string(self) -> str:
        return encode_frame(self.tokens, self.lrc)

    @property
    def envelope(self) -> str:
        return hex_to_base64(self.hex_string)


@dataclass
class PaxResponse:
    """Parsed terminal reply; absent positions are empty strings"""

    status: str = ""
    command: str = ""
    version: str = ""
    response_code: str = ""
    response_message: str = ""
    raw_response: List[str] = field(default_factory=list)
    host_information: List[str] = field(default_factory=list)
    account_information: List[str] = field(default_factory=list)
    trace_information: List[str] = field(default_factory=list)
    auth_code: str = ""
    transaction_id: str = ""
    card_last4: str = ""
    card_type: str = ""
    lrc_valid: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _position(parts: List[str], index: int) -> str:
    return parts[index] if index < len(parts) else ""


def _sub_fields(parts: List[str], index: int) -> List[str]:
    value = _position(parts, index)
    return value.split(chr(US)) if value else []


def _split_checksum(data: bytes):
    """Separate the trailing LRC byte from a response frame, if present"""
    if len(data) >= 2 and data[-2] == ETX:
        return data[:-1], data[-1]
    if data and data[-1] == ETX:
        return data, None
    logger.warning("Response does not end with ETX (+LRC); parsing anyway")
    return data, None


def parse_response(body: str) -> PaxResponse:
    """Parse a Base64 response body from the terminal.

    Never raises on malformed input: firmware revisions vary in how many
    groups they return, so missing fields come back as empty strings.
    """
    try:
        data = base64.b64decode(_WHITESPACE.sub("", body or ""), validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Response is not valid Base64 ({e}); returning empty response")
        return PaxResponse()

    logger.debug(f"Response bytes (hex): {bytes_to_hex_token(data)}")

    frame, received_lrc = _split_checksum(data)
    lrc_valid = None
    if received_lrc is not None:
        body_bytes = frame[1:] if frame[:1] == bytes([STX]) else frame
        computed = calculate_lrc(body_bytes)
        lrc_valid = computed == received_lrc
        if not lrc_valid:
            logger.warning(f"LRC mismatch: received {received_lrc:02X}, computed {computed:02X}")

    text = frame.decode(TEXT_ENCODING)
    parts = [part.replace(chr(STX), "").replace(chr(ETX), "") for part in text.split(chr(FS))]

    host_info = _sub_fields(parts, RSP_HOST_INFORMATION)
    account_info = _sub_fields(parts, RSP_ACCOUNT_INFORMATION)
    trace_info = _sub_fields(parts, RSP_TRACE_INFORMATION)
    account_number = _position(account_info, 0)

    response = PaxResponse(
        status=_position(parts, RSP_STATUS),
        command=_position(parts, RSP_COMMAND),
        version=_position(parts, RSP_VERSION),
        response_code=_position(parts, RSP_RESPONSE_CODE),
        response_message=_position(parts, RSP_RESPONSE_MESSAGE),
        raw_response=parts,
        host_information=host_info,
        account_information=account_info,
        trace_information=trace_info,
        auth_code=_position(host_info, 2),
        transaction_id=_position(host_info, 3),
        card_last4=account_number[-4:],
        card_type=_position(account_info, 6),
        lrc_valid=lrc_valid,
    )

    if len(parts) <= RSP_RESPONSE_MESSAGE:
        logger.warning(f"Short response: {len(parts)} fields, missing fields left empty")
    return response


class PaxCore:
    """Packs sale requests into frames and unpacks terminal replies"""

    def __init__(self, command: str = COMMAND_CREDIT, version: str = PROTOCOL_VERSION):
        self.command = command
        self.version = version

    def pack_sale_request(self, sale: SaleRequest) -> PaxFrame:
        """Pack a credit sale request following PAX protocol 1.28"""
        logger.info(
            f"Packing sale: amount={sale.amount}, invoice_no={sale.invoice_number}, "
            f"reference_no={sale.reference_number or '1'}"
        )
        groups = build_field_groups(sale)
        tokens = build_frame_tokens(groups, self.command, self.version, TRANS_TYPE_SALE)
        frame = PaxFrame(tokens, frame_lrc(tokens))
        logger.debug(f"Packed frame (hex): {frame.hex_string}")
        logger.info(f"Frame LRC: {frame.lrc:02X}")
        return frame

    def parse_response_message(self, body: str) -> PaxResponse:
        """Parse a terminal response body"""
        logger.info(f"Parsing response: {len(body or '')} Base64 characters")
        response = parse_response(body)
        logger.info(
            f"Response: status={response.status}, code={response.response_code}, "
            f"message={response.response_message}"
        )
        return response
