"""RADIUS Protocol Constants and Definitions.

Packet codes and attribute types from RFC 2865 (Authentication) and
RFC 2869 (Message-Authenticator) used by the gateway's codecs and dispatcher.
"""

# Standard RADIUS Packet Codes (RFC 2865 §4.1)
# These values represent the first octet of a RADIUS packet
RADIUS_ACCESS_REQUEST = 1  #: Access-Request packet code
RADIUS_ACCESS_ACCEPT = 2  #: Access-Accept packet code
RADIUS_ACCESS_REJECT = 3  #: Access-Reject packet code
RADIUS_ACCOUNTING_REQUEST = 4  #: Accounting-Request packet code (not served)
RADIUS_ACCESS_CHALLENGE = 11  #: Access-Challenge packet code

# Codes the packet codec accepts; anything else is UnsupportedCode
SUPPORTED_CODES = frozenset(
    {
        RADIUS_ACCESS_REQUEST,
        RADIUS_ACCESS_ACCEPT,
        RADIUS_ACCESS_REJECT,
        RADIUS_ACCESS_CHALLENGE,
    }
)

CODE_NAMES = {
    RADIUS_ACCESS_REQUEST: "Access-Request",
    RADIUS_ACCESS_ACCEPT: "Access-Accept",
    RADIUS_ACCESS_REJECT: "Access-Reject",
    RADIUS_ACCOUNTING_REQUEST: "Accounting-Request",
    RADIUS_ACCESS_CHALLENGE: "Access-Challenge",
}

# Packet limits
HEADER_LENGTH = 20
AUTHENTICATOR_LENGTH = 16
MIN_RADIUS_PACKET_LENGTH = HEADER_LENGTH
MAX_RADIUS_PACKET_LENGTH = 4096  # RFC 2865 maximum
MAX_ATTRIBUTE_VALUE_LENGTH = 253  # 255 minus type and length octets
MAX_PASSWORD_LENGTH = 128  # RFC 2865 §5.2
PASSWORD_BLOCK_SIZE = 16

# Standard RADIUS Attribute Types (RFC 2865 §5)
ATTR_USER_NAME = 1
ATTR_USER_PASSWORD = 2
ATTR_CHAP_PASSWORD = 3
ATTR_NAS_IP_ADDRESS = 4
ATTR_NAS_PORT = 5
ATTR_SERVICE_TYPE = 6
ATTR_REPLY_MESSAGE = 18
ATTR_STATE = 24
ATTR_CLASS = 25
ATTR_VENDOR_SPECIFIC = 26
ATTR_CALLING_STATION_ID = 31
ATTR_NAS_IDENTIFIER = 32
ATTR_MESSAGE_AUTHENTICATOR = 80  # RFC 2869 §5.14
