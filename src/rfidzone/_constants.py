"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Reader wire protocol
# ------------------------------------------------------------------

FRAME_HEADER = 0xCF
#: Header, address, command(2), length -- the bytes before status.
FRAME_PREFIX_LEN = 5
FRAME_CRC_LEN = 2
#: Smallest accumulator the assembler will try to scan.
FRAME_MIN_SCAN_LEN = 6

INVENTORY_RESPONSE_CMD = 0x0001
STATUS_OK = 0x00

#: Fixed inventory-poll payload (length, address, command).
INVENTORY_PAYLOAD = bytes((0x04, 0x00, 0x01))

CRC16_INIT = 0xFFFF
CRC16_POLY_REFLECTED = 0x8408

# ------------------------------------------------------------------
# EPC handling
# ------------------------------------------------------------------

EPC_VENDOR_PREFIX = "E280"
EPC_CANONICAL_LEN = 20
EPC_LONG_LEN = 24

# ------------------------------------------------------------------
# Backend
# ------------------------------------------------------------------

EVENT_SOURCE = "uhf-reader"
EVENTS_ENDPOINT = "/api/documents/rfid/events"
PRESENCE_ENDPOINT = "/api/documents/rfid/epc/{epc}"

PRESENCE_IN_ROOM = "in_room"
PRESENCE_OUT_OF_ROOM = "out_of_room"
PRESENCE_UNKNOWN = "unknown"

ZONE_PRESENCE: dict[str, str] = {
    "IN": PRESENCE_IN_ROOM,
    "OUT": PRESENCE_OUT_OF_ROOM,
}
