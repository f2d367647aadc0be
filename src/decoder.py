"""GTFS-Realtime decoding module.

All gtfs-realtime-bindings / protobuf usage is isolated here. No other
module parses feed payloads.
"""

from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.transit import gtfs_realtime_pb2


class DecodeError(Exception):
    """Raised when a feed payload is not a valid GTFS-Realtime FeedMessage."""
    pass


def decode_feed(payload: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Decode a protobuf-encoded FeedMessage.

    Args:
        payload: Raw bytes returned by the feed endpoint

    Returns:
        The decoded FeedMessage

    Raises:
        DecodeError: If the payload cannot be parsed
    """
    message = gtfs_realtime_pb2.FeedMessage()
    try:
        message.ParseFromString(payload)
    except ProtobufDecodeError as e:
        raise DecodeError(f"Malformed GTFS-Realtime payload: {e}") from e
    return message
