import importlib
from typing import Callable, Type

from google.protobuf.message import Message

from transit_sync.runtime_utils.process_logger import ProcessLogger
from transit_sync.runtime_utils.sync_exception import MessageTypeNotFoundError

GTFS_RT_FEED_MESSAGE = "google.transit.gtfs_realtime_pb2.FeedMessage"

Decoder = Callable[[bytes], Message]


def load_message_type(message_type: str) -> Type[Message]:
    """
    resolve a generated protobuf message class from its dotted import path

    @param message_type - module path and class name, ie.
        google.transit.gtfs_realtime_pb2.FeedMessage
    """
    module_name, _, class_name = message_type.rpartition(".")
    if module_name == "":
        raise MessageTypeNotFoundError(message_type)

    try:
        module = importlib.import_module(module_name)
        message_class = getattr(module, class_name)
    except (ImportError, AttributeError) as exception:
        raise MessageTypeNotFoundError(message_type) from exception

    if not (isinstance(message_class, type) and issubclass(message_class, Message)):
        raise MessageTypeNotFoundError(message_type)

    return message_class


def load_decoder(message_type: str = GTFS_RT_FEED_MESSAGE) -> Decoder:
    """
    build a decoder that parses a binary document into message_type. raises
    google.protobuf.message.DecodeError on malformed input.
    """
    process_logger = ProcessLogger("load_decoder", message_type=message_type)
    process_logger.log_start()
    try:
        message_class = load_message_type(message_type)
    except MessageTypeNotFoundError as exception:
        process_logger.log_failure(exception)
        raise exception

    process_logger.log_complete()

    return message_class.FromString
