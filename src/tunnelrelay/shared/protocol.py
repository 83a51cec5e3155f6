"""JSON codec for channel frames."""

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .exceptions import MalformedMessage
from .models import ProtocolMessage, WireMessage

_adapter: TypeAdapter[ProtocolMessage] = TypeAdapter(ProtocolMessage)


def encode(message: WireMessage) -> str:
    """
    Serialize a message to a single text frame.

    Raises:
        MalformedMessage: If a field holds text JSON cannot carry.
    """
    try:
        return message.model_dump_json(by_alias=True, exclude_none=True)
    except PydanticSerializationError as exc:
        raise MalformedMessage(f"Unserializable {message.__class__.__name__}: {exc}") from exc


def decode(frame: str | bytes) -> ProtocolMessage:
    """
    Parse a text frame into exactly one protocol message.

    Raises:
        MalformedMessage: If the frame is not valid JSON, has no known
            ``type`` tag, or its fields do not validate.
    """
    try:
        return _adapter.validate_json(frame)
    except ValidationError as exc:
        raise MalformedMessage(f"Malformed frame: {exc.errors(include_url=False)}") from exc
