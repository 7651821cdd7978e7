"""Serialization of ZooKeeper node data."""

import io
from abc import ABC, abstractmethod
from typing import Dict, Generic, Mapping, TypeVar

from jproperties import Properties, PropertyError

from .exceptions import SerializationError
from .models import DEFAULT_CHARSET

T = TypeVar("T")

PROPERTIES_COMMENT = "Serialized by ZKClient -- PropertiesSerializer"


class DataSerializer(ABC, Generic[T]):
    """
    Converts node values to bytes and back.

    Implementations raise SerializationError for values they cannot
    encode and for malformed input, and never modify the input buffer.
    """

    @abstractmethod
    def serialize(self, value: T) -> bytes:
        raise NotImplementedError()

    @abstractmethod
    def deserialize(self, data: bytes) -> T:
        raise NotImplementedError()


class BytesSerializer(DataSerializer[bytes]):
    """Passes raw bytes through unchanged."""

    def serialize(self, value: bytes) -> bytes:
        if not isinstance(value, (bytes, bytearray)):
            raise SerializationError(f"Expected bytes, got {type(value).__name__}")
        return bytes(value)

    def deserialize(self, data: bytes) -> bytes:
        return bytes(data)

    @classmethod
    def get_instance(cls) -> "BytesSerializer":
        return BYTES_SERIALIZER


class StringSerializer(DataSerializer[str]):
    """UTF-8 text."""

    def serialize(self, value: str) -> bytes:
        if not isinstance(value, str):
            raise SerializationError(f"Expected str, got {type(value).__name__}")
        try:
            return value.encode(DEFAULT_CHARSET)
        except UnicodeEncodeError as e:
            raise SerializationError(f"Serialize string failed: {e}") from e

    def deserialize(self, data: bytes) -> str:
        try:
            return bytes(data).decode(DEFAULT_CHARSET)
        except UnicodeDecodeError as e:
            raise SerializationError(f"Deserialize string failed: {e}") from e

    @classmethod
    def get_instance(cls) -> "StringSerializer":
        return STRING_SERIALIZER


class PropertiesSerializer(DataSerializer[Dict[str, str]]):
    """
    Key/value property bags in the Java .properties text format.

    The charset is fixed to UTF-8. Values come back as a plain dict.
    """

    def serialize(self, value: Mapping[str, str]) -> bytes:
        if not isinstance(value, Mapping):
            raise SerializationError(f"Expected a mapping, got {type(value).__name__}")

        properties = Properties()
        try:
            for key, item in value.items():
                properties[key] = item
            out = io.BytesIO()
            properties.store(
                out,
                initial_comments=PROPERTIES_COMMENT,
                encoding=DEFAULT_CHARSET,
                timestamp=True,
            )
        except (PropertyError, TypeError, ValueError) as e:
            raise SerializationError(f"Serialize properties failed: {e}") from e
        return out.getvalue()

    def deserialize(self, data: bytes) -> Dict[str, str]:
        properties = Properties()
        try:
            properties.load(io.BytesIO(bytes(data)), encoding=DEFAULT_CHARSET)
        except (PropertyError, UnicodeDecodeError, ValueError) as e:
            raise SerializationError(f"Deserialize properties failed: {e}") from e
        return dict(properties.properties)

    @classmethod
    def get_instance(cls) -> "PropertiesSerializer":
        return PROPERTIES_SERIALIZER


BYTES_SERIALIZER = BytesSerializer()
STRING_SERIALIZER = StringSerializer()
PROPERTIES_SERIALIZER = PropertiesSerializer()
