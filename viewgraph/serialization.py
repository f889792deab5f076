"""
Job payload encoding.

A payload names one projection and the scope it should be derived under. It is a
versioned JSON document:

    {"version": 1, "projection": "daily_totals", "scope": {"filters": [["day", "2024-01-01"]]}}

which is zstd compressed, signed with a keyed blake2b digest and base64 encoded, so it
can travel as plain text through any job queue. Filter values must be JSON values, and
scopes with a custom reducer cannot be encoded.
"""

from abc import ABC, abstractmethod
from base64 import urlsafe_b64decode, urlsafe_b64encode
from binascii import Error as Base64Error
from hashlib import blake2b
from hmac import compare_digest
from threading import local as thread_context
from typing import TYPE_CHECKING, Any, Literal, final

from pydantic import BaseModel, ConfigDict, JsonValue, ValidationError
from zstandard import ZstdCompressor, ZstdDecompressor, ZstdError

from .exceptions import (
    PayloadError,
    TamperedDataError,
    UnserializableScopeError,
    UnsupportedPayloadVersionError,
)
from .scope import Scope

if TYPE_CHECKING:  # pragma: no cover
    from typing import ClassVar

PAYLOAD_VERSION = 1


class ScopePayload(BaseModel):
    filters: list[tuple[str, JsonValue]] = []

    model_config = ConfigDict(extra="forbid")


class _Versioned(BaseModel):
    version: Any = None


class JobPayload(BaseModel):
    version: Literal[1] = PAYLOAD_VERSION
    projection: str
    scope: ScopePayload

    model_config = ConfigDict(extra="forbid")


class Codec(ABC):
    @abstractmethod
    def serialize(self, payload: JobPayload) -> bytes:
        """Serialize a payload to a bytestream."""
        raise NotImplementedError()

    @abstractmethod
    def deserialize(self, data: bytes) -> JobPayload:
        """Deserialize a bytestream into a payload."""
        raise NotImplementedError()

    @abstractmethod
    def compress(self, data: bytes) -> bytes:
        """Compress and sign a bytestream for transport."""
        raise NotImplementedError()

    @abstractmethod
    def decompress(self, data: bytes) -> bytes:
        """Verify and decompress a bytestream from transport."""
        raise NotImplementedError()

    @final
    def encode(self, projection: str, scope: Scope) -> str:
        """Encode a projection and its scope into a text payload."""
        if scope.reducer is not None:
            raise UnserializableScopeError("custom reducers cannot be serialized")

        try:
            payload = JobPayload(
                projection=projection,
                scope=ScopePayload(filters=[tuple(f) for f in scope.filters]),
            )
        except ValidationError as e:
            raise UnserializableScopeError("filter values must be JSON values") from e

        return urlsafe_b64encode(self.compress(self.serialize(payload))).decode()

    @final
    def decode(self, data: str) -> tuple[str, Scope]:
        """Decode a text payload into a projection name and its scope."""
        try:
            raw = urlsafe_b64decode(data.encode())
        except (Base64Error, ValueError) as e:
            raise TamperedDataError() from e

        payload = self.deserialize(self.decompress(raw))
        return payload.projection, Scope.build(payload.scope.filters)


class ZstdJsonCodec(Codec):
    # Zstd is not thread safe so we should ensure a unique instance per thread
    _thread_context: "ClassVar[thread_context]" = thread_context()

    def __init__(self, secret: str) -> None:
        super().__init__()
        self.secret_key: bytes = secret.encode()

    def serialize(self, payload: JobPayload) -> bytes:
        return payload.model_dump_json().encode()

    def deserialize(self, data: bytes) -> JobPayload:
        try:
            version = _Versioned.model_validate_json(data).version
        except ValidationError as e:
            raise PayloadError("Job payload is not a JSON document.") from e

        if version != PAYLOAD_VERSION:
            raise UnsupportedPayloadVersionError(version)

        try:
            return JobPayload.model_validate_json(data)
        except ValidationError as e:
            raise PayloadError(f"Malformed job payload: {e}") from e

    @property
    def compressor(self) -> "ZstdCompressor":
        if not hasattr(self._thread_context, "compressor"):
            self._thread_context.compressor = ZstdCompressor()

        return self._thread_context.compressor

    @property
    def decompressor(self) -> "ZstdDecompressor":
        if not hasattr(self._thread_context, "decompressor"):
            self._thread_context.decompressor = ZstdDecompressor()

        return self._thread_context.decompressor

    def _sign(self, data: bytes) -> bytes:
        signer = blake2b(digest_size=16, key=self.secret_key, usedforsecurity=True)
        signer.update(data)
        return signer.hexdigest().encode()

    def compress(self, data: bytes) -> bytes:
        compressed = self.compressor.compress(data)
        return self._sign(compressed) + b"|" + compressed

    def decompress(self, compressed: bytes) -> bytes:
        try:
            signature, compressed = compressed.split(b"|", 1)
        except ValueError as e:
            raise TamperedDataError() from e

        if not compare_digest(self._sign(compressed), signature):
            raise TamperedDataError()

        try:
            return self.decompressor.decompress(compressed)
        except ZstdError as e:
            raise TamperedDataError() from e
