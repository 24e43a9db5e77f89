"""Wire format for the persistent channel.

Every frame is a JSON object ``{"event": <name>, "data": {...}}``. Field
names are camelCase on the wire.
"""

from __future__ import annotations

from typing import Any, ClassVar

import msgspec

# Inbound signal names.
NATIVE_LAUNCH = "native:launch"
NATIVE_KILL = "native:kill"
UAC_APPROVE = "uac:approve"
UAC_DENY = "uac:deny"


class Envelope(msgspec.Struct, forbid_unknown_fields=False):
    event: str
    data: dict[str, Any] = msgspec.field(default_factory=dict)


class LaunchSignal(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    app_key: str
    instance_id: str
    command: str | None = None
    stream: str | None = None


class KillSignal(msgspec.Struct, rename="camel", forbid_unknown_fields=False):
    instance_id: str


class EmptySignal(msgspec.Struct, forbid_unknown_fields=False):
    pass


SIGNAL_TYPES: dict[str, type[msgspec.Struct]] = {
    NATIVE_LAUNCH: LaunchSignal,
    NATIVE_KILL: KillSignal,
    UAC_APPROVE: EmptySignal,
    UAC_DENY: EmptySignal,
}


class OutboundEvent(msgspec.Struct, rename="camel", omit_defaults=True):
    event: ClassVar[str]


class ConnectionReady(OutboundEvent):
    event: ClassVar[str] = "connection:ready"

    connection_id: str


class UacRequired(OutboundEvent):
    event: ClassVar[str] = "uac:required"

    command: str
    risks: list[str]


class ExecResult(OutboundEvent, omit_defaults=False):
    event: ClassVar[str] = "exec:result"

    stdout: str
    stderr: str
    error: str | None = None


class AppStream(OutboundEvent):
    event: ClassVar[str] = "app:stream"

    instance_id: str
    app_key: str
    type: str
    url: str


class AppError(OutboundEvent):
    event: ClassVar[str] = "app:error"

    app_key: str
    instance_id: str
    error: str


class AppOutput(OutboundEvent):
    event: ClassVar[str] = "app:output"

    app_key: str
    stdout: str | None = None
    stderr: str | None = None


class SignalDecodeError(ValueError):
    pass


_encoder = msgspec.json.Encoder()
_envelope_decoder = msgspec.json.Decoder(Envelope)


def encode_event(event: OutboundEvent) -> str:
    return _encoder.encode({"event": event.event, "data": event}).decode()


def decode_signal(raw: str | bytes) -> tuple[str, Any]:
    """Decode an inbound frame into ``(name, payload)``.

    Unknown signal names decode with a ``None`` payload so the caller can
    log and drop them.
    """
    try:
        envelope = _envelope_decoder.decode(raw)
        signal_type = SIGNAL_TYPES.get(envelope.event)
        if signal_type is None:
            return envelope.event, None
        return envelope.event, msgspec.convert(envelope.data, type=signal_type)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise SignalDecodeError(str(exc)) from exc
