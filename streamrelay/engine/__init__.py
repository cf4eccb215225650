"""streamrelay engine: process supervision and output decoding for streaming CLIs."""
from .models import (
    StderrLine,
    TurnContext,
    TurnResult,
    TurnStatus,
)
from .config import RelayConfig
from .errors import (
    AttachmentError,
    ConfigError,
    ProcessExitError,
    ProcessSpawnError,
    RelayDroppedError,
    RelayError,
    SessionBusyError,
    TurnTimeoutError,
)
from .frame_decoder import EventKind, FrameDecoder, Record, RecordKind
