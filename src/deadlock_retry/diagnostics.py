from __future__ import annotations
import base64
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from ._util import maybe_await
from .errors import DiagnosticsUnavailable
from .types import EngineProbe

logger = logging.getLogger(__name__)

VERSION_QUERY = "show variables like 'version'"
LEGACY_STATUS_COMMAND = "show innodb status"
STATUS_COMMAND = "show engine innodb status"
DEFAULT_ADAPTERS: Tuple[str, ...] = ("mysql", "mariadb")

LOG_FORMAT = (
    "retry_tx.attempt=%d retry_tx.max_attempts=%d "
    "retry_tx.opentransactions=%d retry_tx.innodbstatusb64=%s"
)

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?")


@dataclass(frozen=True)
class CapabilityState:
    status: str
    command: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.status != "unknown"

    @property
    def available(self) -> bool:
        return self.status == "available"


UNKNOWN = CapabilityState("unknown")
UNAVAILABLE = CapabilityState("unavailable")


def available(command: str) -> CapabilityState:
    return CapabilityState("available", command)


def status_command_for(version: Any) -> str:
    """Pick the InnoDB status statement for a server version string."""
    if isinstance(version, bytes):
        version = version.decode("utf-8", "replace")
    m = _VERSION_RE.match(str(version).strip())
    if not m:
        raise ValueError(f"unrecognised server version: {version!r}")
    major, minor = int(m.group(1)), int(m.group(2) or 0)
    return LEGACY_STATUS_COMMAND if (major, minor) < (5, 5) else STATUS_COMMAND


def encode_status(status: str) -> str:
    """Base64 with no embedded newlines, so the blob stays on one log line."""
    return base64.b64encode(status.encode("utf-8")).decode("ascii").replace("\n", "")


def _status_from_row(row: Any) -> str:
    if row is None:
        raise DiagnosticsUnavailable("status query returned no row")
    if isinstance(row, Mapping):
        value = row.get("Status", row.get("status"))
    elif isinstance(row, (str, bytes)):
        value = row
    else:
        values = tuple(row)
        value = values[-1] if values else None
    if value is None:
        raise DiagnosticsUnavailable("status query returned no Status column")
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    return str(value)


def _first_row_value(rows: Any) -> Any:
    first = list(rows)[0]
    if isinstance(first, Mapping):
        return first.get("Value", first.get("value"))
    return first[1]


async def probe_status_command(
    probe: Optional[EngineProbe],
    *,
    adapters: Iterable[str] = DEFAULT_ADAPTERS,
    log: Optional[logging.Logger] = None,
) -> CapabilityState:
    """
    Find out whether the engine can report InnoDB status to this connection.

    Never raises: anything going wrong (no permission, unsupported statement,
    lost connection) results in UNAVAILABLE. Without a probe nothing can be
    learned and the state stays UNKNOWN.
    """
    log = log or logger
    if probe is None:
        return UNKNOWN
    try:
        name = str(probe.adapter_name() or "").lower()
        if not any(name.startswith(a.lower()) for a in adapters):
            return UNAVAILABLE
        rows = await maybe_await(probe.select_rows(VERSION_QUERY))
        command = status_command_for(_first_row_value(rows))
        await maybe_await(probe.select_one(command))
    except Exception as exc:
        log.info("Cannot log innodb status: %s", exc)
        return UNAVAILABLE
    return available(command)


class DiagnosticsCapability:
    """
    Resolve-once cache of the status command.

    The state is one immutable object swapped in a single assignment, so
    concurrent first use can at worst probe twice; the result is the same.
    """

    def __init__(self, state: CapabilityState = UNKNOWN):
        self._state = state

    @property
    def state(self) -> CapabilityState:
        return self._state

    @property
    def command(self) -> Optional[str]:
        return self._state.command

    def reset(self) -> None:
        self._state = UNKNOWN

    async def resolve(
        self,
        probe: Optional[EngineProbe],
        *,
        adapters: Iterable[str] = DEFAULT_ADAPTERS,
        log: Optional[logging.Logger] = None,
    ) -> CapabilityState:
        state = self._state
        if state.resolved:
            return state
        state = await probe_status_command(probe, adapters=adapters, log=log)
        if state.resolved:
            self._state = state
        return state


_process_capability = DiagnosticsCapability()


def process_capability() -> DiagnosticsCapability:
    """The capability shared by executors that aren't given their own."""
    return _process_capability


class DiagnosticsReporter:
    def __init__(
        self,
        probe: Optional[EngineProbe] = None,
        *,
        capability: Optional[DiagnosticsCapability] = None,
        adapters: Iterable[str] = DEFAULT_ADAPTERS,
        logger: Optional[logging.Logger] = None,
    ):
        self.probe = probe
        self.capability = capability if capability is not None else process_capability()
        self.adapters = tuple(adapters)
        self.log = logger or logging.getLogger(__name__)

    async def ensure_capability(self) -> CapabilityState:
        return await self.capability.resolve(self.probe, adapters=self.adapters, log=self.log)

    async def capture_status(self) -> str:
        state = self.capability.state
        if not state.available or self.probe is None:
            raise DiagnosticsUnavailable("innodb status command not available")
        row = await maybe_await(self.probe.select_one(state.command))
        return _status_from_row(row)

    async def encoded_status(self) -> str:
        try:
            return encode_status(await self.capture_status())
        except DiagnosticsUnavailable:
            return ""
        except Exception as exc:
            self.log.info("Cannot log innodb status: %s", exc)
            return ""

    async def report(self, attempt: int, max_attempts: int, open_transactions: int) -> str:
        """Emit the per-retry WARNING line and return it."""
        status = await self.encoded_status()
        args = (attempt, max_attempts, open_transactions, status)
        self.log.warning(LOG_FORMAT, *args)
        return LOG_FORMAT % args
