import enum
from dataclasses import dataclass, field

from app.core.config import get_settings, parse_csv


class GatewayStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


def is_terminal(status: GatewayStatus) -> bool:
    return status in (GatewayStatus.SUCCESS, GatewayStatus.FAILED)


@dataclass
class StatusMapping:
    """Vendor status vocabulary mapped onto GatewayStatus.

    Lookups are case-insensitive. Anything not listed maps to UNKNOWN, which
    callers treat like PENDING until their attempt budget runs out.
    """

    table: dict[str, GatewayStatus] = field(default_factory=dict)

    @classmethod
    def from_values(cls, *, success, pending, failed) -> "StatusMapping":
        mapping = cls()
        mapping.extend(GatewayStatus.PENDING, *pending)
        mapping.extend(GatewayStatus.FAILED, *failed)
        # Success last so an accidental overlap resolves in favour of it.
        mapping.extend(GatewayStatus.SUCCESS, *success)
        return mapping

    @classmethod
    def from_settings(cls, settings=None) -> "StatusMapping":
        settings = settings or get_settings()
        return cls.from_values(
            success=parse_csv(settings.gateway_success_statuses),
            pending=parse_csv(settings.gateway_pending_statuses),
            failed=parse_csv(settings.gateway_failed_statuses),
        )

    def extend(self, status: GatewayStatus, *values: str) -> "StatusMapping":
        for value in values:
            key = str(value or "").strip().lower()
            if key:
                self.table[key] = status
        return self

    def lookup(self, raw) -> GatewayStatus:
        key = str(raw or "").strip().lower()
        if not key:
            return GatewayStatus.UNKNOWN
        return self.table.get(key, GatewayStatus.UNKNOWN)


def normalize_status(raw, mapping: StatusMapping | None = None) -> GatewayStatus:
    if isinstance(raw, GatewayStatus):
        return raw
    return (mapping or StatusMapping.from_settings()).lookup(raw)
