"""Typed outcomes of licence operations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ResultCode(str, Enum):
    """Discriminant carried by every licence operation result."""

    # Success
    ACTIVATED = "ACTIVATED"
    VALID = "VALID"
    RENEWED = "RENEWED"
    DEACTIVATED = "DEACTIVATED"
    NOTIFICATION_RECORDED = "NOTIFICATION_RECORDED"
    RESTORED = "RESTORED"

    # Failure
    MISSING_KEY = "MISSING_KEY"
    INVALID_KEY = "INVALID_KEY"
    INACTIVE_LICENSE = "INACTIVE_LICENSE"
    HARDWARE_MISMATCH = "HARDWARE_MISMATCH"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    INVALID_LICENSE_TYPE = "INVALID_LICENSE_TYPE"
    NOT_A_SUBSCRIPTION = "NOT_A_SUBSCRIPTION"
    INVALID_MONTHS = "INVALID_MONTHS"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    INVALID_BACKUP = "INVALID_BACKUP"


MESSAGES = {
    ResultCode.ACTIVATED: "Licence activated successfully",
    ResultCode.VALID: "Licence is valid",
    ResultCode.RENEWED: "Subscription renewed successfully",
    ResultCode.DEACTIVATED: "Licence deactivated successfully",
    ResultCode.NOTIFICATION_RECORDED: "Notification recorded",
    ResultCode.RESTORED: "Database restored successfully",
    ResultCode.MISSING_KEY: "Licence key is required",
    ResultCode.INVALID_KEY: "Licence not found",
    ResultCode.INACTIVE_LICENSE: "Licence has been deactivated",
    ResultCode.HARDWARE_MISMATCH: "Licence is already in use on another machine",
    ResultCode.SUBSCRIPTION_EXPIRED: "Subscription has expired",
    ResultCode.INVALID_LICENSE_TYPE: "Invalid licence type",
    ResultCode.NOT_A_SUBSCRIPTION: "Only subscriptions can be renewed",
    ResultCode.INVALID_MONTHS: "Months must be a positive integer",
    ResultCode.CONFIRMATION_REQUIRED: (
        'To confirm the restore send {"confirm": "RESTORE_CONFIRMED", "backup_data": {...}}'
    ),
    ResultCode.INVALID_BACKUP: "Invalid backup structure: licenses and stats are required",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class OperationResult:
    """Outcome of a simple administrative operation."""

    success: bool
    code: ResultCode
    licence_key: str = ""
    message: str = ""

    def __post_init__(self):
        if not self.message:
            self.message = MESSAGES.get(self.code, "")

    def to_dict(self) -> dict:
        data = {"success": self.success, "message": self.message}
        if not self.success:
            data["code"] = self.code.value
        if self.licence_key:
            data["license_key"] = self.licence_key
        return data


@dataclass
class ValidationResult(OperationResult):
    """Outcome of validating a licence from a POS terminal."""

    licence_type: Optional[str] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    customer_data: Optional[dict] = None
    customer_registered: Optional[bool] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.pop("license_key", None)
        if self.success:
            data["code"] = self.code.value
        optional = {
            "license_type": self.licence_type,
            "activated_at": _iso(self.activated_at),
            "expires_at": _iso(self.expires_at),
            "expired_at": _iso(self.expired_at),
            "days_remaining": self.days_remaining,
            "customer_data": self.customer_data,
            "customer_registered": self.customer_registered,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class RenewalResult(OperationResult):
    """Outcome of renewing a subscription."""

    new_expiration: Optional[datetime] = None
    months_added: int = 0
    renewal_count: int = 0

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.success:
            data.update({
                "new_expiration": _iso(self.new_expiration),
                "months_added": self.months_added,
                "renewal_count": self.renewal_count,
            })
        return data


@dataclass
class RestoreResult(OperationResult):
    """Outcome of restoring the store from a backup payload."""

    restored_licences: int = 0
    backup_info: Optional[dict] = None
    emergency_backup_path: Optional[str] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.success:
            data.update({
                "restored_licenses": self.restored_licences,
                "backup_info": self.backup_info or "Not available",
            })
        if self.emergency_backup_path:
            data["emergency_backup"] = self.emergency_backup_path
        return data


@dataclass
class IntegrityReport:
    """Read-only health check of the stored document."""

    structure_valid: bool
    total_licences: int = 0
    activated_licences: int = 0
    issues: list[str] = field(default_factory=list)
    file_exists: Optional[bool] = None
    file_size: Optional[int] = None
    last_modified: Optional[datetime] = None

    @property
    def healthy(self) -> bool:
        return self.structure_valid and not self.issues

    def to_dict(self) -> dict:
        checks = {
            "structure_valid": self.structure_valid,
            "total_licenses": self.total_licences,
            "activated_licenses": self.activated_licences,
            "issues": list(self.issues),
        }
        if self.file_exists is not None:
            checks["file_exists"] = self.file_exists
            checks["file_size"] = self.file_size
            checks["last_modified"] = _iso(self.last_modified)
        return {
            "success": True,
            "healthy": self.healthy,
            "checks": checks,
            "recommendation": (
                "Database is in good shape"
                if self.healthy
                else "Create a backup immediately"
            ),
        }
