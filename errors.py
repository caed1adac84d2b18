"""Error kinds, user-facing messages and failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    NO_NETWORK = "NO_NETWORK"
    NO_CREDENTIAL = "NO_CREDENTIAL"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    DEVICE_BUSY = "DEVICE_BUSY"
    DEVICE_ERROR = "DEVICE_ERROR"
    UNSUPPORTED = "UNSUPPORTED"
    AUTH_FAILED = "AUTH_FAILED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    SESSION_ERROR = "SESSION_ERROR"


ERROR_MESSAGES = {
    ErrorKind.NO_NETWORK: "No internet connection. Please check your network.",
    ErrorKind.NO_CREDENTIAL: "API Key not found. Please ensure you have a valid key configured.",
    ErrorKind.PERMISSION_DENIED: "{device} access denied. Please allow {device_lower} permissions in your system settings.",
    ErrorKind.DEVICE_NOT_FOUND: "No {device_lower} found. Please check your devices.",
    ErrorKind.DEVICE_BUSY: "{device} is busy or not readable. Try closing other apps using it.",
    ErrorKind.DEVICE_ERROR: "{device} error: {detail}",
    ErrorKind.UNSUPPORTED: "{device} capture is not supported on this system.",
    ErrorKind.AUTH_FAILED: "Authentication failed. Invalid API Key.",
    ErrorKind.SERVICE_UNAVAILABLE: "Service unavailable (503). The model might be overloaded.",
    ErrorKind.NETWORK_ERROR: "Network error: {detail}",
    ErrorKind.SESSION_ERROR: "Live API Error: {detail}",
}

_GENERIC_NETWORK_DETAIL = "Network error (Possible firewall or connection issue)"


@dataclass(frozen=True)
class SessionError:
    kind: ErrorKind
    message: str
    detail: str = ""


def make_error(kind: ErrorKind, detail: str = "", device: str = "Microphone") -> SessionError:
    message = ERROR_MESSAGES[kind].format(
        device=device,
        device_lower=device.lower(),
        detail=detail or "Unknown error",
    )
    return SessionError(kind=kind, message=message, detail=detail)


def extract_message(error: object) -> str:
    """Best-effort message from exceptions, SDK errors, dicts or bare events."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        value = error.get("message") or error.get("error") or ""
        if isinstance(value, dict):
            return extract_message(value)
        return str(value)
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    if isinstance(error, BaseException):
        text = str(error)
        if text:
            return text
        return type(error).__name__
    if getattr(error, "type", None) == "error":
        return _GENERIC_NETWORK_DETAIL
    return str(error)


def _status_code(error: object) -> int | None:
    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_device_error(error: object, device: str = "Microphone") -> SessionError:
    """Map a microphone, speaker or display acquisition failure."""
    detail = extract_message(error)
    low = detail.lower()
    name = type(error).__name__ if isinstance(error, BaseException) else ""
    if isinstance(error, PermissionError) or "permission" in low or "not allowed" in low or "denied" in low:
        return make_error(ErrorKind.PERMISSION_DENIED, detail, device)
    if (
        "no default" in low
        or "not found" in low
        or "no device" in low
        or "invalid device" in low
        or "-9996" in low
    ):
        return make_error(ErrorKind.DEVICE_NOT_FOUND, detail, device)
    if "busy" in low or "unavailable" in low or "-9985" in low or "not readable" in low:
        return make_error(ErrorKind.DEVICE_BUSY, detail, device)
    if "not installed" in low or name == "NotImplementedError":
        return make_error(ErrorKind.UNSUPPORTED, detail, device)
    return make_error(ErrorKind.DEVICE_ERROR, detail, device)


def classify_transport_error(error: object) -> SessionError:
    """Map a failure observed while opening the live session."""
    detail = extract_message(error)
    code = _status_code(error)
    low = detail.lower()
    if code in (401, 403) or "401" in low or "api key not valid" in low or "unauthenticated" in low:
        return make_error(ErrorKind.AUTH_FAILED, detail)
    if code == 503 or "503" in low or "overloaded" in low or "unavailable" in low:
        return make_error(ErrorKind.SERVICE_UNAVAILABLE, detail)
    return make_error(ErrorKind.NETWORK_ERROR, detail or "Check connection")


def classify_session_error(error: object) -> SessionError:
    """Map an error reported by an already-open session."""
    detail = extract_message(error) or "Connection failed"
    code = _status_code(error)
    if code in (401, 403):
        return make_error(ErrorKind.AUTH_FAILED, detail)
    if code == 503:
        return make_error(ErrorKind.SERVICE_UNAVAILABLE, detail)
    return make_error(ErrorKind.SESSION_ERROR, detail)
