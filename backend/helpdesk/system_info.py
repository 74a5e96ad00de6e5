from __future__ import annotations

import re

from helpdesk.types import SystemInfo

_OS_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"\bwindows\s*(?:11|10|8\.1|8|7)\b", ""),
    (r"\bwindows\b", "Windows"),
    (r"\bmac\s*os(?:\s*x)?(?:\s+\d+(?:\.\d+)*)?\b|\bos x\b", ""),
    (r"\bubuntu(?:\s+\d+(?:\.\d+)*)?\b|\bdebian\b|\bfedora\b|\blinux\b", ""),
    (r"\bios(?:\s+\d+(?:\.\d+)*)?\b|\bipados\b", ""),
    (r"\bandroid(?:\s+\d+)?\b", ""),
    (r"\bchrome\s*os\b", "ChromeOS"),
)
_RAM_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(gb|g|mb)\s*(?:of\s+)?(?:ram|memory)\b|(?:ram|memory)\s*[:=]?\s*(\d+(?:\.\d+)?)\s*(gb|mb)\b", re.IGNORECASE)
_STORAGE_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(tb|gb)\s*(ssd|hdd|nvme|emmc|storage|disk|drive)?",
    re.IGNORECASE,
)
_AGE_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?|a|an|one|two|three|four|five|six)\s*(year|yr|month|week)s?\s*(?:old)?",
    re.IGNORECASE,
)
_DEVICE_TYPES: tuple[tuple[str, str], ...] = (
    ("laptop", "Laptop"),
    ("notebook", "Laptop"),
    ("macbook", "Laptop"),
    ("desktop", "Desktop"),
    ("workstation", "Desktop"),
    ("imac", "Desktop"),
    ("tablet", "Tablet"),
    ("ipad", "Tablet"),
    ("phone", "Phone"),
    ("iphone", "Phone"),
)


def _match_os(text: str) -> str | None:
    for pattern, label in _OS_PATTERNS:
        match = re.search(pattern, text, flags=re.IGNORECASE)
        if match:
            return label or match.group(0).strip()
    return None


def _match_ram(text: str) -> str | None:
    match = _RAM_PATTERN.search(text)
    if not match:
        return None
    amount = match.group(1) or match.group(3)
    unit = (match.group(2) or match.group(4) or "gb").upper()
    if unit == "G":
        unit = "GB"
    return f"{amount}{unit}"


def _match_storage(text: str, ram: str | None) -> str | None:
    for match in _STORAGE_PATTERN.finditer(text):
        amount, unit, kind = match.group(1), match.group(2).upper(), match.group(3)
        value = f"{amount}{unit}"
        # "16GB RAM" is memory, not storage.
        tail = text[match.end(): match.end() + 12].lower()
        if not kind and ("ram" in tail or "memory" in tail or value == ram):
            continue
        if kind and kind.lower() in {"storage", "disk", "drive"}:
            return value
        return f"{value} {kind.upper()}" if kind else value
    return None


def _match_age(text: str) -> str | None:
    match = _AGE_PATTERN.search(text)
    if not match:
        return None
    return match.group(0).strip()


def _match_device_type(text: str) -> str | None:
    lower = text.lower()
    for keyword, label in _DEVICE_TYPES:
        if re.search(rf"\b{keyword}\b", lower):
            return label
    return None


def extract_system_info(text: str) -> SystemInfo | None:
    raw = (text or "").strip()
    if not raw:
        return None
    ram = _match_ram(raw)
    info = SystemInfo(
        os=_match_os(raw),
        ram=ram,
        storage=_match_storage(raw, ram),
        device_age=_match_age(raw),
        device_type=_match_device_type(raw),
    )
    if not any((info.os, info.ram, info.storage, info.device_age, info.device_type)):
        return None
    return info


def capture_system_info(text: str) -> SystemInfo:
    """Structured fields when any are recognizable, otherwise the raw answer."""
    info = extract_system_info(text)
    if info is not None:
        return info
    return SystemInfo(raw=(text or "").strip() or None)


def describe_system_info(info: SystemInfo | None) -> str:
    if info is None:
        return "Not provided"
    parts = [
        f"{label}: {value}"
        for label, value in (
            ("OS", info.os),
            ("RAM", info.ram),
            ("Storage", info.storage),
            ("Device age", info.device_age),
            ("Device type", info.device_type),
        )
        if value
    ]
    if info.raw:
        parts.append(f"User description: {info.raw}")
    return "; ".join(parts) or "Not provided"
