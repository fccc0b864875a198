"""Malicious-input patterns shared by the API body filter and the offline client."""
import json
import re
from typing import NamedTuple, Optional


class Threat(NamedTuple):
    name: str
    code: str


THREAT_PATTERNS = [
    (Threat("Cross-Site Scripting (XSS)", "XSS_BLOCKED"), [
        re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE),
        re.compile(r"<script[^>]*>", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
        re.compile(r"<iframe[^>]*>", re.IGNORECASE),
        re.compile(r"eval\s*\(", re.IGNORECASE),
        re.compile(r"document\.", re.IGNORECASE),
        re.compile(r"window\.", re.IGNORECASE),
    ]),
    (Threat("SQL Injection", "SQL_INJECTION_BLOCKED"), [
        re.compile(r"union\s+select", re.IGNORECASE),
        re.compile(r"drop\s+table", re.IGNORECASE),
        re.compile(r"delete\s+from", re.IGNORECASE),
        re.compile(r"insert\s+into", re.IGNORECASE),
        re.compile(r";\s*(drop|delete|update|create|alter)", re.IGNORECASE),
        re.compile(r"--"),
        re.compile(r"/\*"),
        re.compile(r"'\s*(or|and)\s*'", re.IGNORECASE),
    ]),
    (Threat("Path Traversal", "PATH_TRAVERSAL_BLOCKED"), [
        re.compile(r"\.\./"),
        re.compile(r"\.\.\\+"),
        re.compile(r"%2e%2e", re.IGNORECASE),
        re.compile(r"\.\.%2f", re.IGNORECASE),
    ]),
    (Threat("Command Injection", "COMMAND_INJECTION_BLOCKED"), [
        re.compile(r";\s*(rm|del|kill|shutdown)", re.IGNORECASE),
        re.compile(r"\|\s*(cat|ls|ps|wget)", re.IGNORECASE),
        re.compile(r"`.*`"),
        re.compile(r"\$\(.*\)"),
    ]),
]


def scan_for_threats(content: str) -> Optional[Threat]:
    """Return the first threat family whose patterns match ``content``."""
    for threat, patterns in THREAT_PATTERNS:
        for pattern in patterns:
            if pattern.search(content):
                return threat
    return None


def scan_payload(payload) -> Optional[Threat]:
    """Scan a JSON body the way it is sent over the wire."""
    return scan_for_threats(json.dumps(payload, ensure_ascii=False))
