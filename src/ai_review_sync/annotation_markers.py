# src/ai_review_sync/annotation_markers.py
"""
Recognition and rendering of the annotation bodies this tool posts.

New annotations carry an embedded metadata block (an HTML comment holding
base64 JSON). Annotations posted by older releases have no such block and are
recognized from their visible text: severity badges, the resolved/outdated
markers, or the authorship footer.
"""
import base64
import binascii
import hashlib
import json
import logging
import re
from enum import Enum
from typing import Optional

from .models import Annotation, AnnotationMetadata, Finding, IssueSummary

logger = logging.getLogger(__name__)

TOOL_NAME = "ai-review-sync"
METADATA_VERSION = "2.0"

SEVERITY_BADGES = {
    "error": "\U0001f534",    # red circle
    "warning": "\U0001f7e1",  # yellow circle
    "info": "ℹ️",   # information source
}

AUTHORSHIP_FOOTER = f"<sub>Posted by {TOOL_NAME}</sub>"
RESOLVED_MARKER = "✅ **[RESOLVED]**"
OUTDATED_MARKER = "~~**[OUTDATED]**~~"
UPDATED_MARKER = "**Updated:**"

MESSAGE_SUMMARY_LIMIT = 100

RE_METADATA_BLOCK = re.compile(r'<!-- ai-review-sync:([A-Za-z0-9+/=]+) -->')
RE_SEVERITY_BADGE = re.compile(
    r'(?:\U0001f534|\U0001f7e1|⚠️?|ℹ️?)\s*\*\*(error|warning|info)\*\*:?',
    re.IGNORECASE,
)
RE_BADGE_ICONS = re.compile(r'[\U0001f534\U0001f7e1⚠ℹ✅️]')

# Lower-cased fragments that identify bodies written before metadata blocks existed
LEGACY_MARKERS = (
    AUTHORSHIP_FOOTER.lower(),
    f"posted by {TOOL_NAME}",
    RESOLVED_MARKER.lower(),
    OUTDATED_MARKER.lower(),
)


class AnnotationOrigin(str, Enum):
    """Who wrote an annotation, as far as its body tells."""

    STRUCTURED = "structured"  # carries a decodable metadata block
    LEGACY = "legacy"          # ours, recognized from visible markers only
    FOREIGN = "foreign"        # a human or another bot


def classify_annotation_body(body: Optional[str]) -> AnnotationOrigin:
    """
    Classifies an annotation body. This is the only place authorship is decided;
    everything else asks this function.
    """
    if not body:
        return AnnotationOrigin.FOREIGN
    if decode_metadata(body) is not None:
        return AnnotationOrigin.STRUCTURED

    lowered = body.lower()
    if RE_SEVERITY_BADGE.search(body) or any(marker in lowered for marker in LEGACY_MARKERS):
        return AnnotationOrigin.LEGACY
    return AnnotationOrigin.FOREIGN


def is_authored_by_us(body: Optional[str]) -> bool:
    return classify_annotation_body(body) is not AnnotationOrigin.FOREIGN


def encode_metadata(metadata: AnnotationMetadata) -> str:
    payload = {
        "v": metadata.version,
        "f": metadata.file_path,
        "l": metadata.line,
        "c": metadata.commit_sha,
        "p": metadata.position,
        "s": metadata.severity,
        "h": metadata.fingerprint,
    }
    payload = {k: v for k, v in payload.items() if v is not None}
    encoded = base64.b64encode(json.dumps(payload, separators=(',', ':')).encode('utf-8')).decode('ascii')
    return f"<!-- {TOOL_NAME}:{encoded} -->"


def decode_metadata(body: Optional[str]) -> Optional[AnnotationMetadata]:
    """Returns the embedded metadata, or None when the block is absent or unreadable."""
    if not body:
        return None
    match = RE_METADATA_BLOCK.search(body)
    if not match:
        return None

    try:
        payload = json.loads(base64.b64decode(match.group(1), validate=True).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.warning(f"Failed to decode annotation metadata block: {e}")
        return None

    if not isinstance(payload, dict) or "f" not in payload:
        logger.warning(f"Annotation metadata block has an unexpected shape: {payload!r}")
        return None

    return AnnotationMetadata(
        version=str(payload.get("v", "")),
        file_path=payload["f"],
        line=payload.get("l"),
        commit_sha=payload.get("c"),
        position=payload.get("p"),
        severity=payload.get("s"),
        fingerprint=payload.get("h"),
    )


def strip_metadata(body: str) -> str:
    return RE_METADATA_BLOCK.sub('', body).strip()


def visible_text(body: str) -> str:
    """The body without the metadata block, footer and separator."""
    text = strip_metadata(body)
    text = text.replace(AUTHORSHIP_FOOTER, '')
    lines = text.rstrip().split('\n')
    while lines and lines[-1].strip() in ('', '---'):
        lines.pop()
    return '\n'.join(lines).strip()


def infer_severity(body: str) -> str:
    metadata = decode_metadata(body)
    if metadata is not None and metadata.severity:
        return metadata.severity

    badge = RE_SEVERITY_BADGE.search(body)
    if badge:
        return badge.group(1).lower()

    lowered = body.lower()
    if SEVERITY_BADGES["error"] in body or "error" in lowered or "critical" in lowered:
        return "error"
    if SEVERITY_BADGES["warning"] in body or "⚠" in body or "warning" in lowered:
        return "warning"
    return "info"


def summarize_message(text: str, limit: int = MESSAGE_SUMMARY_LIMIT) -> str:
    """
    First meaningful line of a message, without badges or markup, truncated to `limit`.
    """
    if UPDATED_MARKER in text:
        text = text.rsplit(UPDATED_MARKER, 1)[1]
    text = text.replace(RESOLVED_MARKER, '').replace(OUTDATED_MARKER, '')

    first_line = next((line for line in text.split('\n') if line.strip()), '')
    message = RE_SEVERITY_BADGE.sub('', first_line)
    message = RE_BADGE_ICONS.sub('', message).replace('**', '').strip()
    if len(message) > limit:
        message = message[:limit - 3] + '...'
    return message


def finding_fingerprint(finding: Finding) -> str:
    """Stable identity of a finding's rendered content."""
    raw = '\x00'.join([
        finding.file,
        str(finding.line),
        finding.severity.lower(),
        finding.message.strip(),
        (finding.suggestion or '').strip(),
    ])
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()[:16]


def format_finding_text(finding: Finding) -> str:
    severity = finding.severity.lower()
    badge = SEVERITY_BADGES.get(severity, SEVERITY_BADGES["info"])
    text = f"{badge} **{severity.upper()}**: {finding.message.strip()}"
    if finding.suggestion:
        text += f"\n\n**Suggestion:**\n{finding.suggestion.strip()}"
    return text


def render_finding_body(finding: Finding, commit_sha: Optional[str] = None,
                        position: Optional[int] = None) -> str:
    """
    Full body for a new annotation: badge and message, optional suggestion,
    authorship footer and metadata block.
    """
    metadata = AnnotationMetadata(
        version=METADATA_VERSION,
        file_path=finding.file,
        line=finding.line,
        commit_sha=commit_sha,
        position=position,
        severity=finding.severity.lower(),
        fingerprint=finding_fingerprint(finding),
    )
    return f"{format_finding_text(finding)}\n\n---\n{AUTHORSHIP_FOOTER}\n{encode_metadata(metadata)}"


def render_updated_body(old_body: str, finding: Finding, commit_sha: Optional[str] = None,
                        position: Optional[int] = None) -> str:
    """
    Keeps the previous text struck through for audit and appends the new finding.
    """
    struck = []
    for line in visible_text(old_body).split('\n'):
        stripped = line.strip()
        if not stripped or (stripped.startswith('~~') and stripped.endswith('~~')):
            struck.append(line)
        else:
            struck.append(f"~~{stripped}~~")
    history = '\n'.join(struck)
    return f"{history}\n\n{UPDATED_MARKER}\n\n{render_finding_body(finding, commit_sha, position)}"


def render_resolved_body(body: str) -> str:
    if is_resolved_body(body):
        return body
    return f"{RESOLVED_MARKER}\n\n{body}"


def is_resolved_body(body: Optional[str]) -> bool:
    return bool(body) and body.lstrip().startswith(RESOLVED_MARKER)


def extract_issue(annotation: Annotation) -> IssueSummary:
    """Reporting snapshot of an annotation; annotations without a line report line 0."""
    return IssueSummary(
        file=annotation.file_path,
        line=annotation.line or 0,
        severity=annotation.severity,
        message=summarize_message(visible_text(annotation.body)),
    )


def summarize_finding(finding: Finding) -> IssueSummary:
    return IssueSummary(
        file=finding.file,
        line=finding.line,
        severity=finding.severity.lower(),
        message=summarize_message(finding.message),
    )
