# src/ai_review_sync/diff_parser.py
"""
Unified diff parsing with GitHub-compatible comment positions.

Position convention: every hunk header occupies one position slot. The first
header of a file sits at position 0, so the first body line below it is
position 1; each later header takes the next slot before its body continues
the count. "\\ No newline at end of file" markers consume nothing.
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

from unidiff import LINE_TYPE_ADDED, LINE_TYPE_CONTEXT, LINE_TYPE_REMOVED
from unidiff.constants import DEV_NULL, LINE_TYPE_NO_NEWLINE, RE_HUNK_HEADER

from .models import (
    LINE_ADD, LINE_CONTEXT, LINE_DELETE,
    STATUS_ADDED, STATUS_DELETED, STATUS_MODIFIED, STATUS_RENAMED,
    DiffHunk, DiffLine, UnifiedDiff,
)

logger = logging.getLogger(__name__)

RE_FILE_BOUNDARY = re.compile(r'^diff --git ', re.MULTILINE)
RE_GIT_HEADER_PATHS = re.compile(r'^a/(.*) b/(.*)$')


def parse_diff_text(diff_text: str) -> List[UnifiedDiff]:
    """
    Parses raw multi-file diff text (e.g., from git diff or the SCM diff media type)
    into a list of UnifiedDiff objects.

    Files whose header cannot be read are skipped and logged; the rest of the
    batch is still returned.

    Args:
        diff_text: The raw diff output as a string.

    Returns:
        A list of UnifiedDiff objects, in diff order.
    """
    if not diff_text:
        logger.info("Received empty diff text, returning no parsed files.")
        return []

    parsed_files: List[UnifiedDiff] = []
    # Anything before the first boundary (e.g. a commit message from format-patch) is ignored
    for file_block in RE_FILE_BOUNDARY.split(diff_text)[1:]:
        parsed = _parse_file_block(file_block)
        if parsed is None:
            continue
        if not parsed.has_addressable_lines:
            logger.info(f"File {parsed.filename} has no addressable lines (binary, mode-only or truncated diff).")
        parsed_files.append(parsed)

    logger.info(f"Parsed {len(parsed_files)} files from diff text.")
    return parsed_files


def parse_single_file_patch(filename: str, patch_text: Optional[str], status: str = STATUS_MODIFIED,
                            old_filename: Optional[str] = None) -> UnifiedDiff:
    """
    Parses the body of a single file's patch, as returned by the SCM file listing
    (no "diff --git" / "---" / "+++" header lines present).

    A missing or empty patch yields a UnifiedDiff with no hunks rather than an error.
    """
    diff = UnifiedDiff(filename=filename, status=status, old_filename=old_filename)
    if not patch_text:
        logger.info(f"No patch data for {filename}; treating it as having no addressable lines.")
        return diff

    diff.hunks, diff.additions, diff.deletions = _parse_hunks(patch_text.split('\n'), filename)
    if not diff.hunks:
        logger.info(f"No hunks parsed for {filename}.")
    return diff


def _parse_file_block(file_block: str) -> Optional[UnifiedDiff]:
    lines = file_block.split('\n')
    header_match = RE_GIT_HEADER_PATHS.match(lines[0].rstrip('\r'))
    if not header_match:
        logger.warning(f"Skipping file with unreadable diff header: {lines[0][:200]!r}")
        return None

    old_filename, new_filename = header_match.group(1), header_match.group(2)

    # Metadata lines only appear before the first hunk header
    metadata_lines = []
    for line in lines[1:]:
        if line.startswith('@@'):
            break
        metadata_lines.append(line)

    for line in metadata_lines:
        if line.startswith('rename from '):
            old_filename = line[len('rename from '):]
        elif line.startswith('rename to '):
            new_filename = line[len('rename to '):]
        elif line.startswith('+++ ') and line[4:].strip() != DEV_NULL and line[4:].startswith('b/'):
            new_filename = line[6:].split('\t')[0]

    if any(line.startswith('new file mode') for line in metadata_lines):
        status = STATUS_ADDED
    elif any(line.startswith('deleted file mode') for line in metadata_lines):
        status = STATUS_DELETED
    elif old_filename != new_filename:
        status = STATUS_RENAMED
    else:
        status = STATUS_MODIFIED

    hunks, additions, deletions = _parse_hunks(lines[1:], new_filename)
    return UnifiedDiff(
        filename=new_filename,
        old_filename=old_filename if old_filename != new_filename else None,
        status=status,
        hunks=hunks,
        additions=additions,
        deletions=deletions,
    )


def _parse_hunks(lines: List[str], filename: str) -> Tuple[List[DiffHunk], int, int]:
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None
    in_dropped_hunk = False
    seen_header = False
    position = 0
    old_line = new_line = 0
    old_remaining = new_remaining = 0
    additions = deletions = 0

    if lines and not lines[-1].rstrip('\r'):
        # The empty string after a final newline is the end of input, not a blank context line
        lines = lines[:-1]

    for raw_line in lines:
        line = raw_line.rstrip('\r')

        if line.startswith('@@'):
            if seen_header:
                position += 1
            seen_header = True
            hunk_match = RE_HUNK_HEADER.match(line)
            if not hunk_match:
                # Drop this hunk only; its lines still occupy positions on the platform.
                logger.warning(f"Skipping hunk with malformed header in {filename}: {line[:200]!r}")
                current = None
                in_dropped_hunk = True
                continue

            old_line = int(hunk_match.group(1))
            old_remaining = int(hunk_match.group(2) or 1)
            new_line = int(hunk_match.group(3))
            new_remaining = int(hunk_match.group(4) or 1)
            current = DiffHunk(
                old_start=old_line,
                old_lines=old_remaining,
                new_start=new_line,
                new_lines=new_remaining,
                header=line,
            )
            hunks.append(current)
            in_dropped_hunk = False
            continue

        if line.startswith(LINE_TYPE_NO_NEWLINE):
            continue

        if current is None:
            if in_dropped_hunk and line:
                position += 1
            continue

        prefix = line[:1]
        if prefix == LINE_TYPE_ADDED:
            position += 1
            current.lines.append(DiffLine(type=LINE_ADD, content=line[1:], position=position,
                                          new_line_number=new_line))
            new_line += 1
            new_remaining -= 1
            additions += 1
        elif prefix == LINE_TYPE_REMOVED:
            position += 1
            current.lines.append(DiffLine(type=LINE_DELETE, content=line[1:], position=position,
                                          old_line_number=old_line))
            old_line += 1
            old_remaining -= 1
            deletions += 1
        elif prefix == LINE_TYPE_CONTEXT or (old_remaining > 0 and new_remaining > 0):
            # Some sources strip the leading space from blank context lines
            position += 1
            content = line[1:] if prefix == LINE_TYPE_CONTEXT else line
            current.lines.append(DiffLine(type=LINE_CONTEXT, content=content, position=position,
                                          old_line_number=old_line, new_line_number=new_line))
            old_line += 1
            new_line += 1
            old_remaining -= 1
            new_remaining -= 1
        # Anything else (trailing blank line, stray text after a complete hunk) is not part of the body

    return hunks, additions, deletions


def get_position_for_line(diff: UnifiedDiff, line_number: int) -> Optional[int]:
    """
    Returns the diff position of the first added or context line whose new-file line
    number equals `line_number`, or None when the line is outside every hunk.
    """
    for line in diff.iter_lines():
        if line.new_line_number == line_number and line.type in (LINE_ADD, LINE_CONTEXT):
            return line.position
    return None


def get_line_for_position(diff: UnifiedDiff, position: int) -> Optional[int]:
    """Returns the new-file line number at `position` (None for deleted lines and unknown positions)."""
    for line in diff.iter_lines():
        if line.position == position:
            return line.new_line_number
    return None


def build_position_index(diff: UnifiedDiff) -> Dict[int, int]:
    """Maps every addressable new-file line number to its diff position."""
    index: Dict[int, int] = {}
    for line in diff.iter_lines():
        if line.type in (LINE_ADD, LINE_CONTEXT) and line.new_line_number not in index:
            index[line.new_line_number] = line.position
    return index


def get_context(diff: UnifiedDiff, line_number: int, window: int = 3) -> List[str]:
    """
    Returns the content of up to `window` hunk lines on each side of `line_number`
    (the line itself included), taken from the first hunk that contains it.
    """
    for hunk in diff.hunks:
        for index, line in enumerate(hunk.lines):
            if line.new_line_number == line_number:
                start = max(0, index - window)
                end = min(len(hunk.lines), index + window + 1)
                return [l.content for l in hunk.lines[start:end]]
    return []


def get_added_lines(diff: UnifiedDiff) -> List[DiffLine]:
    return [line for line in diff.iter_lines() if line.type == LINE_ADD]


def get_modified_lines(diff: UnifiedDiff) -> List[DiffLine]:
    """Added and context lines, i.e. every line of the new file a comment can anchor to."""
    return [line for line in diff.iter_lines() if line.type in (LINE_ADD, LINE_CONTEXT)]


def get_changed_line_numbers(diff: UnifiedDiff) -> List[int]:
    return sorted(line.new_line_number for line in get_added_lines(diff))


def is_line_changed(diff: UnifiedDiff, line_number: int) -> bool:
    return any(line.new_line_number == line_number for line in get_added_lines(diff))


def get_diff_stats(diff: UnifiedDiff) -> Dict[str, int]:
    return {
        "additions": diff.additions,
        "deletions": diff.deletions,
        "changes": diff.additions + diff.deletions,
        "hunks": len(diff.hunks),
    }
