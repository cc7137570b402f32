# src/ai_review_sync/change_analyzer.py
"""
Decides which lines of a pull request still need analysis.

A file whose content hash matches the cached one is skipped outright. For the
rest, lines already recorded as reviewed in an earlier pass are subtracted so
the finding generator only sees new work.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from .diff_parser import get_position_for_line, parse_single_file_patch
from .models import (
    CHANGE_ADDED, CHANGE_DELETED, CHANGE_MODIFIED,
    LINE_ADD, LINE_DELETE, STATUS_ADDED,
    Annotation, ChangedFile, ChangedLine, ChangeRecord,
    FileReviewState, ReviewedLine, UnifiedDiff,
)
from .review_cache import BaseReviewCache
from .utils.file_filter import filter_files_by_patterns

logger = logging.getLogger(__name__)


def _line_key(change_type: str, line_number: int) -> Tuple[str, int]:
    # Deleted lines are numbered in the old file, everything else in the new one
    return ("old" if change_type == CHANGE_DELETED else "new", line_number)


def extract_changed_lines(diff: UnifiedDiff) -> List[ChangedLine]:
    """
    Added and deleted lines of a diff, in diff order. An added line that directly
    replaces a deleted one in the same run is tagged "modified".
    """
    changed: List[ChangedLine] = []
    for hunk in diff.hunks:
        pending_deletions = 0
        for line in hunk.lines:
            if line.type == LINE_DELETE:
                pending_deletions += 1
                changed.append(ChangedLine(line.old_line_number, line.content, CHANGE_DELETED))
            elif line.type == LINE_ADD:
                if pending_deletions:
                    pending_deletions -= 1
                    change_type = CHANGE_MODIFIED
                else:
                    change_type = CHANGE_ADDED
                changed.append(ChangedLine(line.new_line_number, line.content, change_type))
            else:
                pending_deletions = 0
    return changed


def partition_changed_lines(lines: List[ChangedLine], max_lines: int) -> List[List[ChangedLine]]:
    """
    Splits `lines` into consecutive groups of at most `max_lines`, keeping order.
    Every line lands in exactly one group.
    """
    if max_lines < 1:
        raise ValueError(f"max_lines must be at least 1, got {max_lines}")
    return [lines[i:i + max_lines] for i in range(0, len(lines), max_lines)]


def flag_outdated_annotations(annotations: List[Annotation], diffs: Dict[str, UnifiedDiff]) -> int:
    """
    Marks annotations whose (file, line) no longer has a position in the current diff.
    Annotations the platform already reports as outdated stay outdated; annotations
    without a line are left as the platform reports them.

    Returns:
        How many annotations were newly flagged.
    """
    flagged = 0
    for annotation in annotations:
        if annotation.is_outdated or annotation.line is None:
            continue
        diff = diffs.get(annotation.file_path)
        if diff is None or get_position_for_line(diff, annotation.line) is None:
            annotation.is_outdated = True
            flagged += 1
            logger.debug(f"Annotation #{annotation.id} on {annotation.file_path}:{annotation.line} is outdated.")
    if flagged:
        logger.info(f"Flagged {flagged} annotations as outdated.")
    return flagged


class ChangeAnalyzer:
    def __init__(self, cache: BaseReviewCache, unit_key: str):
        """
        Args:
            cache: Per-file review state store.
            unit_key: Identifies the reviewable unit, e.g. "owner/repo#42"; scopes cache keys.
        """
        self.cache = cache
        self.unit_key = unit_key

    def cache_key(self, filename: str) -> str:
        return f"{self.unit_key}:{filename}"

    def _load_cached(self, filename: str) -> Optional[FileReviewState]:
        try:
            return self.cache.load(self.cache_key(filename))
        except Exception as e:
            logger.warning(f"Cache read failed for {filename}, analysing it from scratch: {e}")
            return None

    def analyze_files(self, files: List[ChangedFile],
                      diffs: Optional[Dict[str, UnifiedDiff]] = None) -> List[ChangeRecord]:
        logger.info(f"Analyzing {len(files)} files for changes...")
        diffs = diffs or {}
        records = [self.analyze_file(f, diffs.get(f.filename)) for f in files]
        needing_review = len(self.files_needing_review(records))
        logger.info(f"Analysis complete: {needing_review}/{len(files)} files need review")
        return records

    def analyze_file(self, file: ChangedFile, diff: Optional[UnifiedDiff] = None) -> ChangeRecord:
        cached = self._load_cached(file.filename)
        is_new_file = file.status == STATUS_ADDED
        previous_hash = cached.content_hash if cached else None

        if cached is not None and cached.content_hash == file.content_hash:
            logger.info(f"{file.filename}: unchanged since last analysis ({file.content_hash[:7]}).")
            return ChangeRecord(
                filename=file.filename,
                content_hash=file.content_hash,
                is_new_file=is_new_file,
                needs_review=False,
                previous_hash=previous_hash,
            )

        if diff is None:
            diff = parse_single_file_patch(file.filename, file.patch, file.status, file.previous_filename)
        changed_lines = extract_changed_lines(diff)

        lines_to_review = changed_lines
        if cached is not None:
            reviewed = self._reviewed_keys(cached)
            lines_to_review = [l for l in changed_lines if _line_key(l.change_type, l.line_number) not in reviewed]

        logger.info(
            f"{file.filename}: {len(changed_lines)} changed lines, "
            f"{len(lines_to_review)} need review ({file.content_hash[:7]})"
        )

        return ChangeRecord(
            filename=file.filename,
            content_hash=file.content_hash,
            changed_lines=lines_to_review,
            is_new_file=is_new_file,
            # Every file reaching this point is new or has a changed hash
            needs_review=bool(lines_to_review),
            previous_hash=previous_hash,
        )

    @staticmethod
    def _reviewed_keys(state: FileReviewState) -> Set[Tuple[str, int]]:
        return {_line_key(r.change_type, r.line_number) for r in state.reviewed_lines}

    def mark_as_reviewed(self, record: ChangeRecord, annotations: Optional[List[Annotation]] = None) -> bool:
        """
        Records every changed line of `record` as reviewed, together with the lines
        reviewed in earlier passes, and the file's current content hash.
        """
        now = datetime.now(timezone.utc).isoformat()
        by_line = {a.line: a for a in (annotations or []) if a.file_path == record.filename and a.line is not None}

        merged: Dict[Tuple[str, int], ReviewedLine] = {}
        cached = self._load_cached(record.filename)
        if cached is not None:
            for reviewed in cached.reviewed_lines:
                merged[_line_key(reviewed.change_type, reviewed.line_number)] = reviewed

        for line in record.changed_lines:
            annotation = by_line.get(line.line_number) if line.change_type != CHANGE_DELETED else None
            merged[_line_key(line.change_type, line.line_number)] = ReviewedLine(
                line_number=line.line_number,
                change_type=line.change_type,
                reviewed_at=now,
                annotation_id=annotation.id if annotation else None,
                severity=annotation.severity if annotation else None,
            )

        state = FileReviewState(
            filename=record.filename,
            content_hash=record.content_hash,
            reviewed_lines=list(merged.values()),
            last_analyzed_at=now,
        )
        saved = self.cache.save(self.cache_key(record.filename), state)
        if saved:
            logger.info(f"Marked {record.filename} as reviewed ({len(record.changed_lines)} lines)")
        return saved

    @staticmethod
    def files_needing_review(records: List[ChangeRecord]) -> List[ChangeRecord]:
        return [r for r in records if r.needs_review]

    @staticmethod
    def total_changed_lines(records: List[ChangeRecord]) -> int:
        return sum(len(r.changed_lines) for r in records)

    @staticmethod
    def filter_by_patterns(records: List[ChangeRecord], include_patterns: Optional[List[str]] = None,
                           exclude_patterns: Optional[List[str]] = None) -> List[ChangeRecord]:
        return filter_files_by_patterns(records, include_patterns, exclude_patterns, key=lambda r: r.filename)

    @staticmethod
    def chunk_record(record: ChangeRecord, max_lines: int) -> List[ChangeRecord]:
        """Splits a record with too many changed lines into several records of bounded size."""
        if len(record.changed_lines) <= max_lines:
            return [record]
        chunks = [
            ChangeRecord(
                filename=record.filename,
                content_hash=record.content_hash,
                changed_lines=group,
                is_new_file=record.is_new_file,
                needs_review=record.needs_review,
                previous_hash=record.previous_hash,
            )
            for group in partition_changed_lines(record.changed_lines, max_lines)
        ]
        logger.info(f"Split {record.filename} into {len(chunks)} chunks")
        return chunks
