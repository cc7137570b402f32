# src/ai_review_sync/models.py
from dataclasses import dataclass, field
from typing import List, Optional

# Line types of a parsed diff body
LINE_ADD = "add"
LINE_DELETE = "delete"
LINE_CONTEXT = "context"

# File statuses
STATUS_ADDED = "added"
STATUS_DELETED = "deleted"
STATUS_MODIFIED = "modified"
STATUS_RENAMED = "renamed"

# Change tags for ChangedLine
CHANGE_ADDED = "added"
CHANGE_DELETED = "deleted"
CHANGE_MODIFIED = "modified"

SEVERITIES = ("error", "warning", "info")


@dataclass
class DiffLine:
    """
    A single body line of a hunk.

    `position` is the address the hosting platform uses to anchor an inline
    comment; it counts every body line and every hunk header from the first
    hunk header of the file and is unrelated to `new_line_number`.
    """
    type: str
    content: str
    position: int
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


@dataclass
class DiffHunk:
    """
    Represents a contiguous block of changes delimited by a "@@ ... @@" header.
    """
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    header: str # e.g., "@@ -1,5 +1,6 @@ def main():"
    lines: List[DiffLine] = field(default_factory=list)


@dataclass
class UnifiedDiff:
    """
    Represents a single file in a diff, one per changed file per revision.
    """
    filename: str
    status: str = STATUS_MODIFIED
    old_filename: Optional[str] = None # Only set when the file was renamed
    hunks: List[DiffHunk] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0

    @property
    def has_addressable_lines(self) -> bool:
        """False when no hunk could be parsed (e.g. a truncated patch for a very large file)."""
        return any(hunk.lines for hunk in self.hunks)

    def iter_lines(self):
        for hunk in self.hunks:
            for line in hunk.lines:
                yield line


@dataclass
class ChangedFile:
    """
    A changed file as reported by the hosting platform's file listing.
    """
    filename: str
    content_hash: str # Opaque version id (blob SHA on GitHub)
    status: str = STATUS_MODIFIED
    patch: Optional[str] = None # Missing for binary files and very large diffs
    previous_filename: Optional[str] = None


@dataclass
class ChangedLine:
    line_number: int
    content: str
    change_type: str # added | deleted | modified


@dataclass
class ChangeRecord:
    """
    Result of analysing one file for the current revision. Created fresh on each pass.
    """
    filename: str
    content_hash: str
    changed_lines: List[ChangedLine] = field(default_factory=list)
    is_new_file: bool = False
    needs_review: bool = False
    previous_hash: Optional[str] = None

    @property
    def hash_changed(self) -> bool:
        return self.is_new_file or self.previous_hash != self.content_hash


@dataclass
class ReviewedLine:
    line_number: int
    change_type: str
    reviewed_at: str
    annotation_id: Optional[int] = None
    severity: Optional[str] = None


@dataclass
class FileReviewState:
    """
    Per-file review state persisted by the cache between passes.
    """
    filename: str
    content_hash: str
    reviewed_lines: List[ReviewedLine] = field(default_factory=list)
    last_analyzed_at: Optional[str] = None


@dataclass
class Finding:
    """
    One issue reported by the external finding generator.
    """
    file: str
    line: int
    severity: str
    message: str
    suggestion: Optional[str] = None


@dataclass
class AnnotationMetadata:
    """
    Structured block embedded in every annotation body created by this tool.
    """
    version: str
    file_path: str
    line: Optional[int]
    commit_sha: Optional[str] = None
    position: Optional[int] = None
    severity: Optional[str] = None
    fingerprint: Optional[str] = None


@dataclass
class Annotation:
    """
    An inline review comment as listed by the hosting platform.
    `line` and `metadata` may be missing on comments posted by older versions.
    """
    id: int
    file_path: str
    body: str
    line: Optional[int] = None
    severity: str = "info"
    commit_sha: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    is_outdated: bool = False
    metadata: Optional[AnnotationMetadata] = None
    position: Optional[int] = None
    thread_id: Optional[str] = None
    thread_resolved: bool = False
    author: Optional[str] = None


@dataclass
class Review:
    """
    A top-level pull request review.
    """
    id: int
    body: str
    state: str
    commit_sha: Optional[str] = None
    submitted_at: Optional[str] = None
    author: Optional[str] = None


@dataclass
class IssueSummary:
    """Reporting-only snapshot of an issue: file, line, severity and a truncated message."""
    file: str
    line: int
    severity: str
    message: str


@dataclass
class AnnotationSpec:
    """An annotation the plan will create."""
    file: str
    position: int
    line: int
    body: str


@dataclass
class AnnotationUpdate:
    """A new body for an existing annotation."""
    annotation_id: int
    body: str
    reason: str # "updated" | "resolved" | "reopened"


@dataclass
class ReconciliationPlan:
    to_delete: List[int] = field(default_factory=list)
    to_create: List[AnnotationSpec] = field(default_factory=list)
    to_update: List[AnnotationUpdate] = field(default_factory=list)
    threads_to_resolve: List[str] = field(default_factory=list)
    reviews_to_dismiss: List[int] = field(default_factory=list)

    # Reporting only; never drives a mutation.
    resolved_issues: List[IssueSummary] = field(default_factory=list)
    updated_issues: List[IssueSummary] = field(default_factory=list)
    new_issues: List[IssueSummary] = field(default_factory=list)
    unplaced_findings: List[Finding] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.to_delete or self.to_create or self.to_update
                    or self.threads_to_resolve or self.reviews_to_dismiss)

    @property
    def mutation_count(self) -> int:
        return (len(self.to_delete) + len(self.to_create) + len(self.to_update)
                + len(self.threads_to_resolve) + len(self.reviews_to_dismiss))


@dataclass
class MutationFailure:
    operation: str # delete | resolve_thread | dismiss_review | update | create
    target: str
    error: str


@dataclass
class SyncReport:
    """
    Outcome of one synchronization pass. A pass never aborts on a single failed
    mutation; `failures` lists each one individually.
    """
    skipped: bool = False
    dry_run: bool = False
    deleted: int = 0
    created: int = 0
    updated: int = 0
    threads_resolved: int = 0
    reviews_dismissed: int = 0
    failures: List[MutationFailure] = field(default_factory=list)
    created_annotations: List[Annotation] = field(default_factory=list)
    plan: Optional[ReconciliationPlan] = None

    @property
    def partial_success(self) -> bool:
        return bool(self.failures)

    @property
    def success(self) -> bool:
        return not self.failures
