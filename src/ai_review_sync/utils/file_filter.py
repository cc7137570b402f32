from typing import Callable, Iterable, List, Optional, TypeVar

from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern

T = TypeVar("T")


def build_path_spec(patterns: Optional[Iterable[str]]) -> Optional[PathSpec]:
    """Compiles git-style patterns; returns None when there is nothing to match."""
    patterns = [p for p in (patterns or []) if p and p.strip()]
    if not patterns:
        return None
    return PathSpec.from_lines(GitWildMatchPattern, patterns)


def is_path_selected(path: str, include_spec: Optional[PathSpec], exclude_spec: Optional[PathSpec]) -> bool:
    # Exclusions win over inclusions
    if exclude_spec is not None and exclude_spec.match_file(path):
        return False
    if include_spec is not None:
        return include_spec.match_file(path)
    return True


def filter_files_by_patterns(
    items: List[T],
    include_patterns: Optional[List[str]] = None,
    exclude_patterns: Optional[List[str]] = None,
    key: Callable[[T], str] = str,
) -> List[T]:
    """
    Filter items by their path using include and exclude patterns.

    Args:
        items: Paths, or objects from which `key` extracts a path
        include_patterns: Optional git-style patterns; when given, only matching paths are kept
        exclude_patterns: Optional git-style patterns; matching paths are dropped
        key: Extracts the path from an item

    Returns:
        The selected items, in their original order
    """
    if not items:
        return []

    include_spec = build_path_spec(include_patterns)
    exclude_spec = build_path_spec(exclude_patterns)
    if include_spec is None and exclude_spec is None:
        return list(items)

    return [item for item in items if is_path_selected(key(item), include_spec, exclude_spec)]
