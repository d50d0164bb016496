"""Signal matchers - pure predicates over one input string.

Each matcher returns a MatchResult carrying the sub-pattern that matched so
the resolver can explain its decision. No state, no I/O.

Globs:
    **   any number of directory levels, including none
    *    any run of characters within one path segment
    ?    one character within a path segment

Glob matching is anchored at both ends of the (normalized) path. Case
sensitivity is an explicit argument, never inferred from the platform.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

# 1 MiB
DEFAULT_CONTENT_SCAN_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    pattern: Optional[str] = None
    truncated: bool = False  # content exceeded the scan limit and was not scanned

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = MatchResult(matched=False)


def normalize_path(path: str) -> str:
    """Use forward slashes and drop a leading './'."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def glob_to_regex(glob: str) -> str:
    """Translate a path glob into an anchored regex source string."""
    glob = normalize_path(glob)
    out = []
    i = 0
    n = len(glob)
    while i < n:
        c = glob[i]
        if glob.startswith("**", i):
            at_segment_start = i == 0 or glob[i - 1] == "/"
            i += 2
            if at_segment_start and i < n and glob[i] == "/":
                # "**/" matches zero or more whole directories
                out.append("(?:.*/)?")
                i += 1
            elif at_segment_start and i == n and out:
                # trailing "/**" matches the directory and everything below it
                if out[-1] == "/":
                    out.pop()
                out.append("(?:/.*)?")
            else:
                out.append(".*")
            continue
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(c))
        i += 1
    return "^" + "".join(out) + "$"


@lru_cache(maxsize=1024)
def compile_glob(glob: str, case_sensitive: bool = True) -> re.Pattern:
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(glob_to_regex(glob), flags)


def match_glob(path: str, glob: str, case_sensitive: bool = True) -> bool:
    return compile_glob(glob, case_sensitive).match(normalize_path(path)) is not None


def matches_keyword(text: str, keywords: Iterable[str]) -> MatchResult:
    """Case-insensitive substring test against each keyword."""
    lowered = text.lower()
    for keyword in keywords:
        if keyword and keyword.lower() in lowered:
            return MatchResult(matched=True, pattern=keyword)
    return NO_MATCH


def matches_intent(text: str, patterns: Iterable[re.Pattern]) -> MatchResult:
    """True if any pattern is found anywhere in text. Anchoring is the author's job."""
    for pattern in patterns:
        if pattern.search(text):
            return MatchResult(matched=True, pattern=pattern.pattern)
    return NO_MATCH


def matches_path(
    path: str,
    include_globs: Iterable[str],
    exclude_globs: Iterable[str] = (),
    case_sensitive: bool = True,
) -> MatchResult:
    """Path matches an include glob and no exclude glob. Exclusion always wins."""
    if is_excluded(path, exclude_globs, case_sensitive):
        return NO_MATCH
    for glob in include_globs:
        if match_glob(path, glob, case_sensitive):
            return MatchResult(matched=True, pattern=glob)
    return NO_MATCH


def is_excluded(
    path: str,
    exclude_globs: Iterable[str],
    case_sensitive: bool = True,
) -> Optional[str]:
    """Return the first exclude glob the path matches, if any."""
    for glob in exclude_globs:
        if match_glob(path, glob, case_sensitive):
            return glob
    return None


def matches_content(
    content: str,
    patterns: Iterable[re.Pattern],
    limit: Optional[int] = DEFAULT_CONTENT_SCAN_LIMIT,
) -> MatchResult:
    """True if any pattern is found in content.

    Content larger than limit bytes is not scanned at all and reports
    truncated=True. A limit of None scans everything.
    """
    if limit is not None and len(content.encode("utf-8", errors="replace")) > limit:
        return MatchResult(matched=False, truncated=True)
    for pattern in patterns:
        if pattern.search(content):
            return MatchResult(matched=True, pattern=pattern.pattern)
    return NO_MATCH
