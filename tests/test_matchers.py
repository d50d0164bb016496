"""Tests for the signal matchers."""

import re

from skillgate.matchers import (
    glob_to_regex,
    is_excluded,
    match_glob,
    matches_content,
    matches_intent,
    matches_keyword,
    matches_path,
    normalize_path,
)


class TestKeyword:
    """Case-insensitive substring keywords."""

    def test_matches_substring(self):
        result = matches_keyword("add a new database column", ["database", "schema"])
        assert result
        assert result.pattern == "database"

    def test_case_insensitive(self):
        assert matches_keyword("Update the SCHEMA", ["schema"])
        assert matches_keyword("update the schema", ["Schema"])

    def test_no_match(self):
        result = matches_keyword("refactor the button", ["database"])
        assert not result
        assert result.pattern is None

    def test_empty_keyword_never_matches(self):
        assert not matches_keyword("anything", [""])


class TestIntent:
    """Regex intent patterns, applied unanchored."""

    def test_matches_anywhere(self):
        patterns = [re.compile(r"create.*endpoint", re.I)]
        result = matches_intent("please Create a new user endpoint now", patterns)
        assert result
        assert result.pattern == r"create.*endpoint"

    def test_author_anchoring_respected(self):
        patterns = [re.compile(r"^fix")]
        assert not matches_intent("please fix it", patterns)
        assert matches_intent("fix it", patterns)

    def test_first_matching_pattern_reported(self):
        patterns = [re.compile("nope"), re.compile("yes"), re.compile("y")]
        assert matches_intent("yes", patterns).pattern == "yes"


class TestGlob:
    """Glob translation."""

    def test_double_star_directory(self):
        assert match_glob("src/api/user.ts", "src/**/*.ts")
        assert match_glob("src/user.ts", "src/**/*.ts")
        assert match_glob("src/a/b/c/user.ts", "src/**/*.ts")

    def test_single_star_stays_in_segment(self):
        assert match_glob("src/user.ts", "src/*.ts")
        assert not match_glob("src/api/user.ts", "src/*.ts")

    def test_leading_double_star(self):
        assert match_glob("src/api/user.test.ts", "**/*.test.ts")
        assert match_glob("user.test.ts", "**/*.test.ts")

    def test_trailing_double_star(self):
        assert match_glob("docs", "docs/**")
        assert match_glob("docs/a/b.md", "docs/**")
        assert not match_glob("docsx/a.md", "docs/**")

    def test_question_mark(self):
        assert match_glob("a1.py", "a?.py")
        assert not match_glob("a/.py", "a?.py")

    def test_anchored(self):
        assert not match_glob("other/src/user.ts", "src/**/*.ts")

    def test_regex_characters_escaped(self):
        assert match_glob("a+b.ts", "a+b.ts")
        assert not match_glob("aab.ts", "a+b.ts")

    def test_case_sensitivity_is_explicit(self):
        assert not match_glob("SRC/User.ts", "src/**/*.ts", case_sensitive=True)
        assert match_glob("SRC/User.ts", "src/**/*.ts", case_sensitive=False)

    def test_normalizes_separators(self):
        assert normalize_path(".\\src\\a.ts") == "src/a.ts"
        assert match_glob("./src/a.ts", "src/*.ts")

    def test_regex_source(self):
        assert glob_to_regex("src/**/*.ts") == r"^src/(?:.*/)?[^/]*\.ts$"


class TestPath:
    """Include and exclude globs."""

    def test_include_match(self):
        result = matches_path("src/api/user.ts", ["src/**/*.ts"], ["**/*.test.ts"])
        assert result
        assert result.pattern == "src/**/*.ts"

    def test_exclusion_wins(self):
        assert not matches_path("src/api/user.test.ts", ["src/**/*.ts"], ["**/*.test.ts"])

    def test_exclusion_wins_for_every_include(self):
        includes = ["src/**/*.ts", "**/*.ts", "src/api/user.test.ts"]
        assert not matches_path("src/api/user.test.ts", includes, ["**/*.test.ts"])

    def test_no_include_no_match(self):
        assert not matches_path("src/a.ts", [], [])

    def test_is_excluded_reports_glob(self):
        assert is_excluded("a/b.test.ts", ["**/*.spec.ts", "**/*.test.ts"]) == "**/*.test.ts"
        assert is_excluded("a/b.ts", ["**/*.test.ts"]) is None


class TestContent:
    """Content regexes with a scan ceiling."""

    def test_matches(self):
        patterns = [re.compile(r"prisma\.\w+")]
        result = matches_content("const u = await prisma.user.find()", patterns)
        assert result
        assert not result.truncated

    def test_no_match(self):
        assert not matches_content("nothing here", [re.compile("prisma")])

    def test_over_limit_degrades_to_not_matched(self):
        content = "prisma." + "x" * 100
        result = matches_content(content, [re.compile("prisma")], limit=50)
        assert not result
        assert result.truncated

    def test_at_limit_is_scanned(self):
        content = "prisma" + "x" * 44
        result = matches_content(content, [re.compile("prisma")], limit=50)
        assert result
        assert not result.truncated

    def test_limit_counts_bytes(self):
        content = "é" * 30  # 60 bytes
        assert matches_content(content, [re.compile("é")], limit=50).truncated

    def test_no_limit(self):
        content = "x" * 10_000 + "prisma"
        assert matches_content(content, [re.compile("prisma")], limit=None)
