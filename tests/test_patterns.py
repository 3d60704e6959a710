import pytest

from pipelines.patterns import (
    DEFAULT_EXCLUSION_PATTERNS,
    DEFAULT_FILE_EXCLUSIONS,
    DEFAULT_FOLDER_EXCLUSIONS,
    extract_path_and_query,
    get_effective_exclusion_patterns,
    is_regex_pattern,
    matches_any_pattern,
    pattern_to_regexp,
    should_include_url,
)


class TestDefaultPatterns:

    def test_file_exclusions_cover_common_files(self):
        for name in ["CHANGELOG.md", "CHANGELOG.mdx", "changelog.md", "changelog.mdx", "LICENSE",
                     "LICENSE.md", "license.md", "CODE_OF_CONDUCT.md", "code_of_conduct.md"]:
            assert name in DEFAULT_FILE_EXCLUSIONS
            assert f"**/{name}" in DEFAULT_FILE_EXCLUSIONS

    def test_folder_exclusions(self):
        for folder in ["archive", "archived", "old", "deprecated", "legacy", "previous", "outdated", "superseded"]:
            assert f"**/{folder}/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert "docs/old/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert "**/i18n/zh*/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert "**/i18n/th*/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert "**/zh-cn/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert "zh-tw/**" in DEFAULT_FOLDER_EXCLUSIONS
        assert len(DEFAULT_FOLDER_EXCLUSIONS) > 30

    def test_defaults_are_files_then_folders(self):
        assert DEFAULT_EXCLUSION_PATTERNS == DEFAULT_FILE_EXCLUSIONS + DEFAULT_FOLDER_EXCLUSIONS

    def test_none_means_defaults(self):
        assert get_effective_exclusion_patterns(None) == DEFAULT_EXCLUSION_PATTERNS

    def test_user_patterns_replace_defaults(self):
        assert get_effective_exclusion_patterns(["**/blog/**"]) == ["**/blog/**"]

    def test_empty_list_disables_exclusion(self):
        assert get_effective_exclusion_patterns([]) == []

    def test_returned_list_is_a_copy(self):
        patterns = get_effective_exclusion_patterns()
        patterns.append("extra")
        assert "extra" not in DEFAULT_EXCLUSION_PATTERNS


class TestPatternMatching:

    def test_regex_detection(self):
        assert is_regex_pattern("/foo.*/")
        assert not is_regex_pattern("foo.*/")
        assert not is_regex_pattern("foo.*")

    def test_pattern_to_regexp(self):
        assert pattern_to_regexp("/foo.*/").search("foo123")
        assert pattern_to_regexp("foo*bar").match("fooxbar")
        assert pattern_to_regexp("foo*bar").match("fooyyybar")
        assert not pattern_to_regexp("foo*bar").match("foo/bar")

    def test_globs_and_regex(self):
        assert matches_any_pattern("foo/abc/bar", ["foo/*/bar"])
        assert matches_any_pattern("foo/abc/bar", ["/foo/.*/bar/"])
        assert not matches_any_pattern("foo/abc/bar", ["baz/*"])
        assert not matches_any_pattern("foo/abc/bar", [])

    @pytest.mark.parametrize("path,expected", [
        ("/README.md", True),
        ("/docs/README.md", True),
        ("/project/docs/sub/README.md", True),
        ("/CHANGELOG.md", False),
    ])
    def test_double_star_prefix_matches_any_depth(self, path, expected):
        assert matches_any_pattern(path, ["**/README.md"]) is expected

    def test_single_star_stays_within_segment(self):
        assert matches_any_pattern("/docs/api/v1/spec.json", ["**/api/*/spec.json"])
        assert not matches_any_pattern("/docs/api/spec.json", ["**/api/*/spec.json"])
        assert matches_any_pattern("/docs/foo/readme.md", ["*/foo/*"])
        assert not matches_any_pattern("/project/docs/foo/readme.md", ["*/foo/*"])

    def test_directory_patterns(self):
        assert matches_any_pattern("/foo/bar", ["foo/**"])
        assert not matches_any_pattern("/foo", ["foo/**"])
        assert not matches_any_pattern("/other/foo/bar", ["foo/**"])
        assert matches_any_pattern("/a/b/foo/c/d", ["**/foo/**"])
        assert matches_any_pattern("/foo/", ["**/foo/**"])
        assert not matches_any_pattern("/docs/foo", ["**/foo/**"])
        assert not matches_any_pattern("/foobar/test", ["**/foo/**"])

    def test_question_mark_matches_one_character(self):
        assert matches_any_pattern("/v1/index", ["v?/index"])
        assert not matches_any_pattern("/v10/index", ["v?/index"])

    def test_extract_path_and_query(self):
        assert extract_path_and_query("https://example.com/foo/bar?x=1") == "/foo/bar?x=1"
        assert extract_path_and_query("/foo/bar?x=1") == "/foo/bar?x=1"
        assert extract_path_and_query("https://example.com") == "/"


class TestShouldIncludeUrl:

    def test_exclude_wins_over_include(self):
        assert not should_include_url("https://x.com/foo", ["foo*"], ["/foo/"])
        assert should_include_url("https://x.com/foo", ["foo*"], None)
        assert should_include_url("https://x.com/foo", None, None)
        assert not should_include_url("https://x.com/foo", None, ["foo*"])

    def test_include_with_directory_patterns(self):
        patterns = ["**/docs/**", "**/api/**"]
        assert should_include_url("https://example.com/project/docs/api.html", patterns)
        assert should_include_url("https://example.com/v1/api/endpoints.json", patterns)
        assert not should_include_url("https://example.com/myapi.html", patterns)

    def test_file_urls_also_match_basename(self):
        assert should_include_url("file:///path/to/README.md", ["README.md"])
        assert should_include_url("file:///project/docs/foo", ["foo"])
        assert not should_include_url("https://example.com/path/README.md", ["README.md"])

    def test_default_exclusions_reject_changelogs_and_archives(self):
        defaults = get_effective_exclusion_patterns()
        assert not should_include_url("https://example.com/CHANGELOG.md", None, defaults)
        assert not should_include_url("https://example.com/docs/archive/v1/intro", None, defaults)
        assert not should_include_url("https://example.com/docs/i18n/zh-hans/intro", None, defaults)
        assert not should_include_url("https://example.com/zh-cn/guide", None, defaults)
        assert should_include_url("https://example.com/docs/guide/intro", None, defaults)
