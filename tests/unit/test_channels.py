"""Tests for channel rule matching and loading."""

from pathlib import Path

import pytest
from requests.structures import CaseInsensitiveDict

from mediaproxy.channels import (
    CHANNEL_RULES,
    DEFAULT_CHANNEL,
    ChannelRule,
    apply_channel_headers,
    describe_rules,
    load_channel_rules,
    match_channel,
    parse_channel_rules,
)
from mediaproxy.exceptions import ConfigError

RULES = (
    ChannelRule(name="specific", domains=("img.example.com",), headers={"Referer": "https://a/"}),
    ChannelRule(name="broad", domains=("example.com",), headers={"Referer": "https://b/"}),
)


class TestChannelRule:
    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="non-empty|empty"):
            ChannelRule(name="  ")

    def test_domains_normalized(self):
        rule = ChannelRule(name="x", domains=("HTTPS://CDN.Example.com/path", "foo.org."))
        assert rule.domains == ("cdn.example.com", "foo.org")

    def test_headers_are_read_only(self):
        rule = ChannelRule(name="x", domains=("a.com",), headers={"A": "1"})
        with pytest.raises(TypeError):
            rule.headers["A"] = "2"  # type: ignore[index]

    def test_default_channel(self):
        assert DEFAULT_CHANNEL.name == "default"
        assert dict(DEFAULT_CHANNEL.headers) == {}

    def test_builtin_table_built_at_import(self):
        rule = CHANNEL_RULES[0]
        assert rule.name == "xinpianchang"
        assert rule.domains == ("xpccdn.com", "xinpianchang.com")
        assert rule.headers["Range"] == "bytes=0-"


class TestMatchChannel:
    """Tests for match_channel."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://xpccdn.com/video/sample.mp4",
            "https://qc.xpccdn.com/a.jpg",
            "https://www.xinpianchang.com/",
        ],
    )
    def test_builtin_xinpianchang(self, url):
        assert match_channel(url).name == "xinpianchang"

    @pytest.mark.parametrize(
        "url",
        ["https://example.org/a.mp4", "https://notxpccdn.com/a.mp4", "::not a url::", ""],
    )
    def test_default_for_unmatched(self, url):
        assert match_channel(url) is DEFAULT_CHANNEL

    def test_first_match_wins(self):
        assert match_channel("https://img.example.com/a.jpg", RULES).name == "specific"
        assert match_channel("https://www.example.com/a.jpg", RULES).name == "broad"

    def test_order_matters(self):
        reversed_rules = tuple(reversed(RULES))
        assert match_channel("https://img.example.com/a.jpg", reversed_rules).name == "broad"

    def test_custom_default(self):
        fallback = ChannelRule(name="fallback")
        assert match_channel("https://nowhere.net/", RULES, fallback) is fallback


class TestApplyChannelHeaders:
    def test_overwrites_in_place(self):
        headers = CaseInsensitiveDict({"referer": "old", "Accept": "*/*"})
        rule = apply_channel_headers(headers, "https://xpccdn.com/v.mp4")
        assert rule.name == "xinpianchang"
        assert headers["Referer"] == "https://www.xinpianchang.com/"
        assert headers["Origin"] == "https://www.xinpianchang.com"
        assert headers["Range"] == "bytes=0-"
        assert headers["Accept"] == "*/*"
        assert len([k for k in headers if k.lower() == "referer"]) == 1

    def test_default_leaves_headers_untouched(self):
        headers = {"Accept": "*/*"}
        rule = apply_channel_headers(headers, "https://example.org/")
        assert rule is DEFAULT_CHANNEL
        assert headers == {"Accept": "*/*"}


class TestLoadChannelRules:
    """Tests for YAML rule loading."""

    def test_load_valid_file(self, tmp_path: Path):
        path = tmp_path / "channels.yaml"
        path.write_text(
            "channels:\n"
            "  - name: weibo\n"
            "    domains: [sinaimg.cn]\n"
            "    headers:\n"
            "      Referer: https://weibo.com/\n"
            "  - name: bili\n"
            "    domains: hdslb.com\n"
        )
        rules = load_channel_rules(path)
        assert [r.name for r in rules] == ["weibo", "bili"]
        assert rules[0].headers["Referer"] == "https://weibo.com/"
        assert rules[1].domains == ("hdslb.com",)
        assert dict(rules[1].headers) == {}

    def test_example_file_matches_builtin(self):
        path = Path(__file__).parents[2] / "examples" / "channels.yaml"
        rules = load_channel_rules(path)
        assert rules[0] == CHANNEL_RULES[0]
        assert match_channel("https://wx1.sinaimg.cn/a.jpg", rules).name == "weibo"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_channel_rules(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("channels: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_channel_rules(path)

    def test_empty_document(self):
        assert parse_channel_rules(None) == ()

    def test_bare_list_accepted(self):
        rules = parse_channel_rules([{"name": "a", "domains": ["a.com"]}])
        assert rules[0].name == "a"

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({"channels": "nope"}, "list under 'channels'"),
            ({"channels": ["nope"]}, "must be a mapping"),
            ({"channels": [{"domains": ["a.com"]}]}, "missing a name"),
            ({"channels": [{"name": "a"}]}, "at least one domain"),
            ({"channels": [{"name": "a", "domains": [1]}]}, "list of strings"),
            ({"channels": [{"name": "a", "domains": ["a.com"], "headers": ["x"]}]}, "mapping"),
            ({"channels": [{"name": "a", "domains": ["/"]}]}, "Invalid channel domain"),
            (
                {"channels": [{"name": "a", "domains": ["a.com"]}, {"name": "a", "domains": ["b"]}]},
                "Duplicate",
            ),
            ({"channels": [{"name": "default", "domains": ["a.com"]}]}, "reserved"),
        ],
    )
    def test_malformed(self, data, message):
        with pytest.raises(ConfigError, match=message):
            parse_channel_rules(data)

    def test_header_values_stringified(self):
        rules = parse_channel_rules([{"name": "a", "domains": ["a.com"], "headers": {"X-N": 1}}])
        assert rules[0].headers["X-N"] == "1"


def test_describe_rules():
    described = describe_rules(CHANNEL_RULES)
    assert described[0]["name"] == "xinpianchang"
    assert described[0]["domains"] == ["xpccdn.com", "xinpianchang.com"]
