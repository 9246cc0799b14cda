"""stencil.json loading and validation."""

import json

import pytest

from stencil.config import (
    CONFIG_FILE_NAME,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_MERGE_TIMEOUT,
    MergeConfig,
    ScanConfig,
    StencilConfig,
)


def write_config(root, data):
    (root / CONFIG_FILE_NAME).write_text(json.dumps(data) if not isinstance(data, str) else data)


def test_defaults_when_absent(tmp_path):
    config = StencilConfig.load(tmp_path)
    assert config.ignore == []
    assert not config.merge.configured
    assert config.merge.timeout_seconds == DEFAULT_MERGE_TIMEOUT
    assert config.context_lines == 3


def test_full_config(tmp_path):
    write_config(tmp_path, {
        "ignore": ["*.bak"],
        "merge": {"args": ["merge-tool", "--json"], "timeout_seconds": 30},
    })
    config = StencilConfig.load(tmp_path)
    assert config.merge.configured
    assert config.merge.args == ["merge-tool", "--json"]
    assert config.merge.timeout_seconds == 30
    assert config.scan_config(tmp_path).patterns[-1] == "*.bak"
    assert StencilConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize("data,message", [
    ({"context_lines": 5}, "context_lines"),
    ({"merge": {"command": "x", "timeout_seconds": 0}}, "timeout_seconds"),
    ({"ignore": "*.log"}, "ignore must be a list"),
    ("[1, 2]", "JSON object"),
    ("{oops", "not valid JSON"),
])
def test_invalid_config(tmp_path, data, message):
    write_config(tmp_path, data)
    with pytest.raises(ValueError, match=message):
        StencilConfig.load(tmp_path)


def test_merge_config_to_dict():
    config = MergeConfig.from_dict({"command": "ignored", "args": ["tool"]})
    assert config.to_dict() == {"timeout_seconds": DEFAULT_MERGE_TIMEOUT, "args": ["tool"], "command": "ignored"}


def test_scan_config_reads_ignore_files(tmp_path):
    (tmp_path / ".gitignore").write_text("# build output\ndist/\n\n")
    (tmp_path / ".migrateignore").write_text("local/\n")
    patterns = ScanConfig.for_project(tmp_path, ["extra/"]).patterns
    assert patterns[:len(DEFAULT_IGNORE_PATTERNS)] == list(DEFAULT_IGNORE_PATTERNS)
    assert patterns[len(DEFAULT_IGNORE_PATTERNS):] == ["dist/", "local/", "extra/"]
