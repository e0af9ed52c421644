from __future__ import annotations

from pathlib import Path

from triagesuite.scaffold import CI_FILENAME, POLICY_FILENAME, write_ci_file, write_policy_file


def test_write_policy_file_creates_example(tmp_path: Path) -> None:
    result = write_policy_file(tmp_path)

    policy_path = tmp_path / POLICY_FILENAME
    assert result.created == [policy_path]
    text = policy_path.read_text(encoding="utf-8")
    assert "resource_rules:" in text
    assert "needs attention" in text


def test_existing_file_is_skipped_unless_forced(tmp_path: Path) -> None:
    policy_path = tmp_path / POLICY_FILENAME
    policy_path.write_text("existing", encoding="utf-8")

    result = write_policy_file(tmp_path)
    assert result.skipped == [policy_path]
    assert policy_path.read_text(encoding="utf-8") == "existing"

    forced = write_policy_file(tmp_path, force=True)
    assert forced.created == [policy_path]
    assert policy_path.read_text(encoding="utf-8") != "existing"


def test_write_ci_file(tmp_path: Path) -> None:
    result = write_ci_file(tmp_path / "nested")

    ci_path = tmp_path / "nested" / CI_FILENAME
    assert result.created == [ci_path]
    assert "triagesuite run" in ci_path.read_text(encoding="utf-8")
