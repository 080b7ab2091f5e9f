from __future__ import annotations

import pytest

from clinic.prompts import PromptLoadError, load_prompt, render_prompt


def test_load_case_system_prompt() -> None:
    text = load_prompt("case_system.txt")
    assert "JSON" in text


def test_render_follow_up_prompt() -> None:
    text = render_prompt(
        "follow_up_case.txt",
        name="Mochi Tanaka",
        age=34,
        gender="female",
        occupation="Baker",
        previous_ailment="Asthma",
        visit_count=2,
    )
    assert "Mochi Tanaka" in text
    assert "Previous ailment: Asthma" in text
    assert "{" not in text


def test_render_reports_missing_value() -> None:
    with pytest.raises(PromptLoadError):
        render_prompt("follow_up_case.txt", name="Only a name")


def test_missing_prompt_file() -> None:
    with pytest.raises(PromptLoadError):
        load_prompt("does_not_exist.txt")


def test_prompts_dir_override(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    (tmp_path / "new_case.txt").write_text("  Custom new case prompt  \n", encoding="utf-8")
    monkeypatch.setenv("CLINIC_PROMPTS_DIR", str(tmp_path))

    assert load_prompt("new_case.txt") == "Custom new case prompt\n"
