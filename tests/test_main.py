from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import main
from config import JsonConfigStore
from main import format_feedback
from models import FreeformFeedback, PronunciationFeedback, WordScore


def test_format_structured_feedback() -> None:
    feedback = PronunciationFeedback(
        overall_score=82,
        overall_assessment="Good effort",
        word_scores=[WordScore(word="the", score=60, comment="soft th"), WordScore(word="fox", is_correct=False)],
        suggestions=["Focus on the 'th' sound in 'the'"],
    )

    text = format_feedback(feedback)

    assert "Overall score: 82/100" in text
    assert " 60  the  (soft th)" in text
    assert "  x  fox" in text
    assert "- Focus on the 'th' sound in 'the'" in text


def test_format_freeform_feedback() -> None:
    assert format_feedback(FreeformFeedback(feedback="Nice and clear.")) == "Nice and clear."


def test_set_api_key_stores_and_exits(tmp_path: Path) -> None:
    path = tmp_path / "config.json"

    assert main.main(["--config", str(path), "--set-api-key", "abc"]) == 0
    assert '"api_key": "abc"' in path.read_text(encoding="utf-8")


@patch("feedback_client.dashscope", MagicMock())
def test_missing_api_key_exits_with_error(tmp_path: Path, monkeypatch, capsys) -> None:  # noqa: ANN001
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    monkeypatch.setattr(main, "setup_logging", lambda *a, **kw: "")

    code = main.main(["--config", str(tmp_path / "config.json")])

    assert code == 2
    assert "CONFIG_ERROR" in capsys.readouterr().err


def test_save_settings_persists_defaults(tmp_path: Path, capsys) -> None:  # noqa: ANN001
    path = tmp_path / "config.json"

    code = main.main(
        ["--config", str(path), "--save-settings", "--model", "qwen-omni-turbo", "--mode", "freeform", "--max-seconds", "8"]
    )

    assert code == 0
    assert "Saved model=qwen-omni-turbo, mode=freeform, max_seconds=8" in capsys.readouterr().out
    store = JsonConfigStore(path=path)
    assert store.get_model() == "qwen-omni-turbo"
    assert store.get_feedback_mode() == "freeform"
    assert store.get_max_duration_ms() == 8000


def test_save_settings_without_values_is_an_error(tmp_path: Path, capsys) -> None:  # noqa: ANN001
    path = tmp_path / "config.json"

    assert main.main(["--config", str(path), "--save-settings"]) == 2
    assert "Nothing to save" in capsys.readouterr().err
    assert main.main(["--config", str(path), "--save-settings", "--max-seconds", "0"]) == 2
    assert JsonConfigStore(path=path).get_max_duration_ms() == 15000


def test_feedback_is_printed_through_controller_callback() -> None:
    out = io.StringIO()
    app = main.PracticeApp(
        capture=MagicMock(),
        feedback_service=MagicMock(),
        practice_text="Practice makes perfect.",
        max_duration_ms=5000,
        out=out,
    )

    app.controller._on_feedback(FreeformFeedback(feedback="Nice and clear."))

    assert "Nice and clear." in out.getvalue()
