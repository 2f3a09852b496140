"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from config import JsonConfigStore
from encoder import decode_data_uri
from feedback_client import create_feedback_client
from interfaces import CaptureDevice, FeedbackService
from logging_utils import setup_logging
from models import FeedbackResult, FreeformFeedback, SessionState
from recorder import SoundDeviceCapture, play_data_uri
from session_controller import SessionController

logger = logging.getLogger(__name__)

DEFAULT_TEXT = "The quick brown fox jumps over the lazy dog."

_BAR_WIDTH = 30


def format_feedback(feedback: FeedbackResult) -> str:
    if isinstance(feedback, FreeformFeedback):
        return feedback.feedback
    lines = [f"Overall score: {feedback.overall_score}/100", feedback.overall_assessment]
    if feedback.word_scores:
        lines.append("")
        lines.append("Words:")
        for entry in feedback.word_scores:
            if entry.score is not None:
                verdict = f"{entry.score:>3}"
            else:
                verdict = " ok" if entry.is_correct else "  x"
            note = f"  ({entry.comment})" if entry.comment else ""
            lines.append(f"  {verdict}  {entry.word}{note}")
    if feedback.suggestions:
        lines.append("")
        lines.append("Suggestions:")
        lines.extend(f"  - {tip}" for tip in feedback.suggestions)
    return "\n".join(lines)


class PracticeApp:
    """Terminal front end: one practice sentence, any number of attempts."""

    def __init__(
        self,
        capture: CaptureDevice,
        feedback_service: FeedbackService,
        practice_text: str,
        max_duration_ms: int,
        save_audio: Optional[Path] = None,
        out: TextIO = sys.stdout,
    ) -> None:
        self.practice_text = practice_text
        self.save_audio = save_audio
        self.out = out
        self.controller = SessionController(
            capture=capture,
            feedback_service=feedback_service,
            max_duration_ms=max_duration_ms,
            on_state_change=self._on_state_change,
            on_progress=self._on_progress,
            on_error=self._on_error,
            on_feedback=self._on_feedback,
        )

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        if to_state == SessionState.RECORDING:
            self._print("Recording... press Enter to stop.")
        elif to_state == SessionState.AWAITING_FEEDBACK:
            self._print("\nAnalyzing your pronunciation...")

    def _on_progress(self, elapsed_ms: int, max_ms: int) -> None:
        filled = int(_BAR_WIDTH * elapsed_ms / max_ms)
        bar = "#" * filled + "-" * (_BAR_WIDTH - filled)
        self.out.write(f"\r[{bar}] {elapsed_ms / 1000:4.1f}s / {max_ms / 1000:.0f}s")
        self.out.flush()
        if elapsed_ms >= max_ms:
            self._print("\nTime limit reached, press Enter to continue.")

    def _on_error(self, code: str, message: str) -> None:
        self._print(f"\n{code}: {message}")

    def _on_feedback(self, feedback: FeedbackResult) -> None:
        self._print("")
        self._print(format_feedback(feedback))

    def _print(self, text: str) -> None:
        self.out.write(text + "\n")
        self.out.flush()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self._print(f'Practice text: "{self.practice_text}"')
        try:
            while True:
                input("Press Enter to start recording...")
                if self.controller.start_session(self.practice_text):
                    input()
                    self.controller.stop_session()
                    self.controller.wait_until_settled()
                self._report()
                if not self._ask("Record again?"):
                    return 0
        except (KeyboardInterrupt, EOFError):
            self._print("")
            return 0
        finally:
            self.controller.cancel_session("app quit")

    def _report(self) -> None:
        session = self.controller.session
        if session is None or not session.encoded_audio:
            return
        if self.save_audio is not None:
            _, data = decode_data_uri(session.encoded_audio)
            self.save_audio.write_bytes(data)
            self._print(f"Saved recording to {self.save_audio}")
        if self._ask("Play recording?"):
            try:
                play_data_uri(session.encoded_audio)
            except Exception as exc:
                logger.warning("Playback failed: %s", exc)
                self._print(f"Could not play the audio: {exc}")

    def _ask(self, question: str) -> bool:
        return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pronunciation-coach")
    parser.add_argument("--text", default=DEFAULT_TEXT, help="Sentence to practice.")
    parser.add_argument("--config", help="Path to the JSON config file.")
    parser.add_argument("--set-api-key", metavar="KEY", help="Store the DashScope API key and exit.")
    parser.add_argument("--model", help="DashScope multimodal model name.")
    parser.add_argument(
        "--mode",
        choices=["structured", "freeform"],
        help="Scored word-level feedback or free-text feedback.",
    )
    parser.add_argument("--max-seconds", type=float, help="Recording limit in seconds.")
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Store --model, --mode and --max-seconds as the new defaults and exit.",
    )
    parser.add_argument("--device", help="Input device name or index.")
    parser.add_argument("--save-audio", type=Path, help="Write each recording to this file.")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files.")
    parser.add_argument("--verbose", action="store_true", help="Echo debug logs to stderr.")
    return parser


def save_settings(store: JsonConfigStore, args: argparse.Namespace) -> int:
    if args.max_seconds is not None and args.max_seconds <= 0:
        print("--max-seconds must be positive.", file=sys.stderr)
        return 2
    saved = []
    if args.model:
        store.set_model(args.model)
        saved.append(f"model={args.model}")
    if args.mode:
        store.set_feedback_mode(args.mode)
        saved.append(f"mode={args.mode}")
    if args.max_seconds is not None:
        store.set_max_duration_ms(int(args.max_seconds * 1000))
        saved.append(f"max_seconds={args.max_seconds:g}")
    if not saved:
        print("Nothing to save: pass --model, --mode or --max-seconds.", file=sys.stderr)
        return 2
    print(f"Saved {', '.join(saved)} to {store.path}")
    return 0


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    store = JsonConfigStore(Path(args.config) if args.config else None)

    if args.set_api_key is not None:
        store.set_api_key(args.set_api_key)
        print(f"API key saved to {store.path}")
        return 0

    if args.save_settings:
        return save_settings(store, args)

    setup_logging(args.log_dir, logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)

    text = (args.text or "").strip()
    if not text:
        print("Enter some text to practice.", file=sys.stderr)
        return 2

    result = create_feedback_client(
        api_key=store.get_api_key(),
        model=args.model or store.get_model(),
        mode=args.mode or store.get_feedback_mode(),
    )
    if not result.ok:
        error = result.error
        logger.error("Feedback client unavailable: %s", error.detail if error else "")
        print(f"{error.code}: {error.message}" if error else "Feedback client unavailable.", file=sys.stderr)
        return 2

    device = int(args.device) if args.device and args.device.isdigit() else args.device
    max_duration_ms = int(args.max_seconds * 1000) if args.max_seconds else store.get_max_duration_ms()
    app = PracticeApp(
        capture=SoundDeviceCapture(sample_rate=store.get_sample_rate(), device=device),
        feedback_service=result.client,
        practice_text=text,
        max_duration_ms=max_duration_ms,
        save_audio=args.save_audio,
    )
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
