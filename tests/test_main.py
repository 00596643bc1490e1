"""Tests for the vox-engine command-line entry point."""

import json
import os
import struct
import wave
from unittest.mock import patch

import httpx
import pytest

from vox_engine.engines.local import LocalEngineAdapter, LocalRecognizer, RecognizedSpeech
from vox_engine.engines.openai import OpenAIWhisperEngine
from vox_engine.main import build_orchestrator, build_parser, main
from vox_engine.models import Provider
from vox_engine.orchestrator import TranscriptionContext


class EchoRecognizer(LocalRecognizer):
    """Returns the file name as the transcript; rejects German."""

    name = "echo"

    def supports_locale(self, language: str | None) -> bool:
        return language != "de"

    def recognize(self, audio, language, include_timestamps) -> RecognizedSpeech:
        return RecognizedSpeech(text=f"heard {os.path.basename(audio.path)}", language="en")


def _write_wav(path: str) -> str:
    with wave.open(path, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        wf.writeframes(struct.pack("<1600h", *([0] * 1600)))
    return path


@pytest.fixture(autouse=True)
def _isolated(monkeypatch):
    """Keep the host environment and root logger out of CLI runs."""
    for key in list(os.environ):
        if key.startswith("VOX_") or key.endswith("_API_KEY"):
            monkeypatch.delenv(key, raising=False)
    with (
        patch("vox_engine.main._setup_logging"),
        patch(
            "vox_engine.main.LocalEngineAdapter",
            side_effect=lambda: LocalEngineAdapter(EchoRecognizer()),
        ),
    ):
        yield


class TestBuildParser:
    """Argument parsing."""

    def test_defaults(self) -> None:
        args = build_parser().parse_args(["a.wav"])
        assert args.paths == ["a.wav"]
        assert args.format == "txt"
        assert args.language is None
        assert args.force_remote is False
        assert args.no_local is False
        assert args.api_key is None
        assert args.output is None

    def test_flags(self) -> None:
        args = build_parser().parse_args(
            ["a.wav", "b.m4a", "--format", "json", "--provider", "revai",
             "--fallback", "openai,speechmatics", "--force-remote", "--timestamps",
             "--api-key", "sk-cli", "-o", "out.txt"]
        )
        assert args.paths == ["a.wav", "b.m4a"]
        assert args.format == "json"
        assert args.provider == "revai"
        assert args.fallback == "openai,speechmatics"
        assert args.force_remote is True
        assert args.timestamps is True
        assert args.api_key == "sk-cli"
        assert args.output == "out.txt"

    def test_unknown_format_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["a.wav", "--format", "docx"])


class TestBuildOrchestrator:
    """Orchestrator wiring."""

    def test_registers_every_provider(self) -> None:
        orchestrator = build_orchestrator(TranscriptionContext())
        assert set(orchestrator.remotes) == set(Provider)
        assert orchestrator.local is not None

    def test_local_can_be_disabled(self) -> None:
        orchestrator = build_orchestrator(TranscriptionContext(), enable_local=False)
        assert orchestrator.local is None


class TestMain:
    """End-to-end CLI runs with the local engine stubbed."""

    def test_single_file_prints_transcript(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))

        exit_code = main([path])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "heard memo.wav" in out.splitlines()
        assert "==>" not in out

    def test_multiple_files_get_headers(self, tmp_path, capsys) -> None:
        first = _write_wav(str(tmp_path / "one.wav"))
        second = _write_wav(str(tmp_path / "two.wav"))

        exit_code = main([first, second])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert f"==> {first} <==" in out
        assert f"==> {second} <==" in out
        assert "heard two.wav" in out

    def test_failed_run_exits_one(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))

        exit_code = main([path, "--language", "de"])

        captured = capsys.readouterr()
        assert exit_code == 1
        assert "transcription failed" in captured.err
        assert "local=unsupported_locale" in captured.err

    def test_no_engine_available_exits_one(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))

        exit_code = main([path, "--no-local", "--force-remote"])

        assert exit_code == 1
        assert "authentication" in capsys.readouterr().err

    def test_invalid_configuration_exits_two(self, tmp_path, monkeypatch) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))
        monkeypatch.setenv("VOX_MAX_ATTEMPTS", "0")

        assert main([path]) == 2

    def test_unknown_provider_flag_exits_two(self, tmp_path) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))
        assert main([path, "--provider", "acme"]) == 2

    def test_missing_file_exits_two(self, tmp_path) -> None:
        assert main([str(tmp_path / "missing.wav")]) == 2

    def test_json_stdout_is_a_single_document(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))

        exit_code = main([path, "--format", "json"])

        captured = capsys.readouterr()
        assert exit_code == 0
        assert json.loads(captured.out)["text"] == "heard memo.wav"
        metrics = json.loads(captured.err.strip().splitlines()[-1])
        assert metrics["metric_type"] == "transcription_run"

    def test_output_file_receives_transcript(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))
        output = tmp_path / "memo.srt"

        exit_code = main([path, "--format", "srt", "--output", str(output)])

        assert exit_code == 0
        assert "heard memo.wav" in output.read_text(encoding="utf-8")
        assert capsys.readouterr().out == ""

    def test_unwritable_output_exits_two(self, tmp_path) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))
        output = tmp_path / "missing-dir" / "memo.txt"

        assert main([path, "-o", str(output)]) == 2

    def test_api_key_flag_reaches_remote_provider(self, tmp_path, capsys) -> None:
        path = _write_wav(str(tmp_path / "memo.wav"))
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["authorization"])
            return httpx.Response(200, json={"text": "from the cloud"}, request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        openai = OpenAIWhisperEngine(client=client)
        with patch(
            "vox_engine.main.build_remote_engines", return_value={Provider.OPENAI: openai}
        ):
            exit_code = main([path, "--force-remote", "--api-key", "sk-from-cli"])

        assert exit_code == 0
        assert seen == ["Bearer sk-from-cli"]
        assert "from the cloud" in capsys.readouterr().out
