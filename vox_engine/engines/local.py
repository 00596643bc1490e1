"""On-device transcription engine.

LocalEngineAdapter checks locale support without I/O, then runs a
LocalRecognizer on a worker thread. The local engine never needs a
credential and never reports provider-side failures such as rate
limits; those kinds are remapped to unknown. Speaker identifiers are
always absent from local results.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any

from vox_engine.engines.interface import EngineAdapter
from vox_engine.models import (
    AudioReference,
    EngineDescriptor,
    ProgressPhase,
    Success,
    TranscriptionRequest,
    TranscriptionResult,
    TranscriptionSegment,
    overall_confidence,
    primary_language,
)
from vox_engine.progress import ProgressReporter
from vox_engine.utils.errors import ClassifiedError, EngineError, ErrorKind

logger = logging.getLogger(__name__)

_REMAPPED_KINDS = {ErrorKind.RATE_LIMITED, ErrorKind.QUOTA_EXCEEDED}

# ISO 639-1 codes with Whisper models
WHISPER_LANGUAGES = frozenset(
    {
        "af", "am", "ar", "as", "az", "ba", "be", "bg", "bn", "bo", "br", "bs",
        "ca", "cs", "cy", "da", "de", "el", "en", "es", "et", "eu", "fa", "fi",
        "fo", "fr", "gl", "gu", "ha", "haw", "he", "hi", "hr", "ht", "hu", "hy",
        "id", "is", "it", "ja", "jw", "ka", "kk", "km", "kn", "ko", "la", "lb",
        "ln", "lo", "lt", "lv", "mg", "mi", "mk", "ml", "mn", "mr", "ms", "mt",
        "my", "ne", "nl", "nn", "no", "oc", "pa", "pl", "ps", "pt", "ro", "ru",
        "sa", "sd", "si", "sk", "sl", "sn", "so", "sq", "sr", "su", "sv", "sw",
        "ta", "te", "tg", "th", "tk", "tl", "tr", "tt", "uk", "ur", "uz", "vi",
        "yi", "yo", "yue", "zh",
    }
)


@dataclass
class RecognizedSpeech:
    """Raw output of a LocalRecognizer."""

    text: str
    language: str
    segments: list[TranscriptionSegment] = field(default_factory=list)
    timestamps_available: bool = True


class LocalRecognizer(ABC):
    """On-device speech recognizer used by LocalEngineAdapter."""

    name: str = "local"

    @abstractmethod
    def supports_locale(self, language: str | None) -> bool:
        """Cheap check with no I/O. None means auto-detect."""

    @abstractmethod
    def recognize(
        self,
        audio: AudioReference,
        language: str | None,
        include_timestamps: bool,
    ) -> RecognizedSpeech:
        """Blocking recognition of one audio file."""


class FasterWhisperRecognizer(LocalRecognizer):
    """faster-whisper recognizer.

    The model is loaded on first use so that constructing the recognizer
    and checking locales stays cheap.

    Args:
        model: Whisper model size or path (default "base").
        device: CTranslate2 device ("auto", "cpu", "cuda").
        compute_type: CTranslate2 compute type.
    """

    name = "faster-whisper"

    def __init__(
        self, model: str = "base", device: str = "auto", compute_type: str = "auto"
    ) -> None:
        self.model_name = model
        self.device = device
        self.compute_type = compute_type
        self._model: Any = None

    def supports_locale(self, language: str | None) -> bool:
        code = primary_language(language)
        return code is None or code in WHISPER_LANGUAGES

    def _load_model(self) -> Any:
        if self._model is None:
            try:
                from faster_whisper import WhisperModel
            except ImportError as e:
                raise ImportError(
                    "faster-whisper not installed. Install with: pip install faster-whisper"
                ) from e
            logger.info("Loading faster-whisper model %s", self.model_name)
            self._model = WhisperModel(
                self.model_name, device=self.device, compute_type=self.compute_type
            )
        return self._model

    def recognize(
        self,
        audio: AudioReference,
        language: str | None,
        include_timestamps: bool,
    ) -> RecognizedSpeech:
        model = self._load_model()
        kwargs: dict[str, Any] = {}
        code = primary_language(language)
        if code:
            kwargs["language"] = code

        raw_segments, info = model.transcribe(audio.path, **kwargs)

        segments = []
        for seg in raw_segments:
            text = seg.text.strip()
            if not text:
                continue
            segments.append(
                TranscriptionSegment(
                    text=text,
                    start_time=seg.start,
                    end_time=max(seg.end, seg.start),
                    confidence=math.exp(getattr(seg, "avg_logprob", 0.0)),
                )
            )

        return RecognizedSpeech(
            text=" ".join(s.text for s in segments),
            language=info.language or code or "unknown",
            segments=segments,
        )


class LocalEngineAdapter(EngineAdapter):
    """Adapter running a LocalRecognizer off the event loop.

    Args:
        recognizer: The on-device recognizer. Defaults to faster-whisper.
    """

    def __init__(self, recognizer: LocalRecognizer | None = None) -> None:
        self.recognizer = recognizer or FasterWhisperRecognizer()
        self.descriptor = EngineDescriptor.local()

    async def _transcribe(
        self,
        request: TranscriptionRequest,
        reporter: ProgressReporter | None,
    ) -> Success:
        if not self.recognizer.supports_locale(request.language):
            raise EngineError(
                ErrorKind.UNSUPPORTED_LOCALE,
                f"Locale '{request.language}' is not supported by {self.recognizer.name}",
                engine=self.engine_id,
            )

        self._report(reporter, 0.1, ProgressPhase.TRANSCRIBING)
        start = time.monotonic()
        speech = await asyncio.to_thread(
            self.recognizer.recognize,
            request.audio,
            request.language,
            request.include_timestamps,
        )
        self._report(reporter, 0.9, ProgressPhase.FORMATTING)

        segments = [replace(s, speaker_id=None) for s in speech.segments]
        result = TranscriptionResult(
            text=speech.text,
            language=speech.language,
            confidence=overall_confidence(segments) if segments else 0.0,
            duration=request.audio.duration_seconds,
            segments=segments,
            engine=self.engine_id,
            processing_time=time.monotonic() - start,
        )
        return Success(result, timestamps_available=speech.timestamps_available)

    def _classify_failure(self, exc: Exception) -> ClassifiedError:
        error = super()._classify_failure(exc)
        if error.kind in _REMAPPED_KINDS:
            return ClassifiedError(ErrorKind.UNKNOWN, error.detail)
        return error
