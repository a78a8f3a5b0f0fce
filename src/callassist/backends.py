"""Pick transcription, matching, and storage backends from config."""

from __future__ import annotations

from .config import Config
from .matcher import KeywordChecklistMatcher, OpenAIChecklistMatcher
from .remote import RemoteChecklistMatcher, RemoteTranscriber, RemoteTranscriptStore
from .storage import TranscriptStore
from .transcriber import LocalWhisperTranscriber, WhisperApiTranscriber


def build_transcriber(config: Config):
    cfg = config.transcription
    if cfg.backend == "openai":
        return WhisperApiTranscriber(
            api_key=config.openai_key("transcription"),
            model=cfg.model,
            language=cfg.language,
            timeout_seconds=config.server.timeout_seconds,
        )
    if cfg.backend == "local":
        return LocalWhisperTranscriber(
            model_name=cfg.local_model,
            language=cfg.language,
            device=cfg.device,
            compute_type=cfg.compute_type,
        )
    if cfg.backend == "remote":
        return RemoteTranscriber(
            base_url=config.server.base_url, timeout_seconds=config.server.timeout_seconds
        )
    raise ValueError(f"Unknown transcription backend: {cfg.backend}")


def build_matcher(config: Config):
    cfg = config.matcher
    if cfg.backend == "openai":
        return OpenAIChecklistMatcher(api_key=config.openai_key("matcher"), model=cfg.model)
    if cfg.backend == "keyword":
        return KeywordChecklistMatcher(threshold=cfg.keyword_threshold)
    if cfg.backend == "remote":
        return RemoteChecklistMatcher(
            base_url=config.server.base_url, timeout_seconds=config.server.timeout_seconds
        )
    raise ValueError(f"Unknown matcher backend: {cfg.backend}")


def build_store(config: Config, remote: bool = False):
    if remote:
        return RemoteTranscriptStore(
            base_url=config.server.base_url, timeout_seconds=config.server.timeout_seconds
        )
    return TranscriptStore(config.transcripts_dir)
