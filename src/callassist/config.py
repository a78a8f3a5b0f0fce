"""Configuration handling."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import List, Optional
import yaml


@dataclass
class AudioConfig:
    sample_rate_hz: int = 16000
    channels: int = 1
    device_name: Optional[str] = None
    echo_cancellation: bool = True
    noise_suppression: bool = True


@dataclass
class RecordingConfig:
    chunk_seconds: float = 10.0
    flush_on_stop: bool = True
    max_workers: int = 4


@dataclass
class TranscriptionConfig:
    backend: str = "openai"
    model: str = "whisper-1"
    language: Optional[str] = "en"
    api_key: Optional[str] = None
    local_model: str = "small"
    device: Optional[str] = None
    compute_type: Optional[str] = None


@dataclass
class MatcherConfig:
    backend: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    keyword_threshold: float = 0.6


@dataclass
class ServerConfig:
    base_url: str = "http://127.0.0.1:8000"
    host: str = "127.0.0.1"
    port: int = 8000
    timeout_seconds: float = 60.0


@dataclass
class Config:
    base_dir: str = ""
    checklist_template: str = "generic"
    checklist: List[str] = field(default_factory=list)
    audio: AudioConfig = field(default_factory=AudioConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def transcripts_dir(self) -> str:
        return os.path.join(self.base_dir or os.getcwd(), "transcripts")

    def openai_key(self, section: str = "transcription") -> Optional[str]:
        configured = getattr(self, section).api_key
        return configured or os.getenv("OPENAI_API_KEY")


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    return Config(
        base_dir=data.get("base_dir", ""),
        checklist_template=data.get("checklist_template", "generic"),
        checklist=list(data.get("checklist") or []),
        audio=AudioConfig(**data.get("audio", {})),
        recording=RecordingConfig(**data.get("recording", {})),
        transcription=TranscriptionConfig(**data.get("transcription", {})),
        matcher=MatcherConfig(**data.get("matcher", {})),
        server=ServerConfig(**data.get("server", {})),
    )


def load_config_or_default(path: Optional[str]) -> Config:
    if path and os.path.exists(path):
        return load_config(path)
    return Config()


def save_config(path: str, config: Config) -> None:
    data = asdict(config)
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
