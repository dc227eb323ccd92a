import os
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .errors import ConfigError


KEYWORD_ENGINES = ("porcupine", "openwakeword")
PRE_CONNECT_POLICIES = ("drop", "buffer")


@dataclass(frozen=True)
class AudioConfig:
    """Microphone capture options. Each option defaults independently."""
    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 250
    echo_cancellation: bool = True
    noise_suppression: bool = True
    device: Optional[str] = None

    @property
    def blocksize(self) -> int:
        """Samples per frame at the configured cadence."""
        return int(self.sample_rate * self.frame_ms / 1000)


@dataclass(frozen=True)
class TranscriptionConfig:
    """Parameters of a streaming transcription session."""
    api_key: Optional[str] = None
    model: str = "nova-2"
    language: str = "en-US"
    punctuate: bool = True
    interim_results: bool = True
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1
    connect_timeout_sec: float = 10.0
    pre_connect_policy: str = "drop"
    pre_connect_buffer_frames: int = 40
    url: str = "wss://api.deepgram.com/v1/listen"

    def query_params(self) -> Dict[str, str]:
        return {
            "model": self.model,
            "language": self.language,
            "punctuate": str(self.punctuate).lower(),
            "interim_results": str(self.interim_results).lower(),
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
        }


@dataclass(frozen=True)
class KeywordSpotterConfig:
    """Audio-level wake word engine options."""
    model_path: Optional[str] = None
    sensitivity: float = 0.5
    access_key: Optional[str] = None
    engine: str = "porcupine"
    sample_rate: int = 16000
    cooldown_sec: float = 1.0


@dataclass(frozen=True)
class Settings:
    # Wake Word Detection
    wake_word: Optional[str]
    sleep_word: Optional[str]
    wake_aliases: list[str]
    sleep_aliases: list[str]
    wake_fuzzy_ratio: Optional[float]
    substring_fallback: bool
    wake_sensitivity: float

    # Transcription Service
    deepgram_api_key: Optional[str]
    language: str
    model: str
    punctuate: bool
    interim_results: bool
    encoding: str
    connect_timeout_sec: float
    pre_connect_policy: str  # "drop" (default) or "buffer"
    pre_connect_buffer_frames: int

    # Audio Input
    sample_rate: int
    channels: int
    frame_ms: int
    echo_cancellation: bool
    noise_suppression: bool
    voice_device: Optional[str]  # Audio input device (None = system default)

    # Keyword Spotting
    use_audio_wake_engine: bool
    keyword_engine: str  # "porcupine" or "openwakeword"
    keyword_model_path: Optional[str]
    picovoice_access_key: Optional[str]

    voice_debug: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.wake_sensitivity <= 1.0:
            raise ConfigError(f"wake_sensitivity must be within [0, 1], got {self.wake_sensitivity}")
        if self.wake_fuzzy_ratio is not None and not 0.0 < self.wake_fuzzy_ratio <= 1.0:
            raise ConfigError(f"wake_fuzzy_ratio must be within (0, 1], got {self.wake_fuzzy_ratio}")
        if self.sample_rate <= 0 or self.channels <= 0 or self.frame_ms <= 0:
            raise ConfigError("sample_rate, channels and frame_ms must be positive")
        if self.connect_timeout_sec <= 0:
            raise ConfigError("connect_timeout_sec must be positive")
        if self.pre_connect_policy not in PRE_CONNECT_POLICIES:
            raise ConfigError(f"pre_connect_policy must be one of {PRE_CONNECT_POLICIES}")
        if self.pre_connect_buffer_frames < 0:
            raise ConfigError("pre_connect_buffer_frames must not be negative")
        if self.keyword_engine not in KEYWORD_ENGINES:
            raise ConfigError(f"keyword_engine must be one of {KEYWORD_ENGINES}")

    def audio_config(self) -> AudioConfig:
        return AudioConfig(
            sample_rate=self.sample_rate,
            channels=self.channels,
            frame_ms=self.frame_ms,
            echo_cancellation=self.echo_cancellation,
            noise_suppression=self.noise_suppression,
            device=self.voice_device,
        )

    def transcription_config(self) -> TranscriptionConfig:
        return TranscriptionConfig(
            api_key=self.deepgram_api_key,
            model=self.model,
            language=self.language,
            punctuate=self.punctuate,
            interim_results=self.interim_results,
            encoding=self.encoding,
            sample_rate=self.sample_rate,
            channels=self.channels,
            connect_timeout_sec=self.connect_timeout_sec,
            pre_connect_policy=self.pre_connect_policy,
            pre_connect_buffer_frames=self.pre_connect_buffer_frames,
        )

    def keyword_spotter_config(self) -> KeywordSpotterConfig:
        return KeywordSpotterConfig(
            model_path=self.keyword_model_path,
            sensitivity=self.wake_sensitivity,
            access_key=self.picovoice_access_key,
            engine=self.keyword_engine,
            sample_rate=self.sample_rate,
        )


def _default_config_path() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "voicegate" / "config.json"
    return Path.home() / ".config" / "voicegate" / "config.json"


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    return data
    except (OSError, ValueError):
        pass
    return {}


def _ensure_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(value)]


def _optional_str(value: Any) -> Optional[str]:
    if value in (None, "", "null"):
        return None
    return str(value)


def _optional_word(value: Any) -> Optional[str]:
    word = _optional_str(value)
    if word is None:
        return None
    word = word.strip().lower()
    return word or None


def get_default_config() -> Dict[str, Any]:
    """Returns the default configuration values."""
    return {
        # Wake Word Detection
        "wake_word": "hey siri",
        "sleep_word": "stop",
        "wake_aliases": [],
        "sleep_aliases": [],
        "wake_fuzzy_ratio": None,  # None disables fuzzy matching
        "substring_fallback": True,
        "wake_sensitivity": 0.5,

        # Transcription Service
        "language": "en-US",
        "model": "nova-2",
        "punctuate": True,
        "interim_results": True,
        "encoding": "linear16",
        "connect_timeout_sec": 10.0,
        "pre_connect_policy": "drop",
        "pre_connect_buffer_frames": 40,  # ~10s at 250ms frames

        # Audio Input
        "sample_rate": 16000,
        "channels": 1,
        "frame_ms": 250,
        "echo_cancellation": True,
        "noise_suppression": True,
        "voice_device": None,  # Audio input device (None = system default)

        # Keyword Spotting
        "use_audio_wake_engine": False,
        "keyword_engine": "porcupine",
        "keyword_model_path": None,
    }


def settings_from_dict(merged: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from a merged config dict. Credentials come from env only."""
    env = os.environ if env is None else env
    defaults = get_default_config()
    merged = {**defaults, **merged}

    fuzzy_val = merged.get("wake_fuzzy_ratio")
    wake_fuzzy_ratio = None if fuzzy_val in (None, "", "null") else float(fuzzy_val)
    voice_device_val = merged.get("voice_device")
    voice_device = None if voice_device_val in (None, "", "default", "system") else str(voice_device_val)

    return Settings(
        # Wake Word Detection
        wake_word=_optional_word(merged.get("wake_word")),
        sleep_word=_optional_word(merged.get("sleep_word")),
        wake_aliases=[a.strip().lower() for a in _ensure_list(merged.get("wake_aliases")) if a.strip()],
        sleep_aliases=[a.strip().lower() for a in _ensure_list(merged.get("sleep_aliases")) if a.strip()],
        wake_fuzzy_ratio=wake_fuzzy_ratio,
        substring_fallback=bool(merged.get("substring_fallback", True)),
        wake_sensitivity=float(merged.get("wake_sensitivity", 0.5)),

        # Transcription Service
        deepgram_api_key=_optional_str(env.get("DEEPGRAM_API_KEY")),
        language=str(merged.get("language", "en-US")),
        model=str(merged.get("model") or "nova-2"),
        punctuate=bool(merged.get("punctuate", True)),
        interim_results=bool(merged.get("interim_results", True)),
        encoding=str(merged.get("encoding", "linear16")),
        connect_timeout_sec=float(merged.get("connect_timeout_sec", 10.0)),
        pre_connect_policy=str(merged.get("pre_connect_policy", "drop")).lower(),
        pre_connect_buffer_frames=int(merged.get("pre_connect_buffer_frames", 40)),

        # Audio Input
        sample_rate=int(merged.get("sample_rate", 16000)),
        channels=int(merged.get("channels", 1)),
        frame_ms=int(merged.get("frame_ms", 250)),
        echo_cancellation=bool(merged.get("echo_cancellation", True)),
        noise_suppression=bool(merged.get("noise_suppression", True)),
        voice_device=voice_device,

        # Keyword Spotting
        use_audio_wake_engine=bool(merged.get("use_audio_wake_engine", False)),
        keyword_engine=str(merged.get("keyword_engine", "porcupine")).lower(),
        keyword_model_path=_optional_str(merged.get("keyword_model_path")),
        picovoice_access_key=_optional_str(env.get("PICOVOICE_ACCESS_KEY")),

        voice_debug=env.get("VOICEGATE_DEBUG", "0") == "1",
    )


def load_settings() -> Settings:
    # Load environment for credentials, debug toggles and optional config file path
    load_dotenv(override=False)

    cfg_path_env = os.environ.get("VOICEGATE_CONFIG_PATH")
    cfg_path = Path(cfg_path_env).expanduser() if cfg_path_env else _default_config_path()

    # JSON wins over defaults
    return settings_from_dict(_load_json(cfg_path))
