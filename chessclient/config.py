import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_CREDENTIAL_PATH = Path.home() / ".config" / "chessclient" / "token"

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    credential_path: Path = field(default_factory=lambda: DEFAULT_CREDENTIAL_PATH)
    # lobby policy
    allow_spectators: bool = True
    ranked_bypasses_lobby: bool = True

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def ws_base(self) -> str:
        return self.base_url.replace("http://", "ws://").replace("https://", "wss://")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=os.environ.get("CHESS_SERVER_URL", DEFAULT_BASE_URL),
            credential_path=Path(os.environ.get("CHESS_CREDENTIAL_PATH", DEFAULT_CREDENTIAL_PATH)),
            allow_spectators=_flag("CHESS_ALLOW_SPECTATORS", True),
            ranked_bypasses_lobby=_flag("CHESS_RANKED_BYPASSES_LOBBY", True),
        )
