from pathlib import Path


class CredentialStore:
    """
    Durable home of the session token, one opaque string in one file.
    A missing or empty file means "not logged in".
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get(self) -> str | None:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
