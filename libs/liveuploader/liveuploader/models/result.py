"""Upload result model."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class UploadResult:
    final_uri: str
    response_metadata: dict[str, str] = field(default_factory=dict)
    bytes_written: int = 0

    def header(self, name: str) -> str:
        """Case-insensitive lookup into the storage response headers."""
        wanted = name.lower()
        for key, value in self.response_metadata.items():
            if key.lower() == wanted:
                return value
        return ""
