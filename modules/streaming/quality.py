"""
Quality ladder

Static table of the output presets a source can be transcoded to.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class QualityPreset:
    """One rung of the ladder.

    ``resolution`` is in ffmpeg scale filter form (``"1280:720"``).
    """

    name: str
    resolution: str
    video_bitrate: str
    audio_bitrate: str
    maxrate: str
    bufsize: str

    @classmethod
    def from_dict(cls, data: dict) -> 'QualityPreset':
        """Build a preset from a config entry.

        Args:
            data: dict with name/resolution/video_bitrate/audio_bitrate/maxrate/bufsize

        Returns:
            QualityPreset instance
        """
        return cls(
            name=str(data["name"]),
            resolution=str(data["resolution"]),
            video_bitrate=str(data["video_bitrate"]),
            audio_bitrate=str(data["audio_bitrate"]),
            maxrate=str(data["maxrate"]),
            bufsize=str(data["bufsize"]),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "resolution": self.resolution,
            "video_bitrate": self.video_bitrate,
            "audio_bitrate": self.audio_bitrate,
            "maxrate": self.maxrate,
            "bufsize": self.bufsize,
        }


DEFAULT_PRESETS = (
    QualityPreset("480p", "854:480", "1000k", "128k", "1M", "2M"),
    QualityPreset("720p", "1280:720", "2500k", "192k", "2.5M", "5M"),
    QualityPreset("1080p", "1920:1080", "5000k", "256k", "5M", "10M"),
)


class QualityLadder:
    """Ordered, read-only lookup over quality presets."""

    def __init__(self, presets: Optional[Iterable[QualityPreset]] = None):
        presets = tuple(presets) if presets is not None else DEFAULT_PRESETS
        if not presets:
            raise ValueError("Quality ladder needs at least one preset")
        self._presets: Dict[str, QualityPreset] = {}
        for preset in presets:
            if preset.name in self._presets:
                raise ValueError(f"Duplicate quality preset: {preset.name}")
            self._presets[preset.name] = preset

    @classmethod
    def from_config(cls, entries: Optional[Sequence[dict]]) -> 'QualityLadder':
        """Build a ladder from config entries, falling back to the defaults."""
        if not entries:
            return cls()
        return cls(QualityPreset.from_dict(entry) for entry in entries)

    def preset_for(self, name: str) -> Optional[QualityPreset]:
        """Look up a preset by name.

        Args:
            name: quality name, e.g. "720p"

        Returns:
            QualityPreset, or None when the name is not on the ladder
        """
        return self._presets.get(name)

    def supported_names(self) -> List[str]:
        return list(self._presets)

    def __contains__(self, name) -> bool:
        return name in self._presets

    def __len__(self) -> int:
        return len(self._presets)
