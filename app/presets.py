"""Fixed theme and streaming-service definitions shown in the dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


ThemeKey = Literal["default", "horror", "scifi", "clean"]


@dataclass(frozen=True)
class ThemeDefinition:
    """Header copy that accompanies a visual theme."""

    key: ThemeKey
    title: str
    subtitle: str

    def to_payload(self) -> dict[str, str]:
        return {"key": self.key, "title": self.title, "subtitle": self.subtitle}


@dataclass(frozen=True)
class StreamingServiceDefinition:
    """A subscribable streaming provider as identified by the catalog."""

    id: int
    name: str
    logo_path: str

    def to_payload(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name, "logoPath": self.logo_path}


THEMES: tuple[ThemeDefinition, ...] = (
    ThemeDefinition(
        key="default",
        title="Entertainment Hub",
        subtitle="Find where to watch your favorite shows and movies.",
    ),
    ThemeDefinition(
        key="horror",
        title="The Overlook",
        subtitle="All play and no work makes for a great watchlist.",
    ),
    ThemeDefinition(
        key="scifi",
        title="Game Over, Man!",
        subtitle="Find your next great watch before it's too late.",
    ),
    ThemeDefinition(
        key="clean",
        title="There Will Be Shows",
        subtitle="Find the next series you can really sink your teeth into.",
    ),
)

THEME_KEYS: tuple[str, ...] = tuple(theme.key for theme in THEMES)
DEFAULT_THEME: ThemeKey = "default"


STREAMING_SERVICES: tuple[StreamingServiceDefinition, ...] = (
    StreamingServiceDefinition(528, "AMC+", "/l4g1BT502p1H42a3j1s2lG9nK.jpg"),
    StreamingServiceDefinition(9, "Amazon Prime", "/68MNdJkIZ1hqhGPY3e4L2MSuD1I.jpg"),
    StreamingServiceDefinition(2, "Apple TV+", "/3oTfWy5TAmY5822b53eKwL1xS2z.jpg"),
    StreamingServiceDefinition(26, "Criterion Channel", "/hFCiMC5st22wV3weHl15qj7N0v1.jpg"),
    StreamingServiceDefinition(337, "Disney+", "/7rwgEs15tFwyR9NPQ5vpzxTj1Ae.jpg"),
    StreamingServiceDefinition(257, "FuboTV", "/fVjXoJkU1H_2p7iN1b1g2p1fOUl.jpg"),
    StreamingServiceDefinition(15, "Hulu", "/uJ2w33J32O2h05Iu1CjC7mGn4T.jpg"),
    StreamingServiceDefinition(1899, "Max", "/2a0aJqjuiD5ytdcZz2uISeidU8C.jpg"),
    StreamingServiceDefinition(8, "Netflix", "/ar4pMQERJSYppG3Qfo9ltM4S2sM.jpg"),
    StreamingServiceDefinition(531, "Paramount+", "/zBv2r2k2sV3E9s08i0lBq4vIZy.jpg"),
    StreamingServiceDefinition(387, "Peacock", "/pZGE52Lz17c38gNT7P7y0B0iC4.jpg"),
    StreamingServiceDefinition(37, "Showtime", "/oF4enqrXXsFRU3aG2I32vpsbQv.jpg"),
    StreamingServiceDefinition(43, "Starz", "/crFbxgG3JSddT2DAorfOqdfE5s9.jpg"),
)


def theme_definition(key: str | None) -> ThemeDefinition:
    """Return the definition for ``key``, falling back to the default theme."""

    for theme in THEMES:
        if theme.key == key:
            return theme
    return THEMES[0]
