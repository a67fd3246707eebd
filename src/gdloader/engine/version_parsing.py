import re
from functools import total_ordering
from typing import Optional, Tuple

CHANNEL_STABLE: str = "stable"

RELEASE_CHANNEL_RANKING = {
    "dev": 0,
    "alpha": 1,
    "beta": 2,
    "rc": 3,
    CHANNEL_STABLE: 4,
}

REGEX_PART_CORE_VERSION: str = r"(?:v)?(\d+)\.(\d+)(?:\.(\d+))?"  # Groups 1-3: major.minor(.patch) - e.g., "v5.0.0" or "5.4"
REGEX_PART_RELEASE_CHANNEL: str = r"(?:-([a-z]+)\.?(\d+)?)?"  # Group 4: channel (e.g., "beta"), Group 5: channel number (e.g., "101")

TAG_PARSE_REGEX = re.compile(
    f"^{REGEX_PART_CORE_VERSION}{REGEX_PART_RELEASE_CHANNEL}$",
    re.IGNORECASE,
)


@total_ordering
class GDVersion:
    """
    Represents a GDevelop release tag such as "v5.0.0-beta101" or "v5.4.210".
    Parsed versions compare by major/minor/patch, then by release channel
    and channel number, so cached tags can be ordered deterministically.
    """

    __slots__ = (
        "major",
        "minor",
        "patch",
        "channel",
        "channel_num",
        "prefixed",
    )

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int = 0,
        channel: str = CHANNEL_STABLE,
        channel_num: int = 0,
        prefixed: bool = True,
    ):
        """
        Initializes a GDVersion object.

        Args:
            major: The major version number (e.g., 5 in v5.0.0).
            minor: The minor version number (e.g., 4 in v5.4.210).
            patch: The patch version number (e.g., 210 in v5.4.210).
            channel: The release channel (e.g., 'stable', 'beta').
            channel_num: The sequential number for the channel (e.g., 101 in 'beta101').
            prefixed: True if the tag carries the leading 'v'.
        """
        self.major = major
        self.minor = minor
        self.patch = patch
        self.channel = channel.lower()
        self.channel_num = channel_num
        self.prefixed = prefixed

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.prefixed:
            base = f"v{base}"

        if self.channel != CHANNEL_STABLE:
            base += f"-{self.channel}"
            if self.channel_num > 0:
                base += str(self.channel_num)

        return base

    def __repr__(self) -> str:
        return (
            f"GDVersion(major={self.major}, minor={self.minor}, patch={self.patch}, "
            f"channel='{self.channel}', channel_num={self.channel_num})"
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, GDVersion):
            return NotImplemented
        return self.ordering_key() < other.ordering_key()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GDVersion):
            return False
        return self.ordering_key() == other.ordering_key()

    def __hash__(self):
        return hash(self.ordering_key())

    @classmethod
    def parse(cls, tag: str) -> "GDVersion":
        """
        Parses a GDevelop release tag into a GDVersion object.

        Examples of supported tags:
            "v5.0.0-beta101"
            "v5.4.210"
            "5.3"

        Args:
            tag: The release tag.

        Returns:
            A new GDVersion instance.

        Raises:
            ValueError: If the tag format is invalid.
        """
        tag = tag.strip()
        match = TAG_PARSE_REGEX.match(tag)
        if not match:
            raise ValueError(f"Invalid GDevelop version tag: {tag}")

        major = int(match.group(1))
        minor = int(match.group(2))
        patch = int(match.group(3)) if match.group(3) else 0

        channel = match.group(4).lower() if match.group(4) else CHANNEL_STABLE
        channel_num = int(match.group(5)) if match.group(5) else 0

        return cls(
            major,
            minor,
            patch,
            channel,
            channel_num,
            prefixed=tag[:1].lower() == "v",
        )

    @classmethod
    def try_parse(cls, tag: str) -> Optional["GDVersion"]:
        """Like parse(), but returns None for tags that are not version numbers."""
        try:
            return cls.parse(tag)
        except ValueError:
            return None

    def ordering_key(self) -> Tuple[int, int, int, int, int]:
        """
        Returns the tuple versions are compared by, ignoring the 'v' prefix.
        Usable as a sort key next to non-version data.
        """
        channel_rank = RELEASE_CHANNEL_RANKING.get(self.channel, -1)
        return (
            self.major,
            self.minor,
            self.patch,
            channel_rank,
            self.channel_num,
        )

    @property
    def is_stable(self) -> bool:
        """Checks if the version is a stable release."""
        return self.channel == CHANNEL_STABLE
