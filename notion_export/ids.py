"""
Notion object identifiers.

Notion hands out ids in two spellings: dashed UUIDs in API responses
(eb39a20e-1036-4469-b750-a9df8f4f18df) and bare 32-hex strings in page URLs
and in the link_map the user writes by hand. Both parse to the same NotionId.
str() always gives the bare form, which is what we put in request paths,
HTML id attributes and media file names.
"""

import re
import uuid
from dataclasses import dataclass

_HEX32 = re.compile(r"^[0-9a-fA-F]{32}$")


@dataclass(frozen=True)
class NotionId:
    value: uuid.UUID

    @classmethod
    def parse(cls, text):
        """Parse a dashed or undashed 32-hex id. Raises ValueError on anything else."""
        if not isinstance(text, str):
            raise ValueError(f"Notion id must be a string, got {type(text).__name__}")
        bare = text.strip().replace("-", "")
        if not _HEX32.match(bare):
            raise ValueError(f"Not a Notion id: {text!r}")
        return cls(uuid.UUID(hex=bare))

    def __str__(self):
        return self.value.hex

    @property
    def dashed(self):
        return str(self.value)
