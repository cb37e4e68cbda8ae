from dataclasses import dataclass, asdict
from typing import Optional


@dataclass(frozen=True)
class ArtifactRef:
    """Identifies exactly one deployable image, e.g. registry:5000/app:1.4.2@sha256:..."""
    repository: str
    tag: str
    digest: Optional[str] = None

    def __post_init__(self):
        if not self.repository or not self.repository.strip():
            raise ValueError("Artifact repository must not be empty.")
        if not self.tag or not self.tag.strip():
            raise ValueError(f"Artifact tag must not be empty for repository '{self.repository}'.")

    @classmethod
    def parse(cls, reference: str) -> "ArtifactRef":
        if not reference or not reference.strip():
            raise ValueError("Artifact reference must not be empty.")
        reference = reference.strip()
        digest = None
        if "@" in reference:
            reference, digest = reference.split("@", 1)
            if not digest:
                raise ValueError("Artifact digest must not be empty after '@'.")

        # A ':' before the last '/' belongs to the registry host (host:5000/app)
        last_slash = reference.rfind("/")
        colon = reference.rfind(":")
        if colon <= last_slash:
            raise ValueError(f"Artifact reference '{reference}' has no tag, expected repository:tag.")
        return cls(repository=reference[:colon], tag=reference[colon + 1:], digest=digest)

    @property
    def image(self) -> str:
        """Pull reference handed to the runtime. A digest pins the image more tightly than a tag."""
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return f"{self.repository}:{self.tag}"

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(repository=data["repository"], tag=data["tag"], digest=data.get("digest"))

    def __str__(self):
        ref = f"{self.repository}:{self.tag}"
        return f"{ref}@{self.digest}" if self.digest else ref
