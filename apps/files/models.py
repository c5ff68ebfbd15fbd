import re
import secrets
import time
from dataclasses import dataclass, field, fields
from typing import Optional

from django.utils import timezone

FILENAME_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")

# Keys that must never leave the server
PRIVATE_FIELDS = ("ipfs_cid", "hash")


def sanitize_filename(filename: str) -> str:
    return FILENAME_UNSAFE_CHARS.sub("_", filename)


def generate_file_id() -> str:
    """
    Time-based id with a random suffix, e.g. file_1718000000000_9f3a12bc.
    """
    return f"file_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def now_iso() -> str:
    return timezone.now().isoformat()


@dataclass
class FileRecord:
    """
    Represents a file uploaded by a wallet.
    The file content lives on IPFS; this record is one entry of the wallet's
    metadata document, itself pinned on IPFS as a JSON array.
    """
    id: str
    filename: str
    size: int
    owner: str
    hash: str = ""
    project: str = "default"
    created_at: str = field(default_factory=now_iso)
    ipfs_cid: str = ""  # encrypted blob, never the plaintext CID
    is_deleted: bool = False
    deleted_at: Optional[str] = None
    analysis: Optional[str] = None
    restored_at: Optional[str] = None
    # Keys found in stored documents that this version does not know about
    extra: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        values.setdefault("id", "")
        values.setdefault("filename", "")
        values.setdefault("size", 0)
        values.setdefault("owner", "")
        values["is_deleted"] = bool(values.get("is_deleted", False))
        if not values.get("project"):
            values["project"] = "default"
        return cls(**values, extra=extra)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            # Optional keys are only written once they have been set
            if f.name in ("analysis", "restored_at") and value is None:
                continue
            data[f.name] = value
        return data

    def public_dict(self) -> dict:
        """
        The record as it may be shown to the owner: no CID, no content hash.
        """
        data = {
            "id": self.id,
            "filename": self.filename,
            "size": self.size,
            "owner": self.owner,
            "project": self.project or "default",
            "created_at": self.created_at,
            "is_deleted": self.is_deleted,
            "deleted_at": self.deleted_at,
        }
        if self.analysis:
            data["analysis"] = self.analysis
        if self.restored_at:
            data["restored_at"] = self.restored_at
        return data

    def is_owned_by(self, wallet: str) -> bool:
        return bool(self.owner) and bool(wallet) and self.owner.lower() == wallet.lower()

    @property
    def is_active(self) -> bool:
        return not self.is_deleted

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()

    def mark_deleted(self):
        self.is_deleted = True
        self.deleted_at = now_iso()

    def mark_restored(self):
        self.is_deleted = False
        self.deleted_at = None
        self.restored_at = now_iso()

    def __str__(self):
        return f"{self.filename} ({self.id})"


@dataclass
class MetadataSnapshot:
    """
    The records of one wallet together with the version (CID of the metadata
    document) they were read from. version is None when nothing was written yet.
    """
    records: list
    version: Optional[str] = None

    def find(self, file_id: str) -> Optional[FileRecord]:
        for record in self.records:
            if record.id == file_id:
                return record
        return None


@dataclass
class AccessToken:
    """
    Short-lived bearer grant to stream one file. Lives in process memory only.
    """
    token: str
    file_id: str
    owner_wallet: str
    ipfs_cid: str
    filename: str
    size: int
    expires: float
    created_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires

    @property
    def expires_ms(self) -> int:
        return int(self.expires * 1000)
