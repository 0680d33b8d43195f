"""
Legacy Vault data model.

Secrets and their decryption material arrive already encrypted by the
client; the vault stores and returns the blobs but never opens them.
Timestamps are integer nanoseconds since the Unix epoch.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

Identity = str
SecretID = str
TestamentID = str


class SecretCategory(str, Enum):
    PASSWORD = "Password"
    NOTE = "Note"
    DOCUMENT = "Document"


class Secret(BaseModel):
    """A stored credential. Sensitive fields are ciphertext."""

    id: SecretID
    owner: Optional[Identity] = None
    date_created: int = 0
    date_modified: int = 0
    category: Optional[SecretCategory] = None
    name: Optional[str] = None
    encrypted_username: Optional[bytes] = None
    encrypted_password: Optional[bytes] = None
    url: Optional[str] = None
    encrypted_notes: Optional[bytes] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "Secret":
        """Ensure date_modified never precedes date_created."""
        if self.date_modified < self.date_created:
            raise ValueError(
                f"date_modified ({self.date_modified}) precedes "
                f"date_created ({self.date_created})"
            )
        return self


class SecretDecryptionMaterial(BaseModel):
    """A secret's symmetric key, wrapped, plus the per-field nonces.

    ``iv`` is the nonce used to wrap ``encrypted_decryption_key``; the
    field nonces belong to the client cipher that produced the
    ciphertext in :class:`Secret`.
    """

    encrypted_decryption_key: bytes
    iv: bytes
    username_decryption_nonce: Optional[bytes] = None
    password_decryption_nonce: Optional[bytes] = None
    notes_decryption_nonce: Optional[bytes] = None


class SecretListEntry(BaseModel):
    id: SecretID
    category: Optional[SecretCategory] = None
    name: Optional[str] = None

    @classmethod
    def from_secret(cls, secret: Secret) -> "SecretListEntry":
        return cls(id=secret.id, category=secret.category, name=secret.name)


class AddSecretArgs(BaseModel):
    secret: Secret
    decryption_material: SecretDecryptionMaterial


class ConditionKind(str, Enum):
    INACTIVITY_TIMEOUT = "InactivityTimeout"


class ReleaseCondition(BaseModel):
    kind: ConditionKind = ConditionKind.INACTIVITY_TIMEOUT
    threshold_duration: int = Field(gt=0)
    last_owner_activity: int = 0

    def is_met(self, now: int) -> bool:
        """True when the owner has been inactive for the whole threshold."""
        return now - self.last_owner_activity >= self.threshold_duration


class TestamentState(str, Enum):
    ACTIVE = "Active"
    RELEASED = "Released"


class Testament(BaseModel):
    id: TestamentID
    owner: Identity
    date_created: int
    date_modified: int
    name: Optional[str] = None
    beneficiaries: set[Identity] = Field(default_factory=set)
    key_box: dict[SecretID, SecretDecryptionMaterial] = Field(default_factory=dict)
    condition: ReleaseCondition
    state: TestamentState = TestamentState.ACTIVE
    date_released: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.state is TestamentState.ACTIVE


class TestamentListEntry(BaseModel):
    id: TestamentID
    owner: Identity
    name: Optional[str] = None
    state: TestamentState
    date_created: int
    date_modified: int

    @classmethod
    def from_testament(cls, testament: Testament) -> "TestamentListEntry":
        return cls(
            id=testament.id,
            owner=testament.owner,
            name=testament.name,
            state=testament.state,
            date_created=testament.date_created,
            date_modified=testament.date_modified,
        )


class TestamentResponse(BaseModel):
    """What a beneficiary receives once a testament is released.

    ``key_box`` holds keys wrapped under the testament's derivation
    path; ``secrets`` holds the owner's ciphertext for those key-box
    ids that still exist in the owner's vault.
    """

    id: TestamentID
    owner: Identity
    name: Optional[str] = None
    date_created: int
    date_modified: int
    date_released: Optional[int] = None
    key_box: dict[SecretID, SecretDecryptionMaterial]
    secrets: dict[SecretID, Secret] = Field(default_factory=dict)


class UpdateTestamentArgs(BaseModel):
    """Owner edits to a testament; ``None`` leaves a field unchanged."""

    id: TestamentID
    name: Optional[str] = None
    beneficiaries: Optional[set[Identity]] = None
    threshold_duration: Optional[int] = Field(default=None, gt=0)


class ReleaseEvent(BaseModel):
    testament_id: TestamentID
    owner: Identity
    beneficiaries: set[Identity]
    date_released: int


class VaultInfo(BaseModel):
    """Non-sensitive summary of a user's vault."""

    id: Identity
    date_created: int
    date_modified: int
    secret_count: int
