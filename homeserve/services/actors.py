"""
Authenticated caller identity handed to the scheduling core.

Credential checks happen at the API boundary; the core only compares
the actor against the parties of an appointment.
"""
import enum
from dataclasses import dataclass
from uuid import UUID


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: UUID
    role: ActorRole

    @property
    def is_customer(self) -> bool:
        return self.role == ActorRole.CUSTOMER

    @property
    def is_provider(self) -> bool:
        return self.role == ActorRole.PROVIDER

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN
