from dataclasses import dataclass, field
from uuid import UUID, uuid4

from lexvault.errors import ErrorKind, ServiceError


@dataclass(frozen=True)
class CallerContext:
    """Identity and correlation data passed into every mutating operation."""

    user_id: UUID | None
    request_id: str = field(default_factory=lambda: str(uuid4()))
    client_ip: str = "0.0.0.0"

    def require_user(self) -> UUID:
        if self.user_id is None:
            raise ServiceError(ErrorKind.AUTHENTICATION_FAILED, "Authentication required")
        return self.user_id
