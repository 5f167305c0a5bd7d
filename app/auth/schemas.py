from typing import Optional

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller as asserted by the access token.
    User and role records live in the identity service; the ledger only trusts the claims.
    """

    id: str
    email: Optional[str] = None
    role: str
    student_id: Optional[str] = None  # Set for STUDENT tokens; scopes reads to their own account

    @property
    def actor(self) -> str:
        """Identifier written to recorded_by / changed_by."""
        return self.email or self.id
