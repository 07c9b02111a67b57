"""
schemas/auth.py
---------------
The authenticated principal decoded from a bearer token.
"""

from typing import Optional

from pydantic import BaseModel

SYSTEM_ADMIN = "system-admin"
EDUCATIONAL_ADMIN = "educational-admin"


class Principal(BaseModel):
    user_id: str
    user_type: str
    institution_domain: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_system_admin(self) -> bool:
        return self.user_type == SYSTEM_ADMIN

    @property
    def is_educational_admin(self) -> bool:
        return self.user_type == EDUCATIONAL_ADMIN
