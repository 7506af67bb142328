#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class UserType(str, Enum):
    TOURIST = "tourist"
    GUIDE = "guide"
    EVENT_PRODUCER = "event_producer"
    BOAT_TOUR_OPERATOR = "boat_tour_operator"
    ADMIN = "admin"


def split_display_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """'Ana Maria Souza' -> ('Ana', 'Maria Souza'). Blank names give (None, None)."""
    parts = (name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


class UserIdentity(BaseModel):
    """A verified identity assertion."""

    id: str = Field(..., description="Identity provider user id (Firebase uid / 'sub' claim).")
    email: str = Field(..., description="User's email address.")
    exp: int = Field(..., description="Expiration timestamp (Unix epoch).")
    provider: str = Field(..., description="The verifier that accepted the token (e.g., 'firebase-jose').")
    name: Optional[str] = Field(None, description="Display name claim.")
    picture: Optional[str] = Field(None, description="Profile image URL claim.")
    claims: Dict[str, Any] = Field(default_factory=dict, description="All claims from the token.")
    token: Optional[str] = Field(None, description="The raw token, if available.")

    @property
    def first_name(self) -> Optional[str]:
        return split_display_name(self.name)[0]

    @property
    def last_name(self) -> Optional[str]:
        return split_display_name(self.name)[1]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UserRecord(CamelModel):
    """The application's own user, as returned by the API and cached in sessions."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    user_type: Optional[UserType] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    is_admin: bool = False
    is_profile_complete: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_admin_role(self) -> bool:
        return self.is_admin or self.user_type == UserType.ADMIN


class UserUpdate(CamelModel):
    """Fields a signed-in user may change on their own record."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    profile_image_url: Optional[str] = None


class ProfileCompletion(UserUpdate):
    user_type: UserType

    @field_validator("user_type")
    @classmethod
    def no_self_promotion(cls, value: UserType) -> UserType:
        if value == UserType.ADMIN:
            raise ValueError("admin role can only be granted by an administrator")
        return value


class AdminUserUpdate(UserUpdate):
    user_type: Optional[UserType] = None
    is_admin: Optional[bool] = None
    is_profile_complete: Optional[bool] = None

    @field_validator("is_admin", "is_profile_complete")
    @classmethod
    def flags_not_null(cls, value: Optional[bool]) -> bool:
        # Omit the field to leave it unchanged; the columns are NOT NULL.
        if value is None:
            raise ValueError("must be true or false")
        return value


class SessionData(CamelModel):
    """What the session store keeps under a session id."""

    user_id: str
    user: UserRecord
    created_at: int
