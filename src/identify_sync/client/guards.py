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

"""
Route/Page Guards

A PageGuard turns an AuthSnapshot into a GuardDecision: render the page,
show a placeholder, or redirect. Redirects are returned as RedirectCommand
values; nothing here navigates on its own.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from identify_sync.shared.models import UserType
from identify_sync.client.notifications import Notification, Notifier
from identify_sync.client.state import AuthFlags, AuthSnapshot

logger = logging.getLogger(__name__)

LOGIN_PATH = "/firebase-login"
HOME_PATH = "/"
ONBOARDING_PATH = "/profile-selection"

LOGIN_REDIRECT_DELAY = 0.5
FORBIDDEN_REDIRECT_DELAY = 1.0
ONBOARDING_REDIRECT_DELAY = 0.0

UNAUTHORIZED_NOTIFICATION = Notification("Unauthorized", "You need to be signed in. Redirecting...")
INCOMPLETE_PROFILE_NOTIFICATION = Notification(
    "Complete your profile", "Choose a profile type to continue.", variant="default"
)

ROLE_CHECKS = {
    UserType.ADMIN: lambda flags, user: flags.is_admin,
    UserType.GUIDE: lambda flags, user: flags.is_guide,
    UserType.BOAT_TOUR_OPERATOR: lambda flags, user: flags.is_operator,
    UserType.EVENT_PRODUCER: lambda flags, user: flags.is_event_producer,
    UserType.TOURIST: lambda flags, user: user is not None and user.user_type == UserType.TOURIST,
}


class GuardOutcome(str, Enum):
    PLACEHOLDER = "placeholder"
    RENDER = "render"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class RedirectCommand:
    target: str
    delay: float
    notification: Optional[Notification] = None

    async def execute(
        self,
        navigate: Callable[[str], Any],
        notifier: Optional[Notifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Show the notification, wait `delay` seconds, then navigate."""
        if notifier is not None and self.notification is not None:
            notifier.notify(self.notification)
        if self.delay > 0:
            await sleep(self.delay)
        result = navigate(self.target)
        if inspect.isawaitable(result):
            await result


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    command: Optional[RedirectCommand] = None

    @property
    def should_render(self) -> bool:
        return self.outcome == GuardOutcome.RENDER


PLACEHOLDER = GuardDecision(GuardOutcome.PLACEHOLDER)
RENDER = GuardDecision(GuardOutcome.RENDER)


def forbidden_notification(role: UserType) -> Notification:
    return Notification("Access denied", f"Only {role.value.replace('_', ' ')} accounts can access this page.")


class PageGuard:
    """
    Evaluate on every snapshot. A redirect to a given target is issued once;
    later evaluations that reach the same target return a REDIRECT decision
    without a command. The guard re-arms once it renders.

    `require_complete_profile=False` is for the onboarding page itself.
    """

    def __init__(self, required_role: Optional[UserType] = None, require_complete_profile: bool = True):
        self.required_role = required_role
        self.require_complete_profile = require_complete_profile
        self._issued: Set[str] = set()

    def evaluate(self, snapshot: AuthSnapshot) -> GuardDecision:
        flags = snapshot.flags
        if flags.is_loading:
            return PLACEHOLDER

        if snapshot.local_user is None or snapshot.provider_user is None:
            return self._redirect(LOGIN_PATH, LOGIN_REDIRECT_DELAY, UNAUTHORIZED_NOTIFICATION)

        if not flags.is_profile_complete and self.require_complete_profile:
            return self._redirect(ONBOARDING_PATH, ONBOARDING_REDIRECT_DELAY, INCOMPLETE_PROFILE_NOTIFICATION)

        if self.required_role is not None and not self._has_role(flags, snapshot):
            return self._redirect(HOME_PATH, FORBIDDEN_REDIRECT_DELAY, forbidden_notification(self.required_role))

        self._issued.clear()
        return RENDER

    def _has_role(self, flags: AuthFlags, snapshot: AuthSnapshot) -> bool:
        return ROLE_CHECKS[self.required_role](flags, snapshot.local_user)

    def _redirect(self, target: str, delay: float, notification: Notification) -> GuardDecision:
        if target in self._issued:
            return GuardDecision(GuardOutcome.REDIRECT)
        self._issued.add(target)
        logger.info(f"Guard redirecting to {target} in {delay}s")
        return GuardDecision(GuardOutcome.REDIRECT, RedirectCommand(target, delay, notification))
