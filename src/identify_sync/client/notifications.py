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

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A toast-like message for the user."""

    title: str
    description: str
    variant: str = "destructive"


class Notifier(ABC):
    @abstractmethod
    def notify(self, notification: Notification) -> None:
        pass


class LoggingNotifier(Notifier):
    """Default notifier for headless use: writes notifications to the log."""

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.variant == "destructive" else logging.INFO
        logger.log(level, f"{notification.title}: {notification.description}")
