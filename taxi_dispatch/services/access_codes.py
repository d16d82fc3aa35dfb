"""
Access-Code Issuer
==================

Admins hand out one-time codes; a client who redeems one becomes a driver.

The redemption order matters: the code is claimed with a compare-and-set
*before* the user row is touched, and both happen in the caller's unit of
work.  An invalid or already-used code therefore leaves the user exactly as
it was, and of two racing redemptions of the same code only one promotes
anybody.
"""

from __future__ import annotations

import logging
from typing import Optional

from taxi_dispatch.domain.codes import normalise_code, pick_unique_code
from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.domain.results import Failure, FailureKind, Outcome
from taxi_dispatch.infrastructure.models import AccessCodeModel, UserModel
from taxi_dispatch.infrastructure.repositories import (
    AccessCodeRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class AccessCodeIssuer:
    def __init__(
        self,
        codes: AccessCodeRepository,
        users: UserRepository,
        *,
        length: int = 8,
        max_attempts: int = 10,
    ):
        self.codes = codes
        self.users = users
        self.length = length
        self.max_attempts = max_attempts

    async def generate(self, issued_by: str) -> AccessCodeModel:
        known = await self.codes.known_codes()
        code = pick_unique_code(
            known.__contains__, length=self.length, max_attempts=self.max_attempts
        )
        access_code = await self.codes.create(code=code, issued_by=issued_by)
        logger.info("Access code issued by %s", issued_by)
        return access_code

    async def validate(self, code: str) -> Optional[AccessCodeModel]:
        return await self.codes.get(normalise_code(code))

    async def mark_used(self, code: str, user_id: str) -> bool:
        return await self.codes.mark_used(normalise_code(code), user_id)

    async def list_codes(self) -> list[AccessCodeModel]:
        return await self.codes.list_all()

    async def register_driver_with_code(
        self,
        user_id: str,
        code: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Outcome[UserModel]:
        user = await self.users.get_by_id(user_id)
        if user is not None and user.role == UserRole.ADMIN:
            return Failure(
                FailureKind.NOT_ACCEPTABLE, "Admins cannot redeem access codes"
            )

        if not await self.mark_used(code, user_id):
            logger.info("Rejected access code redemption by %s", user_id)
            return Failure(FailureKind.INVALID_CODE, "Invalid or already used code")

        if user is None:
            user = await self.users.create(
                user_id=user_id, role=UserRole.DRIVER, name=name, phone=phone
            )
        else:
            fields: dict = {"role": UserRole.DRIVER}
            if name:
                fields["name"] = name
            if phone:
                fields["phone"] = phone
            user = await self.users.update(user, **fields)

        logger.info("User %s registered as driver", user_id)
        return user
