"""
Token Lifecycle Manager

Creates a business's token and changes its supply:

    {no token} --mint_initial--> {supply=1, price=base}
    mint_tokens / burn_tokens    supply ± amount, then re-price
    recalculate_price            re-price at the current supply

Tokens are never deleted. Every mutation runs as one database transaction
with the token row locked, and supply and price are written together.

The ``reason`` passed to mint/burn is an audit string: it is logged, not
stored.

Version: 1.0.0
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    NotFoundError,
    InvalidArgumentError,
    AlreadyExistsError,
    InsufficientSupplyError,
)
from app.database import run_in_transaction
from app.models import BusinessToken
from app.services import ledger
from app.services.pricing import CENT, PricingEngine

logger = logging.getLogger(__name__)


def generate_token_symbol(business_name: str, length: int = 3, suffix: str = "T") -> str:
    """
    Build a token symbol from a business name.

    Takes the first ``length`` characters (code points, so multi-byte names
    are never cut mid-character), upper-cases them and appends ``suffix``.

    >>> generate_token_symbol("Pizza Palace")
    'PIZT'
    >>> generate_token_symbol("Щи")
    'ЩИT'
    """
    return business_name.strip()[:length].upper() + suffix


class TokenLifecycleManager:
    """Mints, burns and re-prices business tokens."""

    def __init__(self, pricing: Optional[PricingEngine] = None):
        settings = get_settings()
        self.pricing = pricing or PricingEngine()
        self.symbol_length = settings.token_symbol_length
        self.symbol_suffix = settings.token_symbol_suffix

    # =========================================================================
    # CREATION
    # =========================================================================

    async def mint_initial(self, db: AsyncSession, business_id: str) -> BusinessToken:
        """
        Create the initial token of a business, or return the existing one.

        Idempotent: a second call returns the same token unchanged.

        Raises:
            NotFoundError: The business does not exist
        """
        async def operation(session: AsyncSession) -> BusinessToken:
            business = await ledger.get_business(session, business_id)
            if business is None:
                raise NotFoundError(f"business not found: {business_id}")

            existing = await ledger.get_token(session, business_id)
            if existing is not None:
                logger.debug(f"Token already exists for business {business_id}: {existing.symbol}")
                return existing

            token = BusinessToken(
                business_id=business_id,
                symbol=generate_token_symbol(business.name, self.symbol_length, self.symbol_suffix),
                total_supply=1,
                price=self.pricing.base_price,
            )
            session.add(token)
            await session.flush()

            logger.info(
                f"✅ Initial token minted: Business={business_id}, Symbol={token.symbol}, "
                f"Supply=1, Price=${token.price}"
            )
            return token

        return await run_in_transaction(db, operation)

    async def create_token(
        self,
        db: AsyncSession,
        business_id: str,
        symbol: str,
        initial_price: Decimal,
        total_supply: int,
    ) -> BusinessToken:
        """
        Create a token with explicit parameters.

        A non-positive ``initial_price`` falls back to the base price.

        Raises:
            InvalidArgumentError: Blank symbol or non-positive supply
            NotFoundError: The business does not exist
            AlreadyExistsError: The business already has a token
        """
        if not symbol or not symbol.strip():
            raise InvalidArgumentError("symbol is required")
        if total_supply <= 0:
            raise InvalidArgumentError("total supply must be positive")

        price = Decimal(initial_price) if initial_price is not None else Decimal("0")
        if price <= 0:
            price = self.pricing.base_price
        price = price.quantize(CENT, rounding=ROUND_HALF_UP)

        async def operation(session: AsyncSession) -> BusinessToken:
            if await ledger.get_business(session, business_id) is None:
                raise NotFoundError(f"business not found: {business_id}")
            if await ledger.get_token(session, business_id) is not None:
                raise AlreadyExistsError("token already exists for this business")

            token = BusinessToken(
                business_id=business_id,
                symbol=symbol.strip(),
                total_supply=total_supply,
                price=price,
            )
            session.add(token)
            await session.flush()
            return token

        token = await run_in_transaction(db, operation)
        logger.info(
            f"🆕 Manual token created: Business={business_id}, Symbol={token.symbol}, "
            f"Supply={token.total_supply}, Price=${token.price}"
        )
        return token

    # =========================================================================
    # SUPPLY CHANGES
    # =========================================================================

    async def mint_tokens(
        self,
        db: AsyncSession,
        business_id: str,
        amount: int,
        reason: str = "",
    ) -> BusinessToken:
        """
        Add ``amount`` tokens to the available supply and re-price.

        Raises:
            InvalidArgumentError: ``amount`` is not positive
            NotFoundError: The business has no token
        """
        if amount <= 0:
            raise InvalidArgumentError("amount must be positive")

        async def operation(session: AsyncSession) -> BusinessToken:
            token = await self._locked_token(session, business_id)
            old_supply, old_price = token.total_supply, token.price

            new_supply = old_supply + amount
            token.price = await self.pricing.price_for(session, business_id, new_supply)
            token.total_supply = new_supply

            logger.info(
                f"✅ Minted: Business={business_id}, Amount={amount}, "
                f"Supply: {old_supply}→{new_supply}, Price: ${old_price}→${token.price}, "
                f"Reason={reason}"
            )
            return token

        return await run_in_transaction(db, operation)

    async def burn_tokens(
        self,
        db: AsyncSession,
        business_id: str,
        amount: int,
        reason: str = "",
    ) -> BusinessToken:
        """
        Remove ``amount`` tokens from the available supply and re-price.

        Raises:
            InvalidArgumentError: ``amount`` is not positive
            NotFoundError: The business has no token
            InsufficientSupplyError: ``amount`` exceeds the supply
        """
        if amount <= 0:
            raise InvalidArgumentError("amount must be positive")

        async def operation(session: AsyncSession) -> BusinessToken:
            token = await self._locked_token(session, business_id)
            if amount > token.total_supply:
                raise InsufficientSupplyError(token.total_supply, amount)
            old_supply, old_price = token.total_supply, token.price

            new_supply = old_supply - amount
            token.price = await self.pricing.price_for(session, business_id, new_supply)
            token.total_supply = new_supply

            logger.info(
                f"🔥 Burned: Business={business_id}, Amount={amount}, "
                f"Supply: {old_supply}→{new_supply}, Price: ${old_price}→${token.price}, "
                f"Reason={reason}"
            )
            return token

        return await run_in_transaction(db, operation)

    async def recalculate_price(self, db: AsyncSession, business_id: str) -> BusinessToken:
        """
        Re-derive the price from the current supply and market activity.

        Raises:
            NotFoundError: The business has no token
        """
        async def operation(session: AsyncSession) -> BusinessToken:
            token = await self._locked_token(session, business_id)
            old_price = token.price
            token.price = await self.pricing.price_for(session, business_id, token.total_supply)
            logger.info(f"💰 Price recalculated: Business={business_id}, ${old_price} → ${token.price}")
            return token

        return await run_in_transaction(db, operation)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_token(self, db: AsyncSession, business_id: str) -> BusinessToken:
        """
        Raises:
            NotFoundError: The business has no token
        """
        token = await ledger.get_token(db, business_id)
        if token is None:
            raise NotFoundError(f"token not found for business: {business_id}")
        return token

    async def _locked_token(self, db: AsyncSession, business_id: str) -> BusinessToken:
        token = await ledger.get_token(db, business_id, for_update=True)
        if token is None:
            raise NotFoundError(f"token not found for business: {business_id}")
        return token


@lru_cache()
def get_token_manager() -> TokenLifecycleManager:
    """Get the shared token lifecycle manager."""
    return TokenLifecycleManager()
