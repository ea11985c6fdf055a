"""Shared test constants and builders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

# Real 32-byte Solana public keys (program ids), so format validation passes.
WALLET_A = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
WALLET_B = "So11111111111111111111111111111111111111112"
WALLET_C = "Vote111111111111111111111111111111111111111"
WALLET_D = "Stake11111111111111111111111111111111111111"
WALLET_E = "11111111111111111111111111111111"


class FakeClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class StaticIssuer:
    """Credential issuer returning a predictable token."""

    def __init__(self) -> None:
        self.issued: list[str] = []

    async def issue(self, account_id: str) -> str:
        self.issued.append(account_id)
        return f"token-for-{account_id}"
