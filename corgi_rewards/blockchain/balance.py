import logging
from typing import Optional

from pytoniq_core import Address

from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.blockchain.messages import parse_address
from corgi_rewards.blockchain.schemas import (
    AffordabilityResult,
    BalanceAlert,
    BalanceCheckResult,
)
from corgi_rewards.cache.redis import RedisClient
from corgi_rewards.config import Settings, settings
from corgi_rewards.constants import AlertSeverity, AlertType, CacheKeys
from corgi_rewards.utils import format_units


logger = logging.getLogger(__name__)

BALANCE_CHECK_FAILED = "balance check failed"
UNKNOWN_BALANCE = "unknown"
TON_DECIMALS = 9


class BalanceGuard:
    """Pre-flight check of the operator's TON and jetton balances."""

    def __init__(
        self,
        chain_client: TonChainClient,
        config: Settings = settings,
        cache: Optional[RedisClient] = None,
    ) -> None:
        self.chain_client = chain_client
        self.cache = cache
        self.network = config.TON_NETWORK
        self.jetton_master_address = config.JETTON_MASTER_ADDRESS
        self.jetton_decimals = config.JETTON_DECIMALS
        self.ton_min_balance = config.OPERATOR_TON_MIN_BALANCE
        self.jetton_min_balance = config.OPERATOR_JETTON_MIN_BALANCE
        self.gas_amount = config.TRANSFER_GAS_AMOUNT
        self.cache_ttl = config.BALANCE_CACHE_TTL

    async def _jetton_wallet(self, jetton_master: Optional[str]) -> Address:
        if jetton_master is None or parse_address(jetton_master) == parse_address(
            self.jetton_master_address
        ):
            return await self.chain_client.get_operator_jetton_wallet()
        return await self.chain_client.get_jetton_wallet_address(
            master=jetton_master
        )

    @staticmethod
    def _low_balance_alert(
        alert_type: str,
        asset: str,
        balance: int,
        threshold: int,
        decimals: int,
    ) -> BalanceAlert:
        severity = (
            AlertSeverity.CRITICAL
            if balance < threshold / 2
            else AlertSeverity.WARNING
        )
        return BalanceAlert(
            type=alert_type,
            severity=severity,
            message=(
                f"Operator {asset} balance {format_units(balance, decimals)} "
                f"is below {format_units(threshold, decimals)}"
            ),
            current_balance=str(balance),
            threshold=str(threshold),
        )

    @staticmethod
    def _unreadable_alert(asset: str, threshold: int) -> BalanceAlert:
        return BalanceAlert(
            type=AlertType.CRITICAL_BALANCE,
            severity=AlertSeverity.CRITICAL,
            message=f"Unable to read operator {asset} balance",
            current_balance=UNKNOWN_BALANCE,
            threshold=str(threshold),
        )

    async def check_balances(
        self, jetton_master: Optional[str] = None
    ) -> BalanceCheckResult:
        """
        Read live balances and compare them with configured minimums.

        A balance below half of its minimum raises a critical alert, any
        other shortfall a warning. A balance that cannot be read counts as
        not OK and raises a critical alert. Nothing is mutated.

        Args:
            jetton_master: Jetton master (defaults to the configured one)

        Returns:
            BalanceCheckResult: Balances, flags and alerts
        """
        result = BalanceCheckResult()

        try:
            result.ton_balance = await self.chain_client.get_ton_balance()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Failed to read operator TON balance: %s", e)
            result.alerts.append(
                self._unreadable_alert("TON", self.ton_min_balance)
            )
        else:
            result.ton_ok = result.ton_balance >= self.ton_min_balance
            if not result.ton_ok:
                result.alerts.append(
                    self._low_balance_alert(
                        AlertType.LOW_TON_BALANCE,
                        "TON",
                        result.ton_balance,
                        self.ton_min_balance,
                        TON_DECIMALS,
                    )
                )

        try:
            jetton_wallet = await self._jetton_wallet(jetton_master)
            result.jetton_balance = await self.chain_client.get_jetton_balance(
                jetton_wallet
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Failed to read operator jetton balance: %s", e)
            result.alerts.append(
                self._unreadable_alert("jetton", self.jetton_min_balance)
            )
        else:
            result.jetton_ok = result.jetton_balance >= self.jetton_min_balance
            if not result.jetton_ok:
                result.alerts.append(
                    self._low_balance_alert(
                        AlertType.LOW_JETTON_BALANCE,
                        "jetton",
                        result.jetton_balance,
                        self.jetton_min_balance,
                        self.jetton_decimals,
                    )
                )

        for alert in result.alerts:
            logger.warning(
                "Balance alert [%s] %s: %s",
                alert.severity,
                alert.type,
                alert.message,
            )

        return result

    async def get_balances(self, fresh: bool = False) -> BalanceCheckResult:
        """
        Balance check for polling endpoints, cached in Redis.

        Args:
            fresh: Skip the cache and read live balances

        Returns:
            BalanceCheckResult: Balances and alerts
        """
        cache_key = CacheKeys.OPERATOR_BALANCES.format(
            network=self.network, master=self.jetton_master_address
        )

        if self.cache is not None and not fresh:
            cached = await self.cache.get_object(cache_key, BalanceCheckResult)
            if isinstance(cached, BalanceCheckResult):
                cached.cached = True
                return cached

        result = await self.check_balances()
        if self.cache is not None:
            await self.cache.set_object(cache_key, result, self.cache_ttl)
        return result

    async def can_afford(
        self,
        transfer_amount: int,
        gas_amount: Optional[int] = None,
        jetton_master: Optional[str] = None,
    ) -> AffordabilityResult:
        """
        Check whether the operator can pay for one transfer.

        Fails closed: when a balance cannot be read the answer is no.

        Args:
            transfer_amount: Jetton amount in smallest units
            gas_amount: TON attached for gas (defaults to the configured)
            jetton_master: Jetton master (defaults to the configured one)

        Returns:
            AffordabilityResult: Decision and reason
        """
        gas = self.gas_amount if gas_amount is None else gas_amount
        balances = await self.check_balances(jetton_master)

        if balances.ton_balance is None or balances.jetton_balance is None:
            return AffordabilityResult(
                can_afford=False,
                reason=BALANCE_CHECK_FAILED,
                ton_balance=balances.ton_balance,
                jetton_balance=balances.jetton_balance,
            )

        reason = None
        if balances.ton_balance < gas:
            reason = (
                f"Insufficient TON for gas: have "
                f"{format_units(balances.ton_balance, TON_DECIMALS)}, need "
                f"{format_units(gas, TON_DECIMALS)}"
            )
        elif balances.jetton_balance < transfer_amount:
            reason = (
                f"Insufficient jetton balance: have "
                f"{format_units(balances.jetton_balance, self.jetton_decimals)}"
                f", need {format_units(transfer_amount, self.jetton_decimals)}"
            )

        if reason:
            logger.warning("Operator cannot afford transfer: %s", reason)

        return AffordabilityResult(
            can_afford=reason is None,
            reason=reason,
            ton_balance=balances.ton_balance,
            jetton_balance=balances.jetton_balance,
        )
