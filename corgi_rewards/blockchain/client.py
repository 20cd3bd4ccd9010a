import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar, Union

import aiohttp
from pytoniq import LiteBalancer, WalletV4R2
from pytoniq_core import Address, Cell, begin_cell

from corgi_rewards.blockchain.errors import (
    ChainError,
    ErrorClassification,
    to_chain_error,
)
from corgi_rewards.blockchain.messages import (
    parse_address,
    read_transfer_query_id,
)
from corgi_rewards.blockchain.schemas import OnChainTransfer
from corgi_rewards.config import Settings, settings
from corgi_rewards.constants import LITESERVER_CONFIG_URLS


logger = logging.getLogger(__name__)

T = TypeVar("T")


class TonChainClient:
    """
    Client for the TON blockchain holding the operator wallet.

    The liteserver connection is opened lazily on first use. Every raw
    error is converted into a classified ``ChainError`` before it leaves
    this class. Read-only calls are retried with exponential backoff on
    retryable errors; submissions are never retried here.
    """

    def __init__(self, config: Settings = settings) -> None:
        """Initialize client."""
        self.network = config.TON_NETWORK
        self.config_url = config.TON_ENDPOINT or LITESERVER_CONFIG_URLS[
            config.TON_NETWORK
        ]
        self.jetton_master_address = config.JETTON_MASTER_ADDRESS
        self.max_retries = config.CHAIN_READ_RETRIES
        self.retry_delay = config.CHAIN_READ_RETRY_DELAY
        self.message_ttl = config.TRANSFER_VALID_FOR
        self._mnemonic = config.operator_mnemonic
        self._provider: Optional[LiteBalancer] = None
        self._wallet: Optional[WalletV4R2] = None
        self._operator_jetton_wallet: Optional[Address] = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._wallet is not None

    async def _load_liteserver_config(self) -> dict[str, Any]:
        """Download the liteserver global config."""
        timeout = aiohttp.ClientTimeout(total=15)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.config_url) as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def connect(self) -> WalletV4R2:
        """Connect to TON and load the operator wallet."""
        if self._wallet is not None:
            return self._wallet

        async with self._connect_lock:
            if self._wallet is not None:
                return self._wallet

            provider: Optional[LiteBalancer] = None
            try:
                config = await self._load_liteserver_config()
                provider = LiteBalancer.from_config(config, trust_level=2)
                await provider.start_up()
                wallet = await WalletV4R2.from_mnemonic(
                    provider=provider, mnemonics=self._mnemonic
                )
            except Exception as e:
                logger.error("Failed to connect to TON %s: %s", self.network, e)
                if provider is not None:
                    await self._close_provider(provider)
                raise to_chain_error(e, "Connecting to TON") from e

            self._provider = provider
            self._wallet = wallet
            logger.info(
                "Connected to TON %s, operator wallet %s",
                self.network,
                wallet.address.to_str(),
            )
            return wallet

    @staticmethod
    async def _close_provider(provider: LiteBalancer) -> None:
        try:
            await provider.close_all()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Error closing liteserver connections: %s", e)

    async def close(self) -> None:
        """Close liteserver connections."""
        if self._provider is not None:
            await self._close_provider(self._provider)
            logger.info("Disconnected from TON %s", self.network)
        self._provider = None
        self._wallet = None
        self._operator_jetton_wallet = None

    async def _read(
        self, operation: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Run a read-only chain call with retries.

        Args:
            operation: Operation name used in logs and errors
            call: Factory returning a fresh awaitable per attempt

        Returns:
            Result of the call

        Raises:
            ChainError: Once retries are exhausted or the error is not
                retryable
        """
        retries = 0
        while True:
            try:
                return await call()
            except Exception as e:
                error = to_chain_error(e, operation)
                if not error.retryable or retries >= self.max_retries:
                    logger.error("%s failed: %s", operation, error)
                    raise error from e

                retries += 1
                wait_time = self.retry_delay * (2 ** (retries - 1))
                logger.warning(
                    "%s failed (attempt %s/%s): %s. "
                    "Retrying in %.2f seconds...",
                    operation,
                    retries,
                    self.max_retries,
                    error,
                    wait_time,
                )
                await asyncio.sleep(wait_time)

    @property
    def provider(self) -> LiteBalancer:
        if self._provider is None:
            raise ChainError(
                "TON client is not connected",
                classification=ErrorClassification.RETRYABLE,
            )
        return self._provider

    async def get_operator_address(self) -> Address:
        wallet = await self.connect()
        return wallet.address

    async def get_ton_balance(
        self, address: Optional[Union[str, Address]] = None
    ) -> int:
        """
        Get the TON balance of an account in nanotons.

        Args:
            address: Account address (defaults to the operator wallet)

        Returns:
            int: Balance in nanotons
        """
        await self.connect()
        target = (
            parse_address(address)
            if address is not None
            else await self.get_operator_address()
        )
        state = await self._read(
            "Reading TON balance",
            lambda: self.provider.get_account_state(target),
        )
        return int(state.balance)

    async def get_jetton_wallet_address(
        self,
        master: Optional[Union[str, Address]] = None,
        owner: Optional[Union[str, Address]] = None,
    ) -> Address:
        """
        Resolve the jetton wallet of ``owner`` under ``master``.

        Args:
            master: Jetton master (defaults to the configured master)
            owner: Wallet owner (defaults to the operator wallet)

        Returns:
            Address: Jetton wallet address
        """
        await self.connect()
        master_address = parse_address(master or self.jetton_master_address)
        owner_address = (
            parse_address(owner)
            if owner is not None
            else await self.get_operator_address()
        )
        owner_cell = begin_cell().store_address(owner_address).end_cell()
        stack = await self._read(
            "Resolving jetton wallet",
            lambda: self.provider.run_get_method(
                address=master_address,
                method="get_wallet_address",
                stack=[owner_cell.begin_parse()],
            ),
        )
        return stack[0].load_address()

    async def get_operator_jetton_wallet(self) -> Address:
        """Jetton wallet of the operator, resolved once per connection."""
        if self._operator_jetton_wallet is None:
            self._operator_jetton_wallet = (
                await self.get_jetton_wallet_address()
            )
            logger.info(
                "Operator jetton wallet is %s",
                self._operator_jetton_wallet.to_str(),
            )
        return self._operator_jetton_wallet

    async def get_jetton_balance(
        self, jetton_wallet: Optional[Union[str, Address]] = None
    ) -> int:
        """
        Get the balance of a jetton wallet in smallest units.

        An undeployed jetton wallet holds nothing and reads as 0.

        Args:
            jetton_wallet: Jetton wallet (defaults to the operator's)

        Returns:
            int: Jetton balance
        """
        await self.connect()
        target = (
            parse_address(jetton_wallet)
            if jetton_wallet is not None
            else await self.get_operator_jetton_wallet()
        )
        state = await self._read(
            "Reading jetton wallet state",
            lambda: self.provider.get_account_state(target),
        )
        if state.state.type_ != "active":
            return 0

        stack = await self._read(
            "Reading jetton balance",
            lambda: self.provider.run_get_method(
                address=target, method="get_wallet_data", stack=[]
            ),
        )
        return int(stack[0])

    async def get_seqno(self) -> int:
        """Get the operator wallet sequence number."""
        wallet = await self.connect()
        return int(await self._read("Reading seqno", wallet.get_seqno))

    async def send_transfer(
        self,
        destination: Address,
        value: int,
        body: Cell,
        seqno: int,
        valid_until: Optional[int] = None,
    ) -> int:
        """
        Sign and submit one internal message from the operator wallet.

        Args:
            destination: Message destination
            value: Attached TON in nanotons
            body: Message body
            seqno: Sequence number to sign with
            valid_until: Unix time after which the network rejects the
                message. Defaults to ``TRANSFER_VALID_FOR`` from now.

        Returns:
            int: The ``valid_until`` the message was signed with

        Raises:
            ChainError: ``submitted`` is False when signing failed and True
                once the external message was handed to the network
        """
        wallet = await self.connect()
        if valid_until is None:
            valid_until = int(time.time()) + self.message_ttl
        try:
            message = wallet.create_wallet_internal_message(
                destination=destination,
                value=value,
                body=body,
                bounce=True,
            )
            external_body = wallet.raw_create_transfer_msg(
                private_key=wallet.private_key,
                seqno=seqno,
                wallet_id=wallet.wallet_id,
                messages=[message],
                valid_until=valid_until,
            )
        except Exception as e:
            logger.error("Failed to sign transfer with seqno=%s: %s", seqno, e)
            raise to_chain_error(e, "Signing transfer") from e

        try:
            await wallet.send_external(body=external_body)
        except Exception as e:
            logger.error(
                "Failed to submit transfer with seqno=%s: %s", seqno, e
            )
            raise to_chain_error(
                e, "Submitting transfer", submitted=True
            ) from e

        logger.info(
            "Submitted transfer to %s with seqno=%s, valid until %s",
            destination.to_str(),
            seqno,
            valid_until,
        )
        return valid_until

    async def get_recent_transfers(
        self, limit: int
    ) -> dict[int, OnChainTransfer]:
        """
        Index recent outgoing jetton transfers of the operator by query id.

        Args:
            limit: Number of latest operator wallet transactions to scan

        Returns:
            Dict[int, OnChainTransfer]: Transfers keyed by query id
        """
        address = await self.get_operator_address()
        transactions = await self._read(
            "Listing operator transactions",
            lambda: self.provider.get_transactions(address, limit),
        )

        transfers: dict[int, OnChainTransfer] = {}
        for tx in transactions:
            for out_msg in tx.out_msgs:
                query_id = read_transfer_query_id(out_msg.body)
                if query_id is None or query_id in transfers:
                    continue
                transfers[query_id] = OnChainTransfer(
                    transaction_hash=tx.cell.hash.hex(),
                    query_id=query_id,
                    success=not tx.description.aborted,
                    utime=tx.now,
                )
        return transfers
