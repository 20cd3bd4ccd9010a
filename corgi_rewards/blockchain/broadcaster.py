import asyncio
import logging
import time
from typing import Optional

from corgi_rewards.blockchain.client import TonChainClient
from corgi_rewards.blockchain.errors import to_chain_error
from corgi_rewards.blockchain.messages import build_transfer_body, parse_address
from corgi_rewards.blockchain.schemas import (
    BroadcastResult,
    JettonTransferParams,
    SequenceCheck,
)
from corgi_rewards.config import Settings, settings
from corgi_rewards.utils import placeholder_hash, utcnow


logger = logging.getLogger(__name__)


class TransactionBroadcaster:
    """
    Signs and submits jetton transfers from the operator wallet.

    The operator sequence number is a single ordered resource, so callers
    hold ``lock`` for the whole broadcast phase, including the sequence
    number check that follows a failed attempt.
    """

    def __init__(
        self,
        chain_client: TonChainClient,
        config: Settings = settings,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self.chain_client = chain_client
        self.gas_amount = config.TRANSFER_GAS_AMOUNT
        self.message_ttl = config.TRANSFER_VALID_FOR
        self.lock = lock or asyncio.Lock()

    async def current_sequence_number(self) -> int:
        """Read the operator wallet sequence number."""
        return await self.chain_client.get_seqno()

    def message_deadline(self) -> int:
        """Expiry for a message signed now, as unix time."""
        return int(time.time()) + self.message_ttl

    async def broadcast(
        self,
        params: JettonTransferParams,
        sequence_number: Optional[int] = None,
        valid_until: Optional[int] = None,
    ) -> BroadcastResult:
        """
        Sign and submit a jetton transfer.

        The envelope carries ``TRANSFER_GAS_AMOUNT`` TON to the operator's
        own jetton wallet with the transfer as body. The network confirms
        asynchronously, so the returned hash is a placeholder.

        Args:
            params: Transfer parameters
            sequence_number: Sequence number read by the caller. Read
                from the chain when omitted.
            valid_until: Message expiry chosen by the caller, see
                ``message_deadline``

        Returns:
            BroadcastResult: Submitted transfer

        Raises:
            ChainError: Classified failure. ``submitted`` tells whether
                the message may have reached the network.
        """
        if sequence_number is None:
            sequence_number = await self.current_sequence_number()
        if valid_until is None:
            valid_until = self.message_deadline()

        operator_address = await self.chain_client.get_operator_address()
        jetton_wallet = await self.chain_client.get_operator_jetton_wallet()

        try:
            body = build_transfer_body(params, operator_address)
            destination = parse_address(params.destination)
        except Exception as e:
            raise to_chain_error(e, "Building transfer") from e

        logger.info(
            "Broadcasting transfer of %s to %s (query_id=%s, seqno=%s)",
            params.amount,
            params.destination,
            params.query_id,
            sequence_number,
        )

        await self.chain_client.send_transfer(
            destination=jetton_wallet,
            value=self.gas_amount,
            body=body,
            seqno=sequence_number,
            valid_until=valid_until,
        )

        return BroadcastResult(
            transaction_hash=placeholder_hash(sequence_number),
            sequence_number=sequence_number,
            from_address=operator_address.to_str(),
            to_address=destination.to_str(),
            amount=params.amount,
            timestamp=utcnow(),
            valid_until=valid_until,
        )

    async def sequence_number_changed(
        self, expected_sequence_number: int
    ) -> SequenceCheck:
        """
        Check whether a prior submission was accepted.

        Args:
            expected_sequence_number: Sequence number the submission was
                signed with

        Returns:
            SequenceCheck: ``changed`` is True when the chain moved past
                ``expected_sequence_number``
        """
        current = await self.current_sequence_number()
        changed = current > expected_sequence_number
        logger.info(
            "Sequence number check: expected=%s, current=%s, changed=%s",
            expected_sequence_number,
            current,
            changed,
        )
        return SequenceCheck(current_sequence_number=current, changed=changed)
