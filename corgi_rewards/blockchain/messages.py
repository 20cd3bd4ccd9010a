"""
TEP-74 jetton transfer payloads.

Layout of the transfer body::

    transfer#0f8a7ea5 query_id:uint64 amount:(VarUInteger 16)
        destination:MsgAddress response_destination:MsgAddress
        custom_payload:(Maybe ^Cell) forward_ton_amount:(VarUInteger 16)
        forward_payload:(Either Cell ^Cell)

Everything here is pure: no network or storage access.
"""

from typing import Optional, Union

from pytoniq_core import Address, Cell, begin_cell

from corgi_rewards.blockchain.schemas import JettonTransferParams
from corgi_rewards.constants import Jetton
from corgi_rewards.exceptions import ValidationError


def parse_address(value: Union[str, Address]) -> Address:
    """
    Parse a TON address in raw or user-friendly form.

    Raises:
        ValidationError: If the address is malformed
    """
    if isinstance(value, Address):
        return value
    try:
        return Address(value.strip())
    except Exception as e:  # pylint: disable=broad-exception-caught
        raise ValidationError(f"Invalid address: {value!r}") from e


def build_transfer_body(
    params: JettonTransferParams,
    response_address: Union[str, Address],
) -> Cell:
    """
    Build the jetton transfer body cell.

    Args:
        params: Transfer parameters
        response_address: Where excess gas is returned (the operator)

    Returns:
        Cell: Transfer body
    """
    return (
        begin_cell()
        .store_uint(Jetton.TRANSFER_OP, 32)
        .store_uint(params.query_id, 64)
        .store_coins(params.amount)
        .store_address(parse_address(params.destination))
        .store_address(parse_address(response_address))
        .store_bit(0)  # no custom payload
        .store_coins(params.forward_amount)
        .store_bit(0)  # forward payload inline, empty
        .end_cell()
    )


def serialize_transfer_body(
    params: JettonTransferParams,
    response_address: Union[str, Address],
) -> bytes:
    """Serialize the transfer body to a bag of cells."""
    return build_transfer_body(params, response_address).to_boc()


def read_transfer_query_id(body: Optional[Cell]) -> Optional[int]:
    """
    Read the query id of a jetton transfer body.

    Returns:
        The query id, or None if ``body`` is not a jetton transfer
    """
    if body is None:
        return None

    slice_ = body.begin_parse()
    if slice_.remaining_bits < 32 + 64:
        return None
    if slice_.load_uint(32) != Jetton.TRANSFER_OP:
        return None
    return slice_.load_uint(64)
