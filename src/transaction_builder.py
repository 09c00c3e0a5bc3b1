"""
Transaction assembly for the flash-loan cycle.

Instruction order:
    SetComputeUnitPrice, SetComputeUnitLimit, flash borrow, swap 1, swap 2, flash repay
"""
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Union

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .config import KaminoAccounts, SYSVAR_INSTRUCTIONS_ID
from .jupiter_client import JupiterSwapInstructionsResponse, SwapInstruction
from .solana_client import TOKEN_PROGRAM, get_associated_token_address
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

FLASH_BORROW_DISCRIMINATOR = bytes([135, 231, 52, 167, 7, 52, 212, 193])
FLASH_REPAY_DISCRIMINATOR = bytes([185, 117, 0, 203, 96, 245, 180, 186])

# Position of the borrow instruction after the two compute-budget instructions
BORROW_INSTRUCTION_INDEX = 2

MAX_TRANSACTION_SIZE = 1232


def encode_flash_borrow_data(amount: int) -> bytes:
    return FLASH_BORROW_DISCRIMINATOR + amount.to_bytes(8, "little")


def encode_flash_repay_data(amount: int, borrow_instruction_index: int) -> bytes:
    return FLASH_REPAY_DISCRIMINATOR + amount.to_bytes(8, "little") + bytes([borrow_instruction_index])


def flash_loan_accounts(kamino: KaminoAccounts, wallet: Pubkey) -> List[AccountMeta]:
    """The 12 accounts shared by flash borrow and flash repay, in program order."""
    wsol_mint = Pubkey.from_string(kamino.wsol_mint)
    user_wsol_account = get_associated_token_address(wallet, wsol_mint)

    def meta(address: str, writable: bool = False) -> AccountMeta:
        return AccountMeta(pubkey=Pubkey.from_string(address), is_signer=False, is_writable=writable)

    return [
        AccountMeta(pubkey=wallet, is_signer=True, is_writable=True),
        meta(kamino.lending_market_authority),
        meta(kamino.lending_market),
        meta(kamino.sol_reserve, writable=True),
        AccountMeta(pubkey=wsol_mint, is_signer=False, is_writable=False),
        meta(kamino.sol_reserve_liquidity, writable=True),
        AccountMeta(pubkey=user_wsol_account, is_signer=False, is_writable=True),
        meta(kamino.sol_fee_receiver, writable=True),
        meta(kamino.referrer_token_state),
        meta(kamino.referrer_account),
        meta(SYSVAR_INSTRUCTIONS_ID),
        AccountMeta(pubkey=TOKEN_PROGRAM, is_signer=False, is_writable=False),
    ]


def build_flash_borrow_instruction(kamino: KaminoAccounts, wallet: Pubkey, amount: int) -> Instruction:
    return Instruction(
        program_id=Pubkey.from_string(kamino.program_id),
        data=encode_flash_borrow_data(amount),
        accounts=flash_loan_accounts(kamino, wallet)
    )


def build_flash_repay_instruction(
    kamino: KaminoAccounts,
    wallet: Pubkey,
    amount: int,
    borrow_instruction_index: int = BORROW_INSTRUCTION_INDEX
) -> Instruction:
    return Instruction(
        program_id=Pubkey.from_string(kamino.program_id),
        data=encode_flash_repay_data(amount, borrow_instruction_index),
        accounts=flash_loan_accounts(kamino, wallet)
    )


def swap_instruction_to_instruction(swap_instr: SwapInstruction) -> Instruction:
    """
    Convert a SwapInstruction from the Jupiter API to a Solana Instruction.

    Raises:
        ValueError: If the instruction data is not valid base64
    """
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(account_meta.pubkey),
            is_signer=account_meta.is_signer,
            is_writable=account_meta.is_writable
        )
        for account_meta in swap_instr.accounts
    ]
    try:
        data = base64.b64decode(swap_instr.data, validate=True)
    except Exception as e:
        raise ValueError(f"Failed to decode instruction data from base64: {e}") from e

    return Instruction(
        program_id=Pubkey.from_string(swap_instr.program_id),
        accounts=accounts,
        data=data
    )


class Encoder(ABC):
    """Compiles an instruction list into a message."""

    name = "encoder"

    @abstractmethod
    def compile(self, payer: Pubkey, instructions: List[Instruction], blockhash: Hash) -> Union[Message, MessageV0]:
        ...


class LegacyEncoder(Encoder):
    """Legacy message: every account key is inlined."""

    name = "legacy"

    def compile(self, payer: Pubkey, instructions: List[Instruction], blockhash: Hash) -> Message:
        return Message.new_with_blockhash(instructions, payer, blockhash)


class CompactedEncoder(Encoder):
    """Version 0 message referencing accounts through address lookup tables."""

    name = "v0"

    def __init__(self, lookup_tables: List[AddressLookupTableAccount]):
        self.lookup_tables = list(lookup_tables)

    def compile(self, payer: Pubkey, instructions: List[Instruction], blockhash: Hash) -> MessageV0:
        if not self.lookup_tables:
            raise ValueError("Compacted encoding requires at least one lookup table")
        return MessageV0.try_compile(
            payer=payer,
            instructions=instructions,
            address_lookup_table_accounts=self.lookup_tables,
            recent_blockhash=blockhash
        )


@dataclass
class AssembledTransaction:
    """A compiled, size-checked message ready for signing."""
    message: Union[Message, MessageV0]
    encoder_name: str
    size: int
    instruction_count: int


class TransactionAssembler:
    """Builds the flash-loan cycle and compiles it under the size ceiling."""

    def __init__(
        self,
        kamino: KaminoAccounts,
        compute_unit_price_micro_lamports: int = 20_000,
        compute_unit_limit: int = 200_000,
        max_transaction_size: int = MAX_TRANSACTION_SIZE
    ):
        self.kamino = kamino
        self.compute_unit_price_micro_lamports = compute_unit_price_micro_lamports
        self.compute_unit_limit = compute_unit_limit
        self.max_transaction_size = max_transaction_size

    def build_instructions(
        self,
        payer: Pubkey,
        flash_loan_amount: int,
        swaps: List[JupiterSwapInstructionsResponse]
    ) -> List[Instruction]:
        """
        Build the full instruction list for a two-swap cycle.

        Only each leg's swap instruction is used; setup and cleanup
        instructions are dropped.

        Raises:
            ValueError: If there are not exactly two swap legs
        """
        if len(swaps) != 2:
            raise ValueError(f"Expected exactly 2 swap legs, got {len(swaps)}")

        instructions = [
            set_compute_unit_price(self.compute_unit_price_micro_lamports),
            set_compute_unit_limit(self.compute_unit_limit),
            build_flash_borrow_instruction(self.kamino, payer, flash_loan_amount),
        ]
        borrow_index = len(instructions) - 1
        for leg in swaps:
            instructions.append(swap_instruction_to_instruction(leg.swap_instruction))
        instructions.append(build_flash_repay_instruction(self.kamino, payer, flash_loan_amount, borrow_index))
        return instructions

    def assemble(
        self,
        encoder: Encoder,
        payer: Pubkey,
        instructions: List[Instruction],
        blockhash: Hash
    ) -> Optional[AssembledTransaction]:
        """
        Compile and measure the unsigned transaction.

        Returns:
            AssembledTransaction, or None if compilation failed or the
            serialized size exceeds the ceiling
        """
        try:
            message = encoder.compile(payer, instructions, blockhash)
            placeholder = [Signature.default()] * message.header.num_required_signatures
            size = len(bytes(VersionedTransaction.populate(message, placeholder)))
        except Exception as e:
            logger.warning(f"Failed to compile {encoder.name} transaction: {e}")
            return None

        if size > self.max_transaction_size:
            logger.warning(
                f"{encoder.name} transaction too large: "
                f"{colors['YELLOW']}{size}{colors['RESET']}/{self.max_transaction_size} bytes, "
                f"{len(instructions)} instructions"
            )
            return None

        logger.debug(
            f"Assembled {colors['CYAN']}{encoder.name}{colors['RESET']} transaction: "
            f"{colors['GREEN']}{size}{colors['RESET']}/{self.max_transaction_size} bytes, "
            f"{len(instructions)} instructions"
        )
        return AssembledTransaction(
            message=message,
            encoder_name=encoder.name,
            size=size,
            instruction_count=len(instructions)
        )

    @staticmethod
    def sign(assembled: AssembledTransaction, keypair: Keypair) -> VersionedTransaction:
        return VersionedTransaction(assembled.message, [keypair])
