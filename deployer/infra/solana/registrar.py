"""Solana 链上登记：创建账户并写入部署记录（borsh 编码）。"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from borsh_construct import CStruct, String, U8, U64
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction

from deployer.domain.errors import RegistrationError
from deployer.domain.models import LedgerRegistration

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64

DEPLOYMENT_RECORD = CStruct(
    "arweave_id" / String,
    "timestamp" / U64,
    "domain" / String,
    "owner" / U8[32],
)


def encode_deployment_record(content_id: str, timestamp: int, label: str, owner: Pubkey) -> bytes:
    """按固定字段顺序编码登记记录，字段布局与链上程序一致。"""
    return DEPLOYMENT_RECORD.build(
        {
            "arweave_id": content_id,
            "timestamp": timestamp,
            "domain": label,
            "owner": list(bytes(owner)),
        }
    )


def load_keypair(credential: bytes) -> Keypair:
    """解析 JSON 数组形式的 64 字节私钥。"""
    try:
        secret = json.loads(credential.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RegistrationError(f"ledger credential is not a JSON key array: {exc}") from exc
    if (
        not isinstance(secret, list)
        or len(secret) != SECRET_KEY_LENGTH
        or not all(isinstance(item, int) and 0 <= item <= 255 for item in secret)
    ):
        raise RegistrationError(f"ledger credential must be a JSON array of {SECRET_KEY_LENGTH} bytes")
    try:
        return Keypair.from_bytes(bytes(secret))
    except ValueError as exc:
        raise RegistrationError(f"ledger credential is not a valid keypair: {exc}") from exc


def _default_client_factory(rpc_url: str, commitment: Commitment) -> Client:
    return Client(rpc_url, commitment=commitment)


class SolanaLedgerRegistrar:
    """链上登记器：任何失败都以 succeeded=False 返回，不向上抛出。"""
    def __init__(
        self,
        rpc_url: str,
        program_id: str | None,
        *,
        commitment: str = "confirmed",
        client_factory: Callable[[str, Commitment], Any] = _default_client_factory,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rpc_url = rpc_url
        self._program_id = program_id
        self._commitment = Commitment(commitment)
        self._client_factory = client_factory
        self._clock = clock

    def register(self, content_id: str, label: str, credential: bytes) -> LedgerRegistration:
        started = time.perf_counter()
        try:
            signature = self._submit(content_id, label, credential)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "ledger registration failed",
                extra={
                    "event": "registration.failed",
                    "external_service": "solana",
                    "op": "record.register",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": reason,
                },
            )
            return LedgerRegistration(succeeded=False, reason=reason)
        logger.info(
            "ledger registration confirmed",
            extra={
                "event": "registration.succeeded",
                "external_service": "solana",
                "op": "record.register",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"signature": signature, "content_id": content_id},
            },
        )
        return LedgerRegistration(succeeded=True, transaction_signature=signature)

    def _submit(self, content_id: str, label: str, credential: bytes) -> str:
        if not self._program_id:
            raise RegistrationError("ledger program id is not configured")
        try:
            program_id = Pubkey.from_string(self._program_id)
        except ValueError as exc:
            raise RegistrationError(f"ledger program id is invalid: {exc}") from exc
        payer = load_keypair(credential)
        record_account = Keypair()
        data = encode_deployment_record(content_id, int(self._clock()), label, payer.pubkey())

        client = self._client_factory(self._rpc_url, self._commitment)
        lamports = client.get_minimum_balance_for_rent_exemption(len(data)).value
        blockhash = client.get_latest_blockhash().value.blockhash
        instructions = [
            create_account(
                CreateAccountParams(
                    from_pubkey=payer.pubkey(),
                    to_pubkey=record_account.pubkey(),
                    lamports=lamports,
                    space=len(data),
                    owner=program_id,
                )
            ),
            Instruction(
                program_id,
                data,
                [
                    AccountMeta(record_account.pubkey(), is_signer=True, is_writable=True),
                    AccountMeta(payer.pubkey(), is_signer=True, is_writable=False),
                ],
            ),
        ]
        message = Message.new_with_blockhash(instructions, payer.pubkey(), blockhash)
        transaction = Transaction([payer, record_account], message, blockhash)
        signature = client.send_raw_transaction(
            bytes(transaction),
            opts=TxOpts(skip_confirmation=True, preflight_commitment=self._commitment),
        ).value
        statuses = client.confirm_transaction(signature, self._commitment).value
        status = statuses[0] if statuses else None
        if status is None:
            raise RegistrationError(f"transaction {signature} was not confirmed")
        if status.err is not None:
            raise RegistrationError(f"transaction {signature} failed: {status.err}")
        return str(signature)
