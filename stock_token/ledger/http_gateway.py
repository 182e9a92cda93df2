# ============================================================================
# Stock Token Ledger v1.0.0
# HTTP Ledger Gateway - Network Relay Client
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: LedgerGateway over the ledger relay's JSON/HTTP API
#
# SOVEREIGN MANDATE:
#   - Operator requests signed via OperatorRequestSigner
#   - Transaction bodies signed by every supplied account key
#   - Failure statuses classified once into LedgerFailureKind
#   - Queries retried with exponential backoff on 429/5xx/transport errors
#   - Submissions NEVER retried (a retried mint could double-mint)
#
# Relay Endpoints:
#   POST /v1/assets                          create asset
#   POST /v1/assets/{id}/mint                mint
#   POST /v1/assets/{id}/burn                burn
#   POST /v1/assets/{id}/associations        associate account
#   POST /v1/assets/{id}/transfers           transfer
#   GET  /v1/assets/{id}                     asset info
#   GET  /v1/accounts/{id}/balances          account balances
#
# Error Codes:
#   - STK-LGR-001: Ledger call failed
#   - STK-LGR-002: Invalid relay response
#   - STK-LGR-003: Transport timeout / connection error
#
# ============================================================================

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from stock_token.ledger.backoff import QueryRetryPolicy
from stock_token.ledger.gateway import (
    AssetCreateRequest,
    AssetInfo,
    LedgerCallError,
    LedgerFailureKind,
    LedgerGateway,
    LedgerReceipt,
    classify_status,
)
from stock_token.ledger.signer import (
    OperatorRequestSigner,
    SigningKey,
    sign_transaction,
)

logger = logging.getLogger(__name__)


def _canonical(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(',', ':'))


class HttpLedgerGateway(LedgerGateway):
    """
    Ledger relay client.

    Example Usage:
        gateway = HttpLedgerGateway(
            base_url="https://relay.example",
            operator_account_id="0.0.1001",
            operator_key=SigningKey.from_string(os.environ["LEDGER_OPERATOR_PRIVATE_KEY"]),
        )
        info = await gateway.get_asset_info("0.0.5005")
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        operator_account_id: str,
        operator_key: SigningKey,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[QueryRetryPolicy] = None,
        correlation_id: Optional[str] = None
    ):
        """
        Initialize the relay client.

        Args:
            base_url: Relay base URL
            operator_account_id: Treasury / operator account
            operator_key: Treasury signing key
            timeout: HTTP timeout in seconds
            client: Pre-built httpx.AsyncClient (tests inject a MockTransport)
            retry_policy: Attempts and delays for query retries
            correlation_id: Audit trail identifier
        """
        self.base_url = base_url.rstrip('/')
        self.operator_account_id = operator_account_id
        self._operator_key = operator_key
        self.timeout = timeout
        self.correlation_id = correlation_id
        self.retry_policy = retry_policy or QueryRetryPolicy()
        self._signer = OperatorRequestSigner(
            operator_account_id, operator_key, correlation_id
        )
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout
        )

        logger.info(
            f"[STK-LGR] HTTP gateway initialized | "
            f"base_url={self.base_url} | operator={operator_account_id} | "
            f"timeout={timeout}s | correlation_id={correlation_id}"
        )

    # ========================================================================
    # Submissions
    # ========================================================================

    async def create_asset(self, request: AssetCreateRequest) -> str:
        payload = {
            'name': request.name,
            'symbol': request.symbol,
            'decimals': request.decimals,
            'initialSupply': request.initial_supply,
            'treasuryAccountId': request.treasury_account_id,
            'adminKey': request.admin_key.fingerprint,
            'supplyKey': request.supply_key.fingerprint,
            'supplyType': 'INFINITE',
            'tokenType': 'FUNGIBLE_COMMON',
            'memo': request.memo,
        }
        receipt = await self._submit(
            'create_asset', '/v1/assets', payload, [self._operator_key]
        )
        if not receipt.asset_id:
            raise LedgerCallError(
                LedgerFailureKind.OTHER,
                "STK-LGR-002: Receipt did not include an asset identifier",
                call='create_asset'
            )
        return receipt.asset_id

    async def mint(self, asset_id: str, amount: int) -> LedgerReceipt:
        return await self._submit(
            'mint', f'/v1/assets/{asset_id}/mint',
            {'tokenId': asset_id, 'amount': amount},
            [self._operator_key]
        )

    async def burn(self, asset_id: str, amount: int) -> LedgerReceipt:
        return await self._submit(
            'burn', f'/v1/assets/{asset_id}/burn',
            {'tokenId': asset_id, 'amount': amount},
            [self._operator_key]
        )

    async def associate(
        self,
        account_id: str,
        asset_id: str,
        signing_key: SigningKey
    ) -> LedgerReceipt:
        return await self._submit(
            'associate', f'/v1/assets/{asset_id}/associations',
            {'accountId': account_id, 'tokenIds': [asset_id]},
            [signing_key]
        )

    async def transfer(
        self,
        asset_id: str,
        from_account: str,
        to_account: str,
        amount: int,
        signing_keys: Sequence[SigningKey]
    ) -> LedgerReceipt:
        payload = {
            'tokenId': asset_id,
            'transfers': [
                {'accountId': from_account, 'amount': -amount},
                {'accountId': to_account, 'amount': amount},
            ],
        }
        return await self._submit(
            'transfer', f'/v1/assets/{asset_id}/transfers', payload, signing_keys
        )

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_asset_info(self, asset_id: str) -> AssetInfo:
        data = await self._query('get_asset_info', f'/v1/assets/{asset_id}')
        try:
            return AssetInfo(
                asset_id=str(data.get('tokenId', asset_id)),
                name=data['name'],
                symbol=data['symbol'],
                decimals=int(data['decimals']),
                total_supply=int(str(data['totalSupply'])),
                memo=data.get('memo') or '',
                treasury_account_id=data.get('treasuryAccountId'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._invalid_response('get_asset_info', e)

    async def get_account_balances(self, account_id: str) -> Dict[str, int]:
        data = await self._query(
            'get_account_balances', f'/v1/accounts/{account_id}/balances'
        )
        try:
            tokens = data.get('tokens') or {}
            return {str(k): int(str(v)) for k, v in tokens.items()}
        except (AttributeError, TypeError, ValueError) as e:
            raise self._invalid_response('get_account_balances', e)

    # ========================================================================
    # Internal Methods
    # ========================================================================

    async def _submit(
        self,
        call: str,
        path: str,
        payload: Dict[str, Any],
        signing_keys: Sequence[SigningKey]
    ) -> LedgerReceipt:
        """Sign and submit a transaction once; classify any failure."""
        body = _canonical(payload)
        envelope = _canonical({
            'transaction': payload,
            'signatures': sign_transaction(body, signing_keys),
        })
        headers = self._signer.sign_request('POST', path, envelope)
        headers['Content-Type'] = 'application/json'

        try:
            response = await self._client.post(path, content=envelope, headers=headers)
        except httpx.TimeoutException as e:
            raise self._transport_error(call, LedgerFailureKind.TIMEOUT, e)
        except httpx.TransportError as e:
            raise self._transport_error(call, LedgerFailureKind.UNAVAILABLE, e)

        data = self._decode(call, response)
        status = str(data.get('status', 'SUCCESS')).upper()
        if status != 'SUCCESS':
            raise self._failure(call, status, data.get('message'))

        logger.debug(
            f"[STK-LGR] {call} confirmed | path={path} | "
            f"transaction_id={data.get('transactionId')} | "
            f"correlation_id={self.correlation_id}"
        )
        return LedgerReceipt(
            transaction_id=str(data.get('transactionId', '')),
            status=status,
            asset_id=data.get('tokenId'),
        )

    async def _query(self, call: str, path: str) -> Dict[str, Any]:
        """GET with exponential backoff on 429/5xx and transport errors."""
        last_error: Optional[LedgerCallError] = None

        for attempt in range(self.retry_policy.attempts):
            headers = self._signer.sign_request('GET', path)
            try:
                response = await self._client.get(path, headers=headers)
            except httpx.TimeoutException as e:
                last_error = self._transport_error(call, LedgerFailureKind.TIMEOUT, e)
            except httpx.TransportError as e:
                last_error = self._transport_error(call, LedgerFailureKind.UNAVAILABLE, e)
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = LedgerCallError(
                        LedgerFailureKind.UNAVAILABLE,
                        f"Relay returned HTTP {response.status_code}",
                        call=call
                    )
                else:
                    return self._decode(call, response)

            delay = self.retry_policy.delay_for(attempt)
            logger.warning(
                f"[STK-LGR-003] {call} retry | "
                f"attempt={attempt + 1}/{self.retry_policy.attempts} | "
                f"backoff={delay:.2f}s | error={last_error} | "
                f"correlation_id={self.correlation_id}"
            )
            if self.retry_policy.has_next(attempt):
                await asyncio.sleep(delay)

        logger.error(
            f"[STK-LGR-001] Max retries exhausted | call={call} | path={path} | "
            f"correlation_id={self.correlation_id}"
        )
        raise last_error

    def _decode(self, call: str, response: httpx.Response) -> Dict[str, Any]:
        """Return the JSON body of a 2xx response or raise a classified error."""
        try:
            data = response.json()
        except ValueError as e:
            if response.is_success:
                raise self._invalid_response(call, e)
            data = {}

        if not isinstance(data, dict):
            data = {'data': data}

        if response.is_success:
            return data

        status = data.get('status')
        kind = classify_status(status)
        if kind == LedgerFailureKind.OTHER:
            if response.status_code == 404:
                kind = LedgerFailureKind.NOT_FOUND
            elif response.status_code == 429 or response.status_code >= 500:
                kind = LedgerFailureKind.UNAVAILABLE

        message = data.get('message') or f"HTTP {response.status_code}"
        logger.error(
            f"[STK-LGR-001] {call} rejected | http_status={response.status_code} | "
            f"status={status} | kind={kind.value} | "
            f"correlation_id={self.correlation_id}"
        )
        raise LedgerCallError(kind, message, call=call, status=status)

    def _failure(self, call: str, status: str, message: Optional[str]) -> LedgerCallError:
        kind = classify_status(status)
        logger.error(
            f"[STK-LGR-001] {call} receipt failure | status={status} | "
            f"kind={kind.value} | correlation_id={self.correlation_id}"
        )
        return LedgerCallError(
            kind, message or f"Receipt status {status}", call=call, status=status
        )

    def _transport_error(
        self,
        call: str,
        kind: LedgerFailureKind,
        error: Exception
    ) -> LedgerCallError:
        return LedgerCallError(
            kind, f"STK-LGR-003: {type(error).__name__}: {error}",
            call=call, cause=error
        )

    def _invalid_response(self, call: str, error: Exception) -> LedgerCallError:
        logger.error(
            f"[STK-LGR-002] Invalid relay response | call={call} | error={error} | "
            f"correlation_id={self.correlation_id}"
        )
        return LedgerCallError(
            LedgerFailureKind.OTHER, f"STK-LGR-002: Invalid response: {error}",
            call=call, cause=error
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
        logger.debug(
            f"[STK-LGR] HTTP gateway closed | correlation_id={self.correlation_id}"
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
