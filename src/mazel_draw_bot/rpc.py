from __future__ import annotations

import base64
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import base58
import httpx

from .errors import RpcError, TransactionError

METHOD_NOT_FOUND = -32601

T = TypeVar("T")

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def memcmp_filter(offset: int, data: bytes) -> Dict[str, Any]:
    """A getProgramAccounts memcmp filter; `data` goes on the wire as base58."""
    encoded = base58.b58encode(data).decode("ascii")
    return {"memcmp": {"offset": offset, "bytes": encoded}}


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        commitment: str = "confirmed",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._next_id = 0

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        try:
            resp = self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise RpcError(f"{method}: transport error: {e}") from e
        except ValueError as e:
            raise RpcError(f"{method}: response is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise RpcError(f"{method}: response is not a JSON-RPC object")
        if "error" in data:
            err = data["error"] or {}
            code = err.get("code") if isinstance(err, dict) else None
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise RpcError(f"RPC error in {method}: {message}", code=code)
        return data

    def _call(self, method: str, params: List[Any], parse: Callable[[Any], T]) -> T:
        """Post and parse `result`; a reply of the wrong shape is an RpcError."""
        data = self._post(method, params)
        try:
            return parse(data.get("result"))
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise RpcError(f"{method}: unexpected response: {e!r}") from e

    def get_slot(self, commitment: Optional[str] = None) -> int:
        """Returns the current slot."""
        return self._call(
            "getSlot", [{"commitment": commitment or self.commitment}], int
        )

    def get_block_time(self, slot: int) -> Optional[int]:
        return self._call(
            "getBlockTime", [slot], lambda r: None if r is None else int(r)
        )

    def get_health(self) -> str:
        return self._call("getHealth", [], str)

    def get_account_info(self, pubkey: str) -> Optional[bytes]:
        """Returns raw account data, or None if the account does not exist."""
        return self._call(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}],
            _parse_account_info,
        )

    def get_program_accounts(
        self,
        program_id: str,
        filters: List[Dict[str, Any]],
        page_size: Optional[int] = None,
    ) -> List[Tuple[str, bytes]]:
        """
        Returns (pubkey, raw data) for every account owned by `program_id`
        matching all filters.

        With a page size, pages through getProgramAccountsV2 using its
        paginationKey cursor. Providers without that method get a single
        getProgramAccounts call instead.
        """
        if page_size:
            try:
                return self._get_program_accounts_paged(program_id, filters, page_size)
            except RpcError as e:
                if e.code != METHOD_NOT_FOUND:
                    raise

        return self._call(
            "getProgramAccounts",
            [
                program_id,
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": filters,
                },
            ],
            lambda r: [_decode_keyed_account(item) for item in r or []],
        )

    def _get_program_accounts_paged(
        self,
        program_id: str,
        filters: List[Dict[str, Any]],
        page_size: int,
    ) -> List[Tuple[str, bytes]]:
        out: List[Tuple[str, bytes]] = []
        cursor: Optional[str] = None
        while True:
            config: Dict[str, Any] = {
                "encoding": "base64",
                "commitment": self.commitment,
                "filters": filters,
                "limit": page_size,
            }
            if cursor:
                config["paginationKey"] = cursor
            accounts, cursor = self._call(
                "getProgramAccountsV2", [program_id, config], _parse_account_page
            )
            out.extend(accounts)
            if not cursor:
                return out

    def get_latest_blockhash(self) -> Tuple[str, int]:
        return self._call(
            "getLatestBlockhash",
            [{"commitment": self.commitment}],
            _parse_blockhash,
        )

    def get_block_height(self) -> int:
        return self._call("getBlockHeight", [{"commitment": self.commitment}], int)

    def send_transaction(self, raw_tx: bytes, skip_preflight: bool = False) -> str:
        return self._call(
            "sendTransaction",
            [
                base64.b64encode(raw_tx).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                    "maxRetries": 2,
                },
            ],
            lambda r: "" if r is None else str(r),
        )

    def get_signature_statuses(
        self, signatures: List[str]
    ) -> List[Optional[Dict[str, Any]]]:
        return self._call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": False}],
            _parse_statuses,
        )

    def confirm_transaction(
        self,
        signature: str,
        last_valid_block_height: int,
        timeout_s: float = 60.0,
        poll_interval_s: float = 0.5,
        label: str = "transaction",
    ) -> None:
        """
        Polls until `signature` reaches this client's commitment level.

        Raises TransactionError if the transaction landed with an error, if
        its blockhash expired, or if the timeout elapsed without a verdict.
        """
        wanted = _COMMITMENT_RANK.get(self.commitment, 1)
        deadline = time.monotonic() + timeout_s
        while True:
            statuses = self.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionError(
                        label, f"confirmed with error: {status['err']}", signature
                    )
                reached = _COMMITMENT_RANK.get(
                    status.get("confirmationStatus") or "", -1
                )
                if reached >= wanted:
                    return
            elif self.get_block_height() > last_valid_block_height:
                raise TransactionError(
                    label, "blockhash expired before confirmation", signature
                )

            if time.monotonic() >= deadline:
                raise TransactionError(
                    label, f"not confirmed within {timeout_s:.0f}s", signature
                )
            time.sleep(poll_interval_s)


def _parse_account_info(result: Any) -> Optional[bytes]:
    value = (result or {}).get("value")
    if value is None:
        return None
    return base64.b64decode(value["data"][0])


def _parse_blockhash(result: Any) -> Tuple[str, int]:
    value = result["value"]
    return str(value["blockhash"]), int(value["lastValidBlockHeight"])


def _parse_statuses(result: Any) -> List[Optional[Dict[str, Any]]]:
    statuses = list((result or {}).get("value") or [])
    for status in statuses:
        if status is not None and not isinstance(status, dict):
            raise TypeError(f"signature status is {type(status).__name__}")
    return statuses


def _parse_account_page(result: Any) -> Tuple[List[Tuple[str, bytes]], Optional[str]]:
    result = result or {}
    accounts = [_decode_keyed_account(item) for item in result.get("accounts") or []]
    return accounts, result.get("paginationKey")


def _decode_keyed_account(item: Dict[str, Any]) -> Tuple[str, bytes]:
    # item['account']['data'] is [base64_str, "base64"]
    return item["pubkey"], base64.b64decode(item["account"]["data"][0])
