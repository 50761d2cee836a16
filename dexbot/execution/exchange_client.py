"""
Exchange client - the on-chain capability the trade core depends on,
and its PancakeSwap V2/V3 implementation on BNB Smart Chain.
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from eth_account import Account
from loguru import logger
from web3 import Web3

from ..data.config import TradingSettings
from ..data.models import RouteVersion, SwapParams, SwapReceipt, TokenInfo


MAX_UINT256 = 2 ** 256 - 1


ERC20_ABI: List[Dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    }
]

ROUTER_V2_ABI: List[Dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactETHForTokensSupportingFeeOnTransferTokens",
        "outputs": [],
        "type": "function",
        "payable": True,
        "stateMutability": "payable"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForETHSupportingFeeOnTransferTokens",
        "outputs": [],
        "type": "function",
        "stateMutability": "nonpayable"
    }
]

_EXACT_INPUT_SINGLE_PARAMS = {
    "name": "params",
    "type": "tuple",
    "components": [
        {"name": "tokenIn", "type": "address"},
        {"name": "tokenOut", "type": "address"},
        {"name": "fee", "type": "uint24"},
        {"name": "recipient", "type": "address"},
        {"name": "deadline", "type": "uint256"},
        {"name": "amountIn", "type": "uint256"},
        {"name": "amountOutMinimum", "type": "uint256"},
        {"name": "sqrtPriceLimitX96", "type": "uint160"}
    ]
}

ROUTER_V3_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [_EXACT_INPUT_SINGLE_PARAMS],
        "name": "exactInputSingle",
        "outputs": [{"name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "amountMinimum", "type": "uint256"},
            {"name": "recipient", "type": "address"}
        ],
        "name": "unwrapWETH9",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"name": "data", "type": "bytes[]"}],
        "name": "multicall",
        "outputs": [{"name": "results", "type": "bytes[]"}],
        "stateMutability": "payable",
        "type": "function"
    }
]

QUOTER_V3_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{
            "name": "params",
            "type": "tuple",
            "components": [
                {"name": "tokenIn", "type": "address"},
                {"name": "tokenOut", "type": "address"},
                {"name": "amountIn", "type": "uint256"},
                {"name": "fee", "type": "uint24"},
                {"name": "sqrtPriceLimitX96", "type": "uint160"}
            ]
        }],
        "name": "quoteExactInputSingle",
        "outputs": [
            {"name": "amountOut", "type": "uint256"},
            {"name": "sqrtPriceX96After", "type": "uint160"},
            {"name": "initializedTicksCrossed", "type": "uint32"},
            {"name": "gasEstimate", "type": "uint256"}
        ],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class ExchangeClient(ABC):
    """Abstract on-chain capability used by the quote aggregator and orchestrator"""

    @property
    @abstractmethod
    def wallet_address(self) -> str:
        pass

    @abstractmethod
    def router_address(self, version: RouteVersion) -> str:
        pass

    @abstractmethod
    async def quote_output(self, path: List[str], amount_in: int, version: RouteVersion,
                           fee_tier: Optional[int] = None) -> int:
        """Expected output (smallest unit) for swapping amount_in along path"""
        pass

    @abstractmethod
    async def execute_swap(self, version: RouteVersion, params: SwapParams) -> SwapReceipt:
        """Submit a swap and block until its receipt is available"""
        pass

    @abstractmethod
    async def is_contract(self, address: str) -> bool:
        pass

    @abstractmethod
    async def get_token_metadata(self, address: str) -> TokenInfo:
        pass

    @abstractmethod
    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        pass

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int) -> SwapReceipt:
        pass

    @abstractmethod
    async def get_token_balance(self, token: str) -> int:
        pass

    @abstractmethod
    async def get_native_balance(self) -> int:
        pass


class PancakeSwapClient(ExchangeClient):
    """PancakeSwap V2 + V3 on BSC through web3.py"""

    def __init__(self, w3: Web3, private_key: str, settings: TradingSettings):
        self.w3 = w3
        self.settings = settings
        self.account = Account.from_key(private_key)

        self.router_v2 = w3.eth.contract(
            address=Web3.to_checksum_address(settings.router_v2_address), abi=ROUTER_V2_ABI
        )
        self.router_v3 = w3.eth.contract(
            address=Web3.to_checksum_address(settings.router_v3_address), abi=ROUTER_V3_ABI
        )
        self.quoter_v3 = w3.eth.contract(
            address=Web3.to_checksum_address(settings.quoter_v3_address), abi=QUOTER_V3_ABI
        )
        logger.info(f"PancakeSwap client ready for wallet {self.account.address}")

    @property
    def wallet_address(self) -> str:
        return self.account.address

    def router_address(self, version: RouteVersion) -> str:
        if version == RouteVersion.V3:
            return self.router_v3.address
        return self.router_v2.address

    def _token(self, address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)

    # ---------- quoting

    def _quote_sync(self, path: List[str], amount_in: int, version: RouteVersion,
                    fee_tier: Optional[int]) -> int:
        checksum_path = [Web3.to_checksum_address(p) for p in path]
        if version == RouteVersion.V2:
            amounts = self.router_v2.functions.getAmountsOut(amount_in, checksum_path).call()
            return int(amounts[-1])

        if fee_tier is None:
            raise ValueError("V3 quotes need a fee tier")
        result = self.quoter_v3.functions.quoteExactInputSingle(
            (checksum_path[0], checksum_path[-1], amount_in, fee_tier, 0)
        ).call()
        return int(result[0])

    async def quote_output(self, path: List[str], amount_in: int, version: RouteVersion,
                           fee_tier: Optional[int] = None) -> int:
        return await asyncio.to_thread(self._quote_sync, path, amount_in, version, fee_tier)

    # ---------- transactions

    def _tx_defaults(self, value: int = 0) -> Dict[str, Any]:
        return {
            "from": self.account.address,
            "value": value,
            "gas": self.settings.gas_limit,
            "gasPrice": self.w3.to_wei(self.settings.gas_price_gwei, "gwei"),
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "chainId": self.settings.chain_id,
        }

    def _send_and_wait(self, tx: Dict[str, Any]) -> SwapReceipt:
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"Transaction sent: {tx_hex}")

        receipt = self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.receipt_timeout_seconds
        )
        gas_price = receipt.get("effectiveGasPrice") or tx["gasPrice"]
        gas_cost = Decimal(self.w3.from_wei(receipt["gasUsed"] * gas_price, "ether"))
        status_ok = receipt["status"] == 1
        if not status_ok:
            logger.error(f"Transaction {tx_hex} reverted")

        return SwapReceipt(
            tx_hash=tx_hex,
            gas_used=receipt["gasUsed"],
            gas_cost=gas_cost,
            status_ok=status_ok,
            block_number=receipt.get("blockNumber"),
        )

    def _build_swap(self, version: RouteVersion, params: SwapParams) -> Dict[str, Any]:
        path = [Web3.to_checksum_address(p) for p in params.path]
        recipient = Web3.to_checksum_address(params.recipient)

        if version == RouteVersion.V2:
            if params.is_buy:
                fn = self.router_v2.functions.swapExactETHForTokensSupportingFeeOnTransferTokens(
                    params.amount_out_min, path, recipient, params.deadline
                )
                return fn.build_transaction(self._tx_defaults(value=params.amount_in))
            fn = self.router_v2.functions.swapExactTokensForETHSupportingFeeOnTransferTokens(
                params.amount_in, params.amount_out_min, path, recipient, params.deadline
            )
            return fn.build_transaction(self._tx_defaults())

        if params.fee_tier is None:
            raise ValueError("V3 swaps need a fee tier")

        if params.is_buy:
            fn = self.router_v3.functions.exactInputSingle((
                path[0], path[-1], params.fee_tier, recipient, params.deadline,
                params.amount_in, params.amount_out_min, 0
            ))
            return fn.build_transaction(self._tx_defaults(value=params.amount_in))

        # Selling into native: the router receives WBNB, then unwraps it to the wallet
        swap_call = self.router_v3.encode_abi("exactInputSingle", args=[(
            path[0], path[-1], params.fee_tier, self.router_v3.address, params.deadline,
            params.amount_in, params.amount_out_min, 0
        )])
        unwrap_call = self.router_v3.encode_abi("unwrapWETH9", args=[params.amount_out_min, recipient])
        fn = self.router_v3.functions.multicall([swap_call, unwrap_call])
        return fn.build_transaction(self._tx_defaults())

    def _execute_swap_sync(self, version: RouteVersion, params: SwapParams) -> SwapReceipt:
        tx = self._build_swap(version, params)
        return self._send_and_wait(tx)

    async def execute_swap(self, version: RouteVersion, params: SwapParams) -> SwapReceipt:
        logger.info(
            f"Submitting {version.value.upper()} {'buy' if params.is_buy else 'sell'} swap: "
            f"in={params.amount_in} min_out={params.amount_out_min}"
        )
        return await asyncio.to_thread(self._execute_swap_sync, version, params)

    def _approve_sync(self, token: str, spender: str, amount: int) -> SwapReceipt:
        fn = self._token(token).functions.approve(Web3.to_checksum_address(spender), amount)
        tx = fn.build_transaction(self._tx_defaults())
        return self._send_and_wait(tx)

    async def approve(self, token: str, spender: str, amount: int = MAX_UINT256) -> SwapReceipt:
        logger.info(f"Approving {spender} to spend {token}")
        return await asyncio.to_thread(self._approve_sync, token, spender, amount)

    # ---------- reads

    async def is_contract(self, address: str) -> bool:
        code = await asyncio.to_thread(self.w3.eth.get_code, Web3.to_checksum_address(address))
        return len(code) > 0

    def _metadata_sync(self, address: str) -> TokenInfo:
        token = self._token(address)
        symbol = token.functions.symbol().call()
        decimals = token.functions.decimals().call()
        return TokenInfo(address=address.lower(), symbol=symbol, decimals=int(decimals))

    async def get_token_metadata(self, address: str) -> TokenInfo:
        return await asyncio.to_thread(self._metadata_sync, address)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        fn = self._token(token).functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        )
        return int(await asyncio.to_thread(fn.call))

    async def get_token_balance(self, token: str) -> int:
        fn = self._token(token).functions.balanceOf(self.account.address)
        return int(await asyncio.to_thread(fn.call))

    async def get_native_balance(self) -> int:
        return int(await asyncio.to_thread(self.w3.eth.get_balance, self.account.address))
