from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware
from functools import lru_cache
from loguru import logger

@lru_cache(maxsize=16)
def get_w3(rpc_url: str, is_poa: bool = True) -> Web3:
    if not rpc_url:
        raise RuntimeError("No RPC url configured")
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
    # BSC blocks carry extra data beyond the 32 bytes geth allows
    if is_poa:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    logger.debug(f"Web3 provider created for {rpc_url}")
    return w3
