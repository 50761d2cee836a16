import aiohttp
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=15)

@asynccontextmanager
async def http_session(timeout: Optional[aiohttp.ClientTimeout] = None):
    async with aiohttp.ClientSession(timeout=timeout or DEFAULT_TIMEOUT) as s:
        yield s

async def get_json(url: str, params: Optional[Dict[str, Any]]=None, headers: Optional[Dict[str,str]]=None):
    async with http_session() as s:
        async with s.get(url, params=params, headers=headers) as r:
            r.raise_for_status()
            return await r.json()

async def post_json(url: str, payload: Dict[str, Any], headers: Optional[Dict[str,str]]=None):
    async with http_session() as s:
        async with s.post(url, json=payload, headers=headers) as r:
            r.raise_for_status()
            return await r.json()
