"""
News Sentiment Client
=====================
Polls the news service for a bullish/bearish/neutral read on an asset.
Any failure or unexpected payload is treated as neutral.
"""
import asyncio
from typing import Optional

import aiohttp

from config import NEWS_URL, REQUEST_TIMEOUT
from logging_config import log

VALID_SENTIMENTS = ('bullish', 'bearish', 'neutral')


class NewsSentimentClient:
    """GET {base_url}/api/news-sentiment/{asset} -> {"sentiment": ...}"""

    def __init__(self, base_url: str = NEWS_URL, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self.session

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def check(self, asset: str) -> str:
        url = f"{self.base_url}/api/news-sentiment/{asset}"
        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    log(f"[News] {asset}: HTTP {response.status}, assuming neutral", level='WARNING')
                    return 'neutral'
                data = await response.json()
        except asyncio.TimeoutError:
            log(f"[News] {asset}: request timed out, assuming neutral", level='WARNING')
            return 'neutral'
        except aiohttp.ClientError as e:
            log(f"[News] {asset}: {e}, assuming neutral", level='WARNING')
            return 'neutral'
        except Exception as e:
            log(f"[News] {asset}: unexpected error {e}, assuming neutral", level='ERROR')
            return 'neutral'

        sentiment = str(data.get('sentiment', 'neutral')).lower() if isinstance(data, dict) else 'neutral'
        if sentiment not in VALID_SENTIMENTS:
            sentiment = 'neutral'
        log(f"[News] {asset}: {sentiment}")
        return sentiment
