"""
============================================================================
NewsAPI.org Adapter - Asset Headlines for Sentiment Analysis
============================================================================

Reliability Level: L6 Critical
Traceability: All operations include correlation_id

API ENDPOINT:
    GET https://newsapi.org/v2/everything
        ?q={query}&apiKey={key}&language=en&sortBy=relevancy&pageSize=7

    The provider symbol is the search query (symbol_mapper.news_query).

ERRORS:
    401 -> invalid key, 429 -> rate limit (developer plans allow 100
    requests a day). A 200 body may still carry
    {"status": "error", "code": "...", "message": "..."}.

    No articles, or no article with a usable title, is NOT_FOUND: the
    query matched nothing, which says nothing about the key.
============================================================================
"""

from typing import Optional, List, Tuple
import logging

import httpx

from market_aggregator.adapters.base_adapter import BaseAdapter, SubCallResult
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    PartialFields,
    ProviderType,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

NEWS_API_URL = "https://newsapi.org/v2"

HEADLINE_PAGE_SIZE = 7
HEADLINE_LANGUAGE = "en"
HEADLINE_SORT = "relevancy"


class NewsApiAdapter(BaseAdapter):
    """
    NewsAPI.org 'everything' search adapter.

    Reliability Level: L6 Critical
    Input Constraints: Search query as provider symbol
    Side Effects: Network I/O
    """

    BASE_URL = NEWS_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=ProviderType.NEWS_API,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        result = await self._get_json(
            client,
            self.name,
            f"{self.BASE_URL}/everything",
            {
                "q": provider_symbol,
                "apiKey": credential,
                "language": HEADLINE_LANGUAGE,
                "sortBy": HEADLINE_SORT,
                "pageSize": HEADLINE_PAGE_SIZE,
            },
        )

        errors = []  # type: List[ClassifiedError]
        headlines = self._parse_headlines(result, provider_symbol, errors)

        return self._build_outcome(
            PartialFields(headlines=headlines),
            errors,
            no_data_message=f"NewsAPI.org: No headlines returned for query \"{provider_symbol}\".",
        )

    def _parse_headlines(
        self,
        result: SubCallResult,
        query: str,
        errors: List[ClassifiedError]
    ) -> Optional[Tuple[str, ...]]:
        if result.error is not None:
            errors.append(self._reclassify(result))
            return None

        payload = result.payload if isinstance(result.payload, dict) else {}
        if payload.get("status") == "error":
            errors.append(classify_payload_error(
                self.name, str(payload.get("message") or "Unknown API error")
            ))
            return None

        articles = payload.get("articles")
        if not isinstance(articles, list) or not articles:
            errors.append(ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                f"NewsAPI.org: No relevant headlines found for query \"{query}\".",
            ))
            return None

        headlines = []  # type: List[str]
        for article in articles:
            title = article.get("title") if isinstance(article, dict) else None
            if isinstance(title, str) and title.strip():
                headlines.append(title.strip())

        if not headlines:
            errors.append(ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                "NewsAPI.org: No usable headlines found after filtering.",
            ))
            return None

        logger.debug(
            f"Headlines parsed | "
            f"provider={self.name} | "
            f"count={len(headlines)} | "
            f"correlation_id={self._correlation_id}"
        )
        return tuple(headlines)

    @staticmethod
    def _reclassify(result: SubCallResult) -> ClassifiedError:
        """NewsAPI.org's own wording for the two statuses it documents."""
        if result.status_code == 401:
            return ClassifiedError.of(
                ErrorKind.UNAUTHORIZED, "Invalid NewsAPI.org API Key.", status_code=401
            )
        if result.status_code == 429:
            return ClassifiedError.of(
                ErrorKind.RATE_LIMITED, "NewsAPI.org rate limit exceeded.", status_code=429
            )
        return result.error
