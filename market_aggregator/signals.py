"""
============================================================================
Signals - Indicator Interpretation and Recommendation Boundary
============================================================================

Reliability Level: L6 Critical
Traceability: Recommendation failures are logged with correlation_id

RECOMMENDATION BOUNDARY:
    Trade recommendations come from an external black-box function
    (typically an LLM prompt). This module only defines the typed
    boundary around it:

        TradeRecommendationInput  -> RecommendationFn -> TradeRecommendationOutput

    - Inputs are built from an AggregatedResult and are always finite;
      an absent or non-finite value raises SignalInputError instead of
      being passed along as NaN
    - Whatever the function does (raise, return garbage), the caller gets
      a TradeRecommendationOutput; failures become HOLD with error set

    The same boundary wraps the two other black-box calls:

        NewsSentimentInput  -> SentimentFn     -> NewsSentimentOutput
        ChartAnalysisInput  -> ChartAnalysisFn -> ChartAnalysisOutput

    Sentiment failures score 0.0 (Unknown or Neutral); chart failures are
    UNCLEAR. A chart image that is not an image data URI never reaches
    the function.

INDICATOR STATUS:
    RSI:  < 30 Oversold, > 70 Overbought, otherwise Neutral
    MACD: histogram sign first (|h| > 1e-7), then value vs signal
============================================================================
"""

from decimal import Decimal
from typing import Optional, Any, Awaitable, Callable, Dict, Iterable, Tuple
from dataclasses import dataclass
from enum import Enum
import logging
import math
import uuid

from market_aggregator.schemas import AggregatedResult, MacdTriple

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RSI_OVERSOLD = Decimal("30")
RSI_OVERBOUGHT = Decimal("70")

# Histograms this close to zero carry no direction
MACD_HISTOGRAM_EPSILON = Decimal("0.0000001")

STATUS_UNAVAILABLE = "N/A"

RATE_LIMIT_MARKERS = ("429", "quota", "rate limit")
AUTH_MARKERS = ("api key", "permission denied")
BILLING_MARKERS = ("billing", "account")

SENTIMENT_SCORE_BOUNDS = (-1.0, 1.0)
IMAGE_DATA_URI_PREFIX = "data:image"


# =============================================================================
# Error Codes
# =============================================================================

class SignalErrorCode:
    """Signal-specific error codes for audit logging."""
    INPUT_INVALID = "SIGNAL-001"
    RECOMMENDER_FAIL = "SIGNAL-002"
    OUTPUT_INVALID = "SIGNAL-003"
    SENTIMENT_FAIL = "SIGNAL-004"
    CHART_FAIL = "SIGNAL-005"
    IMAGE_INVALID = "SIGNAL-006"


class SignalInputError(ValueError):
    """Raised when a recommendation input is absent or non-finite."""

    def __init__(self, field_name: str, message: Optional[str] = None):
        self.field_name = field_name
        self.error_code = SignalErrorCode.INPUT_INVALID
        super().__init__(message or f"Recommendation input '{field_name}' is missing or not finite")


# =============================================================================
# Enums
# =============================================================================

class Recommendation(Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class RsiStatus(Enum):
    OVERSOLD = "Oversold"
    NEUTRAL = "Neutral"
    OVERBOUGHT = "Overbought"


class MacdStatus(Enum):
    UPTREND = "Uptrend"
    NEUTRAL = "Neutral"
    DOWNTREND = "Downtrend"


class ChartRecommendation(Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    UNCLEAR = "UNCLEAR"


class Confidence(Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class TradeRecommendationInput:
    """
    Finite numeric inputs handed to the recommendation function.

    - rsi: RSI(14), 0-100
    - macd: MACD line value
    - sentiment_score: News sentiment, -1 (very negative) to 1 (very positive)
    - interest_rate: Benchmark rate of the primary currency, in percent
    - price: Current price
    """
    rsi: float
    macd: float
    sentiment_score: float
    interest_rate: float
    price: float

    def __post_init__(self):
        for name in ("rsi", "macd", "sentiment_score", "interest_rate", "price"):
            _require_finite(name, getattr(self, name))

    def to_dict(self) -> Dict[str, float]:
        return {
            "rsi": self.rsi,
            "macd": self.macd,
            "sentimentScore": self.sentiment_score,
            "interestRate": self.interest_rate,
            "price": self.price,
        }


@dataclass(frozen=True)
class TradeRecommendationOutput:
    recommendation: Recommendation
    reason: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"recommendation": self.recommendation.value, "reason": self.reason}  # type: Dict[str, Any]
        if self.error is not None:
            data["error"] = self.error
        return data


RecommendationFn = Callable[[TradeRecommendationInput], Awaitable[TradeRecommendationOutput]]


# =============================================================================
# Input Construction
# =============================================================================

def _require_finite(name: str, value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise SignalInputError(name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise SignalInputError(name)
    if not math.isfinite(number):
        raise SignalInputError(name)
    return number


def build_recommendation_input(
    result: AggregatedResult,
    sentiment_score: Any,
    interest_rate: Any
) -> TradeRecommendationInput:
    """
    Build recommendation inputs from a market data result.

    Raises:
        SignalInputError: Any of the five values is absent or non-finite
    """
    macd_value = result.macd.value if result.macd is not None else None
    try:
        return TradeRecommendationInput(
            rsi=_require_finite("rsi", result.rsi),
            macd=_require_finite("macd", macd_value),
            sentiment_score=_require_finite("sentiment_score", sentiment_score),
            interest_rate=_require_finite("interest_rate", interest_rate),
            price=_require_finite("price", result.price),
        )
    except SignalInputError as e:
        logger.warning(
            f"{SignalErrorCode.INPUT_INVALID} Recommendation input rejected | "
            f"field={e.field_name} | "
            f"source={result.source_provider} | "
            f"correlation_id={result.correlation_id}"
        )
        raise


# =============================================================================
# Recommendation Boundary
# =============================================================================

def _display_error(exc: BaseException) -> str:
    text = str(exc).lower()
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return "AI rate limit exceeded. Please try again in a few moments."
    if any(marker in text for marker in AUTH_MARKERS):
        return "AI service API key issue or permission denied."
    return "An unexpected error occurred during AI analysis."


async def request_recommendation(
    fn: RecommendationFn,
    recommendation_input: TradeRecommendationInput,
    correlation_id: Optional[str] = None
) -> TradeRecommendationOutput:
    """
    Call the black-box recommendation function. Never raises.

    Returns:
        The function's output, or HOLD with error set when it raised or
        returned something unusable
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    try:
        output = await fn(recommendation_input)
    except Exception as e:
        display_error = _display_error(e)
        logger.error(
            f"{SignalErrorCode.RECOMMENDER_FAIL} Recommendation function raised | "
            f"error={type(e).__name__} | "
            f"detail={str(e)[:100]} | "
            f"correlation_id={correlation_id}"
        )
        return TradeRecommendationOutput(
            recommendation=Recommendation.HOLD,
            reason=f"AI analysis failed: {display_error}. Defaulting to HOLD.",
            error=display_error,
        )

    if (
        not isinstance(output, TradeRecommendationOutput)
        or not isinstance(output.recommendation, Recommendation)
        or not output.reason
    ):
        logger.error(
            f"{SignalErrorCode.OUTPUT_INVALID} Recommendation output incomplete | "
            f"type={type(output).__name__} | "
            f"correlation_id={correlation_id}"
        )
        return TradeRecommendationOutput(
            recommendation=Recommendation.HOLD,
            reason="AI analysis failed due to incomplete data from the model. Defaulting to HOLD.",
            error="AI prompt failed to return valid output structure.",
        )

    return output


# =============================================================================
# News Sentiment Boundary
# =============================================================================

SENTIMENT_UNKNOWN = "Unknown"
SENTIMENT_NEUTRAL = "Neutral"


@dataclass(frozen=True)
class NewsSentimentInput:
    currency_pair: str
    headlines: Tuple[str, ...]

    def __post_init__(self):
        if not self.currency_pair or not self.currency_pair.strip():
            raise SignalInputError("currency_pair")
        if not self.headlines:
            raise SignalInputError("headlines", "Sentiment input needs at least one headline")

    def to_dict(self) -> Dict[str, Any]:
        return {"currencyPair": self.currency_pair, "newsHeadlines": list(self.headlines)}


@dataclass(frozen=True)
class NewsSentimentOutput:
    """
    overall_sentiment is the model's own label (Positive, Negative,
    Neutral, Mixed...); sentiment_score runs from -1.0 to 1.0.
    """
    overall_sentiment: str
    summary: str
    sentiment_score: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "overallSentiment": self.overall_sentiment,
            "summary": self.summary,
            "sentimentScore": self.sentiment_score,
        }  # type: Dict[str, Any]
        if self.error is not None:
            data["error"] = self.error
        return data


SentimentFn = Callable[[NewsSentimentInput], Awaitable[NewsSentimentOutput]]


def build_sentiment_input(
    currency_pair: str,
    headlines: Optional[Iterable[str]] = None
) -> NewsSentimentInput:
    """
    Sentiment input from fetched headlines (e.g. AggregatedResult.headlines).

    Blank headlines are dropped; with none left, a single placeholder
    asks for general market conditions instead.
    """
    kept = tuple(h.strip() for h in (headlines or ()) if isinstance(h, str) and h.strip())
    if not kept:
        kept = (f"General market conditions for {currency_pair}",)
    return NewsSentimentInput(currency_pair=currency_pair, headlines=kept)


def _valid_sentiment(output: Any) -> bool:
    if not isinstance(output, NewsSentimentOutput):
        return False
    if not output.overall_sentiment or not output.summary:
        return False
    if isinstance(output.sentiment_score, bool):
        return False
    try:
        score = float(output.sentiment_score)
    except (TypeError, ValueError):
        return False
    low, high = SENTIMENT_SCORE_BOUNDS
    return math.isfinite(score) and low <= score <= high


async def request_sentiment(
    fn: SentimentFn,
    sentiment_input: NewsSentimentInput,
    correlation_id: Optional[str] = None
) -> NewsSentimentOutput:
    """
    Call the black-box sentiment function. Never raises.

    Returns:
        The function's output, Neutral/0.0 when the output is unusable,
        or Unknown/0.0 when the function raised
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    try:
        output = await fn(sentiment_input)
    except Exception as e:
        text = str(e).lower()
        if any(marker in text for marker in RATE_LIMIT_MARKERS):
            display_error = "AI rate limit exceeded for sentiment analysis. Please try again later."
        else:
            display_error = "An unexpected error occurred during sentiment analysis."
        logger.error(
            f"{SignalErrorCode.SENTIMENT_FAIL} Sentiment function raised | "
            f"pair={sentiment_input.currency_pair} | "
            f"error={type(e).__name__} | "
            f"detail={str(e)[:100]} | "
            f"correlation_id={correlation_id}"
        )
        return NewsSentimentOutput(
            overall_sentiment=SENTIMENT_UNKNOWN,
            summary=f"Sentiment analysis failed: {display_error}",
            sentiment_score=0.0,
            error=display_error,
        )

    if not _valid_sentiment(output):
        logger.error(
            f"{SignalErrorCode.OUTPUT_INVALID} Sentiment output incomplete | "
            f"type={type(output).__name__} | "
            f"correlation_id={correlation_id}"
        )
        return NewsSentimentOutput(
            overall_sentiment=SENTIMENT_NEUTRAL,
            summary="Sentiment analysis failed due to incomplete data from the model.",
            sentiment_score=0.0,
            error="AI prompt failed to return valid sentiment structure.",
        )

    return output


# =============================================================================
# Chart Analysis Boundary
# =============================================================================

@dataclass(frozen=True)
class ChartAnalysisInput:
    """
    A chart screenshot as a data URI plus whatever market context is at
    hand. Context values are optional but finite when present.
    """
    image_data_uri: str
    asset_name: Optional[str] = None
    timeframe: Optional[str] = None
    price: Optional[float] = None
    rsi: Optional[float] = None
    macd_value: Optional[float] = None
    sentiment_score: Optional[float] = None
    interest_rate: Optional[float] = None
    market_status: Optional[str] = None

    def __post_init__(self):
        for name in ("price", "rsi", "macd_value", "sentiment_score", "interest_rate"):
            if getattr(self, name) is not None:
                _require_finite(name, getattr(self, name))

    @property
    def has_image(self) -> bool:
        return isinstance(self.image_data_uri, str) and self.image_data_uri.startswith(IMAGE_DATA_URI_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        data = {"imageDataUri": self.image_data_uri}  # type: Dict[str, Any]
        for key, value in (
            ("assetName", self.asset_name),
            ("timeframe", self.timeframe),
            ("price", self.price),
            ("rsi", self.rsi),
            ("macdValue", self.macd_value),
            ("sentimentScore", self.sentiment_score),
            ("interestRate", self.interest_rate),
            ("marketStatus", self.market_status),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class ChartAnalysisOutput:
    recommendation: ChartRecommendation
    reason: str
    confidence: Optional[Confidence] = None
    identified_patterns: Tuple[str, ...] = ()
    support_levels: Tuple[str, ...] = ()
    resistance_levels: Tuple[str, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "recommendation": self.recommendation.value,
            "reason": self.reason,
        }  # type: Dict[str, Any]
        if self.confidence is not None:
            data["confidence"] = self.confidence.value
        if self.identified_patterns:
            data["identifiedPatterns"] = list(self.identified_patterns)
        if self.support_levels or self.resistance_levels:
            data["keyLevels"] = {
                "support": list(self.support_levels),
                "resistance": list(self.resistance_levels),
            }
        if self.error is not None:
            data["error"] = self.error
        return data


ChartAnalysisFn = Callable[[ChartAnalysisInput], Awaitable[ChartAnalysisOutput]]


def _optional_finite(value: Any) -> Optional[float]:
    try:
        return _require_finite("context", value)
    except SignalInputError:
        return None


def build_chart_analysis_input(
    image_data_uri: str,
    result: Optional[AggregatedResult] = None,
    sentiment_score: Any = None,
    interest_rate: Any = None
) -> ChartAnalysisInput:
    """
    Chart input with market context taken from a market data result.
    Absent or non-finite context values are left out rather than rejected.
    """
    if result is None:
        return ChartAnalysisInput(
            image_data_uri=image_data_uri,
            sentiment_score=_optional_finite(sentiment_score),
            interest_rate=_optional_finite(interest_rate),
        )

    macd_value = result.macd.value if result.macd is not None else None
    return ChartAnalysisInput(
        image_data_uri=image_data_uri,
        asset_name=result.asset_name,
        timeframe=result.timeframe,
        price=_optional_finite(result.price),
        rsi=_optional_finite(result.rsi),
        macd_value=_optional_finite(macd_value),
        sentiment_score=_optional_finite(sentiment_score),
        interest_rate=_optional_finite(interest_rate),
        market_status=result.market_status.value if result.market_status is not None else None,
    )


def _chart_display_error(exc: BaseException) -> str:
    text = str(exc).lower()
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return "AI rate limit exceeded for chart analysis. Please try again later."
    if any(marker in text for marker in AUTH_MARKERS):
        return "AI service API key issue or permission denied for chart analysis."
    if any(marker in text for marker in BILLING_MARKERS):
        return "AI service billing or account issue for chart analysis."
    return "An unexpected error occurred during AI chart analysis."


async def request_chart_analysis(
    fn: ChartAnalysisFn,
    chart_input: ChartAnalysisInput,
    correlation_id: Optional[str] = None
) -> ChartAnalysisOutput:
    """
    Call the black-box chart analysis function. Never raises.

    Returns:
        The function's output, or UNCLEAR with error set when the image is
        not a data URI, the function raised, or it returned no usable output
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    if not chart_input.has_image:
        logger.warning(
            f"{SignalErrorCode.IMAGE_INVALID} Chart image is not an image data URI | "
            f"asset={chart_input.asset_name} | "
            f"correlation_id={correlation_id}"
        )
        return ChartAnalysisOutput(
            recommendation=ChartRecommendation.UNCLEAR,
            reason="Invalid or missing image data. Please upload a valid chart image.",
            error="Invalid image data URI.",
        )

    try:
        output = await fn(chart_input)
        if (
            not isinstance(output, ChartAnalysisOutput)
            or not isinstance(output.recommendation, ChartRecommendation)
            or not output.reason
        ):
            raise ValueError("AI model returned no output.")
    except Exception as e:
        display_error = _chart_display_error(e)
        logger.error(
            f"{SignalErrorCode.CHART_FAIL} Chart analysis failed | "
            f"asset={chart_input.asset_name} | "
            f"error={type(e).__name__} | "
            f"detail={str(e)[:100]} | "
            f"correlation_id={correlation_id}"
        )
        return ChartAnalysisOutput(
            recommendation=ChartRecommendation.UNCLEAR,
            reason=f"AI chart analysis failed: {display_error.rstrip('.')}.",
            error=display_error,
        )

    return output


# =============================================================================
# Indicator Status
# =============================================================================

def rsi_status(rsi: Optional[Decimal]) -> str:
    """Oversold / Neutral / Overbought, or N/A when RSI is absent."""
    if rsi is None or not Decimal(rsi).is_finite():
        return STATUS_UNAVAILABLE
    if rsi < RSI_OVERSOLD:
        return RsiStatus.OVERSOLD.value
    if rsi > RSI_OVERBOUGHT:
        return RsiStatus.OVERBOUGHT.value
    return RsiStatus.NEUTRAL.value


def macd_status(macd: Optional[MacdTriple]) -> str:
    """
    Uptrend / Downtrend / Neutral from the MACD triple.

    The histogram decides when it is clearly away from zero; otherwise
    the MACD line is compared with the signal line. N/A without both
    value and signal.
    """
    if macd is None or macd.value is None or macd.signal is None:
        return STATUS_UNAVAILABLE

    if macd.histogram is not None:
        if macd.histogram > MACD_HISTOGRAM_EPSILON:
            return MacdStatus.UPTREND.value
        if macd.histogram < -MACD_HISTOGRAM_EPSILON:
            return MacdStatus.DOWNTREND.value

    if macd.value > macd.signal:
        return MacdStatus.UPTREND.value
    if macd.value < macd.signal:
        return MacdStatus.DOWNTREND.value
    return MacdStatus.NEUTRAL.value
