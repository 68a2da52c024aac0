"""Agriculture news flashcards: fetch, filter, summarize, and cache."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import httpx
import msgspec

from khet.ai.providers.base import BackendError, ChatBackendError, ChatModel
from khet.config import Settings
from khet.services.refresh_cache import RefreshCache

logger = logging.getLogger(__name__)

RESOURCE_NAME = "news_flashcards_v1"
DEFAULT_QUERY = "agriculture OR farming OR crop OR agri OR farmer OR irrigation"
MAX_ARTICLES = 20
MAX_FLASHCARDS = 10
RAW_SUMMARY_CHARS = 180

SOURCE_DOMAINS = ("thehindubusinessline.com", "krishijagran.com", "agrinews.in", "agribusinessglobal.com", "agriland.ie")

INCLUDE_KEYWORDS = (
  "agri", "agriculture", "farming", "farmer", "farmers", "crop", "crops", "harvest", "sowing", "planting", "yield", "irrigation",
  "monsoon", "rainfall", "fertiliser", "fertilizer", "pesticide", "seed", "soil", "mandi", "apmc", "msp", "kharif", "rabi",
  "dairy", "livestock", "horticulture", "commodity", "procurement", "storage", "warehouse", "grain", "wheat", "rice", "paddy", "cotton",
)  # fmt: skip
EXCLUDE_KEYWORDS = ("cricket", "movie", "entertainment", "bollywood", "stock market", "celebrity", "politics only", "election rally", "iphone", "smartphone", "crypto")

JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class NewsApiSource(msgspec.Struct):
  name: str | None = None


class NewsApiArticle(msgspec.Struct, rename="camel"):
  title: str | None = None
  description: str | None = None
  source: NewsApiSource | None = None
  url: str | None = None
  published_at: str | None = None


class NewsApiResponse(msgspec.Struct):
  status: str = "ok"
  articles: list[NewsApiArticle] = msgspec.field(default_factory=list)


class Article(msgspec.Struct, frozen=True):
  title: str
  description: str | None = None
  source: str | None = None
  url: str | None = None
  published_at: str | None = None

  @property
  def search_text(self) -> str:
    return f"{self.title} {self.description or ''}".lower()


class Flashcard(msgspec.Struct, frozen=True, rename="camel"):
  id: str
  title: str
  bullets: list[str] = msgspec.field(default_factory=list)
  question: str | None = None
  answer: str | None = None
  source: str | None = None
  url: str | None = None
  published_at: str | None = None
  error: str | None = None


@dataclass(frozen=True)
class ScoredArticle:
  article: Article
  score: int
  include_hits: int
  exclude_hits: int


@dataclass(frozen=True)
class NewsRefreshResult:
  from_cache: bool
  payload: list[Flashcard] = field(default_factory=list)
  stale: bool = False
  error: str | None = None


class NewsClient:
  """Fetch recent articles from the content source."""

  def __init__(self, api_key: str | None, *, base_url: str = "https://newsapi.org/v2/everything", timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
    self._api_key = api_key
    self._base_url = base_url
    self._client = client or httpx.AsyncClient(timeout=timeout)

  @classmethod
  def from_settings(cls, settings: Settings) -> NewsClient:
    return cls(settings.news_api_key, base_url=settings.news_base_url)

  async def fetch_articles(self, query: str = DEFAULT_QUERY, *, page_size: int = MAX_ARTICLES) -> list[Article]:
    if not self._api_key:
      raise BackendError("News API key missing", user_message="News is not configured.")

    params = {"q": query, "apiKey": self._api_key, "language": "en", "sortBy": "publishedAt", "pageSize": str(page_size), "domains": ",".join(SOURCE_DOMAINS)}
    try:
      response = await self._client.get(self._base_url, params=params)
      response.raise_for_status()
      payload = msgspec.json.decode(response.content, type=NewsApiResponse)
    except httpx.HTTPStatusError as e:
      logger.error("News API returned %s", e.response.status_code)
      raise BackendError(f"News API error {e.response.status_code}", status_code=e.response.status_code, user_message="Could not load news right now.") from e
    except httpx.RequestError as e:
      logger.error("News API request failed: %s", e)
      raise BackendError(f"News API request failed: {e}", user_message="Could not reach the news service.") from e
    except msgspec.DecodeError as e:
      raise BackendError(f"News API returned an unexpected payload: {e}", user_message="Could not load news right now.") from e

    return [
      Article(title=item.title, description=item.description, source=item.source.name if item.source else None, url=item.url, published_at=item.published_at)
      for item in payload.articles
      if item.title
    ]

  async def close(self) -> None:
    await self._client.aclose()


def score_article(article: Article) -> ScoredArticle:
  text = article.search_text
  include_hits = sum(1 for keyword in INCLUDE_KEYWORDS if keyword in text)
  exclude_hits = sum(1 for keyword in EXCLUDE_KEYWORDS if keyword in text)
  return ScoredArticle(article=article, score=include_hits - exclude_hits * 2, include_hits=include_hits, exclude_hits=exclude_hits)


def filter_relevant(articles: Sequence[Article], *, limit: int = MAX_FLASHCARDS) -> list[Article]:
  """Keep agriculture articles, best first; fall back to any with an include keyword."""
  scored = [score_article(article) for article in articles]
  relevant = [item for item in scored if item.include_hits > 0 and item.score >= 1]
  relevant.sort(key=lambda item: item.score, reverse=True)
  if relevant:
    return [item.article for item in relevant[:limit]]
  return [item.article for item in scored if item.include_hits > 0][:limit]


def build_summary_prompt(article: Article) -> str:
  return (
    "Summarize this Indian agriculture news article in 2-3 concise bullet points focused on farmer impact. "
    'Then create ONE flashcard in JSON: {"summary":["..."],"flashcard":{"q":"Question","a":"Answer"}}. Avoid quotes conflicts.\n'
    f"Title: {article.title}\nDescription: {article.description or ''}"
  )


def parse_summary(raw: str) -> tuple[list[str], str | None, str | None]:
  """Return bullets, question and answer from a model reply."""
  match = JSON_OBJECT_RE.search(raw or "")
  if match:
    try:
      parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
      parsed = None
    if isinstance(parsed, dict):
      summary = parsed.get("summary") or []
      bullets = [str(item) for item in summary] if isinstance(summary, list) else [str(summary)]
      card = parsed.get("flashcard") if isinstance(parsed.get("flashcard"), dict) else {}
      return bullets, card.get("q"), card.get("a")
  return [(raw or "")[:RAW_SUMMARY_CHARS]], None, None


class NewsFlashcardService:
  """Build news flashcards and serve them through a RefreshCache."""

  def __init__(self, client: NewsClient, model: ChatModel, cache: RefreshCache[list[Flashcard]]) -> None:
    self._client = client
    self._model = model
    self._cache = cache

  async def summarize(self, article: Article, index: int) -> Flashcard:
    card_id = f"{article.published_at or index}-{index}"
    base = {"id": card_id, "title": article.title, "source": article.source, "url": article.url, "published_at": article.published_at}
    try:
      response = await self._model.chat([{"role": "user", "content": build_summary_prompt(article)}], max_tokens=400)
    except ChatBackendError as exc:
      logger.warning("Summary failed for article %s: %s", card_id, exc)
      return Flashcard(**base, error=str(exc))
    bullets, question, answer = parse_summary(response.content)
    return Flashcard(**base, bullets=bullets, question=question, answer=answer)

  async def build_flashcards(self) -> list[Flashcard]:
    raw = await self._client.fetch_articles()
    articles = filter_relevant(raw)
    logger.info("News refresh fetched=%s relevant=%s", len(raw), len(articles))
    # Sequential to keep the summary model under its rate limit.
    return [await self.summarize(article, index) for index, article in enumerate(articles)]

  async def get_flashcards(self, *, force: bool = False) -> NewsRefreshResult:
    try:
      result = await self._cache.get_or_refresh(self.build_flashcards, force=force)
    except Exception as exc:  # noqa: BLE001
      message = exc.user_message if isinstance(exc, BackendError) else str(exc)
      stale = await self._cache.last_known()
      if stale is not None:
        logger.warning("News refresh failed; serving stale flashcards: %s", exc)
        return NewsRefreshResult(from_cache=True, payload=list(stale.payload), stale=True, error=message)
      return NewsRefreshResult(from_cache=False, payload=[], error=message)
    return NewsRefreshResult(from_cache=result.from_cache, payload=list(result.payload))

  async def close(self) -> None:
    await self._cache.close()
    await self._client.close()
