"""
Graph synchronizer - push resolved funding rounds into the property graph.

Two entry points share the same node/edge shapes:

- sync_round(): one grouped round, committed from the review queue
- sync_all(): rebuild from every persisted per-article extraction, in
  UNWIND batches of settings.graph_batch_size rows

Every write is a MERGE on a normalized key, so both are safe to re-run.
Company metadata and country go through the confidence-gated policy
(MergeMode.GATED); rounds that collapse onto one roundKey keep the highest
confidence and the largest amount. HQ_IN only links a company to the
country it actually holds after the gated write.
"""

import logging
import time
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from ..analyst.normalizer import make_round_key, normalize_company, normalize_investor
from ..analyst.schemas import CompanyMeta, FundingStage, clamp_confidence, coerce_stage
from ..archivist.models import utc_now_naive
from ..archivist.storage import ArticleStore
from ..config.settings import settings
from .store import (
    ARTICLE,
    COMPANY,
    FUNDING_ROUND,
    HQ_IN,
    INVESTOR,
    LOCATION,
    PARTICIPATED_IN,
    RAISED,
    SOURCED_FROM,
    WRITE_CONFIDENCE,
    EdgeBatch,
    GraphStore,
    MergeMode,
    NodeBatch,
    check_identifier,
    chunked,
)

logger = logging.getLogger(__name__)

LEAD = "lead"
PARTICIPANT = "participant"

COMPANY_MODES = {
    "name": MergeMode.COALESCE,
    "status": MergeMode.KEEP_EXISTING,
    "country": MergeMode.GATED,
    "description": MergeMode.GATED,
    "website": MergeMode.GATED,
    "foundedYear": MergeMode.GATED,
    "employeeRange": MergeMode.GATED,
    "linkedinUrl": MergeMode.GATED,
}
# Bulk rebuild recomputes the company's funding total from its rounds
BULK_COMPANY_MODES = {**COMPANY_MODES, "totalFundingUsd": MergeMode.OVERWRITE}
INVESTOR_MODES = {"name": MergeMode.COALESCE}
LOCATION_MODES = {"type": MergeMode.KEEP_EXISTING}
ARTICLE_MODES = {
    "title": MergeMode.COALESCE,
    "publishedAt": MergeMode.COALESCE,
    "author": MergeMode.COALESCE,
}
ROUND_MODES = {
    "amountUsd": MergeMode.MAX,
    "currency": MergeMode.COALESCE,
    "stage": MergeMode.COALESCE,
    "confidence": MergeMode.MAX,
    "articleId": MergeMode.KEEP_EXISTING,
}
PARTICIPATION_MODES = {"role": MergeMode.OVERWRITE}
SOURCED_MODES = {"confidence": MergeMode.OVERWRITE, "extractedAt": MergeMode.KEEP_EXISTING}


# =============================================================================
# TYPES
# =============================================================================

class SyncArticle(BaseModel):
    id: Optional[int] = None
    url: str
    title: str = ""
    published_at: Optional[datetime] = None
    author: Optional[str] = None


class RoundSyncInput(BaseModel):
    """One resolved funding round to commit to the graph."""
    company_name: str
    amount_usd: Optional[float] = None
    currency: str = "USD"
    stage: Optional[FundingStage] = None
    investors: List[str] = Field(default_factory=list)
    lead_investor: Optional[str] = None
    country: Optional[str] = None
    confidence: float = 0.0
    company_meta: Optional[CompanyMeta] = None
    articles: List[SyncArticle] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v) -> float:
        return clamp_confidence(v)

    @field_validator("stage", mode="before")
    @classmethod
    def coerce(cls, v):
        return coerce_stage(v)


class GraphSyncSummary(BaseModel):
    """What sync_round touched, as display labels."""
    nodes: List[str] = Field(default_factory=list)
    edges: List[str] = Field(default_factory=list)


class GraphSyncResult(BaseModel):
    """Bulk sync counts (edges = relationships newly created)."""
    companies: int = 0
    investors: int = 0
    funding_rounds: int = 0
    articles: int = 0
    locations: int = 0
    edges: int = 0
    duration_ms: int = 0


# =============================================================================
# ROW BUILDERS
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def all_investor_names(investors: Iterable[str], lead_investor: Optional[str]) -> List[str]:
    """Investors plus the lead (once), in order, blanks dropped."""
    names = [i.strip() for i in investors if i and i.strip()]
    if lead_investor and lead_investor.strip():
        lead_norm = normalize_investor(lead_investor)
        if not any(normalize_investor(n) == lead_norm for n in names):
            names.append(lead_investor.strip())
    return names


def investor_role(investor: str, lead_investor: Optional[str]) -> str:
    """lead iff the normalized names are equal."""
    if lead_investor and normalize_investor(investor) == normalize_investor(lead_investor):
        return LEAD
    return PARTICIPANT


def company_row(name: str, country: Optional[str], confidence: float, meta: Optional[CompanyMeta] = None) -> Dict:
    meta = meta or CompanyMeta()
    return {
        "normalizedName": normalize_company(name),
        "name": name.strip(),
        "status": "active",
        "country": country or None,
        "description": meta.description,
        "website": meta.website,
        "foundedYear": meta.founded_year,
        "employeeRange": meta.employee_range,
        "linkedinUrl": meta.linkedin_url,
        WRITE_CONFIDENCE: confidence,
    }


def collapse_round_rows(rows: Iterable[Dict]) -> List[Dict]:
    """
    Merge rows sharing a roundKey: max confidence, largest non-null amount,
    first non-null stage/currency/articleId.
    """
    merged: Dict[str, Dict] = {}
    for row in rows:
        existing = merged.get(row["roundKey"])
        if existing is None:
            merged[row["roundKey"]] = dict(row)
            continue
        existing["confidence"] = max(existing["confidence"], row["confidence"])
        amounts = [a for a in (existing.get("amountUsd"), row.get("amountUsd")) if a is not None]
        existing["amountUsd"] = max(amounts) if amounts else None
        for prop in ("stage", "currency", "articleId"):
            if existing.get(prop) is None:
                existing[prop] = row.get(prop)
    return list(merged.values())


class GraphSynchronizer:
    """
    Commits funding rounds to a GraphStore.

    Args:
        store: Target graph store
        article_store: Source of persisted extractions (needed by sync_all)
        batch_size: Rows per UNWIND batch
        gate_threshold: Confidence above which gated fields may be overwritten
    """

    def __init__(
        self,
        store: GraphStore,
        article_store: Optional[ArticleStore] = None,
        batch_size: Optional[int] = None,
        gate_threshold: Optional[float] = None,
    ):
        self.store = store
        self.article_store = article_store
        self.batch_size = batch_size or settings.graph_batch_size
        self.gate_threshold = (
            settings.overwrite_confidence_threshold if gate_threshold is None else gate_threshold
        )

    async def _merge_nodes(self, label: str, rows: Sequence[Dict], modes: Dict[str, MergeMode]) -> int:
        created = 0
        for batch in chunked(list(rows), self.batch_size):
            created += await self.store.merge_nodes(
                NodeBatch(label, list(batch), modes, gate_threshold=self.gate_threshold)
            )
        return created

    async def _merge_edges(
        self,
        rel_type: str,
        start: str,
        end: str,
        rows: Sequence[Dict],
        modes: Optional[Dict] = None,
        start_matches_end: Optional[str] = None,
    ) -> int:
        created = 0
        for batch in chunked(list(rows), self.batch_size):
            created += await self.store.merge_edges(
                EdgeBatch(rel_type, start, end, list(batch), modes or {}, start_matches_end=start_matches_end)
            )
        return created

    # -------------------------------------------------------------------------
    # Single round
    # -------------------------------------------------------------------------

    async def sync_round(self, data: RoundSyncInput) -> GraphSyncSummary:
        """
        Commit one round: Company, Location, InvestorOrgs, FundingRound,
        Articles and the RAISED / HQ_IN / PARTICIPATED_IN / SOURCED_FROM edges.
        """
        company_key = normalize_company(data.company_name)
        if not company_key:
            raise ValueError(f"Company name normalizes to nothing: {data.company_name!r}")

        await self.store.ensure_constraints()
        summary = GraphSyncSummary()
        round_key = make_round_key(data.company_name, data.stage)
        stage = data.stage.value if data.stage else None

        await self._merge_nodes(
            COMPANY, [company_row(data.company_name, data.country, data.confidence, data.company_meta)], COMPANY_MODES
        )
        summary.nodes.append(f"Company: {data.company_name}")

        if data.country:
            await self._merge_nodes(LOCATION, [{"name": data.country, "type": "country"}], LOCATION_MODES)
            summary.nodes.append(f"Location: {data.country}")
            company = await self.store.get_node(COMPANY, company_key) or {}
            if company.get("country") == data.country:
                await self._merge_edges(HQ_IN, COMPANY, LOCATION, [{"start": company_key, "end": data.country}])
                summary.edges.append(HQ_IN)
            else:
                logger.info(
                    f"Not linking {company_key!r} HQ_IN {data.country!r}: "
                    f"stored country is {company.get('country')!r}"
                )

        investors = all_investor_names(data.investors, data.lead_investor)
        await self._merge_nodes(
            INVESTOR,
            [{"normalizedName": normalize_investor(i), "name": i} for i in investors],
            INVESTOR_MODES,
        )
        summary.nodes.extend(f"InvestorOrg: {i}" for i in investors)

        first_article = data.articles[0] if data.articles else None
        await self._merge_nodes(FUNDING_ROUND, [{
            "roundKey": round_key,
            "amountUsd": data.amount_usd,
            "currency": data.currency,
            "stage": stage,
            "confidence": data.confidence,
            "articleId": str(first_article.id) if first_article and first_article.id is not None else round_key,
        }], ROUND_MODES)
        summary.nodes.append(f"FundingRound: {data.company_name} {stage or ''}".rstrip())

        await self._merge_edges(RAISED, COMPANY, FUNDING_ROUND, [{"start": company_key, "end": round_key}])
        summary.edges.append(RAISED)

        extracted_at = _iso(utc_now_naive())
        for article in data.articles:
            await self._merge_nodes(ARTICLE, [{
                "url": article.url,
                "title": article.title,
                "publishedAt": _iso(article.published_at),
                "author": article.author,
            }], ARTICLE_MODES)
            summary.nodes.append(f"Article: {article.title or article.url}")
            await self._merge_edges(
                SOURCED_FROM, FUNDING_ROUND, ARTICLE,
                [{"start": round_key, "end": article.url, "confidence": data.confidence, "extractedAt": extracted_at}],
                SOURCED_MODES,
            )
            summary.edges.append(SOURCED_FROM)

        if investors:
            await self._merge_edges(
                PARTICIPATED_IN, INVESTOR, FUNDING_ROUND,
                [
                    {"start": normalize_investor(i), "end": round_key, "role": investor_role(i, data.lead_investor)}
                    for i in investors
                ],
                PARTICIPATION_MODES,
            )
            summary.edges.append(f"{PARTICIPATED_IN} x{len(investors)}")

        logger.info(
            f"Synced round {round_key}: {len(summary.nodes)} nodes, "
            f"{len(investors)} investors, {len(data.articles)} articles"
        )
        return summary

    # -------------------------------------------------------------------------
    # Bulk rebuild
    # -------------------------------------------------------------------------

    async def sync_all(self) -> GraphSyncResult:
        """Rebuild the graph from every persisted extraction in the article store."""
        if self.article_store is None:
            raise ValueError("sync_all needs an article store")

        start = time.monotonic()
        records = await self.article_store.list_funding_records()
        logger.info(f"Bulk graph sync: {len(records)} funding records")

        await self.store.ensure_constraints()

        companies: Dict[str, Dict] = {}
        investors: Dict[str, Dict] = {}
        locations: Dict[str, Dict] = {}
        articles: Dict[str, Dict] = {}
        round_rows: List[Dict] = []
        raised: Dict[tuple, Dict] = {}
        roles: Dict[tuple, str] = {}
        hq: Dict[tuple, Dict] = {}
        sourced: List[Dict] = []

        for record in records:
            company_key = normalize_company(record.company_name)
            if not company_key:
                logger.debug(f"Skipping record for article {record.article_id}: empty company name")
                continue
            round_key = make_round_key(record.company_name, coerce_stage(record.stage))
            stage = coerce_stage(record.stage)

            row = company_row(record.company_name, record.country, record.confidence)
            prev = companies.get(company_key)
            if prev is None:
                companies[company_key] = row
            elif record.confidence > prev[WRITE_CONFIDENCE]:
                # First display name wins within one rebuild
                companies[company_key] = {**row, "name": prev["name"], "country": row["country"] or prev["country"]}

            for name in all_investor_names(record.investors, record.lead_investor):
                inv_key = normalize_investor(name)
                investors.setdefault(inv_key, {"normalizedName": inv_key, "name": name})
                edge_key = (inv_key, round_key)
                role = investor_role(name, record.lead_investor)
                if roles.get(edge_key) != LEAD:
                    roles[edge_key] = role

            if record.country:
                locations.setdefault(record.country, {"name": record.country, "type": "country"})
                hq.setdefault((company_key, record.country), {"start": company_key, "end": record.country})

            round_rows.append({
                "roundKey": round_key,
                "amountUsd": record.amount_usd,
                "currency": record.currency,
                "stage": stage.value if stage else None,
                "confidence": record.confidence,
                "articleId": str(record.article_id),
            })
            raised.setdefault((company_key, round_key), {"start": company_key, "end": round_key})

            if record.article is not None:
                article = record.article
                articles.setdefault(article.url, {
                    "url": article.url,
                    "title": article.title,
                    "publishedAt": _iso(article.published_at),
                    "author": article.author,
                })
                sourced.append({
                    "start": round_key,
                    "end": article.url,
                    "confidence": record.confidence,
                    "extractedAt": _iso(record.created_at),
                })

        rounds = collapse_round_rows(round_rows)

        # One amount per roundKey, so duplicate coverage is not double counted
        round_amounts = {r["roundKey"]: r["amountUsd"] for r in rounds}
        totals: Dict[str, float] = {}
        for company_key, round_key in raised:
            amount = round_amounts.get(round_key)
            if amount is not None:
                totals[company_key] = totals.get(company_key, 0.0) + amount
        for company_key, row in companies.items():
            row["totalFundingUsd"] = totals.get(company_key)

        await self._merge_nodes(COMPANY, list(companies.values()), BULK_COMPANY_MODES)
        await self._merge_nodes(INVESTOR, list(investors.values()), INVESTOR_MODES)
        await self._merge_nodes(LOCATION, list(locations.values()), LOCATION_MODES)
        await self._merge_nodes(ARTICLE, list(articles.values()), ARTICLE_MODES)
        await self._merge_nodes(FUNDING_ROUND, rounds, ROUND_MODES)

        edges = 0
        edges += await self._merge_edges(RAISED, COMPANY, FUNDING_ROUND, list(raised.values()))
        edges += await self._merge_edges(
            PARTICIPATED_IN, INVESTOR, FUNDING_ROUND,
            [{"start": inv, "end": rk, "role": role} for (inv, rk), role in roles.items()],
            PARTICIPATION_MODES,
        )
        edges += await self._merge_edges(SOURCED_FROM, FUNDING_ROUND, ARTICLE, sourced, SOURCED_MODES)
        edges += await self._merge_edges(HQ_IN, COMPANY, LOCATION, list(hq.values()), start_matches_end="country")

        result = GraphSyncResult(
            companies=len(companies),
            investors=len(investors),
            funding_rounds=len(rounds),
            articles=len(articles),
            locations=len(locations),
            edges=edges,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        logger.info(
            f"Bulk graph sync done: {result.companies} companies, {result.investors} investors, "
            f"{result.funding_rounds} rounds, {result.edges} new edges in {result.duration_ms}ms"
        )
        return result

    # -------------------------------------------------------------------------
    # Locks
    # -------------------------------------------------------------------------

    async def set_locked_field(
        self, entity_type: str, entity_name: str, field: str, locked: bool
    ) -> Optional[List[str]]:
        """
        Lock or unlock one field of a Company ("company") or InvestorOrg
        ("investor"). The entity is matched by its normalized name.

        Returns:
            The entity's lockedFields after the change, or None if it does not exist.
        """
        check_identifier(field)
        if entity_type == "investor":
            label, key = INVESTOR, normalize_investor(entity_name)
        elif entity_type == "company":
            label, key = COMPANY, normalize_company(entity_name)
        else:
            raise ValueError(f"Unknown entity type: {entity_type!r}")

        fields = await self.store.update_locked_fields(label, key, field, locked)
        if fields is None:
            logger.warning(f"Lock change ignored, {label} {entity_name!r} not found")
        else:
            logger.info(f"{'Locked' if locked else 'Unlocked'} {field} on {label} {entity_name!r}")
        return fields

