# inventory_recon/services/matching.py
"""
Product Matcher - resolves an invoice line to a catalog product.

Order of resolution, first hit wins:
1. Exact identifier (supplier SKU vs primary SKU / supplier SKU / barcodes)
2. Fuzzy text: Jaccard similarity of token sets against name and aliases
3. Otherwise a new product is created from the line

Fuzzy candidates come from an inverted token index; a product sharing no
token with the line scores 0, so the index never changes the outcome of a
full catalog scan.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_recon.database import store_errors
from inventory_recon.db_models import Product
from inventory_recon.errors import ValidationError
from inventory_recon.services.identifiers import ProductIdentifierService
from inventory_recon.settings import settings

logger = logging.getLogger(__name__)

STOPWORDS: FrozenSet[str] = frozenset({
    "the", "and", "with",
    "card", "cards", "booster", "box", "boxes",
    "ver", "version",
})
MIN_TOKEN_LENGTH = 3

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def tokenize(text: Optional[str]) -> FrozenSet[str]:
    """Lowercase, strip non-alphanumerics, drop short tokens and stopwords."""
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return frozenset(
        tok for tok in cleaned.split()
        if len(tok) >= MIN_TOKEN_LENGTH and tok not in STOPWORDS
    )


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


# ============================================================================
# Token index
# ============================================================================

class TokenIndex:
    """Inverted index token -> product ids, plus each product's token sets."""

    def __init__(self) -> None:
        self._postings: Dict[str, Set[int]] = {}
        self._token_sets: Dict[int, List[FrozenSet[str]]] = {}

    @classmethod
    def build(cls, products: Iterable[Product]) -> "TokenIndex":
        index = cls()
        for product in products:
            index.add_product(product.id, product.name, product.aliases or [])
        return index

    def __len__(self) -> int:
        return len(self._token_sets)

    def add_product(self, product_id: int, name: str, aliases: Iterable[str] = ()) -> None:
        self._token_sets.setdefault(product_id, [])
        self.add_text(product_id, name)
        for alias in aliases:
            self.add_text(product_id, alias)

    def add_text(self, product_id: int, text: str) -> None:
        tokens = tokenize(text)
        sets = self._token_sets.setdefault(product_id, [])
        if tokens in sets:
            return
        sets.append(tokens)
        for tok in tokens:
            self._postings.setdefault(tok, set()).add(product_id)

    def candidates(self, tokens: FrozenSet[str]) -> List[int]:
        ids: Set[int] = set()
        for tok in tokens:
            ids |= self._postings.get(tok, set())
        return sorted(ids)

    def best_match(self, text: str) -> Tuple[Optional[int], float]:
        """Highest-scoring product id and its score; earliest id wins ties."""
        tokens = tokenize(text)
        best_id: Optional[int] = None
        best_score = 0.0
        for product_id in self.candidates(tokens):
            score = max(jaccard(tokens, ts) for ts in self._token_sets[product_id])
            if score > best_score:
                best_id, best_score = product_id, score
        return best_id, best_score


# ============================================================================
# Matcher
# ============================================================================

@dataclass
class MatchResult:
    product: Product
    product_id: int
    created: bool
    method: str  # "identifier" | "fuzzy" | "created"
    score: Optional[float] = None


class ProductMatcher:
    """
    Matches invoice lines against the catalog.

    One matcher is meant to live for one booking call: the token index is
    loaded lazily on first fuzzy lookup and kept current as products are
    created or gain aliases.
    """

    def __init__(
        self,
        db: AsyncSession,
        threshold: Optional[float] = None,
        identifiers: Optional[ProductIdentifierService] = None,
    ):
        self.db = db
        self.threshold = settings.MATCH_THRESHOLD if threshold is None else threshold
        self.identifiers = identifiers or ProductIdentifierService(db)
        self._index: Optional[TokenIndex] = None

    async def _get_index(self) -> TokenIndex:
        if self._index is None:
            result = await self.db.execute(select(Product).order_by(Product.id))
            self._index = TokenIndex.build(result.scalars())
        return self._index

    async def find_match(self, description: str, supplier_sku: Optional[str] = None) -> Optional[MatchResult]:
        """Resolve without side effects; None means "create new product"."""
        if supplier_sku and supplier_sku.strip():
            product = await self.identifiers.find_product_by_identifier(supplier_sku)
            if product is not None:
                return MatchResult(product=product, product_id=product.id, created=False, method="identifier", score=1.0)

        index = await self._get_index()
        product_id, score = index.best_match(description)
        if product_id is not None and score >= self.threshold:
            product = await self.db.get(Product, product_id)
            if product is not None:
                return MatchResult(product=product, product_id=product.id, created=False, method="fuzzy", score=score)
        return None

    @store_errors("match product")
    async def match_or_create_product(
        self,
        description: str,
        supplier_sku: Optional[str] = None,
        supplier_id: Optional[int] = None,
    ) -> MatchResult:
        raw = (description or "").strip()
        if not raw:
            raise ValidationError("description is required")
        sku = (supplier_sku or "").strip() or None

        match = await self.find_match(raw, sku)
        if match is None:
            product = Product(
                name=raw,
                primary_sku=sku,
                supplier_sku=sku,
                supplier_id=supplier_id,
                aliases=[raw],
                tags=[],
                barcode_entries=[],
            )
            self.db.add(product)
            await self.db.flush()
            if self._index is not None:
                self._index.add_product(product.id, product.name, product.aliases)
            logger.debug("No match for %r: created product %s", raw, product.id)
            return MatchResult(product=product, product_id=product.id, created=True, method="created")

        logger.debug(
            "Matched %r to product %s via %s (score=%.3f)",
            raw, match.product_id, match.method, match.score or 0.0,
        )
        await self._remember_alias(match.product, raw, supplier_id)
        return match

    async def _remember_alias(self, product: Product, description: str, supplier_id: Optional[int]) -> None:
        """Append alias / adopt supplier. Best-effort: failures are logged, not raised."""
        product_id = product.id
        aliases = list(product.aliases or [])
        needs_alias = description not in aliases
        needs_supplier = product.supplier_id is None and supplier_id is not None
        if not (needs_alias or needs_supplier):
            return

        try:
            async with self.db.begin_nested():
                if needs_alias:
                    product.aliases = aliases + [description]
                if needs_supplier:
                    product.supplier_id = supplier_id
                await self.db.flush()
        except SQLAlchemyError as e:
            logger.warning("Alias update failed for product %s: %s", product_id, e)
            return

        if needs_alias and self._index is not None:
            self._index.add_text(product_id, description)
