"""
Tests for the product matcher: tokenizer, Jaccard scoring, token index and
the identifier -> fuzzy -> create resolution order.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from inventory_recon.db_models import Product, Supplier
from inventory_recon.errors import StoreFailure, ValidationError
from inventory_recon.services.matching import ProductMatcher, TokenIndex, jaccard, tokenize


def _product(name, **kwargs):
    kwargs.setdefault("aliases", [])
    return Product(name=name, tags=[], barcode_entries=[], **kwargs)


class TestTokenize:
    def test_lowercases_and_drops_stopwords_and_short_tokens(self):
        assert tokenize("Pokemon 151 Booster Box (ENG)") == {"pokemon", "151", "eng"}

    def test_punctuation_splits_words(self):
        assert tokenize("Shimano-XT/Deore") == {"shimano", "deore"}

    def test_empty(self):
        assert tokenize("") == frozenset()
        assert tokenize(None) == frozenset()


class TestJaccard:
    def test_pokemon_example_meets_threshold(self):
        score = jaccard(tokenize("POKEMON 151 BOOSTER BOX (ENG)"), tokenize("Pokemon 151 Booster Box"))
        assert score == pytest.approx(2 / 3)
        assert score >= 0.5

    def test_no_overlap_scores_zero(self):
        assert jaccard(tokenize("Widget Spanner"), tokenize("Pokemon 151")) == 0.0

    def test_two_empty_sets(self):
        assert jaccard(frozenset(), frozenset()) == 0.0


class TestTokenIndex:
    def test_best_match_uses_max_over_name_and_aliases(self):
        index = TokenIndex()
        index.add_product(1, "Brake Pads Deore", ["Shimano Brake Pad Set Resin"])
        index.add_product(2, "Chain Lube Wet", [])

        product_id, score = index.best_match("Shimano brake pad set resin")
        assert product_id == 1
        assert score == 1.0

    def test_ties_keep_lowest_id(self):
        index = TokenIndex()
        index.add_product(7, "Trail Helmet Blue")
        index.add_product(3, "Trail Helmet Blue")
        assert index.best_match("trail helmet blue") == (3, 1.0)

    def test_no_shared_token_means_no_candidate(self):
        index = TokenIndex()
        index.add_product(1, "Trail Helmet Blue")
        assert index.best_match("Pokemon 151") == (None, 0.0)

    def test_add_text_is_idempotent(self):
        index = TokenIndex()
        index.add_product(1, "Trail Helmet", ["Trail Helmet"])
        index.add_text(1, "trail   HELMET")
        assert index._token_sets[1] == [frozenset({"trail", "helmet"})]


class TestProductMatcher:
    @pytest.mark.asyncio
    async def test_fuzzy_match_selects_related_product(self, db):
        pokemon = _product("Pokemon 151 Booster Box")
        widget = _product("Widget Spanner")
        db.add_all([widget, pokemon])
        await db.flush()

        result = await ProductMatcher(db).match_or_create_product("POKEMON 151 BOOSTER BOX (ENG)")

        assert result.created is False
        assert result.method == "fuzzy"
        assert result.product_id == pokemon.id
        assert result.score >= 0.5

    @pytest.mark.asyncio
    async def test_no_overlap_creates_product(self, db):
        db.add(_product("Widget Spanner"))
        await db.flush()

        result = await ProductMatcher(db).match_or_create_product("  Trail Helmet Blue  ", supplier_sku="TH-1")

        assert result.created is True
        assert result.method == "created"
        product = result.product
        assert product.name == "Trail Helmet Blue"
        assert product.primary_sku == "TH-1"
        assert product.supplier_sku == "TH-1"
        assert product.aliases == ["Trail Helmet Blue"]

    @pytest.mark.asyncio
    async def test_identifier_match_is_case_insensitive(self, db):
        product = _product("Completely Different Name", primary_sku="ABC-001")
        db.add(product)
        await db.flush()

        result = await ProductMatcher(db).match_or_create_product("Unrelated text", supplier_sku="abc-001")

        assert result.method == "identifier"
        assert result.product_id == product.id

    @pytest.mark.asyncio
    async def test_alias_append_is_idempotent(self, db):
        product = _product("Pokemon 151 Booster Box", aliases=["Pokemon 151 Booster Box"])
        db.add(product)
        await db.flush()

        matcher = ProductMatcher(db)
        await matcher.match_or_create_product("POKEMON 151 BOOSTER BOX (ENG)")
        await matcher.match_or_create_product("POKEMON 151 BOOSTER BOX (ENG)")

        assert product.aliases == ["Pokemon 151 Booster Box", "POKEMON 151 BOOSTER BOX (ENG)"]

    @pytest.mark.asyncio
    async def test_match_adopts_supplier_when_missing(self, db):
        supplier = Supplier(name="Acme")
        product = _product("Trail Helmet Blue")
        db.add_all([supplier, product])
        await db.flush()

        await ProductMatcher(db).match_or_create_product("Trail Helmet Blue", supplier_id=supplier.id)

        assert product.supplier_id == supplier.id

    @pytest.mark.asyncio
    async def test_lines_of_one_booking_share_a_new_product(self, db):
        matcher = ProductMatcher(db)
        first = await matcher.match_or_create_product("Widget A")
        second = await matcher.match_or_create_product("widget a")

        assert first.created is True
        assert second.created is False
        assert second.product_id == first.product_id
        count = (await db.execute(select(func.count(Product.id)))).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_empty_description_rejected(self, db):
        with pytest.raises(ValidationError):
            await ProductMatcher(db).match_or_create_product("   ")

    @pytest.mark.asyncio
    async def test_store_error_surfaces_as_store_failure(self, db, monkeypatch):
        async def broken_flush(*args, **kwargs):
            raise OperationalError("INSERT INTO products", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "flush", broken_flush)

        with pytest.raises(StoreFailure):
            await ProductMatcher(db).match_or_create_product("Brand new thing")

    @pytest.mark.asyncio
    async def test_failed_alias_update_keeps_the_match(self, db, session_factory, monkeypatch):
        pokemon = _product("Pokemon 151 Booster Box")
        db.add(pokemon)
        await db.commit()
        pokemon_id = pokemon.id
        real_flush = db.flush

        async def flush_failing_in_savepoint(*args, **kwargs):
            if db.in_nested_transaction():
                raise OperationalError("UPDATE products", {}, Exception("disk I/O error"))
            return await real_flush(*args, **kwargs)

        monkeypatch.setattr(db, "flush", flush_failing_in_savepoint)
        matcher = ProductMatcher(db)

        result = await matcher.match_or_create_product("POKEMON 151 BOOSTER BOX (ENG)")
        assert result.created is False
        assert result.product_id == pokemon_id

        monkeypatch.setattr(db, "flush", real_flush)
        created = await matcher.match_or_create_product("Chain Lube Wet")
        assert created.created is True
        again = await matcher.match_or_create_product("POKEMON 151 BOOSTER BOX (ENG)")
        assert again.product_id == pokemon_id
        await db.commit()

        async with session_factory() as fresh:
            stored = await fresh.get(Product, pokemon_id)
            assert "POKEMON 151 BOOSTER BOX (ENG)" in stored.aliases
