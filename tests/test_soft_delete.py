"""Tests for soft delete mixin."""

from __future__ import annotations

import pytest

from querykit import Model
from querykit.mixins import SoftDeleteMixin


class Product(SoftDeleteMixin, Model):
    """Test model with soft delete."""

    __tablename__ = "products"


class RegularModel(Model):
    """Test model without soft delete."""

    __tablename__ = "orders"


@pytest.fixture
async def stocked(shop):
    for name in ("Lamp", "Desk", "Chair"):
        await Product.create({"name": name})
    return shop


class TestSoftDeleteMixinDefinition:
    """Test SoftDeleteMixin model definition."""

    def test_soft_delete_marker_set(self) -> None:
        """Model has __soft_delete__ = True."""
        assert Product.__soft_delete__ is True
        assert Product.__deleted_at__ == "deleted_at"

    def test_regular_model_no_soft_delete(self) -> None:
        """Regular model without mixin has no marker."""
        assert getattr(RegularModel, "__soft_delete__", False) is False

    def test_is_deleted_property(self) -> None:
        """Instance has is_deleted property."""
        product = Product(name="Test")
        assert product.is_deleted is False

        product.mark_deleted()
        assert product.is_deleted is True

        product.mark_restored()
        assert product.is_deleted is False

    def test_mixin_order_does_not_matter(self) -> None:
        class Archived(Model, SoftDeleteMixin):
            pass

        assert Archived.__soft_delete__ is True


class TestSoftDeleteQueries:
    """Soft-deleted rows are hidden unless asked for."""

    async def test_scope_in_sql(self, recorder) -> None:
        await Product.where({"name": "Lamp"}).or_where({"name": "Desk"}).get()
        assert recorder.last == (
            "SELECT products.* FROM products WHERE products.deleted_at IS NULL"
            " AND (products.name = ? OR products.name = ?) ORDER BY products.id ASC",
            ["Lamp", "Desk"],
        )

    async def test_soft_delete_hides_row(self, stocked) -> None:
        assert await Product.soft_delete(1) is True
        names = await Product.pluck("name")
        assert names == ["Desk", "Chair"]

    async def test_with_deleted(self, stocked) -> None:
        await Product.soft_delete(1)
        assert len(await Product.with_deleted().get()) == 3

    async def test_only_deleted(self, stocked) -> None:
        await Product.soft_delete(2)
        deleted = await Product.only_deleted().get()
        assert [p.name for p in deleted] == ["Desk"]
        assert deleted[0].is_deleted

    async def test_find_respects_scope(self, stocked) -> None:
        await Product.soft_delete(1)
        assert await Product.find(1) is None
        assert (await Product.with_deleted().find(1)).name == "Lamp"

    async def test_restore(self, stocked) -> None:
        await Product.soft_delete(1)
        assert await Product.restore(1) is True
        assert (await Product.find(1)).deleted_at is None

    async def test_aggregates_respect_scope(self, stocked) -> None:
        await Product.soft_delete(3)
        assert await Product.count().scalar() == 2
        assert await Product.with_deleted().count().scalar() == 3

    async def test_paginate_total_respects_scope(self, stocked) -> None:
        await Product.soft_delete(3)
        page = await Product.paginate(1, 10)
        assert page.total == 2

    async def test_handle_soft_delete_and_reload(self, shop) -> None:
        handle = await Product.create({"name": "Lamp"})
        await handle.soft_delete()
        product = await handle.reload()
        assert product is not None
        assert product.is_deleted
        await handle.restore()
        assert await Product.exist()
