"""Tests for the SQL the query builder emits."""

from __future__ import annotations

import math

import pytest

from querykit import Model, QueryBuilder, StateError, ValidationError, relation


class Category(Model):
    pass


class Review(Model):
    pass


class Tag(Model):
    pass


class Product(Model):
    @relation
    def category(cls):
        return cls.belongs_to(Category, ["name"])

    @relation
    def reviews(cls):
        return cls.has_many(Review, ["id", "rating"])

    @relation
    def tags(cls):
        return cls.belongs_to_many(Tag, ["id", "label"])


class Order(Model):
    pass


class TestEntryPoints:
    """Model entry points create independent builders."""

    def test_fresh_builder_per_call(self) -> None:
        """State on one builder never leaks into the next."""
        first = Product.where({"price": (">", 10)})
        second = Product.query()
        assert isinstance(first, QueryBuilder)
        assert first is not second
        assert second._where == []

    def test_fluent_calls_return_same_builder(self) -> None:
        builder = Product.query()
        assert builder.where({"status": "active"}) is builder
        assert builder.order_by("price") is builder
        assert builder.limit(3) is builder


class TestSelect:
    """Standard SELECT shapes."""

    async def test_plain_get(self, recorder) -> None:
        """Default ordering is the primary key ascending."""
        await Product.get()
        assert recorder.last == ("SELECT products.* FROM products ORDER BY products.id ASC", [])

    async def test_where_or_where(self, recorder) -> None:
        await Product.where({"price": (">", 10)}).or_where({"status": "sale"}).get()
        assert recorder.last == (
            "SELECT products.* FROM products WHERE products.price > ? OR products.status = ?"
            " ORDER BY products.id ASC",
            [10, "sale"],
        )

    async def test_order_and_limit(self, recorder) -> None:
        await Product.order_by("price", "desc").limit(5).get(["id", "name"])
        assert recorder.last == (
            "SELECT products.id, products.name FROM products ORDER BY products.price DESC LIMIT 5",
            [],
        )

    async def test_limit_zero_means_no_limit(self, recorder) -> None:
        await Product.limit(0).get()
        assert "LIMIT" not in recorder.last[0]

    async def test_belongs_to_joined(self, recorder) -> None:
        """belongs_to adds aliased columns and a LEFT JOIN."""
        await Product.with_("category").get()
        assert recorder.last == (
            "SELECT products.*, categories.name AS category_name FROM products"
            " LEFT JOIN categories ON categories.id = products.category_id"
            " ORDER BY products.id ASC",
            [],
        )

    async def test_get_one(self, recorder) -> None:
        recorder.queue({"id": 4, "name": "Desk"})
        product = await Product.where({"name": "Desk"}).get_one()
        assert recorder.last == (
            "SELECT products.* FROM products WHERE products.name = ? ORDER BY products.id ASC LIMIT 1",
            ["Desk"],
        )
        assert isinstance(product, Product)
        assert product.id == 4

    async def test_find_ignores_where(self, recorder) -> None:
        """find() filters by primary key only."""
        result = await Product.where({"status": "active"}).find(3)
        assert recorder.last == ("SELECT products.* FROM products WHERE products.id = ? LIMIT 1", [3])
        assert result is None

    async def test_exist(self, recorder) -> None:
        recorder.queue({"id": 1})
        assert await Product.where({"status": "active"}).exist() is True
        assert recorder.last == (
            "SELECT products.id FROM products WHERE products.status = ? LIMIT 1",
            ["active"],
        )

    async def test_exist_empty(self, recorder) -> None:
        assert await Product.exist() is False

    async def test_pluck(self, recorder) -> None:
        recorder.queue({"name": "Lamp"}, {"name": "Desk"})
        names = await Product.order_by("name").pluck("name")
        assert names == ["Lamp", "Desk"]
        assert recorder.last == ("SELECT products.name FROM products ORDER BY products.name ASC", [])


class TestRelationBatching:
    """Non-join relations are loaded with one batched query each."""

    async def test_has_many_single_in_query(self, recorder) -> None:
        recorder.queue({"id": 1}, {"id": 2}, {"id": 3})
        recorder.queue(
            {"id": 10, "rating": 5, "__querykit_fk": 1},
            {"id": 11, "rating": 3, "__querykit_fk": 3},
            {"id": 12, "rating": 4, "__querykit_fk": 1},
        )
        products = await Product.with_("reviews").get()

        assert len(recorder.statements) == 2
        assert recorder.last == (
            "SELECT reviews.id, reviews.rating, reviews.product_id AS __querykit_fk FROM reviews"
            " WHERE reviews.product_id IN (?, ?, ?) ORDER BY reviews.id ASC",
            [1, 2, 3],
        )
        assert [p.id for p in products] == [1, 2, 3]
        assert products[0].reviews == [{"id": 10, "rating": 5}, {"id": 12, "rating": 4}]
        assert products[1].reviews == []
        assert products[2].reviews == [{"id": 11, "rating": 3}]

    async def test_many_to_many_two_queries(self, recorder) -> None:
        recorder.queue({"id": 1}, {"id": 2})
        recorder.queue({"owner_key": 1, "related_key": 7}, {"owner_key": 2, "related_key": 7})
        recorder.queue({"id": 7, "label": "new", "__querykit_pk": 7})
        products = await Product.with_("tags").get()

        pivot_sql, pivot_params = recorder.statements[1]
        assert pivot_sql == (
            "SELECT product_tag.product_id AS owner_key, product_tag.tag_id AS related_key"
            " FROM product_tag WHERE product_tag.product_id IN (?, ?)"
        )
        assert pivot_params == [1, 2]
        assert recorder.last[1] == [7]
        assert products[0].tags == [{"id": 7, "label": "new"}]
        assert products[1].tags == [{"id": 7, "label": "new"}]

    async def test_no_rows_no_followup(self, recorder) -> None:
        await Product.with_("reviews").get()
        assert len(recorder.statements) == 1


class TestAggregates:
    """Aggregate columns and family priority."""

    async def test_conditional_sum(self, recorder) -> None:
        await Order.sum("amount", {"status": "paid"}).get()
        assert recorder.last == (
            "SELECT COALESCE(SUM(CASE WHEN orders.status = ? THEN orders.amount ELSE 0 END), 0)"
            " AS sum_amount_0 FROM orders",
            ["paid"],
        )

    async def test_conditional_count_uses_null(self, recorder) -> None:
        await Order.count("id", {"status": "paid"}).get()
        assert recorder.last[0] == (
            "SELECT COUNT(CASE WHEN orders.status = ? THEN orders.id ELSE NULL END) AS count_id_0 FROM orders"
        )

    async def test_count_star_alias(self, recorder) -> None:
        await Order.count().get()
        assert recorder.last[0] == "SELECT COUNT(*) AS count_0 FROM orders"

    async def test_alias_counter_per_family(self, recorder) -> None:
        await Order.sum("amount").sum("amount", {"status": "paid"}).get()
        sql = recorder.last[0]
        assert "AS sum_amount_0" in sql
        assert "AS sum_amount_1" in sql

    async def test_first_family_wins(self, recorder) -> None:
        """min beats max, count, sum and avg regardless of call order."""
        await Order.avg("amount").sum("amount").max("amount").min("amount").get()
        assert recorder.last[0] == "SELECT MIN(orders.amount) AS min_amount_0 FROM orders"

    async def test_aggregate_keeps_where(self, recorder) -> None:
        await Order.where({"amount": (">", 1)}).avg("amount", alias="mean").get()
        assert recorder.last == (
            "SELECT COALESCE(AVG(orders.amount), 0) AS mean FROM orders WHERE orders.amount > ?",
            [1],
        )

    async def test_scalar(self, recorder) -> None:
        recorder.queue({"total": 42})
        assert await Order.sum("amount", alias="total").scalar() == 42

    async def test_aggregate_requires_family(self, recorder) -> None:
        with pytest.raises(ValidationError):
            await Order.query().aggregate()

    def test_count_star_with_conditions(self) -> None:
        with pytest.raises(ValidationError):
            Order.count("*", {"status": "paid"})


class TestGroupBy:
    """GROUP BY shapes."""

    async def test_families_in_group_order(self, recorder) -> None:
        """Aggregates follow the avg, sum, count, min, max order."""
        await Order.count("*", alias="n").sum("amount", alias="total").group_by("status")
        assert recorder.last == (
            "SELECT orders.status, COALESCE(SUM(orders.amount), 0) AS total, COUNT(*) AS n"
            " FROM orders GROUP BY orders.status",
            [],
        )

    async def test_relation_column_inner_join(self, recorder) -> None:
        await Product.count("*", alias="n").group_by("category.name")
        assert recorder.last[0] == (
            "SELECT categories.name AS category_name, COUNT(*) AS n FROM products"
            " INNER JOIN categories ON products.category_id = categories.id"
            " GROUP BY categories.name"
        )

    async def test_having_and_explicit_order(self, recorder) -> None:
        await (
            Order.sum("amount", {"status": "paid"}, alias="total")
            .where({"amount": (">", 0)})
            .having({"total": (">", 100)})
            .order_by("status")
            .group_by("status")
        )
        assert recorder.last == (
            "SELECT orders.status, COALESCE(SUM(CASE WHEN orders.status = ? THEN orders.amount ELSE 0 END), 0)"
            " AS total FROM orders WHERE orders.amount > ? GROUP BY orders.status HAVING total > ?"
            " ORDER BY orders.status ASC",
            ["paid", 0, 100],
        )

    async def test_requires_columns(self, recorder) -> None:
        with pytest.raises(ValidationError):
            await Order.group_by()

    async def test_rejects_star(self, recorder) -> None:
        with pytest.raises(ValidationError):
            await Order.group_by("*")

    async def test_rejects_non_join_relation(self, recorder) -> None:
        with pytest.raises(ValidationError):
            await Product.group_by("reviews.rating")


class TestPaginate:
    """Pagination SQL."""

    async def test_page_and_count_queries(self, recorder) -> None:
        recorder.queue(*({"id": i} for i in range(11, 21)))
        recorder.queue({"total": 25})
        page = await Product.where({"status": "active"}).paginate(2, 10)

        page_sql, page_params = recorder.statements[0]
        assert page_sql == (
            "SELECT products.* FROM products WHERE products.status = ? ORDER BY products.id ASC LIMIT ?, ?"
        )
        assert page_params == ["active", 10, 10]
        assert recorder.statements[1] == (
            "SELECT COUNT(*) AS total FROM products WHERE products.status = ?",
            ["active"],
        )
        assert page.total == 25
        assert page.last_page == 3
        assert page.count == 10
        assert page.current_page == 2

    async def test_count_query_keeps_joins(self, recorder) -> None:
        recorder.queue({"id": 1, "category_name": "Desks"})
        recorder.queue({"total": 1})
        await Product.with_("category").where({"categories.name": "Desks"}).paginate(1, 10)
        assert recorder.last == (
            "SELECT COUNT(*) AS total FROM products"
            " LEFT JOIN categories ON categories.id = products.category_id"
            " WHERE categories.name = ?",
            ["Desks"],
        )

    @pytest.mark.parametrize("page,per_page", [(0, 10), (1, 0), (-1, 5), (1.5, 10), (True, 10)])
    async def test_invalid_page_args(self, recorder, page, per_page) -> None:
        with pytest.raises(ValidationError):
            await Product.paginate(page, per_page)


class TestDelete:
    """Builder-level DELETE."""

    async def test_delete_where(self, recorder) -> None:
        recorder.queue(rowcount=3)
        removed = await Product.where({"status": "draft"}).delete()
        assert removed == 3
        assert recorder.last == ("DELETE FROM products WHERE products.status = ?", ["draft"])

    async def test_delete_requires_where(self, recorder) -> None:
        with pytest.raises(StateError):
            await Product.query().delete()


class TestValidation:
    """Bad input fails at the call that introduces it."""

    def test_or_where_before_where(self) -> None:
        with pytest.raises(StateError):
            Product.query().or_where({"status": "sale"})

    @pytest.mark.parametrize("value", [-1, math.nan, 2.5, True, "10"])
    def test_invalid_limit(self, value) -> None:
        with pytest.raises(ValidationError):
            Product.limit(value)

    def test_invalid_direction(self) -> None:
        with pytest.raises(ValidationError):
            Product.order_by("price", "sideways")

    def test_invalid_order_column(self) -> None:
        with pytest.raises(ValidationError):
            Product.order_by("price; DROP TABLE products")

    def test_unknown_relation(self) -> None:
        with pytest.raises(ValidationError, match="no relation"):
            Product.with_("suppliers")

    def test_state_error_is_runtime_error(self) -> None:
        with pytest.raises(RuntimeError):
            Product.query().or_where({"a": 1})
