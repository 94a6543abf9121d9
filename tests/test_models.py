"""Tests for table constraints that the route service relies on."""

from __future__ import annotations

from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex

from src.contact_sync.integrations.models import TagRouteModel


class TestTagRouteConstraints:
    def test_single_catch_all_route_per_provider(self):
        index = next(
            i for i in TagRouteModel.__table__.indexes if i.name == "uq_route_provider_catch_all"
        )

        ddl = str(CreateIndex(index).compile(dialect=postgresql.dialect()))

        assert index.unique is True
        assert [c.name for c in index.columns] == ["provider"]
        assert "WHERE tag_id IS NULL" in ddl

    def test_tag_and_container_constraints_present(self):
        names = {c.name for c in TagRouteModel.__table__.constraints}
        assert {"uq_route_provider_tag", "uq_route_provider_container"} <= names
