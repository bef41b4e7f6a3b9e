"""Schema capability probing.

Databases migrated from older releases may lack some optional columns (recipe
rules scoped by size, rule units, the optional/customizable flags, per-item
ingredient overrides). The live schema is inspected once per engine and the
result is exposed as plain booleans, so repositories can pick the columns they
select instead of catching "no such column" errors in business code.
"""

import logging
import threading
from dataclasses import dataclass

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_cache: dict[Engine, "SchemaCapabilities"] = {}
_cache_lock = threading.Lock()


@dataclass(frozen=True)
class SchemaCapabilities:
    """Which optional columns exist in the connected database."""

    size_scoped_recipes: bool = True
    recipe_units: bool = True
    optional_ingredients: bool = True
    customizable_ingredients: bool = True
    item_ingredient_overrides: bool = True

    @property
    def is_legacy(self) -> bool:
        return not all(
            (
                self.size_scoped_recipes,
                self.recipe_units,
                self.optional_ingredients,
                self.customizable_ingredients,
                self.item_ingredient_overrides,
            )
        )


def _probe(db: Session) -> SchemaCapabilities:
    # Inspect through the session's own connection so the probe never
    # checks out (and resets) a second pooled connection.
    inspector = inspect(db.connection())
    tables = set(inspector.get_table_names())

    def columns(table: str) -> set[str]:
        if table not in tables:
            return set()
        return {col["name"] for col in inspector.get_columns(table)}

    rule_columns = columns("product_ingredient_rules")
    item_columns = columns("order_items")

    return SchemaCapabilities(
        size_scoped_recipes="product_size_id" in rule_columns,
        recipe_units="unit" in rule_columns,
        optional_ingredients="optional" in rule_columns,
        customizable_ingredients="customizable" in rule_columns,
        item_ingredient_overrides="ingredient_overrides" in item_columns,
    )


def capabilities_for(db: Session) -> SchemaCapabilities:
    """Capabilities of the engine a session is bound to. Probed once per engine."""
    engine = db.get_bind().engine
    cached = _cache.get(engine)
    if cached is not None:
        return cached

    capabilities = _probe(db)
    with _cache_lock:
        _cache[engine] = capabilities
    if capabilities.is_legacy:
        logger.warning(f"Legacy schema detected, running with reduced features: {capabilities}")
    return capabilities


def reset_capabilities_cache() -> None:
    """Forget probed schemas (after running migrations)."""
    with _cache_lock:
        _cache.clear()
