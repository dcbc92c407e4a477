from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, inspect

from serialstock.infra.migrate import build_alembic_config, run_upgrade_head


def test_alembic_config_points_at_migrations(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'cfg.db'}"
    config = build_alembic_config(url)
    assert config.get_main_option("sqlalchemy.url") == url
    assert config.get_main_option("script_location").endswith("migrations")


def test_upgrade_head_creates_stock_tables(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    run_upgrade_head(url)

    inspector = inspect(create_engine(url))
    tables = set(inspector.get_table_names())
    assert {"events", "audit_logs", "stock_models", "stock_locations", "serial_items", "serial_movements"} <= tables

    item_constraints = {row["name"] for row in inspector.get_unique_constraints("serial_items")}
    assert "uq_serial_items_model_serial" in item_constraints
    movement_constraints = {row["name"] for row in inspector.get_unique_constraints("serial_movements")}
    assert "uq_serial_movements_item_sequence" in movement_constraints
    assert "version" in {column["name"] for column in inspector.get_columns("serial_items")}
