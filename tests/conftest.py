"""
Global pytest configuration and fixtures for the migration runner tests

Provides:
- A migrations directory builder
- File-backed SQLite databases (real transactions, real DDL)
- Helpers for inspecting the resulting schema
"""

from pathlib import Path
from typing import Dict, List

import pytest
from sqlalchemy import text

from rtm_db.database import Database


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Migration Scripts
# ============================================================================

EMPLOYEES_UP = """
-- Migration 001: employees
CREATE TABLE employees (
    id INTEGER PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    first_name VARCHAR(100) NOT NULL
);
"""

EMPLOYEES_DOWN = "DROP TABLE IF EXISTS employees;\n"

PROJECTS_UP = """
CREATE TABLE projects (
    id INTEGER PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    cost_per_km NUMERIC(10, 2) NOT NULL
);
CREATE INDEX idx_projects_name ON projects(name);
"""

PROJECTS_DOWN = """
DROP INDEX IF EXISTS idx_projects_name;
DROP TABLE IF EXISTS projects;
"""


@pytest.fixture
def write_migrations(tmp_path):
    """Write {filename: content} into a fresh migrations directory."""
    migrations_dir = tmp_path / "migrations"
    migrations_dir.mkdir()

    def _write(files: Dict[str, str]) -> Path:
        for filename, content in files.items():
            (migrations_dir / filename).write_text(content, encoding='utf-8')
        return migrations_dir

    return _write


@pytest.fixture
def migrations_dir(write_migrations):
    """Two forward scripts with down-scripts."""
    return write_migrations({
        "001_create_employees.sql": EMPLOYEES_UP,
        "001_create_employees_rollback.sql": EMPLOYEES_DOWN,
        "002_create_projects.sql": PROJECTS_UP,
        "002_create_projects_rollback.sql": PROJECTS_DOWN,
    })


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite database, disposed after the test."""
    db = Database(str(tmp_path / "rtm.db"))
    yield db
    await db.close()


@pytest.fixture
async def conn(database):
    """One connection on the test database."""
    async with database.connect() as connection:
        yield connection


@pytest.fixture
def table_names(database):
    """Async helper listing the user tables present in the database."""

    async def _table_names() -> List[str]:
        async with database.connect() as connection:
            result = await connection.execute(text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ))
            return [row[0] for row in result]

    return _table_names
