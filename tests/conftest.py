"""
Pytest configuration and fixtures for tablediff tests.

Provides factories that build SQLite databases, CSV folders and
configuration-tree documents under tmp_path.
"""

import sqlite3
from collections.abc import Callable
from pathlib import Path

import pytest

from tablediff.adapters.registry import AdapterRegistry
from tablediff.connection import ConnectionDescriptor, ConnectionKind


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture
def registry() -> AdapterRegistry:
    """Fresh registry with the built-in adapters."""
    return AdapterRegistry()


@pytest.fixture
def make_sqlite(tmp_path: Path) -> Callable[..., ConnectionDescriptor]:
    """
    Factory creating a SQLite database from SQL statements.

    Usage:
        conn = make_sqlite("source", "CREATE TABLE t (id INTEGER PRIMARY KEY)", ...)
    """

    def factory(name: str, *statements: str) -> ConnectionDescriptor:
        path = tmp_path / f"{name}.sqlite"
        connection = sqlite3.connect(path)
        try:
            for statement in statements:
                connection.execute(statement)
            connection.commit()
        finally:
            connection.close()
        return ConnectionDescriptor(ConnectionKind.SQLITE, str(path))

    return factory


@pytest.fixture
def orders_pair(make_sqlite) -> tuple[ConnectionDescriptor, ConnectionDescriptor]:
    """
    Source {(1,"a"),(2,"b")} and target {(1,"a"),(3,"c")} keyed by id.
    """
    source = make_sqlite(
        "source",
        "CREATE TABLE Orders (id INTEGER PRIMARY KEY, name TEXT)",
        "INSERT INTO Orders VALUES (1, 'a')",
        "INSERT INTO Orders VALUES (2, 'b')",
    )
    target = make_sqlite(
        "target",
        "CREATE TABLE Orders (id INTEGER PRIMARY KEY, name TEXT)",
        "INSERT INTO Orders VALUES (1, 'a')",
        "INSERT INTO Orders VALUES (3, 'c')",
    )
    return source, target


@pytest.fixture
def query_sqlite() -> Callable[[ConnectionDescriptor, str], list[tuple]]:
    """Run a query against a SQLite descriptor and return all rows."""

    def run(conn: ConnectionDescriptor, query: str) -> list[tuple]:
        connection = sqlite3.connect(conn.target)
        try:
            return connection.execute(query).fetchall()
        finally:
            connection.close()

    return run


@pytest.fixture
def make_csv_folder(tmp_path: Path) -> Callable[..., ConnectionDescriptor]:
    """
    Factory creating a CSV folder from {relative name: text}.

    Files are written as UTF-8 unless an encoding is given.
    """

    def factory(
        name: str,
        files: dict[str, str],
        encoding: str = "utf-8",
        recursive: bool = False,
    ) -> ConnectionDescriptor:
        folder = tmp_path / name
        folder.mkdir(parents=True, exist_ok=True)
        for relative, text in files.items():
            path = folder / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(text.encode(encoding))
        options = (("Recursive", "1" if recursive else "0"),)
        return ConnectionDescriptor(ConnectionKind.CSV_FOLDER, str(folder), options)

    return factory


CONFIG_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<Configuration version="{version}">
  <ProjectParams>
    <projectName>{prefix}</projectName>
  </ProjectParams>
  <Box>
    <ParamsCommon>
      <boxIndex>1</boxIndex>
      <name>{prefix}.Cabinet</name>
      <type>BOX</type>
    </ParamsCommon>
    <Crates>
      <Crate>
        <ParamsCommon>
          <name>{prefix}.KC - A{rack_low}</name>
          <crateClass>main</crateClass>
          <type>CR8</type>
        </ParamsCommon>
      </Crate>
      <Crate>
        <ParamsCommon>
          <name>{prefix}.KC - A{rack_high}</name>
          <crateClass>main</crateClass>
          <type>CR8</type>
        </ParamsCommon>
      </Crate>
    </Crates>
  </Box>
  <Net>
    <ParamsCommon>
      <name>{prefix}.Bus - A{rack_low}.1</name>
      <type>CAN</type>
    </ParamsCommon>
    <ParamsSpecific>
      <speed>{speed}</speed>
    </ParamsSpecific>
    <Devices>
      <Device>
        <ParamsCommon>
          <name>{prefix}.Group - A{rack_low}.3</name>
          <type>AI8</type>
        </ParamsCommon>
        <ParamsSpecific>
          <range>{value_range}</range>
          <signals>
            <s1 name="Temperature">
              <Params>
                <unit>C</unit>
              </Params>
            </s1>
          </signals>
        </ParamsSpecific>
      </Device>
      <Device>
        <ParamsCommon>
          <name>{prefix}.Group - A{rack_high}.1</name>
          <type>DO16</type>
        </ParamsCommon>
      </Device>
    </Devices>
  </Net>
</Configuration>
"""


def write_config(
    path: Path,
    prefix: str = "ObjA",
    rack_low: int = 4,
    rack_high: int = 7,
    speed: str = "250",
    value_range: str = "0-10",
    version: str = "2",
) -> Path:
    """Write a configuration-tree document with two racks in one group."""
    path.write_text(
        CONFIG_TEMPLATE.format(
            prefix=prefix,
            rack_low=rack_low,
            rack_high=rack_high,
            speed=speed,
            value_range=value_range,
            version=version,
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ConnectionDescriptor]:
    """Factory writing a configuration-tree document; see ``write_config``."""

    def factory(name: str, **kwargs) -> ConnectionDescriptor:
        path = write_config(tmp_path / f"{name}.cfg", **kwargs)
        return ConnectionDescriptor(ConnectionKind.CFG, str(path))

    return factory
