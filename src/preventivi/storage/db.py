"""
@file db.py
@brief Connessione SQLite e inizializzazione schema.
@ingroup storage_module

@details
Centralizza la creazione della connessione e l'invocazione init_schema().
"""

from __future__ import annotations
import sqlite3
from pathlib import Path

from .repository import init_schema


def connect(db_path: str) -> sqlite3.Connection:
    """
    @brief Apre una connessione SQLite e garantisce schema pronto.
    @param db_path Path al file SQLite (":memory:" per un DB volatile).
    @return sqlite3.Connection con row_factory e foreign key attive.

    @note Crea automaticamente la directory padre se non esiste.
    @note isolation_level=None: le transazioni sono esplicite (BEGIN IMMEDIATE) nel repository.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    init_schema(conn)
    return conn
