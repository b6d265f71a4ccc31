"""Filtered read queries against the rule tables.

Rule administration lives elsewhere; the QC pipeline only ever reads the
active rules that apply to a run's entity, silo and email type.  A null or
blank silo on a risk, disclaimer or link rule acts as a wildcard.
"""

from __future__ import annotations

import json
import sqlite3

from emailqc.db.models import AdditionalRule, KeywordRule, RuleSet
from emailqc.links.models import LinkRule


def _decode_json(value: str | None):
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def load_risk_rules(conn: sqlite3.Connection, entity: str, silo: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT text FROM risk_rules
        WHERE entity = ? AND active = 1
          AND (silo_filter IS NULL OR TRIM(silo_filter) = '' OR silo_filter = ?)
        ORDER BY text ASC
        """,
        (entity, silo),
    ).fetchall()
    return [r["text"] for r in rows]


def load_disclaimer_rules(
    conn: sqlite3.Connection, entity: str, silo: str, email_type: str
) -> list[str]:
    rows = conn.execute(
        """
        SELECT text FROM disclaimer_rules
        WHERE entity = ? AND active = 1 AND email_type = ?
          AND (silo IS NULL OR TRIM(silo) = '' OR silo = ?)
        ORDER BY silo ASC, kind ASC
        """,
        (entity, email_type, silo),
    ).fetchall()
    return [r["text"] for r in rows]


def load_keyword_rules(conn: sqlite3.Connection) -> list[KeywordRule]:
    rows = conn.execute(
        "SELECT keyword, required_text FROM keyword_rules WHERE active = 1 ORDER BY keyword ASC"
    ).fetchall()
    return [KeywordRule(keyword=r["keyword"], required_text=r["required_text"]) for r in rows]


def load_additional_rules(conn: sqlite3.Connection, entity: str, silo: str) -> list[AdditionalRule]:
    rows = conn.execute(
        """
        SELECT * FROM additional_rules
        WHERE entity = ? AND silo = ? AND active = 1
        ORDER BY topic ASC
        """,
        (entity, silo),
    ).fetchall()
    return [
        AdditionalRule(
            topic=r["topic"],
            silo=r["silo"],
            entity=r["entity"],
            text=r["text"],
            links=_decode_json(r["links"]),
            notes=r["notes"],
            version=r["version"],
        )
        for r in rows
    ]


def load_link_rules(
    conn: sqlite3.Connection, entity: str, silo: str, email_type: str
) -> list[LinkRule]:
    rows = conn.execute(
        """
        SELECT * FROM link_rules
        WHERE entity = ? AND active = 1 AND email_type = ?
          AND (silo IS NULL OR TRIM(silo) = '' OR silo = ?)
        ORDER BY kind ASC, href_pattern ASC
        """,
        (entity, email_type, silo),
    ).fetchall()
    return [
        LinkRule(
            id=r["id"],
            entity=r["entity"],
            silo=r["silo"],
            email_type=r["email_type"],
            kind=r["kind"],
            match_type=r["match_type"],
            href_pattern=r["href_pattern"],
            active=bool(r["active"]),
        )
        for r in rows
    ]


def load_rules(conn: sqlite3.Connection, entity: str, silo: str, email_type: str) -> RuleSet:
    """Return every rule applicable to a run in one :class:`RuleSet`."""
    return RuleSet(
        risk_rules=load_risk_rules(conn, entity, silo),
        disclaimer_rules=load_disclaimer_rules(conn, entity, silo, email_type),
        keyword_rules=load_keyword_rules(conn),
        additional_rules=load_additional_rules(conn, entity, silo),
        link_rules=load_link_rules(conn, entity, silo, email_type),
    )
