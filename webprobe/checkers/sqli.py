import re
from typing import Optional

from webprobe.checkers.base import BaseChecker
from webprobe.core.config import ProbeClass
from webprobe.core.models import Finding, IssueType, Severity

# Only real database errors, never reflected payload text.
_ERR_RX = [
    # MySQL / MariaDB
    r"SQL syntax.*MySQL",
    r"You have an error in your SQL syntax",
    r"Warning.*mysql_",
    r"mysql_fetch_",
    r"MySqlException",
    # PostgreSQL
    r"PostgreSQL.*ERROR",
    r"syntax error at or near",
    r"PG::SyntaxError",
    # MSSQL
    r"Unclosed quotation mark after the character string",
    r"Incorrect syntax near",
    r"System\.Data\.SqlClient",
    # Oracle
    r"ORA-\d{5}",
    # SQLite
    r"SQLite.*error",
    r"SQLiteException",
    # Generic / ORM
    r"PDOException",
    r"SQLSTATE\[\w+\]",
    r"org\.hibernate\.exception",
]
_ERR_COMPILED = [re.compile(p, re.I) for p in _ERR_RX]


def find_sql_error(body: str) -> Optional[re.Match]:
    for rx in _ERR_COMPILED:
        m = rx.search(body or "")
        if m:
            return m
    return None


class SQLi(BaseChecker):
    """Error-based SQL injection: a lone quote that surfaces a database error."""

    name = "SQL Injection"
    probe_class = ProbeClass.SQLI
    issue_type = IssueType.SQLI_PATTERN

    def detect(self, engine, config, url, param_key) -> Optional[Finding]:
        if not param_key:
            return None
        for probe in self.probes:
            target = engine.with_param(url, param_key, probe.payload)
            resp = engine.get(target)
            body = resp.text or ""
            m = find_sql_error(body)
            if m is None:
                continue
            return self.finding(
                target, Severity.HIGH, 0.9,
                param=param_key, payload=probe.payload, signal=probe.signature,
                status_code=resp.status_code,
                evidence=engine.snippet_around(body, m.group(0), 80),
            )
        return None
