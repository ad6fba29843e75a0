"""
SQL Safety Validation Repository.

Static, I/O-free read-only policy for generated SQL. Every statement is
treated as untrusted: the generator's output passes through here before
execution, and SqlExecutor re-validates on its own.

Policy (read-only mode, the default):
1. Blank SQL is an InputError (regardless of mode).
2. The text is parsed with sqlglot in the data source's dialect.
   Accepted: exactly one statement whose root is a SELECT or a set
   operation of SELECTs (UNION/INTERSECT/EXCEPT), optionally
   parenthesized or with CTEs, containing no write node anywhere in its
   tree and no SELECT ... INTO.
3. If the parser cannot handle the text, a keyword denylist is scanned
   over the uppercased text; any match is rejected, as is any INTO
   (SELECT ... INTO OUTFILE/DUMPFILE/@var, which MySQL grammars may not
   parse). Text without a match must still start with the word SELECT or
   WITH, or with "(", to be let through.

Error Handling:
- SecurityError for any policy violation; never retried
- InputError for blank SQL
"""

import re
from typing import List, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from sqlbot.domain.base_enums import Dialect
from sqlbot.domain.errors import InputError, SecurityError
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

# Keywords that reject unparseable SQL
DENYLIST_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE",
    "ALTER", "TRUNCATE", "EXEC", "EXECUTE",
)

_DENYLIST_PATTERN = re.compile(r"\b(" + "|".join(DENYLIST_KEYWORDS) + r")\b")
_INTO_PATTERN = re.compile(r"\bINTO\b")
_READ_PREFIX_PATTERN = re.compile(r"^\s*(?:(?:SELECT|WITH)\b|\()", re.IGNORECASE)

_SQLGLOT_DIALECTS = {
    Dialect.POSTGRESQL: "postgres",
    Dialect.MYSQL: "mysql",
}

_READ_ROOTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)

# Write/DDL node types; names vary across sqlglot releases
_WRITE_NODE_NAMES = (
    "Insert", "Update", "Delete", "Drop", "Create", "Alter", "AlterTable",
    "TruncateTable", "Merge", "Command", "Grant", "Revoke",
)
_WRITE_NODES = tuple(getattr(exp, name) for name in _WRITE_NODE_NAMES if hasattr(exp, name))


class SqlSafetyValidator:
    """
    Read-only policy check for candidate SQL.

    Usage:
        validator = SqlSafetyValidator(read_only=True)
        validator.validate("SELECT 1")                       # ok
        validator.validate("DROP TABLE users")               # SecurityError
        validator.validate("   ")                            # InputError
    """

    def __init__(self, read_only: bool = True):
        self.read_only = read_only

    def validate(self, sql: Optional[str], dialect: Optional[Dialect] = None) -> None:
        """
        Validate SQL against the read-only policy.

        Args:
            sql: Candidate SQL
            dialect: Data source dialect (parser grammar); generic when None

        Raises:
            InputError: If sql is blank
            SecurityError: If sql is not a single read-only statement
        """
        if sql is None or not sql.strip():
            raise InputError("SQL statement is empty")

        if not self.read_only:
            return

        read_dialect = _SQLGLOT_DIALECTS.get(dialect) if dialect else None

        try:
            statements = [
                statement
                for statement in sqlglot.parse(sql, read=read_dialect)
                if statement is not None
            ]
        except (ParseError, TokenError) as e:
            logger.debug("SQL parse failed, using keyword scan", error=str(e), trace_id=current_trace_id())
            self._check_unparsed(sql)
            return

        self._check_parsed(sql, statements)

    def _check_parsed(self, sql: str, statements: List[exp.Expression]) -> None:
        if not statements:
            raise InputError("SQL statement is empty")

        if len(statements) > 1:
            self._reject(sql, f"Only a single statement is allowed, got {len(statements)}")

        root = statements[0]
        while isinstance(root, (exp.Subquery, exp.Paren)):
            root = root.this

        if not isinstance(root, _READ_ROOTS):
            self._reject(sql, f"Only SELECT statements are allowed, got {type(root).__name__}")

        for node in root.walk():
            node = node[0] if isinstance(node, tuple) else node
            if isinstance(node, _WRITE_NODES):
                self._reject(sql, f"Statement contains a forbidden {type(node).__name__} operation")
            if isinstance(node, exp.Select) and node.args.get("into"):
                self._reject(sql, "SELECT ... INTO is not allowed")

    def _check_unparsed(self, sql: str) -> None:
        upper = sql.upper()
        match = _DENYLIST_PATTERN.search(upper)
        if match:
            self._reject(sql, f"SQL contains forbidden keyword: {match.group(1)}")

        if _INTO_PATTERN.search(upper):
            self._reject(sql, "SELECT ... INTO is not allowed")

        if not _READ_PREFIX_PATTERN.match(sql):
            self._reject(sql, "Only SELECT statements are allowed")

        logger.warning(
            "Unparseable SQL passed the keyword scan",
            policy_event="sql_unparsed_allowed",
            sql_preview=sql[:200],
            trace_id=current_trace_id(),
        )

    def _reject(self, sql: str, reason: str) -> None:
        logger.warning(
            "SQL rejected by read-only policy",
            policy_event="sql_rejected",
            reason=reason,
            sql_preview=sql[:200],
            trace_id=current_trace_id(),
        )
        raise SecurityError(reason, details={"sql": sql})
