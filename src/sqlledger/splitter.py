"""Split multi-statement SQL scripts into executable statements.

The splitter works on raw text with three regular expressions and does not
tokenize SQL. Known limitation: string literals and dollar-quoted bodies are
not recognized, so ``--`` or ``/*`` inside a quoted literal is stripped as a
comment, and a semicolon at the end of a line inside a literal or ``$$`` body
ends the statement there. A semicolon followed by more text on the same line
is not a split point, which keeps single-line function bodies intact.
"""

from __future__ import annotations

import re

LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
STATEMENT_END = re.compile(r";\s*(?:\r?\n|$)")


def strip_comments(sql: str) -> str:
    """Remove line comments, then block comments."""
    sql = LINE_COMMENT.sub("", sql)
    return BLOCK_COMMENT.sub("", sql)


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into statements in source order.

    Args:
        sql: Raw script text, possibly with comments.

    Returns:
        Non-empty statements, trimmed, without their terminating semicolon.
    """
    fragments = STATEMENT_END.split(strip_comments(sql))
    return [stmt for stmt in (fragment.strip() for fragment in fragments) if stmt]
