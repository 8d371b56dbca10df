"""
Text Utility Functions

Cleanup applied to build output before it is appended to a deployment log.
"""

import re

ANSI_ESCAPE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


def strip_ansi_codes(text: str | None) -> str:
    """
    Remove ANSI color codes from text.

    Example:
        >>> strip_ansi_codes("\x1B[32mBuild passed\x1B[0m")
        'Build passed'
        >>> strip_ansi_codes(None)
        ''
    """
    if text is None:
        return ""
    return ANSI_ESCAPE.sub('', text)


def clean_log_chunk(chunk: str | None) -> str:
    """Strip colour codes and normalise line endings of one chunk of executor output."""
    text = strip_ansi_codes(chunk)
    return text.replace('\r\n', '\n').replace('\r', '\n')
