"""
Insight cache keys.

The key is a best-effort dedup hint, NOT an identity: it only covers a
few high-signal fields and uses a 32-bit non-cryptographic hash. Never
treat key equality as snapshot equality.
"""

from codewarden.domain.metrics import MetricsSnapshot

KEY_PREFIX = "analytics-ai-"


def _render(value) -> str:
    """Render a key field; integral floats drop their fractional part."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def key_fields(snapshot: MetricsSnapshot) -> tuple:
    """The fields that participate in the key, in order."""
    return (
        snapshot.repo_name,
        snapshot.health_score,
        snapshot.commits_90d,
        snapshot.contributor_count,
        snapshot.docs_score,
        snapshot.test_count,
    )


def rolling_hash(text: str) -> int:
    """hash = hash * 31 + code_unit over UTF-16 code units, as signed int32."""
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def derive_key(snapshot: MetricsSnapshot) -> str:
    """Short stable token for a snapshot's key fields."""
    key = "-".join(_render(v) for v in key_fields(snapshot))
    return f"{KEY_PREFIX}{abs(rolling_hash(key)):x}"
