from difflib import SequenceMatcher

CONTEXT_LINES = 5


def find_similar_lines(search: str, content: str, threshold: float = 0.6) -> str:
    """Return the lines of ``content`` that most resemble ``search``, or ``""``.

    When the best window does not share its first and last line with the
    search text, a few lines of context are added on each side.
    """
    search_lines = search.splitlines()
    content_lines = content.splitlines()
    window = len(search_lines)
    if not window or not content_lines:
        return ""

    best_ratio = 0.0
    best_start = -1
    for start in range(len(content_lines) - window + 1):
        chunk = content_lines[start : start + window]
        ratio = SequenceMatcher(None, search_lines, chunk).ratio()
        if ratio > best_ratio:
            best_ratio = ratio
            best_start = start

    if best_start < 0 or best_ratio < threshold:
        return ""

    best = content_lines[best_start : best_start + window]
    if best[0] == search_lines[0] and best[-1] == search_lines[-1]:
        return "\n".join(best)

    start = max(0, best_start - CONTEXT_LINES)
    end = min(len(content_lines), best_start + window + CONTEXT_LINES)
    return "\n".join(content_lines[start:end])
