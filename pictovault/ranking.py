SCORE_EXACT = 1000
SCORE_PREFIX = 700
SCORE_CONTAINS = 400
SCORE_PER_TOKEN = 80


def fuzzy_score(query, haystack):
    q = (query or "").strip().lower()
    text = (haystack or "").lower()
    if not q:
        return 0
    if text == q:
        return SCORE_EXACT
    if text.startswith(q):
        return SCORE_PREFIX
    if q in text:
        return SCORE_CONTAINS
    return SCORE_PER_TOKEN * sum(1 for tok in q.split() if tok in text)


def rank_by_fuzzy_score(records, query):
    """Sort records by descending score; ties keep their incoming order."""
    scored = [(fuzzy_score(query, r.haystack()), r) for r in records]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [r for _, r in scored]
