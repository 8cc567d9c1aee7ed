"""VulnLab: Deliberately injectable NoSQL-style backend for scanner testing.

Emulates a small document store behind a Flask API: query parameters, JSON
bodies, headers and cookies are decoded into Mongo-style filters without
sanitization, so operator objects (``{"$ne": null}``) widen the match. HTML
pages expose links and forms so the crawler can discover every endpoint.
"""

import json
import re
import time
from urllib.parse import unquote

from flask import Flask, request, render_template_string, jsonify, make_response

app = Flask(__name__)
app.config.setdefault("SLOW_SECONDS", 1.5)

# ── In-memory "collection" ──────────────────────────────────────

USERS = [
    {"_id": 1, "username": "admin", "email": "admin@vulnlab.local", "role": "admin"},
    {"_id": 2, "username": "alice", "email": "alice@vulnlab.local", "role": "user"},
    {"_id": 3, "username": "bob", "email": "bob@vulnlab.local", "role": "user"},
    {"_id": 4, "username": "charlie", "email": "charlie@vulnlab.local", "role": "moderator"},
    {"_id": 5, "username": "dave", "email": "dave@vulnlab.local", "role": "user"},
    {"_id": 6, "username": "erin", "email": "erin@vulnlab.local", "role": "user"},
    {"_id": 7, "username": "frank", "email": "frank@vulnlab.local", "role": "support"},
    {"_id": 8, "username": "secret_flag", "email": "flag{n0sql1_d3t3ct3d}", "role": "flag"},
]


class QueryError(Exception):
    """Raised the way a driver rejects an operator it does not support."""


def decode_value(raw):
    """VULNERABLE: strings that look like JSON objects are parsed into operators."""
    if isinstance(raw, str) and raw.strip().startswith("{"):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def match_value(value, cond):
    if not isinstance(cond, dict):
        return value == cond
    for op, arg in cond.items():
        if op == "$ne":
            ok = value != arg
        elif op == "$gt":
            ok = value is not None and str(value) > str(arg)
        elif op == "$regex":
            ok = re.search(str(arg), str(value)) is not None
        elif op == "$in":
            ok = value in (arg if isinstance(arg, list) else [arg])
        elif op == "$where":
            raise QueryError("MongoServerError: $where is not allowed in this context")
        else:
            raise QueryError(f"MongoServerError: unknown operator: {op}")
        if not ok:
            return False
    return True


def find(filters):
    """Return documents matching a flat filter, honouring a top-level $or."""
    results = []
    for doc in USERS:
        ok = True
        for key, cond in filters.items():
            if key == "$or":
                ok = any(all(match_value(doc.get(k), c) for k, c in branch.items())
                         for branch in cond)
            elif not match_value(doc.get(key), cond):
                ok = False
            if not ok:
                break
        if ok:
            results.append(doc)
    return results


def _is_slow(cond):
    return isinstance(cond, dict) and ("$where" in cond or "(a+)+" in str(cond.get("$regex", "")))


# ── Shared HTML layout ──────────────────────────────────────────

_LAYOUT = """<!DOCTYPE html>
<html><head><title>VulnLab — {{ title }}</title>
<style>
body{font-family:monospace;background:#111;color:#0f0;max-width:900px;margin:0 auto;padding:2rem}
a{color:#0ff}h1{color:#f00}h2{color:#ff0}
form{background:#1a1a1a;padding:1rem;border:1px solid #333;margin:1rem 0}
input,textarea{background:#222;color:#0f0;border:1px solid #444;padding:0.4rem;width:60%}
button{background:#900;color:#fff;border:none;padding:0.5rem 1rem;cursor:pointer}
</style></head>
<body>
<h1>VulnLab</h1>
<p><a href="/">← Home</a></p>
<h2>{{ title }}</h2>
{{ content|safe }}
</body></html>
"""


def page(title, content):
    return render_template_string(_LAYOUT, title=title, content=content)


# ══════════════════════════════════════════════════════════════════
#  HOME: links and forms for crawler discovery
# ══════════════════════════════════════════════════════════════════

@app.route("/")
def home():
    resp = make_response(page("Home", """
    <p>Deliberately injectable document-store API.</p>
    <ul>
        <li><a href="/search?q=alice">User search</a></li>
        <li><a href="/search?q=alice#results">User search (anchor)</a></li>
        <li><a href="/api/users?role=admin">Users by role (JSON)</a></li>
        <li><a href="/about">About</a></li>
        <li><a href="mailto:admin@vulnlab.local">Contact</a></li>
        <li><a href="https://elsewhere.example/">Elsewhere</a></li>
    </ul>

    <form action="/search" method="GET">
        <input type="text" name="q" value="alice">
        <button type="submit">Search</button>
    </form>

    <form action="/login" method="POST">
        <input type="text" name="username" value="a">
        <input type="password" name="password" value="b">
        <button type="submit">Login</button>
    </form>
    """))
    # CouchDB-ish banner headers for the fingerprinter
    resp.headers["Server"] = "CouchDB/3.3.2"
    resp.headers["X-CouchDB"] = "Welcome"
    resp.headers["X-CouchDB-Version"] = "3.3.2"
    return resp


@app.route("/about")
def about():
    return page("About", '<p>Nothing to see. <a href="/">Back</a> <a href="/search?q=bob">Bob</a></p>')


# ══════════════════════════════════════════════════════════════════
#  Search: query param, X-Filter header or "filter" cookie
# ══════════════════════════════════════════════════════════════════

@app.route("/search")
def search():
    raw = (request.args.get("q") or request.headers.get("X-Filter")
           or unquote(request.cookies.get("filter", "")))
    value = decode_value(raw)
    try:
        hits = find({"username": value})
    except QueryError as exc:
        return str(exc), 500
    if isinstance(value, dict) and "$ne" in value:
        # VULNERABLE: driver error leaks through
        return "MongoError: simulated", 500
    return "ok" if hits else "none"


@app.route("/api/users")
def users():
    role = decode_value(request.args.get("role", "user"))
    try:
        docs = find({"role": role})
    except QueryError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({"data": docs})


# ══════════════════════════════════════════════════════════════════
#  JSON body endpoints
# ══════════════════════════════════════════════════════════════════

@app.route("/login", methods=["POST"])
def login():
    body = request.get_json(silent=True) or {}
    username = body.get("username")
    if isinstance(username, dict):
        return "CastError: Cast to string failed for value", 500
    return "ok"


@app.route("/api/users/update", methods=["POST", "PUT", "PATCH"])
def update_users():
    body = request.get_json(silent=True) or {}
    filters = {k: v for k, v in body.items() if k in ("username", "role", "$or")}
    try:
        matched = find(filters) if filters else []
    except QueryError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({"acknowledged": True, "matchedCount": len(matched), "modifiedCount": len(matched)})


@app.route("/api/slow", methods=["GET", "POST"])
def slow():
    if request.method == "POST":
        cond = (request.get_json(silent=True) or {}).get("name")
    else:
        cond = decode_value(request.args.get("name", ""))
    if _is_slow(cond):
        time.sleep(app.config["SLOW_SECONDS"])
    return jsonify({"data": []})


@app.route("/graphql", methods=["POST"])
def graphql():
    body = request.get_json(silent=True) or {}
    variables = body.get("variables") or {}
    for name, value in variables.items():
        if isinstance(value, dict):
            return jsonify({"errors": [{"message": f"ValidationError: Path `{name}` must be a string"}]}), 400
    return jsonify({"data": {"users": []}})


@app.route("/es")
def es_root():
    resp = jsonify({"name": "node-1", "version": {"number": "8.15.0"}, "tagline": "You Know, for Search"})
    resp.headers["X-Elastic-Product"] = "Elasticsearch"
    return resp


# ══════════════════════════════════════════════════════════════════
#  Main
# ══════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    print("\n  VulnLab starting on http://0.0.0.0:5000\n")
    app.run(host="0.0.0.0", port=5000, debug=True)
