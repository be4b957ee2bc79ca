"""
Shared pytest fixtures: an in-memory stand-in for the supabase query builder,
plus per-test resets of breakers, job metrics and config.
"""
import copy
import itertools
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

import db
import http_client
import jobs
from config import CONFIG


# ============================================================================
# Fake supabase client
# ============================================================================

def _cmp(op):
    def pred(value, target):
        if value is None:
            return False
        return op(value, target)
    return pred


_OPS = {
    'eq': lambda v, t: v == t,
    'neq': lambda v, t: v != t,
    'gt': _cmp(lambda v, t: v > t),
    'gte': _cmp(lambda v, t: v >= t),
    'lt': _cmp(lambda v, t: v < t),
    'lte': _cmp(lambda v, t: v <= t),
    'in_': lambda v, t: v in t,
    'is_': lambda v, t: v is None if t in ('null', None) else v is t,
}


class FakeQuery:
    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = 'select'
        self._payload = None
        self._columns = '*'
        self._count = None
        self._head = False
        self._on_conflict = None
        self._filters = []
        self._orders = []
        self._range = None
        self._limit = None
        self._negate = False

    # -- operations --------------------------------------------------------
    def select(self, columns='*', count=None, head=False):
        self._columns, self._count, self._head = columns, count, head
        return self

    def insert(self, data):
        self._op, self._payload = 'insert', data
        return self

    def upsert(self, data, on_conflict=None, **kwargs):
        self._op, self._payload, self._on_conflict = 'upsert', data, on_conflict
        return self

    def update(self, data):
        self._op, self._payload = 'update', data
        return self

    def delete(self):
        self._op = 'delete'
        return self

    # -- filters and modifiers ---------------------------------------------
    @property
    def not_(self):
        self._negate = True
        return self

    def _filter(self, name, column, target):
        negate, self._negate = self._negate, False
        op = _OPS[name]
        self._filters.append(lambda row: op(row.get(column), target) != negate)
        return self

    def eq(self, column, value):
        return self._filter('eq', column, value)

    def neq(self, column, value):
        return self._filter('neq', column, value)

    def gt(self, column, value):
        return self._filter('gt', column, value)

    def gte(self, column, value):
        return self._filter('gte', column, value)

    def lt(self, column, value):
        return self._filter('lt', column, value)

    def lte(self, column, value):
        return self._filter('lte', column, value)

    def in_(self, column, values):
        return self._filter('in_', column, list(values))

    def is_(self, column, value):
        return self._filter('is_', column, value)

    def order(self, column, desc=False, **kwargs):
        self._orders.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, n):
        self._limit = n
        return self

    # -- execution ---------------------------------------------------------
    def _matching(self):
        return [r for r in self._db.tables.setdefault(self._table, []) if all(f(r) for f in self._filters)]

    def _project(self, row):
        if self._columns.strip() == '*':
            return copy.deepcopy(row)
        cols = [c.strip() for c in self._columns.split(',') if c.strip()]
        return {c: copy.deepcopy(row.get(c)) for c in cols}

    def _store(self, record):
        record = copy.deepcopy(record)
        record.setdefault('id', next(self._db._ids))
        self._db.tables.setdefault(self._table, []).append(record)
        return record

    def execute(self):
        self._db.ops.append((self._table, self._op, copy.deepcopy(self._payload)))
        if self._table in self._db.fail_tables:
            raise APIError({'message': f'{self._table} unavailable', 'code': '500', 'hint': None, 'details': None})

        if self._op == 'select':
            found = self._matching()
            for column, desc in reversed(self._orders):
                present = [r for r in found if r.get(column) is not None]
                missing = [r for r in found if r.get(column) is None]
                found = sorted(present, key=lambda r: r[column], reverse=desc) + missing
            total = len(found)
            if self._range is not None:
                found = found[self._range[0]:self._range[1] + 1]
            if self._limit is not None:
                found = found[:self._limit]
            data = [] if self._head else [self._project(r) for r in found]
            return SimpleNamespace(data=data, count=total if self._count else None)

        records = self._payload if isinstance(self._payload, list) else [self._payload]
        if self._op == 'insert':
            return SimpleNamespace(data=[self._store(r) for r in records], count=None)

        if self._op == 'upsert':
            keys = [k.strip() for k in (self._on_conflict or 'id').split(',')]
            out = []
            for record in records:
                existing = next((r for r in self._db.tables.setdefault(self._table, [])
                                 if all(k in record and r.get(k) == record[k] for k in keys)), None)
                if existing is not None:
                    existing.update(copy.deepcopy(record))
                    out.append(copy.deepcopy(existing))
                else:
                    out.append(self._store(record))
            return SimpleNamespace(data=out, count=None)

        if self._op == 'update':
            found = self._matching()
            for row in found:
                row.update(copy.deepcopy(self._payload))
            return SimpleNamespace(data=copy.deepcopy(found), count=None)

        found = self._matching()
        self._db.tables[self._table] = [r for r in self._db.tables[self._table] if r not in found]
        return SimpleNamespace(data=found, count=None)


class FakeSupabase:
    """Enough of ``supabase.Client`` for the query shapes this codebase uses."""

    def __init__(self, tables=None):
        self.tables = {name: [dict(r) for r in recs] for name, recs in (tables or {}).items()}
        self.ops = []
        self.rpc_calls = []
        self.fail_tables = set()
        self._ids = itertools.count(10_000)

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        self.rpc_calls.append((name, params))
        rpc = MagicMock()
        rpc.execute.return_value = SimpleNamespace(data=None, count=None)
        return rpc

    def writes(self, table, op=None):
        return [p for t, o, p in self.ops if t == table and o != 'select' and (op is None or o == op)]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_db():
    client = FakeSupabase()
    db.set_client(client)
    yield client
    db.set_client(None)


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    # Deterministic baseline: no provider keys, fresh breakers, empty job metrics
    for key in ('POLYGON_API_KEY', 'LUNARCRUSH_API_KEY', 'COINGECKO_API_KEY',
                'COINGLASS_API_KEY', 'ANTHROPIC_API_KEY'):
        monkeypatch.setitem(CONFIG, key, '')
    monkeypatch.setitem(CONFIG, 'TECHNICALS_BATCH_DELAY', 0)
    monkeypatch.setitem(CONFIG, 'COINGECKO_BATCH_DELAY', 0)
    monkeypatch.setitem(CONFIG, 'LUNARCRUSH_PAGE_DELAY', 0)
    monkeypatch.setitem(CONFIG, 'LUNARCRUSH_TOKEN_DELAY', 0)
    monkeypatch.setitem(CONFIG, 'LUNARCRUSH_RETRY_BASE', 0)
    http_client._BREAKERS.clear()
    jobs.reset_metrics()
    yield
    http_client._BREAKERS.clear()


def http_response(status=200, payload=None, text=None, lines=None):
    """A MagicMock shaped like ``requests.Response``."""
    resp = MagicMock(status_code=status)
    resp.json.return_value = payload
    resp.text = text if text is not None else ('' if payload is None else str(payload))
    resp.iter_lines.return_value = iter(lines or [])
    return resp
